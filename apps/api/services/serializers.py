"""
Response shaping.

Entities are returned as plain camelCase dicts; routers pick the
serializer that matches what the caller is allowed to see.
"""
import math
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from models import (
    Activity,
    ActivityMetrics,
    Exercise,
    Feedback,
    Message,
    Notification,
    Profile,
    TemplateExercise,
    User,
    UserIntegration,
    WorkoutAssignment,
    WorkoutTemplate,
    ensure_utc,
)


def iso(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def _id(value) -> Optional[str]:
    return str(value) if value is not None else None


def pagination(page: int, limit: int, total: int) -> Dict[str, int]:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if limit else 0,
    }


def user_summary(user: Optional[User]) -> Optional[Dict[str, Any]]:
    if user is None:
        return None
    return {
        "id": _id(user.id),
        "firstName": user.first_name,
        "lastName": user.last_name,
        "avatar": user.avatar,
    }


def user_dict(user: User, include_profile: bool = False) -> Dict[str, Any]:
    data = {
        **user_summary(user),
        "email": user.email,
        "role": user.role,
        "isActive": user.is_active,
        "lastLoginAt": iso(user.last_login_at),
        "createdAt": iso(user.created_at),
    }
    if include_profile:
        data["profile"] = profile_dict(user.profile) if user.profile else None
    return data


def profile_dict(profile: Profile, private: bool = True) -> Dict[str, Any]:
    """Profile fields; ``private=False`` drops the personal ones."""
    data = {
        "bio": profile.bio,
        "location": profile.location,
        "fitnessLevel": profile.fitness_level,
        "sportTypes": profile.sport_types or [],
        "specialization": profile.specialization,
        "experience": profile.experience,
        "isPublic": profile.is_public,
        "allowMessages": profile.allow_messages,
    }
    if private:
        data.update({
            "dateOfBirth": iso(profile.date_of_birth),
            "gender": profile.gender,
            "height": profile.height,
            "weight": profile.weight,
            "phone": profile.phone,
            "timezone": profile.timezone,
            "language": profile.language,
            "restingHR": profile.resting_hr,
            "maxHR": profile.max_hr,
            "vo2Max": profile.vo2_max,
            "goals": profile.goals or [],
        })
    return data


def metrics_dict(metrics: Optional[ActivityMetrics]) -> Optional[Dict[str, Any]]:
    if metrics is None:
        return None
    return {
        "avgHeartRate": metrics.avg_heart_rate,
        "maxHeartRate": metrics.max_heart_rate,
        "avgPower": metrics.avg_power,
        "maxPower": metrics.max_power,
        "avgSpeed": metrics.avg_speed,
        "maxSpeed": metrics.max_speed,
        "elevationGain": metrics.elevation_gain,
        "trainingLoad": metrics.training_load,
        "zones": metrics.zones,
        "splits": metrics.splits,
    }


def activity_summary(activity: Activity) -> Dict[str, Any]:
    return {
        "id": _id(activity.id),
        "name": activity.name,
        "type": activity.type,
        "startTime": iso(activity.start_time),
        "duration": activity.duration,
        "distance": activity.distance,
    }


def activity_dict(activity: Activity, include_metrics: bool = True) -> Dict[str, Any]:
    data = {
        **activity_summary(activity),
        "userId": _id(activity.user_id),
        "description": activity.description,
        "source": activity.source,
        "endTime": iso(activity.end_time),
        "calories": activity.calories,
        "notes": activity.notes,
        "isPublic": activity.is_public,
        "workoutAssignmentId": _id(activity.workout_assignment_id),
        "createdAt": iso(activity.created_at),
        "updatedAt": iso(activity.updated_at),
    }
    if include_metrics:
        data["metrics"] = metrics_dict(activity.metrics)
    return data


def feedback_brief(feedback: Feedback) -> Dict[str, Any]:
    return {
        "id": _id(feedback.id),
        "rating": feedback.rating,
        "category": feedback.category,
    }


def visible_feedback(activity: Activity, viewer_id) -> List[Feedback]:
    """Feedback on an activity the viewer may read (private notes stay with their coach)."""
    return [
        fb for fb in activity.feedback
        if not fb.is_private or fb.coach_id == viewer_id
    ]


def feedback_dict(feedback: Feedback, include_activity: bool = False) -> Dict[str, Any]:
    data = {
        "id": _id(feedback.id),
        "activityId": _id(feedback.activity_id),
        "coachId": _id(feedback.coach_id),
        "rating": feedback.rating,
        "comment": feedback.comment,
        "category": feedback.category,
        "isPrivate": feedback.is_private,
        "recommendations": feedback.recommendations or [],
        "coach": user_summary(feedback.coach),
        "createdAt": iso(feedback.created_at),
        "updatedAt": iso(feedback.updated_at),
    }
    if include_activity and feedback.activity is not None:
        data["activity"] = {
            **activity_summary(feedback.activity),
            "user": user_summary(feedback.activity.user),
        }
    return data


def exercise_dict(exercise: Exercise) -> Dict[str, Any]:
    return {
        "id": _id(exercise.id),
        "name": exercise.name,
        "description": exercise.description,
        "category": exercise.category,
        "muscleGroups": exercise.muscle_groups or [],
        "equipment": exercise.equipment or [],
        "instructions": exercise.instructions,
    }


def template_exercise_dict(item: TemplateExercise) -> Dict[str, Any]:
    return {
        "id": _id(item.id),
        "exerciseId": _id(item.exercise_id),
        "order": item.order,
        "sets": item.sets,
        "reps": item.reps,
        "duration": item.duration,
        "restTime": item.rest_time,
        "weight": item.weight,
        "distance": item.distance,
        "notes": item.notes,
        "exercise": exercise_dict(item.exercise) if item.exercise else None,
    }


def template_dict(template: WorkoutTemplate, include_exercises: bool = True,
                  assignments_count: Optional[int] = None) -> Dict[str, Any]:
    data = {
        "id": _id(template.id),
        "coachId": _id(template.coach_id),
        "name": template.name,
        "description": template.description,
        "category": template.category,
        "difficulty": template.difficulty,
        "estimatedDuration": template.estimated_duration,
        "tags": template.tags or [],
        "isPublic": template.is_public,
        "createdAt": iso(template.created_at),
        "updatedAt": iso(template.updated_at),
    }
    if include_exercises:
        data["exercises"] = [template_exercise_dict(item) for item in template.exercises]
    if assignments_count is not None:
        data["assignmentsCount"] = assignments_count
    return data


def assignment_dict(assignment: WorkoutAssignment) -> Dict[str, Any]:
    workout = assignment.workout
    return {
        "id": _id(assignment.id),
        "status": assignment.status,
        "priority": assignment.priority,
        "scheduledDate": iso(assignment.scheduled_date),
        "assignedAt": iso(assignment.assigned_at),
        "completedAt": iso(assignment.completed_at),
        "notes": assignment.notes,
        "athlete": user_summary(assignment.athlete),
        "coach": user_summary(workout.creator) if workout else None,
        "workout": {
            "id": _id(workout.id),
            "name": workout.name,
            "description": workout.description,
            "difficulty": workout.difficulty,
            "estimatedDuration": workout.estimated_duration,
            "templateId": _id(workout.template_id),
        } if workout else None,
        "activityId": _id(assignment.activity.id) if assignment.activity else None,
    }


def message_dict(message: Message, replies_count: Optional[int] = None) -> Dict[str, Any]:
    data = {
        "id": _id(message.id),
        "subject": message.subject,
        "content": message.content,
        "type": message.type,
        "isRead": message.is_read,
        "readAt": iso(message.read_at),
        "parentId": _id(message.parent_id),
        "sender": user_summary(message.sender),
        "recipient": user_summary(message.recipient),
        "createdAt": iso(message.created_at),
    }
    if replies_count is not None:
        data["repliesCount"] = replies_count
    return data


def notification_dict(notification: Notification) -> Dict[str, Any]:
    return {
        "id": _id(notification.id),
        "type": notification.type,
        "title": notification.title,
        "message": notification.message,
        "data": notification.data,
        "isRead": notification.is_read,
        "readAt": iso(notification.read_at),
        "createdAt": iso(notification.created_at),
    }


def integration_dict(integration: UserIntegration) -> Dict[str, Any]:
    """Never exposes the stored tokens."""
    return {
        "id": _id(integration.id),
        "provider": integration.provider,
        "externalId": integration.external_id,
        "isActive": integration.is_active,
        "lastSync": iso(integration.last_sync),
        "syncSettings": integration.sync_settings or {},
        "createdAt": iso(integration.created_at),
        "updatedAt": iso(integration.updated_at),
    }
