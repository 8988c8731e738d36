"""
Activities API Router

Manual activity logging, listing with filters and pagination, and
per-user activity statistics.
"""
import logging
from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session, joinedload

from core.auth import get_current_user
from core.database import get_db
from core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from core.permissions import active_relation_lookup, can_view_user_data, ensure_can_view_user_data
from models import (
    Activity,
    ActivityMetrics,
    ActivitySource,
    AssignmentStatus,
    NotificationType,
    User,
    UserRole,
    WorkoutAssignment,
    utc_now,
)
from schemas import ActivityCreate, ActivityTypeName, ActivityUpdate, to_utc
from services.notifications import queue_notification
from services.resource_stats import activity_stats
from services.serializers import (
    activity_dict,
    assignment_dict,
    feedback_dict,
    pagination,
    user_summary,
    visible_feedback,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/activities", tags=["activities"])

StatsPeriod = Literal["week", "month", "year"]


def _get_activity(db: Session, activity_id: UUID) -> Activity:
    activity = (
        db.query(Activity)
        .options(joinedload(Activity.metrics), joinedload(Activity.user))
        .filter(Activity.id == activity_id)
        .first()
    )
    if not activity:
        raise NotFoundError("Activity not found", error_code="ACTIVITY_NOT_FOUND")
    return activity


def _get_owned_activity(db: Session, activity_id: UUID, user: User) -> Activity:
    activity = _get_activity(db, activity_id)
    if activity.user_id != user.id:
        raise ForbiddenError("You can only modify your own activities", error_code="NOT_ACTIVITY_OWNER")
    return activity


@router.get("")
def list_activities(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100, description="Number of activities per page"),
    user_id: Optional[UUID] = Query(None, alias="userId", description="Whose activities (defaults to you)"),
    type: Optional[ActivityTypeName] = Query(None),
    source: Optional[str] = Query(None, description="MANUAL or an integration provider"),
    date_from: Optional[datetime] = Query(None, alias="from"),
    date_to: Optional[datetime] = Query(None, alias="to"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    List activities, newest first.

    The owner, admins and coaches with an ACTIVE relation see every
    activity; anyone else only sees the target's public activities and
    is refused outright when there are none.
    """
    target_id = user_id or current_user.id

    if source is not None and source not in ActivitySource.ALL:
        raise ValidationError(f"Invalid source: {source}", error_code="INVALID_SOURCE")

    query = db.query(Activity).filter(Activity.user_id == target_id)

    if not can_view_user_data(current_user, target_id, active_relation_lookup(db)):
        query = query.filter(Activity.is_public.is_(True))
        if query.first() is None:
            raise ForbiddenError(
                "You do not have access to this user's activities",
                error_code="RESOURCE_ACCESS_DENIED",
            )

    if type:
        query = query.filter(Activity.type == type)
    if source:
        query = query.filter(Activity.source == source)
    if date_from:
        query = query.filter(Activity.start_time >= to_utc(date_from))
    if date_to:
        query = query.filter(Activity.start_time <= to_utc(date_to))

    total = query.count()
    activities = (
        query.options(joinedload(Activity.metrics), joinedload(Activity.user))
        .order_by(Activity.start_time.desc(), Activity.id)
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    return {
        "activities": [
            {**activity_dict(a), "user": user_summary(a.user)}
            for a in activities
        ],
        "pagination": pagination(page, limit, total),
    }


@router.post("", status_code=201)
def create_activity(
    payload: ActivityCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Log a manual activity.

    Linking a workout assignment marks it COMPLETED and notifies the
    coach who created the workout; the activity, the assignment change
    and the notification land in the same commit.
    """
    duration = payload.duration
    if duration is None and payload.end_time is not None:
        duration = int((payload.end_time - payload.start_time).total_seconds())

    assignment = None
    if payload.workout_assignment_id:
        assignment = db.query(WorkoutAssignment).filter(
            WorkoutAssignment.id == payload.workout_assignment_id
        ).first()
        if not assignment:
            raise NotFoundError("Workout assignment not found", error_code="ASSIGNMENT_NOT_FOUND")
        if assignment.athlete_id != current_user.id:
            raise ForbiddenError("This workout is not assigned to you", error_code="NOT_ASSIGNMENT_OWNER")
        if assignment.activity is not None:
            raise ConflictError("This workout already has an activity", error_code="ASSIGNMENT_ALREADY_LINKED")
        if assignment.status == AssignmentStatus.SKIPPED:
            raise ValidationError("Skipped workouts cannot be completed", error_code="ASSIGNMENT_SKIPPED")

    activity = Activity(
        user_id=current_user.id,
        name=payload.name,
        description=payload.description,
        type=payload.type,
        source=ActivitySource.MANUAL,
        start_time=payload.start_time,
        end_time=payload.end_time,
        duration=duration,
        distance=payload.distance,
        calories=payload.calories,
        notes=payload.notes,
        is_public=payload.is_public,
        workout_assignment_id=assignment.id if assignment else None,
    )
    if payload.metrics:
        activity.metrics = ActivityMetrics(**payload.metrics.model_dump())
    db.add(activity)
    db.flush()

    if assignment is not None:
        assignment.status = AssignmentStatus.COMPLETED
        assignment.completed_at = utc_now()
        queue_notification(
            db,
            assignment.coach_id,
            NotificationType.WORKOUT_COMPLETED,
            "Workout completed",
            f"{current_user.full_name} completed {assignment.workout.name}",
            {"assignmentId": assignment.id, "athleteId": current_user.id, "activityId": activity.id},
        )

    db.commit()

    logger.info(f"Activity {activity.id} created by user {current_user.id}")
    activity = _get_activity(db, activity.id)
    return {"message": "Activity created", "activity": activity_dict(activity)}


@router.get("/stats")
def get_own_activity_stats(
    period: StatsPeriod = Query("month"),
    type: Optional[ActivityTypeName] = Query(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return activity_stats(db, current_user.id, period, type)


@router.get("/stats/{user_id}")
def get_user_activity_stats(
    user_id: UUID,
    period: StatsPeriod = Query("month"),
    type: Optional[ActivityTypeName] = Query(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Stats for another user; coaches need an ACTIVE relation with them."""
    ensure_can_view_user_data(db, current_user, user_id)
    return activity_stats(db, user_id, period, type)


@router.get("/{activity_id}")
def get_activity(
    activity_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    activity = _get_activity(db, activity_id)

    if not activity.is_public and not can_view_user_data(
        current_user, activity.user_id, active_relation_lookup(db)
    ):
        raise ForbiddenError("You do not have access to this activity", error_code="RESOURCE_ACCESS_DENIED")

    if current_user.role == UserRole.ADMIN:
        feedback = list(activity.feedback)
    else:
        feedback = visible_feedback(activity, current_user.id)

    return {
        "activity": {
            **activity_dict(activity),
            "user": user_summary(activity.user),
            "workoutAssignment": assignment_dict(activity.workout_assignment) if activity.workout_assignment else None,
            "feedback": [feedback_dict(fb) for fb in feedback],
        }
    }


@router.put("/{activity_id}")
def update_activity(
    activity_id: UUID,
    payload: ActivityUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Owners may rename, annotate or publish; type and source never change."""
    activity = _get_owned_activity(db, activity_id, current_user)

    for field, value in payload.model_dump(exclude_unset=True).items():
        if value is None and field != "notes":
            continue
        setattr(activity, field, value)
    db.commit()
    db.refresh(activity)

    return {"message": "Activity updated", "activity": activity_dict(activity)}


@router.delete("/{activity_id}")
def delete_activity(
    activity_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    activity = _get_owned_activity(db, activity_id, current_user)

    if activity.source != ActivitySource.MANUAL:
        raise ValidationError(
            f"Activities imported from {activity.source} cannot be deleted",
            error_code="ACTIVITY_NOT_MANUAL",
        )

    db.delete(activity)
    db.commit()

    logger.info(f"Activity {activity_id} deleted by user {current_user.id}")
    return {"message": "Activity deleted"}
