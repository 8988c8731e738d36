"""
Dashboard Aggregation Service

Summaries of activity, workout and feedback volume for a reporting window.

Scope depends on the acting user's role:
- COACH: every athlete linked to the coach by an ACTIVE relation
- anyone else: the user's own rows

The per-request queries are independent read-only aggregates over the same
window; they run one after another on the request session. Absence of data
yields zeros, never errors.
"""
import bisect
import logging
from collections import OrderedDict
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from core.permissions import active_athlete_ids_query
from models import (
    Activity,
    AssignmentStatus,
    CoachAthlete,
    Feedback,
    Message,
    RelationStatus,
    User,
    UserRole,
    Workout,
    WorkoutAssignment,
    WorkoutTemplate,
    ensure_utc,
    utc_now,
)
from services.aggregation import average, or_zero, percentage
from services.date_ranges import iter_buckets, resolve_window
from services.serializers import activity_summary, feedback_brief, iso, user_summary

logger = logging.getLogger(__name__)

RECENT_ACTIVITIES_LIMIT = 10


def is_coach(user: User) -> bool:
    return user.role == UserRole.COACH


def _activity_scope(db: Session, user: User):
    """Filter clause selecting the activities the user aggregates over."""
    if is_coach(user):
        return Activity.user_id.in_(active_athlete_ids_query(db, user.id))
    return Activity.user_id == user.id


def _assignment_query(db: Session, user: User):
    """Assignments the user aggregates over: a coach's own workouts for ACTIVE athletes."""
    query = db.query(WorkoutAssignment)
    if is_coach(user):
        return query.join(Workout, WorkoutAssignment.workout_id == Workout.id).filter(
            Workout.creator_id == user.id,
            WorkoutAssignment.athlete_id.in_(active_athlete_ids_query(db, user.id)),
        )
    return query.filter(WorkoutAssignment.athlete_id == user.id)


def _unread_messages(db: Session, user_id: UUID) -> int:
    return db.query(Message).filter(
        Message.recipient_id == user_id,
        Message.is_read.is_(False),
    ).count()


def _recent_activities(db: Session, user: User, start: datetime, end: datetime) -> List[Activity]:
    query = db.query(Activity).filter(
        _activity_scope(db, user),
        Activity.start_time >= start,
        Activity.start_time <= end,
    )
    if is_coach(user):
        query = query.options(joinedload(Activity.user))
    return query.order_by(Activity.start_time.desc(), Activity.id).limit(RECENT_ACTIVITIES_LIMIT).all()


# ---------------------------------------------------------------------------
# Overview
# ---------------------------------------------------------------------------

def get_overview(db: Session, user: User, period: str = "month", now: Optional[datetime] = None) -> Dict[str, Any]:
    start, end = resolve_window(period, now)
    if is_coach(user):
        return _coach_overview(db, user, period, start, end)
    return _athlete_overview(db, user, period, start, end)


def _coach_overview(db: Session, coach: User, period: str, start: datetime, end: datetime) -> Dict[str, Any]:
    athlete_ids = active_athlete_ids_query(db, coach.id)

    athletes_count = db.query(CoachAthlete).filter(
        CoachAthlete.coach_id == coach.id,
        CoachAthlete.status == RelationStatus.ACTIVE,
    ).count()

    active_athletes = db.query(func.count(func.distinct(Activity.user_id))).filter(
        Activity.user_id.in_(athlete_ids),
        Activity.start_time >= start,
        Activity.start_time <= end,
    ).scalar() or 0

    assignments = _assignment_query(db, coach).filter(
        WorkoutAssignment.assigned_at >= start,
        WorkoutAssignment.assigned_at <= end,
    )
    total_workouts = assignments.count()
    completed_workouts = assignments.filter(
        WorkoutAssignment.status == AssignmentStatus.COMPLETED
    ).count()

    pending_feedbacks = db.query(Activity).filter(
        Activity.user_id.in_(athlete_ids),
        Activity.start_time >= start,
        Activity.start_time <= end,
        ~Activity.feedback.any(),
    ).count()

    workout_templates = db.query(WorkoutTemplate).filter(WorkoutTemplate.coach_id == coach.id).count()

    recent = _recent_activities(db, coach, start, end)

    return {
        "overview": {
            "athletesCount": athletes_count,
            "activeAthletes": active_athletes,
            "totalWorkouts": total_workouts,
            "completedWorkouts": completed_workouts,
            "completionRate": percentage(completed_workouts, total_workouts),
            "pendingFeedbacks": pending_feedbacks,
            "workoutTemplates": workout_templates,
            "unreadMessages": _unread_messages(db, coach.id),
        },
        "recentActivities": [
            {**activity_summary(a), "user": user_summary(a.user)} for a in recent
        ],
        "period": period,
    }


def _athlete_overview(db: Session, athlete: User, period: str, start: datetime, end: datetime) -> Dict[str, Any]:
    in_window = (
        Activity.user_id == athlete.id,
        Activity.start_time >= start,
        Activity.start_time <= end,
    )
    total_activities, total_distance, total_duration, total_calories = db.query(
        func.count(Activity.id),
        func.sum(Activity.distance),
        func.sum(Activity.duration),
        func.sum(Activity.calories),
    ).filter(*in_window).one()

    assignments = _assignment_query(db, athlete)
    assigned_in_window = assignments.filter(
        WorkoutAssignment.assigned_at >= start,
        WorkoutAssignment.assigned_at <= end,
    )
    assigned_workouts = assigned_in_window.count()
    completed_workouts = assigned_in_window.filter(
        WorkoutAssignment.status == AssignmentStatus.COMPLETED
    ).count()
    pending_workouts = assignments.filter(
        WorkoutAssignment.status.in_(AssignmentStatus.OPEN),
        WorkoutAssignment.scheduled_date >= utc_now(),
    ).count()

    recent = _recent_activities(db, athlete, start, end)

    coach_relation = db.query(CoachAthlete).options(joinedload(CoachAthlete.coach)).filter(
        CoachAthlete.athlete_id == athlete.id,
        CoachAthlete.status == RelationStatus.ACTIVE,
    ).order_by(CoachAthlete.created_at, CoachAthlete.id).first()

    return {
        "overview": {
            "totalActivities": total_activities,
            "totalDistance": round(or_zero(total_distance), 2),
            "totalDuration": or_zero(total_duration),
            "totalCalories": or_zero(total_calories),
            "avgDistance": average(total_distance, total_activities),
            "avgDuration": average(total_duration, total_activities, digits=None),
            "assignedWorkouts": assigned_workouts,
            "completedWorkouts": completed_workouts,
            "pendingWorkouts": pending_workouts,
            "completionRate": percentage(completed_workouts, assigned_workouts),
            "unreadMessages": _unread_messages(db, athlete.id),
        },
        "recentActivities": [
            {
                **activity_summary(a),
                "calories": a.calories,
                "feedback": [feedback_brief(fb) for fb in a.feedback if not fb.is_private],
            }
            for a in recent
        ],
        "coach": _coach_info(coach_relation.coach) if coach_relation else None,
        "period": period,
    }


def _coach_info(coach: User) -> Dict[str, Any]:
    profile = coach.profile
    return {
        **user_summary(coach),
        "profile": {
            "specialization": profile.specialization if profile else None,
            "experience": profile.experience if profile else None,
        },
    }


# ---------------------------------------------------------------------------
# Timeline
# ---------------------------------------------------------------------------

def get_timeline(
    db: Session,
    user: User,
    period: str = "month",
    granularity: str = "day",
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Per-bucket activity totals, oldest first, one entry per bucket.

    A single query fetches the window; rows are reduced into buckets in
    memory. Each bucket covers [bucket_start, bucket_end) clipped to the
    closed window; the last bucket also takes activities stamped at ``end``.
    """
    start, end = resolve_window(period, now)
    buckets = list(iter_buckets(start, end, granularity))

    timeline = [
        {
            "date": bucket_start.date().isoformat(),
            "activities": 0,
            "distance": 0,
            "duration": 0,
            "calories": 0,
        }
        for bucket_start, _ in buckets
    ]
    if not buckets:
        return {"timeline": timeline, "period": period, "granularity": granularity}

    rows = db.query(
        Activity.start_time,
        Activity.distance,
        Activity.duration,
        Activity.calories,
    ).filter(
        _activity_scope(db, user),
        Activity.start_time >= buckets[0][0],
        Activity.start_time <= end,
    ).all()

    starts = [bucket_start for bucket_start, _ in buckets]
    for start_time, distance, duration, calories in rows:
        index = bisect.bisect_right(starts, ensure_utc(start_time)) - 1
        if index < 0:
            continue
        entry = timeline[index]
        entry["activities"] += 1
        entry["distance"] += distance or 0
        entry["duration"] += duration or 0
        entry["calories"] += calories or 0

    for entry in timeline:
        entry["distance"] = round(entry["distance"], 2)

    return {"timeline": timeline, "period": period, "granularity": granularity}


# ---------------------------------------------------------------------------
# Leaderboard
# ---------------------------------------------------------------------------

def _athlete_stats(activities: List[Activity], assignments: List[WorkoutAssignment]) -> Dict[str, Any]:
    total_activities = len(activities)
    total_distance = sum(a.distance or 0 for a in activities)
    total_duration = sum(a.duration or 0 for a in activities)
    total_calories = sum(a.calories or 0 for a in activities)
    last_activity = max((ensure_utc(a.start_time) for a in activities), default=None)
    completed = sum(1 for a in assignments if a.status == AssignmentStatus.COMPLETED)

    return {
        "totalActivities": total_activities,
        "totalDistance": round(total_distance, 2),
        "totalDuration": total_duration,
        "totalCalories": total_calories,
        "avgDistance": average(total_distance, total_activities),
        "avgDuration": average(total_duration, total_activities, digits=None),
        "lastActivity": iso(last_activity),
        "completedWorkouts": completed,
        "totalWorkouts": len(assignments),
        "completionRate": percentage(completed, len(assignments)),
        "_lastActivityTs": last_activity.timestamp() if last_activity else 0,
    }


_SORT_KEYS = {
    "activities": lambda row: row["stats"]["totalActivities"],
    "distance": lambda row: row["stats"]["totalDistance"],
    "duration": lambda row: row["stats"]["totalDuration"],
    "lastActivity": lambda row: row["stats"]["_lastActivityTs"],
}


def get_athlete_leaderboard(
    db: Session,
    coach: User,
    period: str = "month",
    sort_by: str = "activities",
    limit: int = 10,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Rank the coach's ACTIVE athletes by ``sort_by`` (descending).

    Athletes are fetched in relation order; the sort is stable, so ties keep
    that order. Ranking happens before truncating to ``limit``.
    """
    start, end = resolve_window(period, now)

    relations = db.query(CoachAthlete).options(
        joinedload(CoachAthlete.athlete).joinedload(User.profile)
    ).filter(
        CoachAthlete.coach_id == coach.id,
        CoachAthlete.status == RelationStatus.ACTIVE,
    ).order_by(CoachAthlete.created_at, CoachAthlete.id).all()

    athlete_ids = [relation.athlete_id for relation in relations]
    activities_by_athlete: Dict[UUID, List[Activity]] = {aid: [] for aid in athlete_ids}
    assignments_by_athlete: Dict[UUID, List[WorkoutAssignment]] = {aid: [] for aid in athlete_ids}

    if athlete_ids:
        for activity in db.query(Activity).filter(
            Activity.user_id.in_(athlete_ids),
            Activity.start_time >= start,
            Activity.start_time <= end,
        ).all():
            activities_by_athlete[activity.user_id].append(activity)

        for assignment in _assignment_query(db, coach).filter(
            WorkoutAssignment.assigned_at >= start,
            WorkoutAssignment.assigned_at <= end,
        ).all():
            assignments_by_athlete[assignment.athlete_id].append(assignment)

    rows = []
    for relation in relations:
        athlete = relation.athlete
        profile = athlete.profile
        rows.append({
            **user_summary(athlete),
            "profile": {
                "dateOfBirth": iso(profile.date_of_birth),
                "gender": profile.gender,
                "fitnessLevel": profile.fitness_level,
            } if profile else None,
            "relationshipStart": iso(relation.created_at),
            "stats": _athlete_stats(
                activities_by_athlete[athlete.id],
                assignments_by_athlete[athlete.id],
            ),
        })

    ranked = sorted(rows, key=_SORT_KEYS.get(sort_by, _SORT_KEYS["activities"]), reverse=True)[:limit]
    for row in ranked:
        row["stats"].pop("_lastActivityTs", None)

    return {"athletes": ranked, "period": period, "sortBy": sort_by}


# ---------------------------------------------------------------------------
# Typed stats
# ---------------------------------------------------------------------------

def get_typed_stats(
    db: Session,
    user: User,
    period: str = "month",
    stat_type: str = "activities",
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Group the window's rows by activity type, assignment status or feedback rating."""
    start, end = resolve_window(period, now)

    if stat_type == "workouts":
        stats = _workout_stats(db, user, start, end)
    elif stat_type == "performance":
        stats = _performance_stats(db, user, start, end)
    else:
        stats = _activity_type_stats(db, user, start, end)

    return {"stats": stats, "type": stat_type, "period": period}


def _activity_type_stats(db: Session, user: User, start: datetime, end: datetime) -> List[Dict[str, Any]]:
    rows = db.query(
        Activity.type,
        func.count(Activity.id),
        func.sum(Activity.distance),
        func.sum(Activity.duration),
        func.sum(Activity.calories),
    ).filter(
        _activity_scope(db, user),
        Activity.start_time >= start,
        Activity.start_time <= end,
    ).group_by(Activity.type).order_by(Activity.type).all()

    return [
        {
            "type": activity_type,
            "count": count,
            "totalDistance": round(or_zero(distance), 2),
            "totalDuration": or_zero(duration),
            "totalCalories": or_zero(calories),
            "avgDistance": average(distance, count),
            "avgDuration": average(duration, count, digits=None),
        }
        for activity_type, count, distance, duration, calories in rows
    ]


def _workout_stats(db: Session, user: User, start: datetime, end: datetime) -> List[Dict[str, Any]]:
    counts = OrderedDict((status, 0) for status in AssignmentStatus.ALL)
    for assignment in _assignment_query(db, user).filter(
        WorkoutAssignment.assigned_at >= start,
        WorkoutAssignment.assigned_at <= end,
    ).all():
        counts[assignment.status] = counts.get(assignment.status, 0) + 1

    return [{"status": status, "count": count} for status, count in counts.items() if count]


def _performance_stats(db: Session, user: User, start: datetime, end: datetime) -> List[Dict[str, Any]]:
    query = db.query(Feedback.rating, func.count(Feedback.id)).filter(
        Feedback.created_at >= start,
        Feedback.created_at <= end,
    )
    if is_coach(user):
        query = query.filter(
            Feedback.coach_id == user.id,
            Feedback.activity.has(Activity.user_id.in_(active_athlete_ids_query(db, user.id))),
        )
    else:
        query = query.filter(
            Feedback.activity.has(Activity.user_id == user.id),
            Feedback.is_private.is_(False),
        )

    rows = query.group_by(Feedback.rating).all()
    # Unrated feedback sorts last
    rows.sort(key=lambda row: (row[0] is None, row[0] or 0))
    return [{"rating": rating, "count": count} for rating, count in rows]
