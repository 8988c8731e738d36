"""
Coach Feedback API

Coaches comment on and rate their athletes' activities. A coach leaves at
most one feedback per activity. Private feedback is visible to its
author only.
"""
import logging
from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session, joinedload

from core.auth import get_current_user, require_coach
from core.database import get_db
from core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from core.permissions import ensure_active_relation, ensure_can_view_user_data
from models import Activity, Feedback, NotificationType, User, UserRole
from schemas import FeedbackCategoryName, FeedbackCreate, FeedbackUpdate
from services.notifications import queue_notification
from services.resource_stats import feedback_stats
from services.serializers import feedback_dict, pagination

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/feedback", tags=["feedback"])

StatsPeriod = Literal["week", "month", "year"]


def _notify_athlete(db: Session, feedback: Feedback, activity: Activity, coach: User):
    queue_notification(
        db,
        activity.user_id,
        NotificationType.FEEDBACK_RECEIVED,
        "New feedback",
        f"{coach.full_name} left feedback on {activity.name}",
        {"feedbackId": feedback.id, "activityId": activity.id},
    )


def _get_feedback(db: Session, feedback_id: UUID) -> Feedback:
    feedback = (
        db.query(Feedback)
        .options(joinedload(Feedback.activity), joinedload(Feedback.coach))
        .filter(Feedback.id == feedback_id)
        .first()
    )
    if not feedback:
        raise NotFoundError("Feedback not found", error_code="FEEDBACK_NOT_FOUND")
    return feedback


def _get_authored_feedback(db: Session, feedback_id: UUID, coach: User) -> Feedback:
    feedback = _get_feedback(db, feedback_id)
    if feedback.coach_id != coach.id:
        raise ForbiddenError("You can only modify your own feedback", error_code="NOT_FEEDBACK_AUTHOR")
    return feedback


@router.post("", status_code=201)
def create_feedback(
    payload: FeedbackCreate,
    current_user: User = Depends(require_coach),
    db: Session = Depends(get_db),
):
    """Leave feedback on an athlete's activity; the athlete is notified unless it is private."""
    activity = db.query(Activity).filter(Activity.id == payload.activity_id).first()
    if not activity:
        raise NotFoundError("Activity not found", error_code="ACTIVITY_NOT_FOUND")

    ensure_active_relation(
        db, current_user.id, activity.user_id,
        "You can only give feedback to your active athletes",
    )

    existing = db.query(Feedback.id).filter(
        Feedback.activity_id == activity.id,
        Feedback.coach_id == current_user.id,
    ).first()
    if existing:
        raise ConflictError("You already left feedback on this activity", error_code="FEEDBACK_EXISTS")

    feedback = Feedback(
        activity_id=activity.id,
        coach_id=current_user.id,
        rating=payload.rating,
        comment=payload.comment,
        category=payload.category,
        is_private=payload.is_private,
        recommendations=payload.recommendations,
    )
    db.add(feedback)
    db.flush()

    if not feedback.is_private:
        _notify_athlete(db, feedback, activity, current_user)
    db.commit()

    logger.info(f"Feedback {feedback.id} created by coach {current_user.id}")
    return {"message": "Feedback created", "feedback": feedback_dict(_get_feedback(db, feedback.id), include_activity=True)}


@router.get("")
def list_feedback(
    athlete_id: Optional[UUID] = Query(None, alias="athleteId"),
    activity_id: Optional[UUID] = Query(None, alias="activityId"),
    category: Optional[FeedbackCategoryName] = Query(None),
    rating: Optional[int] = Query(None, ge=1, le=5),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Coaches list the feedback they wrote (optionally for one active
    athlete); athletes list the non-private feedback they received.
    """
    query = db.query(Feedback).join(Activity, Feedback.activity_id == Activity.id)

    if current_user.role == UserRole.COACH:
        query = query.filter(Feedback.coach_id == current_user.id)
        if athlete_id:
            ensure_active_relation(db, current_user.id, athlete_id, "You do not coach this athlete")
            query = query.filter(Activity.user_id == athlete_id)
    elif current_user.role == UserRole.ADMIN:
        if athlete_id:
            query = query.filter(Activity.user_id == athlete_id)
    else:
        query = query.filter(Activity.user_id == current_user.id, Feedback.is_private.is_(False))

    if activity_id:
        query = query.filter(Feedback.activity_id == activity_id)
    if category:
        query = query.filter(Feedback.category == category)
    if rating:
        query = query.filter(Feedback.rating == rating)

    total = query.count()
    items = (
        query.options(joinedload(Feedback.activity).joinedload(Activity.user), joinedload(Feedback.coach))
        .order_by(Feedback.created_at.desc(), Feedback.id)
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    return {
        "feedbacks": [feedback_dict(fb, include_activity=True) for fb in items],
        "pagination": pagination(page, limit, total),
    }


@router.get("/stats")
def get_feedback_stats(
    period: StatsPeriod = Query("month"),
    athlete_id: Optional[UUID] = Query(None, alias="athleteId"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if current_user.role == UserRole.COACH:
        if athlete_id is None:
            raise ValidationError("athleteId is required for coaches", error_code="ATHLETE_REQUIRED")
        return _coach_feedback_stats(db, current_user, athlete_id, period)
    if athlete_id is not None and athlete_id != current_user.id:
        ensure_can_view_user_data(db, current_user, athlete_id)
        return feedback_stats(db, athlete_id, period, include_private=True)
    return feedback_stats(db, current_user.id, period)


@router.get("/stats/{athlete_id}")
def get_athlete_feedback_stats(
    athlete_id: UUID,
    period: StatsPeriod = Query("month"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if current_user.role == UserRole.COACH:
        return _coach_feedback_stats(db, current_user, athlete_id, period)
    ensure_can_view_user_data(db, current_user, athlete_id)
    # Admins see everything; athletes never see private notes about themselves
    return feedback_stats(db, athlete_id, period, include_private=current_user.role == UserRole.ADMIN)


def _coach_feedback_stats(db: Session, coach: User, athlete_id: UUID, period: str):
    """A coach's own feedback for one active athlete, private notes included."""
    ensure_active_relation(db, coach.id, athlete_id, "You do not coach this athlete")
    return feedback_stats(db, athlete_id, period, coach_id=coach.id, include_private=True)


@router.get("/{feedback_id}")
def get_feedback(
    feedback_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    feedback = _get_feedback(db, feedback_id)

    is_author = feedback.coach_id == current_user.id
    is_recipient = feedback.activity.user_id == current_user.id and not feedback.is_private
    if not (is_author or is_recipient or current_user.role == UserRole.ADMIN):
        raise ForbiddenError("You do not have access to this feedback", error_code="RESOURCE_ACCESS_DENIED")

    return {"feedback": feedback_dict(feedback, include_activity=True)}


@router.put("/{feedback_id}")
def update_feedback(
    feedback_id: UUID,
    payload: FeedbackUpdate,
    current_user: User = Depends(require_coach),
    db: Session = Depends(get_db),
):
    """Update your feedback; publishing previously private feedback notifies the athlete."""
    feedback = _get_authored_feedback(db, feedback_id, current_user)
    was_private = feedback.is_private

    for field, value in payload.model_dump(exclude_unset=True).items():
        if value is None and field != "rating":
            continue
        setattr(feedback, field, value)

    if was_private and not feedback.is_private:
        _notify_athlete(db, feedback, feedback.activity, current_user)
    db.commit()

    return {"message": "Feedback updated", "feedback": feedback_dict(_get_feedback(db, feedback.id), include_activity=True)}


@router.delete("/{feedback_id}")
def delete_feedback(
    feedback_id: UUID,
    current_user: User = Depends(require_coach),
    db: Session = Depends(get_db),
):
    feedback = _get_authored_feedback(db, feedback_id, current_user)
    db.delete(feedback)
    db.commit()
    return {"message": "Feedback deleted"}
