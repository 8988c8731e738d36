"""
Dashboard API

Thin HTTP layer over ``services.dashboard``: validates the reporting
window parameters, then hands the acting user and the request session
to the aggregator. Also serves the user's notifications.
"""
import logging
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from core.auth import get_current_user, require_coach
from core.database import get_db
from core.exceptions import NotFoundError
from models import Notification, User
from services.dashboard import get_athlete_leaderboard, get_overview, get_timeline, get_typed_stats
from services.notifications import list_notifications, mark_notification_read, unread_notifications_count
from services.serializers import notification_dict

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])

Period = Literal["week", "month", "quarter", "year"]


@router.get("/overview")
def overview(
    period: Period = Query("month"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Summary for the reporting window.

    Coaches get totals across their active athletes; athletes get their
    own totals, recent activities and their coach.
    """
    return get_overview(db, current_user, period)


@router.get("/stats")
def stats(
    period: Period = Query("month"),
    type: Literal["activities", "workouts", "performance"] = Query("activities"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return get_typed_stats(db, current_user, period, type)


@router.get("/timeline")
def timeline(
    period: Period = Query("month"),
    granularity: Literal["day", "week", "month"] = Query("day"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return get_timeline(db, current_user, period, granularity)


@router.get("/athletes")
def athletes(
    period: Period = Query("month"),
    sort_by: Literal["activities", "distance", "duration", "lastActivity"] = Query("activities", alias="sortBy"),
    limit: int = Query(10, ge=1, le=50),
    current_user: User = Depends(require_coach),
    db: Session = Depends(get_db),
):
    """Leaderboard of the coach's active athletes."""
    return get_athlete_leaderboard(db, current_user, period, sort_by, limit)


@router.get("/notifications")
def notifications(
    limit: int = Query(10, ge=1, le=50),
    unread_only: bool = Query(False, alias="unreadOnly"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    items = list_notifications(db, current_user.id, limit=limit, unread_only=unread_only)
    return {
        "notifications": [notification_dict(n) for n in items],
        "unreadCount": unread_notifications_count(db, current_user.id),
    }


@router.put("/notifications/{notification_id}/read")
def read_notification(
    notification_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    notification = db.query(Notification).filter(
        Notification.id == notification_id,
        Notification.user_id == current_user.id,
    ).first()
    if not notification:
        raise NotFoundError("Notification not found", error_code="NOTIFICATION_NOT_FOUND")

    mark_notification_read(notification)
    db.commit()
    return {"message": "Notification marked as read", "notification": notification_dict(notification)}
