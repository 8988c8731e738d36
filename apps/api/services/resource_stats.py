"""
Per-resource statistics (activities and feedback).

Both use the shared reporting windows from ``services.date_ranges`` and
group rows in memory after a single windowed fetch.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session, joinedload

from models import Activity, Feedback, ensure_utc
from services.aggregation import average, or_zero
from services.date_ranges import resolve_window
from services.serializers import iso


def _day(value: datetime) -> str:
    return ensure_utc(value).date().isoformat()


def _mean(values: List[float], digits: Optional[int]) -> float:
    present = [v for v in values if v is not None]
    return average(sum(present), len(present), digits=digits)


def activity_stats(
    db: Session,
    user_id: UUID,
    period: str = "month",
    activity_type: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    start, end = resolve_window(period, now)

    query = db.query(Activity).options(joinedload(Activity.metrics)).filter(
        Activity.user_id == user_id,
        Activity.start_time >= start,
        Activity.start_time <= end,
    )
    if activity_type:
        query = query.filter(Activity.type == activity_type)
    activities = query.order_by(Activity.start_time).all()

    by_type: Dict[str, Dict[str, Any]] = {}
    timeline: Dict[str, Dict[str, Any]] = {}
    for activity in activities:
        group = by_type.setdefault(activity.type, {
            "count": 0, "totalDuration": 0, "totalDistance": 0, "totalCalories": 0,
        })
        group["count"] += 1
        group["totalDuration"] += activity.duration or 0
        group["totalDistance"] += activity.distance or 0
        group["totalCalories"] += activity.calories or 0

        day = timeline.setdefault(_day(activity.start_time), {
            "count": 0, "duration": 0, "distance": 0, "calories": 0,
        })
        day["count"] += 1
        day["duration"] += activity.duration or 0
        day["distance"] += activity.distance or 0
        day["calories"] += activity.calories or 0

    for group in by_type.values():
        group["totalDistance"] = round(group["totalDistance"], 2)
    for day in timeline.values():
        day["distance"] = round(day["distance"], 2)

    # Metrics averages only count activities that recorded the metric
    training_loads = [a.metrics.training_load for a in activities if a.metrics and a.metrics.training_load]
    heart_rates = [a.metrics.avg_heart_rate for a in activities if a.metrics and a.metrics.avg_heart_rate]

    return {
        "period": period,
        "dateRange": {"start": iso(start), "end": iso(end)},
        "totals": {
            "activities": len(activities),
            "duration": sum(a.duration or 0 for a in activities),
            "distance": round(sum(a.distance or 0 for a in activities), 2),
            "calories": sum(a.calories or 0 for a in activities),
        },
        "averages": {
            "duration": _mean([a.duration for a in activities], digits=None),
            "distance": _mean([a.distance for a in activities], digits=2),
            "calories": _mean([a.calories for a in activities], digits=None),
            "trainingLoad": _mean(training_loads, digits=1),
            "heartRate": _mean(heart_rates, digits=None),
        },
        "byType": by_type,
        "timeline": timeline,
    }


def feedback_stats(
    db: Session,
    athlete_id: UUID,
    period: str = "month",
    coach_id: Optional[UUID] = None,
    include_private: bool = False,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Feedback received by an athlete in the window.

    ``coach_id`` narrows to one coach's feedback; private feedback is
    left out unless ``include_private``.
    """
    start, end = resolve_window(period, now)

    query = db.query(Feedback).join(Activity, Feedback.activity_id == Activity.id).filter(
        Activity.user_id == athlete_id,
        Feedback.created_at >= start,
        Feedback.created_at <= end,
    )
    if coach_id is not None:
        query = query.filter(Feedback.coach_id == coach_id)
    if not include_private:
        query = query.filter(Feedback.is_private.is_(False))
    feedbacks = query.order_by(Feedback.created_at).all()

    by_category: Dict[str, List[Optional[int]]] = {}
    by_rating: Dict[Optional[int], int] = {}
    timeline: Dict[str, Dict[str, Any]] = {}
    for fb in feedbacks:
        by_category.setdefault(fb.category, []).append(fb.rating)
        by_rating[fb.rating] = by_rating.get(fb.rating, 0) + 1

        day = timeline.setdefault(_day(fb.created_at), {"count": 0, "totalRating": 0, "ratedCount": 0})
        day["count"] += 1
        if fb.rating is not None:
            day["totalRating"] += fb.rating
            day["ratedCount"] += 1

    for day in timeline.values():
        day["avgRating"] = average(day["totalRating"], day.pop("ratedCount"), digits=1)

    ratings = [fb.rating for fb in feedbacks]
    return {
        "period": period,
        "dateRange": {"start": iso(start), "end": iso(end)},
        "totals": {
            "feedbacks": len(feedbacks),
            "avgRating": _mean(ratings, digits=1),
        },
        "byCategory": [
            {
                "category": category,
                "count": len(values),
                "avgRating": _mean(values, digits=1),
            }
            for category, values in sorted(by_category.items())
        ],
        "byRating": [
            {"rating": rating, "count": count}
            for rating, count in sorted(by_rating.items(), key=lambda item: (item[0] is None, or_zero(item[0])))
        ],
        "timeline": timeline,
    }
