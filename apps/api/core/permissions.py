"""
Cross-user visibility rules.

One capability predicate decides whether an acting user may see another
user's data. It is a pure function over the actor, the target and a
relation lookup, so it can be tested without a database; the helpers
below bind it to a session.
"""
from typing import Callable, Optional, Union
from uuid import UUID

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from core.exceptions import ForbiddenError
from core.logging import log_security
from models import CoachAthlete, RelationStatus, UserRole

# (coach_id, athlete_id) -> True when an ACTIVE relation links them
RelationLookup = Callable[[UUID, UUID], bool]

IdLike = Union[UUID, str]


def _as_uuid(value: IdLike) -> UUID:
    return value if isinstance(value, UUID) else UUID(str(value))


def can_view_user_data(
    actor,
    target_user_id: IdLike,
    has_active_relation: RelationLookup,
    symmetric: bool = False,
) -> bool:
    """
    True iff the actor is the target, an admin, or linked to the target
    by an ACTIVE coach/athlete relation.

    Directional resources (stats, feedback) only honour coach -> athlete;
    symmetric resources (messaging, profiles) accept either direction.
    """
    target_id = _as_uuid(target_user_id)
    if actor.id == target_id:
        return True
    if actor.role == UserRole.ADMIN:
        return True
    if has_active_relation(actor.id, target_id):
        return True
    if symmetric and has_active_relation(target_id, actor.id):
        return True
    return False


def active_relation_lookup(db: Session) -> RelationLookup:
    """Bind the relation lookup to a session."""
    def lookup(coach_id: UUID, athlete_id: UUID) -> bool:
        return db.query(CoachAthlete.id).filter(
            CoachAthlete.coach_id == coach_id,
            CoachAthlete.athlete_id == athlete_id,
            CoachAthlete.status == RelationStatus.ACTIVE,
        ).first() is not None

    return lookup


def has_active_relation(db: Session, coach_id: IdLike, athlete_id: IdLike) -> bool:
    return active_relation_lookup(db)(_as_uuid(coach_id), _as_uuid(athlete_id))


def has_symmetric_relation(db: Session, user_a: IdLike, user_b: IdLike) -> bool:
    a, b = _as_uuid(user_a), _as_uuid(user_b)
    return db.query(CoachAthlete.id).filter(
        CoachAthlete.status == RelationStatus.ACTIVE,
        or_(
            and_(CoachAthlete.coach_id == a, CoachAthlete.athlete_id == b),
            and_(CoachAthlete.coach_id == b, CoachAthlete.athlete_id == a),
        ),
    ).first() is not None


def ensure_can_view_user_data(
    db: Session,
    actor,
    target_user_id: IdLike,
    symmetric: bool = False,
    detail: Optional[str] = None,
):
    """Raise ForbiddenError unless ``can_view_user_data`` holds."""
    if not can_view_user_data(actor, target_user_id, active_relation_lookup(db), symmetric=symmetric):
        log_security(
            "cross_user_access_denied",
            {"actor_id": str(actor.id), "target_user_id": str(target_user_id)},
        )
        raise ForbiddenError(
            detail or "You do not have access to this user's data",
            error_code="RESOURCE_ACCESS_DENIED",
        )


def ensure_active_relation(db: Session, coach_id: IdLike, athlete_id: IdLike, detail: str):
    """Raise ForbiddenError unless the coach has an ACTIVE relation with the athlete."""
    if not has_active_relation(db, coach_id, athlete_id):
        raise ForbiddenError(detail, error_code="RELATION_REQUIRED")


def active_athlete_ids_query(db: Session, coach_id: IdLike):
    """Subquery of athlete ids under an ACTIVE relation with the coach."""
    return db.query(CoachAthlete.athlete_id).filter(
        CoachAthlete.coach_id == _as_uuid(coach_id),
        CoachAthlete.status == RelationStatus.ACTIVE,
    )
