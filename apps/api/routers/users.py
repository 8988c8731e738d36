"""
Users API

Profiles, the coach's athlete roster, coaching invitations and user search.
"""
import logging
from datetime import timedelta
from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, or_
from sqlalchemy.orm import Session, joinedload

from core.auth import get_current_user, require_coach
from core.database import get_db
from core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from core.permissions import active_relation_lookup, can_view_user_data
from models import (
    Activity,
    CoachAthlete,
    NotificationType,
    Profile,
    RelationStatus,
    User,
    UserRole,
    utc_now,
)
from schemas import InviteAthleteRequest, ProfileUpdate, RespondInvitationRequest
from services.notifications import queue_notification
from services.serializers import iso, pagination, profile_dict, user_dict, user_summary

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])

USER_FIELDS = ("first_name", "last_name", "avatar")


def _profile_response(user: User, own: bool):
    if own:
        return {"user": user_dict(user, include_profile=True)}
    data = user_summary(user)
    data["role"] = user.role
    data["profile"] = profile_dict(user.profile, private=False) if user.profile else None
    return {"user": data}


@router.get("/profile")
def get_own_profile(current_user: User = Depends(get_current_user)):
    return _profile_response(current_user, own=True)


@router.get("/profile/{user_id}")
def get_user_profile(
    user_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Another user's profile.

    Visible to the user, admins, anyone linked to them by an ACTIVE
    relation (either direction) and, for public profiles, everyone.
    Personal fields are only returned on your own profile.
    """
    user = db.query(User).options(joinedload(User.profile)).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError("User not found", error_code="USER_NOT_FOUND")

    own = user.id == current_user.id
    allowed = can_view_user_data(current_user, user.id, active_relation_lookup(db), symmetric=True)
    if not allowed and not (user.profile and user.profile.is_public):
        raise ForbiddenError("This profile is private", error_code="PROFILE_PRIVATE")

    return _profile_response(user, own=own)


@router.put("/profile")
def update_profile(
    payload: ProfileUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    changes = payload.model_dump(exclude_unset=True)

    for field in USER_FIELDS:
        if field in changes:
            setattr(current_user, field, changes.pop(field))

    if current_user.profile is None:
        current_user.profile = Profile()
    for field, value in changes.items():
        setattr(current_user.profile, field, value)

    db.commit()
    db.refresh(current_user)

    logger.info(f"Profile updated for user {current_user.id}")
    return {
        "message": "Profile updated successfully",
        "user": user_dict(current_user, include_profile=True),
    }


@router.get("/athletes")
def list_athletes(
    status: Literal["PENDING", "ACTIVE", "REJECTED", "INACTIVE"] = Query("ACTIVE"),
    search: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_coach),
    db: Session = Depends(get_db),
):
    """The coach's athletes with their activity count over the last 30 days."""
    query = db.query(CoachAthlete).join(User, CoachAthlete.athlete_id == User.id).filter(
        CoachAthlete.coach_id == current_user.id,
        CoachAthlete.status == status,
    )
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            User.first_name.ilike(pattern),
            User.last_name.ilike(pattern),
            User.email.ilike(pattern),
        ))

    total = query.count()
    relations = (
        query.options(joinedload(CoachAthlete.athlete))
        .order_by(CoachAthlete.created_at.desc(), CoachAthlete.id)
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    athlete_ids = [r.athlete_id for r in relations]
    recent_counts = {}
    if athlete_ids:
        since = utc_now() - timedelta(days=30)
        recent_counts = dict(
            db.query(Activity.user_id, func.count(Activity.id))
            .filter(Activity.user_id.in_(athlete_ids), Activity.start_time >= since)
            .group_by(Activity.user_id)
            .all()
        )

    athletes = []
    for relation in relations:
        athlete = relation.athlete
        athletes.append({
            "relationId": str(relation.id),
            "status": relation.status,
            "since": iso(relation.created_at),
            "athlete": {
                **user_summary(athlete),
                "email": athlete.email,
                "lastLoginAt": iso(athlete.last_login_at),
            },
            "recentActivities": recent_counts.get(relation.athlete_id, 0),
        })

    return {
        "athletes": athletes,
        "pagination": pagination(page, limit, total),
    }


@router.post("/invite-athlete", status_code=201)
def invite_athlete(
    payload: InviteAthleteRequest,
    current_user: User = Depends(require_coach),
    db: Session = Depends(get_db),
):
    athlete = db.query(User).filter(User.email == payload.email, User.is_active.is_(True)).first()
    if not athlete:
        raise NotFoundError("No athlete found with this email", error_code="USER_NOT_FOUND")
    if athlete.role != UserRole.ATHLETE:
        raise ValidationError("Only athletes can be invited", error_code="NOT_AN_ATHLETE")

    existing = db.query(CoachAthlete).filter(
        CoachAthlete.coach_id == current_user.id,
        CoachAthlete.athlete_id == athlete.id,
    ).first()
    if existing:
        raise ConflictError(
            f"A relation with this athlete already exists ({existing.status})",
            error_code="RELATION_EXISTS",
        )

    relation = CoachAthlete(
        coach_id=current_user.id,
        athlete_id=athlete.id,
        status=RelationStatus.PENDING,
        message=payload.message,
    )
    db.add(relation)
    db.flush()

    queue_notification(
        db,
        athlete.id,
        NotificationType.COACH_INVITATION,
        "New coaching invitation",
        f"{current_user.full_name} invited you to join as their athlete",
        {"relationId": relation.id, "coachId": current_user.id},
    )
    db.commit()

    logger.info(f"Coach {current_user.id} invited athlete {athlete.id}")
    return {
        "message": "Invitation sent",
        "relation": {
            "id": str(relation.id),
            "status": relation.status,
            "athlete": user_summary(athlete),
            "createdAt": iso(relation.created_at),
        },
    }


@router.post("/respond-invitation/{relation_id}")
def respond_invitation(
    relation_id: UUID,
    payload: RespondInvitationRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """The invited athlete accepts (ACTIVE) or rejects (REJECTED) a PENDING invitation."""
    relation = db.query(CoachAthlete).filter(CoachAthlete.id == relation_id).first()
    if not relation:
        raise NotFoundError("Invitation not found", error_code="INVITATION_NOT_FOUND")
    if relation.athlete_id != current_user.id:
        raise ForbiddenError("This invitation is not addressed to you", error_code="NOT_INVITED")
    if relation.status != RelationStatus.PENDING:
        raise ValidationError("This invitation has already been answered", error_code="INVITATION_CLOSED")

    if payload.accept:
        relation.status = RelationStatus.ACTIVE
        notification_type = NotificationType.INVITATION_ACCEPTED
        title = "Invitation accepted"
        verb = "accepted"
    else:
        relation.status = RelationStatus.REJECTED
        notification_type = NotificationType.INVITATION_REJECTED
        title = "Invitation rejected"
        verb = "rejected"

    queue_notification(
        db,
        relation.coach_id,
        notification_type,
        title,
        f"{current_user.full_name} {verb} your invitation",
        {"relationId": relation.id, "athleteId": current_user.id},
    )
    db.commit()

    return {
        "message": f"Invitation {verb}",
        "relation": {"id": str(relation.id), "status": relation.status},
    }


@router.delete("/athletes/{relation_id}")
def remove_athlete(
    relation_id: UUID,
    current_user: User = Depends(require_coach),
    db: Session = Depends(get_db),
):
    """End a coaching relation. The row is kept as INACTIVE."""
    relation = db.query(CoachAthlete).filter(
        CoachAthlete.id == relation_id,
        CoachAthlete.coach_id == current_user.id,
    ).first()
    if not relation:
        raise NotFoundError("Relation not found", error_code="RELATION_NOT_FOUND")
    if relation.status != RelationStatus.ACTIVE:
        raise ValidationError("Only active relations can be ended", error_code="RELATION_NOT_ACTIVE")

    relation.status = RelationStatus.INACTIVE
    db.commit()

    return {"message": "Athlete removed", "relation": {"id": str(relation.id), "status": relation.status}}


@router.get("/search")
def search_users(
    q: str = Query(..., min_length=2, max_length=100),
    type: Optional[Literal["COACH", "ATHLETE"]] = Query(None),
    limit: int = Query(10, ge=1, le=50),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Active users with a public profile, excluding yourself."""
    pattern = f"%{q}%"
    query = db.query(User).join(Profile, Profile.user_id == User.id).filter(
        User.id != current_user.id,
        User.is_active.is_(True),
        Profile.is_public.is_(True),
        or_(User.first_name.ilike(pattern), User.last_name.ilike(pattern), User.email.ilike(pattern)),
    )
    if type:
        query = query.filter(User.role == type)

    users = query.order_by(User.first_name, User.last_name).limit(limit).all()
    return {
        "users": [
            {
                **user_summary(user),
                "role": user.role,
                "profile": profile_dict(user.profile, private=False),
            }
            for user in users
        ]
    }
