"""
Authentication API endpoints.

Provides:
- User registration
- Login (JWT token generation)
- Token refresh
- Current user
- Password change
- Account lockout protection
"""
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session
import logging

from core.database import get_db
from core.security import create_user_token, get_password_hash, verify_password
from core.auth import get_current_user
from core.account_security import (
    record_login_attempt,
    is_account_locked,
    get_remaining_attempts,
)
from core.exceptions import APIException, ConflictError, UnauthorizedError
from core.logging import log_auth
from models import (
    Activity,
    CoachAthlete,
    Feedback,
    Profile,
    RelationStatus,
    User,
    UserRole,
    WorkoutAssignment,
    WorkoutTemplate,
    utc_now,
)
from schemas import ChangePasswordRequest, LoginRequest, RegisterRequest
from services.serializers import user_dict

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _client_ip(request: Request):
    return request.client.host if request.client else None


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(
    user_data: RegisterRequest,
    request: Request,
    db: Session = Depends(get_db)
):
    """
    Register a new user account.

    A profile with default language and timezone is created alongside
    the user; the token is issued immediately.
    """
    existing = db.query(User).filter(User.email == user_data.email).first()
    if existing:
        log_auth("register", None, _client_ip(request), success=False)
        raise ConflictError("A user with this email already exists", error_code="EMAIL_EXISTS")

    user = User(
        email=user_data.email,
        password_hash=get_password_hash(user_data.password),
        first_name=user_data.first_name,
        last_name=user_data.last_name,
        role=user_data.role,
    )
    user.profile = Profile()

    db.add(user)
    db.commit()
    db.refresh(user)

    log_auth("register", str(user.id), _client_ip(request))

    return {
        "message": "User registered successfully",
        "user": user_dict(user, include_profile=True),
        "token": create_user_token(user),
    }


@router.post("/login")
def login(
    credentials: LoginRequest,
    request: Request,
    db: Session = Depends(get_db)
):
    """
    Authenticate user and return JWT token.

    Implements account lockout after 5 failed attempts.
    """
    email = credentials.email
    ip = _client_ip(request)

    locked, seconds_remaining = is_account_locked(email)
    if locked:
        minutes_remaining = (seconds_remaining or 0) // 60 + 1
        raise APIException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Account temporarily locked. Try again in {minutes_remaining} minutes.",
            error_code="ACCOUNT_LOCKED",
            headers={"Retry-After": str(seconds_remaining)},
        )

    user = db.query(User).filter(User.email == email).first()

    if not user or not verify_password(credentials.password, user.password_hash):
        # Unknown emails count too, so responses do not reveal which accounts exist
        record_login_attempt(email, success=False)
        remaining = get_remaining_attempts(email)
        log_auth("login", str(user.id) if user else None, ip, success=False)

        detail = "Invalid email or password"
        if 0 < remaining <= 2:
            detail += f" ({remaining} attempts remaining)"
        elif remaining == 0:
            detail = "Account temporarily locked due to too many failed attempts"
        raise UnauthorizedError(detail, error_code="INVALID_CREDENTIALS")

    if not user.is_active:
        log_auth("login", str(user.id), ip, success=False)
        raise UnauthorizedError("Account disabled", error_code="ACCOUNT_DISABLED")

    record_login_attempt(email, success=True)

    user.last_login_at = utc_now()
    db.commit()
    db.refresh(user)

    log_auth("login", str(user.id), ip)

    return {
        "message": "Login successful",
        "user": user_dict(user, include_profile=True),
        "token": create_user_token(user),
    }


@router.post("/refresh")
def refresh_token(current_user: User = Depends(get_current_user)):
    """Issue a fresh token for a still-valid one."""
    return {"token": create_user_token(current_user)}


@router.get("/me")
def get_me(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Current user with profile and a few headline counts."""
    counts = {
        "activities": db.query(Activity).filter(Activity.user_id == current_user.id).count(),
    }

    if current_user.role == UserRole.COACH:
        counts["athletes"] = db.query(CoachAthlete).filter(
            CoachAthlete.coach_id == current_user.id,
            CoachAthlete.status == RelationStatus.ACTIVE,
        ).count()
        counts["workoutTemplates"] = db.query(WorkoutTemplate).filter(
            WorkoutTemplate.coach_id == current_user.id
        ).count()
        counts["feedbackGiven"] = db.query(Feedback).filter(Feedback.coach_id == current_user.id).count()
    else:
        counts["coaches"] = db.query(CoachAthlete).filter(
            CoachAthlete.athlete_id == current_user.id,
            CoachAthlete.status == RelationStatus.ACTIVE,
        ).count()
        counts["assignedWorkouts"] = db.query(WorkoutAssignment).filter(
            WorkoutAssignment.athlete_id == current_user.id
        ).count()

    return {
        "user": user_dict(current_user, include_profile=True),
        "counts": counts,
    }


@router.post("/change-password")
def change_password(
    payload: ChangePasswordRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    if not verify_password(payload.current_password, current_user.password_hash):
        log_auth("change_password", str(current_user.id), _client_ip(request), success=False)
        raise UnauthorizedError("Current password is incorrect", error_code="INVALID_CREDENTIALS")

    current_user.password_hash = get_password_hash(payload.new_password)
    db.commit()

    log_auth("change_password", str(current_user.id), _client_ip(request))
    return {"message": "Password updated successfully"}


@router.post("/logout")
def logout(request: Request, current_user: User = Depends(get_current_user)):
    """Tokens are stateless; the client discards its copy."""
    log_auth("logout", str(current_user.id), _client_ip(request))
    return {"message": "Logged out successfully"}
