"""
Authentication and authorization dependencies.

Provides FastAPI dependencies for:
- Getting current authenticated user
- Role-based access control (coach, admin)
"""
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID

from core.database import get_db
from core.exceptions import ForbiddenError, UnauthorizedError
from core.security import decode_access_token
from models import User, UserRole

# Use auto_error=False to handle missing credentials manually and return 401 (not 403)
security = HTTPBearer(auto_error=False)


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """
    Get the current authenticated user from JWT token.

    Raises UnauthorizedError if the token is missing, malformed, expired,
    points at an unknown user or at a disabled account.
    """
    if not credentials:
        # HTTPBearer yields None both for a missing header and a non-Bearer scheme
        if request.headers.get("Authorization"):
            raise UnauthorizedError("Invalid token format", error_code="INVALID_TOKEN_FORMAT")
        raise UnauthorizedError("Access token required", error_code="MISSING_TOKEN")

    payload = decode_access_token(credentials.credentials)

    user_id = payload.get("sub")
    if not user_id:
        raise UnauthorizedError("Invalid token payload", error_code="INVALID_TOKEN")

    try:
        user_id_uuid = UUID(user_id)
    except ValueError:
        raise UnauthorizedError("Invalid token payload", error_code="INVALID_TOKEN")

    user = db.query(User).filter(User.id == user_id_uuid).first()
    if not user:
        raise UnauthorizedError("User not found", error_code="USER_NOT_FOUND")

    if not user.is_active:
        raise UnauthorizedError("Account disabled", error_code="ACCOUNT_DISABLED")

    return user


def require_role(allowed_roles: list[str]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.get("/coach-only")
        def coach_endpoint(user: User = Depends(require_role([UserRole.COACH]))):
            ...
    """
    def role_checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in allowed_roles:
            raise ForbiddenError(
                f"Access denied. Required roles: {', '.join(allowed_roles)}",
                error_code="INSUFFICIENT_PERMISSIONS",
            )
        return current_user

    return role_checker


def require_coach(
    current_user: User = Depends(require_role([UserRole.COACH, UserRole.ADMIN]))
) -> User:
    """Require coach (or admin) role."""
    return current_user
