"""
Fitness Integrations API

Connections to third-party providers (Strava, Garmin, Polar, Fitbit,
Suunto). Provider APIs are not called yet: connecting stores the
credentials (encrypted) and syncing reports an empty import.
"""
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from core.auth import get_current_user
from core.database import get_db
from core.exceptions import ForbiddenError, NotFoundError, ValidationError
from core.logging import log_integration
from models import Activity, NotificationType, User, UserIntegration, utc_now
from schemas import IntegrationConnect, IntegrationUpdate, ProviderName, SyncRequest
from services.integrations import available_providers, oauth_url, run_sync, sync_cooldown_remaining
from services.notifications import queue_notification
from services.serializers import activity_dict, integration_dict, pagination
from services.token_encryption import encrypt_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/integrations", tags=["integrations"])


def _get_owned_integration(db: Session, integration_id: UUID, user: User) -> UserIntegration:
    integration = db.query(UserIntegration).filter(UserIntegration.id == integration_id).first()
    if not integration:
        raise NotFoundError("Integration not found", error_code="INTEGRATION_NOT_FOUND")
    if integration.user_id != user.id:
        raise ForbiddenError("You do not own this integration", error_code="NOT_INTEGRATION_OWNER")
    return integration


@router.get("")
def list_integrations(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    integrations = (
        db.query(UserIntegration)
        .filter(UserIntegration.user_id == current_user.id)
        .order_by(UserIntegration.created_at)
        .all()
    )
    return {
        "integrations": [integration_dict(i) for i in integrations],
        "availableProviders": available_providers(integrations),
    }


@router.get("/oauth/{provider}/url")
def get_oauth_url(
    provider: ProviderName,
    current_user: User = Depends(get_current_user),
):
    """Authorization URL the client redirects the user to."""
    return {"provider": provider, "url": oauth_url(provider)}


@router.post("/connect", status_code=status.HTTP_201_CREATED)
def connect_integration(
    payload: IntegrationConnect,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Connect (or reconnect) a provider.

    One connection per provider and user; reconnecting replaces the
    stored credentials. Authorization codes are not exchanged with the
    provider yet, so only tokens supplied directly are stored.
    """
    if not payload.auth_code and not payload.access_token:
        raise ValidationError("authCode or accessToken is required", error_code="MISSING_CREDENTIALS")

    integration = db.query(UserIntegration).filter(
        UserIntegration.user_id == current_user.id,
        UserIntegration.provider == payload.provider,
    ).first()
    newly_connected = integration is None or not integration.is_active

    if integration is None:
        integration = UserIntegration(user_id=current_user.id, provider=payload.provider)
        db.add(integration)

    integration.external_id = payload.external_user_id
    integration.access_token = encrypt_token(payload.access_token)
    integration.refresh_token = encrypt_token(payload.refresh_token)
    integration.sync_settings = payload.sync_settings
    integration.is_active = True
    db.flush()

    if newly_connected:
        queue_notification(
            db,
            current_user.id,
            NotificationType.INTEGRATION_CONNECTED,
            "Integration connected",
            f"Your {payload.provider.title()} account is now connected",
            {"integrationId": integration.id, "provider": payload.provider},
        )
    db.commit()

    log_integration(payload.provider, "connect", str(current_user.id))
    return {"message": "Integration connected", "integration": integration_dict(integration)}


@router.put("/{integration_id}")
def update_integration(
    integration_id: UUID,
    payload: IntegrationUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    integration = _get_owned_integration(db, integration_id, current_user)

    if payload.is_active is not None:
        integration.is_active = payload.is_active
    if payload.sync_settings is not None:
        integration.sync_settings = payload.sync_settings
    db.commit()

    return {"message": "Integration updated", "integration": integration_dict(integration)}


@router.delete("/{integration_id}")
def delete_integration(
    integration_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    integration = _get_owned_integration(db, integration_id, current_user)
    provider = integration.provider

    db.delete(integration)
    db.commit()

    log_integration(provider, "disconnect", str(current_user.id))
    return {"message": "Integration disconnected"}


@router.post("/{integration_id}/sync")
def sync_integration(
    integration_id: UUID,
    payload: Optional[SyncRequest] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Sync activities from the provider.

    Unforced syncs are refused within the cooldown after the previous
    one. A failed sync clears lastSync so it can be retried at once.
    """
    payload = payload or SyncRequest()
    integration = _get_owned_integration(db, integration_id, current_user)

    if not integration.is_active:
        raise ValidationError("Integration is not active", error_code="INTEGRATION_INACTIVE")

    remaining = sync_cooldown_remaining(integration)
    if remaining > 0 and not payload.force_sync:
        raise ValidationError(
            f"Synced recently, try again in {int(remaining) + 1} seconds",
            error_code="SYNC_TOO_FREQUENT",
        )

    integration.last_sync = utc_now()
    try:
        result = run_sync(integration, payload.start_date, payload.end_date)
    except ValueError as e:
        integration.last_sync = None
        db.commit()
        log_integration(integration.provider, "sync", str(current_user.id), success=False, details={"error": str(e)})
        raise ValidationError(str(e), error_code="SYNC_FAILED")

    queue_notification(
        db,
        current_user.id,
        NotificationType.SYNC_COMPLETED,
        "Sync completed",
        f"{result['activitiesCount']} activities imported from {integration.provider.title()}",
        {"integrationId": integration.id, "activitiesCount": result["activitiesCount"]},
    )
    db.commit()

    log_integration(
        integration.provider, "sync", str(current_user.id),
        details={"activities": result["activitiesCount"], "duration_ms": result["duration"]},
    )
    return {"message": "Sync completed", "result": result, "integration": integration_dict(integration)}


@router.get("/{integration_id}/activities")
def list_integration_activities(
    integration_id: UUID,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Activities imported through this provider."""
    integration = _get_owned_integration(db, integration_id, current_user)

    query = db.query(Activity).filter(
        Activity.user_id == current_user.id,
        Activity.source == integration.provider,
    )
    total = query.count()
    activities = (
        query.order_by(Activity.start_time.desc(), Activity.id)
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    return {
        "activities": [activity_dict(a) for a in activities],
        "pagination": pagination(page, limit, total),
    }
