"""
Third-party fitness integrations (stubs).

Connections are stored per (user, provider); tokens are encrypted at rest.
Syncing does not call any provider yet: ``run_sync`` reports an empty
import for the requested period.
"""
import logging
import time
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from core.config import settings
from models import ActivitySource, UserIntegration, ensure_utc, utc_now
from services.serializers import iso

logger = logging.getLogger(__name__)

PROVIDER_CATALOGUE = [
    {
        "provider": ActivitySource.STRAVA,
        "name": "Strava",
        "description": "Sync running, cycling and more",
        "icon": "strava",
    },
    {
        "provider": ActivitySource.GARMIN,
        "name": "Garmin Connect",
        "description": "Import data from Garmin devices",
        "icon": "garmin",
    },
    {
        "provider": ActivitySource.POLAR,
        "name": "Polar Flow",
        "description": "Connect Polar devices",
        "icon": "polar",
    },
    {
        "provider": ActivitySource.FITBIT,
        "name": "Fitbit",
        "description": "Sync activity and health data",
        "icon": "fitbit",
    },
    {
        "provider": ActivitySource.SUUNTO,
        "name": "Suunto",
        "description": "Import workouts from the Suunto app",
        "icon": "suunto",
    },
]

# provider -> (authorize endpoint, extra query params)
OAUTH_ENDPOINTS = {
    ActivitySource.STRAVA: (
        "https://www.strava.com/oauth/authorize",
        {"response_type": "code", "approval_prompt": "force", "scope": "read,activity:read_all"},
    ),
    ActivitySource.GARMIN: ("https://connect.garmin.com/oauthConfirm", {}),
    ActivitySource.POLAR: ("https://flow.polar.com/oauth2/authorization", {"response_type": "code"}),
    ActivitySource.FITBIT: (
        "https://www.fitbit.com/oauth2/authorize",
        {"response_type": "code", "scope": "activity"},
    ),
    ActivitySource.SUUNTO: (
        "https://cloudapi-oauth.suunto.com/oauth/authorize",
        {"response_type": "code", "scope": "workout"},
    ),
}


def available_providers(integrations: List[UserIntegration]) -> List[Dict[str, Any]]:
    connected = {i.provider for i in integrations if i.is_active}
    return [
        {**entry, "isConnected": entry["provider"] in connected}
        for entry in PROVIDER_CATALOGUE
    ]


def oauth_url(provider: str) -> Optional[str]:
    """Authorization URL for a provider, built from the configured client id and redirect URI."""
    endpoint = OAUTH_ENDPOINTS.get(provider)
    if endpoint is None:
        return None
    base, extra = endpoint
    client_id = getattr(settings, f"{provider}_CLIENT_ID", None) or ""
    redirect_uri = getattr(settings, f"{provider}_REDIRECT_URI", None) or ""

    if provider == ActivitySource.GARMIN:
        params = {"oauth_callback": redirect_uri}
    else:
        params = {"client_id": client_id, "redirect_uri": redirect_uri, **extra}
    return f"{base}?{urlencode(params)}"


def sync_cooldown_remaining(integration: UserIntegration, now: Optional[datetime] = None) -> float:
    """Seconds left before another unforced sync is allowed (0 when allowed)."""
    if integration.last_sync is None:
        return 0
    now = now or utc_now()
    elapsed = (now - ensure_utc(integration.last_sync)).total_seconds()
    return max(0.0, settings.INTEGRATION_SYNC_COOLDOWN_S - elapsed)


def run_sync(
    integration: UserIntegration,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Sync activities from the provider. Provider APIs are not wired up, so nothing is imported."""
    started = time.monotonic()
    end = end_date or utc_now()
    start = start_date or (end - timedelta(days=7))

    if start > end:
        raise ValueError("startDate must be before endDate")

    logger.info(
        f"Sync requested for {integration.provider}",
        extra={"extra_fields": {"integration_id": str(integration.id), "provider": integration.provider}},
    )

    return {
        "activitiesCount": 0,
        "duration": int((time.monotonic() - started) * 1000),
        "success": True,
        "syncedPeriod": {"startDate": iso(start), "endDate": iso(end)},
    }
