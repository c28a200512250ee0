"""Calendar service - Google Calendar free/busy for companion availability.

Handles:
- OAuth token refresh for a companion's stored integration
- Freebusy queries over the requested booking window

Busy windows are advisory input to the availability check. Failures raise
UpstreamError and the caller decides whether to ignore them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Protocol

import httpx
from sqlalchemy.orm import Session

from positivenrg.core.config import settings
from positivenrg.core.errors import UpstreamError
from positivenrg.db.models import CalendarIntegration, HumanCompanion
from positivenrg.db.session import commit_or_raise
from positivenrg.repositories import CompanionRepository
from positivenrg.services.http_service import request_with_retries

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_FREEBUSY_URL = "https://www.googleapis.com/calendar/v3/freeBusy"
TOKEN_EXPIRY_SKEW = timedelta(seconds=60)
HTTP_TIMEOUT_SECONDS = 10.0


# =============================================================================
# Types
# =============================================================================

@dataclass(frozen=True)
class BusyWindow:
    """A blocked time period from the companion's calendar (UTC)."""
    start: datetime
    end: datetime


class CalendarProvider(Protocol):
    def get_busy_windows(
        self, companion: HumanCompanion, start: datetime, end: datetime
    ) -> list[BusyWindow]: ...


def _parse_google_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00")).astimezone(timezone.utc)


# =============================================================================
# Google Provider
# =============================================================================

class GoogleCalendarProvider:
    """Reads busy windows from Google Calendar using stored, encrypted tokens."""

    def __init__(self, db: Session, http_client: httpx.Client | None = None):
        self.db = db
        self.companions = CompanionRepository(db)
        self.http_client = http_client

    def _post(self, url: str, **kwargs) -> httpx.Response:
        """POST with retries on the injected client, or a request-scoped one."""
        if self.http_client is not None:
            return request_with_retries(lambda: self.http_client.post(url, **kwargs))
        with httpx.Client(timeout=HTTP_TIMEOUT_SECONDS) as client:
            return request_with_retries(lambda: client.post(url, **kwargs))

    def get_busy_windows(
        self, companion: HumanCompanion, start: datetime, end: datetime
    ) -> list[BusyWindow]:
        integration = self.companions.get_calendar_integration(companion.id)
        if not integration:
            return []

        access_token = self._get_access_token(integration)
        calendar_id = integration.calendar_id or "primary"

        try:
            response = self._post(
                GOOGLE_FREEBUSY_URL,
                headers={"Authorization": f"Bearer {access_token}"},
                json={
                    "timeMin": start.astimezone(timezone.utc).isoformat(),
                    "timeMax": end.astimezone(timezone.utc).isoformat(),
                    "items": [{"id": calendar_id}],
                },
            )
        except httpx.RequestError as exc:
            raise UpstreamError(
                "Calendar request failed", service="google_calendar", companion_id=str(companion.id)
            ) from exc

        if response.status_code != 200:
            raise UpstreamError(
                f"Calendar freebusy returned {response.status_code}",
                service="google_calendar",
                companion_id=str(companion.id),
            )

        calendar_data = response.json().get("calendars", {}).get(calendar_id, {})
        if calendar_data.get("errors"):
            raise UpstreamError(
                "Calendar freebusy reported errors",
                service="google_calendar",
                companion_id=str(companion.id),
            )

        return [
            BusyWindow(start=_parse_google_datetime(b["start"]), end=_parse_google_datetime(b["end"]))
            for b in calendar_data.get("busy", [])
        ]

    def _get_access_token(self, integration: CalendarIntegration) -> str:
        """Return a valid access token, refreshing and persisting it when expired."""
        now = datetime.now(timezone.utc)
        expires_at = integration.token_expires_at
        if integration.access_token and (expires_at is None or expires_at - TOKEN_EXPIRY_SKEW > now):
            return integration.access_token

        if not integration.refresh_token:
            raise UpstreamError(
                "Calendar credentials expired", service="google_calendar",
                companion_id=str(integration.companion_id),
            )

        try:
            response = self._post(
                GOOGLE_TOKEN_URL,
                data={
                    "client_id": settings.GOOGLE_CLIENT_ID,
                    "client_secret": settings.GOOGLE_CLIENT_SECRET,
                    "refresh_token": integration.refresh_token,
                    "grant_type": "refresh_token",
                },
            )
        except httpx.RequestError as exc:
            raise UpstreamError("Calendar token refresh failed", service="google_calendar") from exc

        if response.status_code != 200:
            raise UpstreamError(
                f"Calendar token refresh returned {response.status_code}",
                service="google_calendar",
            )

        token = response.json()
        integration.access_token = token["access_token"]
        integration.token_expires_at = now + timedelta(seconds=token.get("expires_in", 3600))
        commit_or_raise(self.db, companion_id=integration.companion_id)
        logger.info(
            "Refreshed calendar token",
            extra={"companion_id": str(integration.companion_id)},
        )
        return integration.access_token
