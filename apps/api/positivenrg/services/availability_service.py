"""
Availability service - decides whether a companion can be booked for a range.

All comparisons are done on UTC instants. The companion's timezone is display
data only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

from positivenrg.core.cache import CacheClient, cache_keys, cache_ttl
from positivenrg.core.errors import UpstreamError, ValidationError
from positivenrg.repositories import AppointmentRepository, CompanionRepository
from positivenrg.services.calendar_service import CalendarProvider

logger = logging.getLogger(__name__)

REASON_NOT_ACTIVE = "Companion is not active"
REASON_UNAVAILABLE = "Companion is currently unavailable"
REASON_CALENDAR_BUSY = "Time slot is busy in calendar"
REASON_ALREADY_BOOKED = "Time slot already booked"


@dataclass(frozen=True)
class AvailabilityResult:
    available: bool
    reason: str | None = None

    def to_dict(self) -> dict:
        return {"available": self.available, "reason": self.reason}


def to_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open interval intersection: [a_start, a_end) and [b_start, b_end)."""
    return a_start < b_end and a_end > b_start


def validate_range(start: datetime, end: datetime) -> tuple[datetime, datetime]:
    start, end = to_utc(start), to_utc(end)
    if end <= start:
        raise ValidationError("End time must be after start time", start=start.isoformat(), end=end.isoformat())
    return start, end


class AvailabilityChecker:
    """Availability over injected repositories and an optional calendar provider."""

    def __init__(
        self,
        companions: CompanionRepository,
        appointments: AppointmentRepository,
        calendar: CalendarProvider | None = None,
    ):
        self.companions = companions
        self.appointments = appointments
        self.calendar = calendar

    def check(
        self,
        companion_id: UUID,
        start: datetime,
        end: datetime,
        exclude_appointment_id: UUID | None = None,
    ) -> AvailabilityResult:
        start, end = validate_range(start, end)

        companion = self.companions.find_by_id(companion_id)
        if not companion or not companion.is_active:
            return AvailabilityResult(False, REASON_NOT_ACTIVE)
        if not companion.is_available:
            return AvailabilityResult(False, REASON_UNAVAILABLE)

        if companion.calendar_sync_enabled and self.calendar is not None:
            try:
                busy = self.calendar.get_busy_windows(companion, start, end)
            except UpstreamError as exc:
                # Calendar is advisory; the database check below still runs
                logger.warning(
                    "Calendar lookup failed, skipping: %s",
                    exc.message,
                    extra={"companion_id": str(companion_id)},
                )
                busy = []
            if any(overlaps(window.start, window.end, start, end) for window in busy):
                return AvailabilityResult(False, REASON_CALENDAR_BUSY)

        conflicts = self.appointments.find_overlapping(
            companion_id, start, end, exclude_appointment_id=exclude_appointment_id
        )
        if conflicts:
            return AvailabilityResult(False, REASON_ALREADY_BOOKED)

        return AvailabilityResult(True)


def get_cached_availability(
    checker: AvailabilityChecker,
    cache: CacheClient,
    companion_id: UUID,
    start: datetime,
    end: datetime,
) -> AvailabilityResult:
    """
    Read-only availability probe with a short read-through cache.

    Display only. Booking always calls AvailabilityChecker.check directly.
    """
    start, end = validate_range(start, end)
    key = cache_keys.availability(companion_id, start, end)
    cached = cache.get(key)
    if isinstance(cached, dict) and "available" in cached:
        return AvailabilityResult(bool(cached["available"]), cached.get("reason"))

    result = checker.check(companion_id, start, end)
    cache.set(key, result.to_dict(), cache_ttl.availability)
    return result
