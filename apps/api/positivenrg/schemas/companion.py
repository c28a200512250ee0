"""Companion profile schemas - Pydantic models for companions API."""

import re
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from positivenrg.core.config import settings

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
_WINDOW_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d-([01]\d|2[0-3]):[0-5]\d$")

COMPANION_DETAILS_SCHEMA_VERSION = 1


# =============================================================================
# Versioned Details Document
# =============================================================================

class CompanionDetails(BaseModel):
    """
    Structured companion metadata stored in human_companions.details.

    Version 1 fields. Missing fields take their defaults and unknown keys are
    ignored, so older and newer rows both load.
    """
    model_config = {"extra": "ignore"}

    schema_version: int = COMPANION_DETAILS_SCHEMA_VERSION
    tags: list[str] = Field(default_factory=list)
    specialties: list[str] = Field(default_factory=list)
    languages: list[str] = Field(default_factory=lambda: ["English"])
    # weekday -> ["HH:MM-HH:MM", ...] in the companion's timezone
    availability_schedule: dict[str, list[str]] = Field(default_factory=dict)

    @field_validator("tags", "specialties", "languages")
    @classmethod
    def _strip_entries(cls, value: list[str]) -> list[str]:
        return [item.strip() for item in value if item and item.strip()]

    @field_validator("availability_schedule")
    @classmethod
    def _validate_schedule(cls, value: dict[str, list[str]]) -> dict[str, list[str]]:
        cleaned: dict[str, list[str]] = {}
        for day, windows in value.items():
            key = day.lower()
            if key not in WEEKDAYS:
                raise ValueError(f"Unknown weekday: {day}")
            for window in windows:
                if not _WINDOW_RE.match(window):
                    raise ValueError(f"Invalid time window: {window}")
                start, end = window.split("-")
                if end <= start:
                    raise ValueError(f"Time window must end after it starts: {window}")
            cleaned[key] = list(windows)
        return cleaned

    @classmethod
    def from_stored(cls, data: dict | None) -> "CompanionDetails":
        """Load a stored document, defaulting anything missing."""
        return cls.model_validate(data or {})


# =============================================================================
# Profiles
# =============================================================================

class CompanionCreate(BaseModel):
    """Schema for "become a companion" onboarding."""
    display_name: str = Field(..., min_length=1, max_length=100)
    bio: str | None = Field(None, max_length=1000)
    avatar: str | None = Field(None, max_length=500)
    price_per_hour: int = Field(..., ge=100, le=1_000_000)
    currency: str = Field(default_factory=lambda: settings.DEFAULT_CURRENCY, min_length=3, max_length=3)
    minimum_duration: int = Field(30, ge=15, le=480)
    timezone: str = Field("Europe/London", max_length=50)
    details: CompanionDetails = Field(default_factory=CompanionDetails)


class CompanionUpdate(BaseModel):
    """Schema for a companion editing their own profile."""
    display_name: str | None = Field(None, min_length=1, max_length=100)
    bio: str | None = Field(None, max_length=1000)
    avatar: str | None = Field(None, max_length=500)
    price_per_hour: int | None = Field(None, ge=100, le=1_000_000)
    minimum_duration: int | None = Field(None, ge=15, le=480)
    timezone: str | None = Field(None, max_length=50)
    is_available: bool | None = None
    calendar_sync_enabled: bool | None = None
    details: CompanionDetails | None = None


class CompanionRead(BaseModel):
    """Schema for reading a companion profile."""
    model_config = {"from_attributes": True}

    id: UUID
    user_id: UUID
    display_name: str
    bio: str | None
    avatar: str | None
    price_per_hour: int
    currency: str
    minimum_duration: int
    timezone: str
    is_active: bool
    is_available: bool
    is_verified: bool
    calendar_sync_enabled: bool
    rating: float | None
    review_count: int
    total_bookings: int
    details: CompanionDetails
    created_at: datetime

    @field_validator("details", mode="before")
    @classmethod
    def _load_details(cls, value):
        if isinstance(value, CompanionDetails):
            return value
        return CompanionDetails.from_stored(value)


class CompanionListFilters(BaseModel):
    """Query filters for the public companion directory."""
    verified_only: bool = False
    min_rating: float | None = Field(None, ge=0, le=5)
    max_price: int | None = Field(None, ge=0)
    tags: list[str] = Field(default_factory=list)
    limit: int = Field(20, ge=1, le=100)
    offset: int = Field(0, ge=0)


class AvailabilityRead(BaseModel):
    """Schema for the read-only availability probe."""
    companion_id: UUID
    start_time: datetime
    end_time: datetime
    available: bool
    reason: str | None = None


# =============================================================================
# Earnings
# =============================================================================

class EarningRead(BaseModel):
    """Schema for a single earning record."""
    model_config = {"from_attributes": True}

    id: UUID
    appointment_id: UUID
    companion_id: UUID
    amount: int
    currency: str
    platform_fee: int
    net_amount: int
    status: str
    created_at: datetime


class EarningsListResponse(BaseModel):
    items: list[EarningRead]
    total: int
    total_amount: int
    total_platform_fee: int
    total_net_amount: int


class EarningsSummaryBucket(BaseModel):
    count: int = 0
    amount: int = 0
    net_amount: int = 0


class EarningsSummary(BaseModel):
    """Per-status earnings totals for a companion."""
    companion_id: UUID
    pending: EarningsSummaryBucket = Field(default_factory=EarningsSummaryBucket)
    processing: EarningsSummaryBucket = Field(default_factory=EarningsSummaryBucket)
    completed: EarningsSummaryBucket = Field(default_factory=EarningsSummaryBucket)
    lifetime_net_amount: int = 0
