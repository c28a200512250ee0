"""Structured logging helpers for audit-style log lines."""

from typing import Any
from uuid import UUID


def build_log_context(
    *,
    user_id: UUID | str | None = None,
    companion_id: UUID | str | None = None,
    appointment_id: UUID | str | None = None,
    outcome: str | None = None,
    request_id: str | None = None,
    route: str | None = None,
    method: str | None = None,
) -> dict[str, Any]:
    """Return a log context dict with only the populated keys."""
    context: dict[str, Any] = {}
    if user_id:
        context["user_id"] = str(user_id)
    if companion_id:
        context["companion_id"] = str(companion_id)
    if appointment_id:
        context["appointment_id"] = str(appointment_id)
    if outcome:
        context["outcome"] = outcome
    if request_id:
        context["request_id"] = request_id
    if route:
        context["route"] = route
    if method:
        context["method"] = method
    return context
