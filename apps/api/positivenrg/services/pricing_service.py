"""
Money and duration calculations.

All amounts are integer minor currency units. Rounding is round-half-up on
exact Decimal arithmetic, so 0.5 of a unit always rounds away from zero and
results never depend on float representation.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from positivenrg.core.config import settings
from positivenrg.core.errors import ValidationError

MINUTES_PER_HOUR = Decimal(60)
HUNDRED = Decimal(100)


@dataclass(frozen=True)
class Earnings:
    platform_fee: int
    net_amount: int


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def calculate_appointment_amount(duration_minutes: int, price_per_hour: int) -> int:
    """Charge for a session: round(duration / 60 * price_per_hour)."""
    if duration_minutes < 0:
        raise ValidationError("Duration cannot be negative", duration_minutes=duration_minutes)
    if price_per_hour < 0:
        raise ValidationError("Price cannot be negative", price_per_hour=price_per_hour)
    return round_half_up(Decimal(duration_minutes) * Decimal(price_per_hour) / MINUTES_PER_HOUR)


def calculate_earnings(amount: int, fee_rate_percent: int | None = None) -> Earnings:
    """
    Split a charge into platform fee and companion payout.

    The net amount is derived from the fee, never rounded on its own, so
    platform_fee + net_amount == amount exactly.
    """
    rate = settings.PLATFORM_FEE_PERCENT if fee_rate_percent is None else fee_rate_percent
    if amount < 0:
        raise ValidationError("Amount cannot be negative", amount=amount)
    if rate < 0 or rate > 100:
        raise ValidationError("Fee rate must be between 0 and 100", fee_rate_percent=rate)

    platform_fee = round_half_up(Decimal(amount) * Decimal(rate) / HUNDRED)
    return Earnings(platform_fee=platform_fee, net_amount=amount - platform_fee)


def calculate_refund_amount(amount: int, start_time: datetime, cancelled_at: datetime) -> int:
    """
    Refund owed when a booking is cancelled.

    Full refund with at least FULL_REFUND_NOTICE_HOURS notice, otherwise
    LATE_CANCEL_REFUND_PERCENT of the charge.
    """
    notice_hours = (start_time - cancelled_at).total_seconds() / 3600
    if notice_hours >= settings.FULL_REFUND_NOTICE_HOURS:
        return amount
    return round_half_up(Decimal(amount) * Decimal(settings.LATE_CANCEL_REFUND_PERCENT) / HUNDRED)
