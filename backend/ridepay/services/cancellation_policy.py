"""
Tiered cancellation-refund policy for confirmed rides.

Bands are evaluated top-down and are half-open on their lower bound, so a
cancellation exactly 12 hours out is a full refund and one at 11.999 hours is
not. Pending bookings never reach this calculator: they are voided in full.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Tuple

from ..core.timezone_utils import hours_between
from ..utils.money import CENT, MoneyLike, to_money

# (lower bound in hours, refund percentage, reason)
CANCELLATION_TIERS: Tuple[Tuple[float, int, str], ...] = (
    (12.0, 100, "Free cancellation - No cancellation fee (12+ hours before departure)"),
    (6.0, 75, "Cancellation fee: 25% of ride cost (6-12 hours before departure)"),
    (2.0, 50, "Cancellation fee: 50% of ride cost (2-6 hours before departure)"),
    (0.0, 25, "Cancellation fee: 75% of ride cost (less than 2 hours before departure)"),
)
PAST_DEPARTURE_REASON = "No refund available for completed rides"


@dataclass(frozen=True)
class CancellationOutcome:
    refund_amount: Decimal
    fee_amount: Decimal
    refund_percentage: int
    policy_reason: str


def _tier_for(hours_until_departure: float) -> Tuple[int, str]:
    for lower_bound, percentage, reason in CANCELLATION_TIERS:
        if hours_until_departure >= lower_bound:
            return percentage, reason
    return 0, PAST_DEPARTURE_REASON


def refund_split(total_amount: MoneyLike, hours_until_departure: float) -> CancellationOutcome:
    """Split ``total_amount`` into refund and retained fee for a rider cancellation."""
    total = to_money(total_amount)
    if total < 0:
        raise ValueError("total_amount must not be negative")
    percentage, reason = _tier_for(hours_until_departure)
    refund = (total * Decimal(percentage) / Decimal(100)).quantize(CENT, rounding=ROUND_HALF_UP)
    fee = max(total - refund, Decimal("0.00"))
    return CancellationOutcome(
        refund_amount=refund,
        fee_amount=fee,
        refund_percentage=percentage,
        policy_reason=reason,
    )


def policy_message(hours_until_departure: float) -> str:
    return _tier_for(hours_until_departure)[1]


def hours_until(departure_time: datetime, now: datetime) -> float:
    """Hours from ``now`` until departure; negative once the ride has left."""
    return hours_between(departure_time, now)
