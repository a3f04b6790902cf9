"""
Tests for the tiered cancellation-refund calculator.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from ridepay.services.cancellation_policy import (
    PAST_DEPARTURE_REASON,
    hours_until,
    policy_message,
    refund_split,
)


@pytest.mark.parametrize(
    "hours,percentage,refund,fee",
    [
        (48.0, 100, "40.00", "0.00"),
        (12.0, 100, "40.00", "0.00"),
        (11.999, 75, "30.00", "10.00"),
        (6.0, 75, "30.00", "10.00"),
        (5.999, 50, "20.00", "20.00"),
        (2.0, 50, "20.00", "20.00"),
        (1.999, 25, "10.00", "30.00"),
        (0.0, 25, "10.00", "30.00"),
        (-0.001, 0, "0.00", "40.00"),
    ],
)
def test_tier_boundaries(hours, percentage, refund, fee):
    outcome = refund_split(Decimal("40.00"), hours)

    assert outcome.refund_percentage == percentage
    assert outcome.refund_amount == Decimal(refund)
    assert outcome.fee_amount == Decimal(fee)
    assert outcome.refund_amount + outcome.fee_amount == Decimal("40.00")


def test_refund_rounds_half_up_to_cents():
    outcome = refund_split("33.33", 8)

    # 75% of 33.33 is 24.9975
    assert outcome.refund_amount == Decimal("25.00")
    assert outcome.fee_amount == Decimal("8.33")


def test_past_departure_reason():
    assert refund_split(10, -3).policy_reason == PAST_DEPARTURE_REASON
    assert policy_message(-3) == PAST_DEPARTURE_REASON


def test_policy_messages_name_the_band():
    assert policy_message(24).startswith("Free cancellation")
    assert "25%" in policy_message(7)
    assert "50%" in policy_message(3)
    assert "75%" in policy_message(1)


def test_negative_total_rejected():
    with pytest.raises(ValueError):
        refund_split(Decimal("-1"), 24)


def test_hours_until_handles_naive_store_values():
    now = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
    naive_departure = datetime(2026, 3, 2, 15, 30)

    assert hours_until(naive_departure, now) == pytest.approx(6.5)
    assert hours_until(now - timedelta(hours=1), now) == pytest.approx(-1.0)
