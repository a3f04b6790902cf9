import pytest

from ridepay.constants.payment_status import (
    BookingStatus,
    RefundReason,
    booking_status_for_reason,
    normalize_payment_status,
    refund_reason_for_booking_status,
)


@pytest.mark.parametrize(
    "raw,normalized",
    [("completed", "captured"), ("voided", "cancelled"), ("authorized", "authorized"), (None, None)],
)
def test_legacy_statuses_are_normalized(raw, normalized):
    assert normalize_payment_status(raw) == normalized


def test_only_timeouts_close_as_timeout_cancelled():
    assert booking_status_for_reason(RefundReason.TIMEOUT) == "timeout_cancelled"
    assert booking_status_for_reason(RefundReason.DRIVER_REJECTED) == "cancelled"
    assert booking_status_for_reason(RefundReason.PASSENGER_CANCELLED) == "cancelled"


@pytest.mark.parametrize(
    "status,reason",
    [
        (BookingStatus.CANCELLED.value, RefundReason.PASSENGER_CANCELLED),
        (BookingStatus.REJECTED.value, RefundReason.DRIVER_REJECTED),
        (BookingStatus.PENDING.value, RefundReason.TIMEOUT),
        (None, RefundReason.TIMEOUT),
    ],
)
def test_release_reason_follows_booking_status(status, reason):
    assert refund_reason_for_booking_status(status) == reason
