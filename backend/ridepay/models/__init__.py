"""ORM models; importing this package registers every table on ``Base.metadata``."""

from .booking import RideBooking
from .payment import HoldRecord, PaymentRecord

__all__ = ["RideBooking", "PaymentRecord", "HoldRecord"]
