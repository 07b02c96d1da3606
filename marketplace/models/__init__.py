# marketplace/models/__init__.py
from .base import Base
from .user import User
from .service import Service
from .availability import AvailabilityWindow, TimeSlot
from .booking import Booking, BookingStatus, ACTIVE_STATUSES, TERMINAL_STATUSES
from .recurring_booking import RecurringBookingSeries, RecurrenceFrequency, SeriesStatus
from .booking_policy import BookingPolicy, PolicyType, PenaltyType
from .payment import Payment, PaymentStatus

__all__ = [
    "Base",
    "User",
    "Service",
    "AvailabilityWindow",
    "TimeSlot",
    "Booking",
    "BookingStatus",
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "RecurringBookingSeries",
    "RecurrenceFrequency",
    "SeriesStatus",
    "BookingPolicy",
    "PolicyType",
    "PenaltyType",
    "Payment",
    "PaymentStatus",
]
