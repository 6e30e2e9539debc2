# backend/therapy_booking/core/enums.py
"""
Core enums for the booking engine.

These enums are stored as plain strings in the database, so values must
stay stable once written.
"""

from enum import Enum


class RoleName(str, Enum):
    """Roles a resolved principal can carry."""

    ADMIN = "ADMIN"
    THERAPIST = "THERAPIST"
    PARENT = "PARENT"
    PATIENT = "PATIENT"


class PaymentStatus(str, Enum):
    """Lifecycle of a payment intent."""

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class PaymentPurpose(str, Enum):
    """What a payment intent pays for."""

    BOOKING = "BOOKING"
    RESCHEDULE_FEE = "RESCHEDULE_FEE"


class RecurrenceType(str, Enum):
    NONE = "NONE"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"


class RefundStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"


class RefundTier(str, Enum):
    """Named refund brackets keyed by time-to-session."""

    PARTIAL_REFUND_90 = "PARTIAL_REFUND_90"
    PARTIAL_REFUND_60 = "PARTIAL_REFUND_60"
    NO_REFUND = "NO_REFUND"


class NotificationType(str, Enum):
    APPOINTMENT = "APPOINTMENT"
    PAYMENT = "PAYMENT"
    SYSTEM = "SYSTEM"
