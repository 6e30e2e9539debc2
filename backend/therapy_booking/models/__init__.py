"""
Database models for the booking engine.

The models are organized by functionality:
- Collaborator records (users, therapists, patients, guardians)
- Availability rules and slots
- Therapy sessions and their reschedule history
- Gateway payments and payment events
- Guardian cancellation refunds
- Notification records
"""

from .availability import AvailabilityRule, AvailabilitySlot
from .notification import Notification
from .payment import Payment, PaymentEvent
from .refund import CancelRefund
from .session import SessionReschedule, SessionStatus, TherapySession
from .user import Patient, PatientGuardian, Therapist, User

__all__ = [
    "AvailabilityRule",
    "AvailabilitySlot",
    "CancelRefund",
    "Notification",
    "Patient",
    "PatientGuardian",
    "Payment",
    "PaymentEvent",
    "SessionReschedule",
    "SessionStatus",
    "Therapist",
    "TherapySession",
    "User",
]
