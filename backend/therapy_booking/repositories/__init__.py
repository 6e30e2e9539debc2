# backend/therapy_booking/repositories/__init__.py
"""
Repository layer for the booking engine.

This package provides data access, separating business logic from
database queries.

Key Components:
- BaseRepository: Foundation for all repositories with generic CRUD operations
- IRepository: Interface defining required methods for all repositories
- RepositoryFactory: Factory for creating repository instances
- AvailabilityRepository: Rules, slots and the conditional slot claim/release
- SessionRepository: Therapy sessions, overlap checks, reschedule history
- PaymentRepository: Gateway payments, session linking, payment events
- RefundRepository: Guardian cancellation refunds
- NotificationRepository: Notification records
- UserRepository: Users, therapists, patients and guardian links

Usage:
    from therapy_booking.repositories import RepositoryFactory

    # In a service:
    repository = RepositoryFactory.create_availability_repository(db)
    claimed = repository.claim_slot(slot_id)
"""

from .availability_repository import AvailabilityRepository
from .base_repository import BaseRepository, IRepository
from .factory import RepositoryFactory
from .notification_repository import NotificationRepository
from .payment_repository import PaymentRepository
from .refund_repository import RefundRepository
from .session_repository import SessionRepository
from .user_repository import UserRepository

__all__ = [
    "AvailabilityRepository",
    "BaseRepository",
    "IRepository",
    "NotificationRepository",
    "PaymentRepository",
    "RefundRepository",
    "RepositoryFactory",
    "SessionRepository",
    "UserRepository",
]
