# backend/therapy_booking/api/dependencies/__init__.py
"""
Central export point for all dependencies.

This module re-exports all dependencies from submodules
for convenient access throughout the application.
"""

from .auth import get_current_principal, require_roles
from .database import get_db
from .services import (
    get_availability_service,
    get_booking_service,
    get_cancellation_service,
    get_clock,
    get_notification_service,
    get_payhere_signer,
    get_payment_service,
)

__all__ = [
    # Auth
    "get_current_principal",
    "require_roles",
    # Database
    "get_db",
    # Services
    "get_clock",
    "get_payhere_signer",
    "get_notification_service",
    "get_availability_service",
    "get_booking_service",
    "get_payment_service",
    "get_cancellation_service",
]
