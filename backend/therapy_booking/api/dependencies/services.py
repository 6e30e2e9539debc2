# backend/therapy_booking/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

This module provides factory functions that create service instances
with their required dependencies properly injected.
"""

from datetime import datetime
import logging
from typing import Callable, Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from ...core.config import settings
from ...core.timezone_utils import clinic_now
from ...integrations.payhere import PayHereSigner
from ...services.availability_service import AvailabilityService
from ...services.booking_service import BookingService
from ...services.cancellation_service import CancellationService
from ...services.notification_service import NotificationService
from ...services.payment_service import PaymentService
from .database import get_db

logger = logging.getLogger(__name__)


def get_clock() -> Callable[[], datetime]:
    """Clinic wall clock. Overridden in tests to pin "now"."""
    return clinic_now


def get_payhere_signer() -> Optional[PayHereSigner]:
    """Signer built from settings, or None while the gateway is not configured."""
    secret = settings.merchant_secret()
    if not settings.payhere_merchant_id or not secret:
        return None
    return PayHereSigner(merchant_id=settings.payhere_merchant_id, merchant_secret=secret)


def get_notification_service(db: Session = Depends(get_db)) -> NotificationService:
    return NotificationService(db)


def get_availability_service(
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> AvailabilityService:
    return AvailabilityService(db, clock=clock)


def get_booking_service(
    db: Session = Depends(get_db),
    notification_service: NotificationService = Depends(get_notification_service),
    availability_service: AvailabilityService = Depends(get_availability_service),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> BookingService:
    """
    Get booking service instance.

    Args:
        db: Database session
        notification_service: Writes notification records
        availability_service: Re-resolves slots before a claim

    Returns:
        BookingService instance
    """
    return BookingService(
        db,
        notification_service=notification_service,
        availability_service=availability_service,
        clock=clock,
    )


def get_payment_service(
    db: Session = Depends(get_db),
    signer: Optional[PayHereSigner] = Depends(get_payhere_signer),
    booking_service: BookingService = Depends(get_booking_service),
    notification_service: NotificationService = Depends(get_notification_service),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> PaymentService:
    return PaymentService(
        db,
        signer=signer,
        booking_service=booking_service,
        notification_service=notification_service,
        clock=clock,
    )


def get_cancellation_service(
    db: Session = Depends(get_db),
    notification_service: NotificationService = Depends(get_notification_service),
    availability_service: AvailabilityService = Depends(get_availability_service),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> CancellationService:
    return CancellationService(
        db,
        notification_service=notification_service,
        availability_service=availability_service,
        clock=clock,
    )
