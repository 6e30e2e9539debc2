# backend/therapy_booking/services/booking_service.py
"""
Booking Service for the booking engine.

Turns booking intents into therapy sessions. Both ways a session comes
into existence go through ``_claim_and_create``:

- a COMPLETED payment's PendingBooking (``complete_booking`` and the
  gateway callback), creating a SCHEDULED session
- a request for a free slot (``request_session``), creating a REQUESTED
  session

The slot claim, the session insert and the payment link share one
transaction, so a failure anywhere rolls the claim back.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
import logging
from typing import Callable, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..core.enums import NotificationType, PaymentPurpose, PaymentStatus, RoleName
from ..core.exceptions import (
    ForbiddenException,
    InvalidStateException,
    NotFoundException,
    PaymentNotCompletedException,
    SlotAlreadyBookedException,
    ValidationException,
)
from ..core.timezone_utils import clinic_now, combine
from ..models.availability import AvailabilitySlot
from ..models.payment import Payment
from ..models.session import SessionStatus, TherapySession
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..principal import UserPrincipal
from ..repositories.factory import RepositoryFactory
from ..schemas.payment import PendingBooking
from ..schemas.session import SessionRequestCreate
from .access import AccessPolicy
from .availability_service import AvailabilityService
from .base import BaseService
from .notification_service import NotificationService

logger = logging.getLogger(__name__)


class ClaimOrigin(str, Enum):
    """The closed set of ways a session can be created."""

    PAID_BOOKING = "PAID_BOOKING"
    FREE_REQUEST = "FREE_REQUEST"


@dataclass(frozen=True)
class SlotClaim:
    origin: ClaimOrigin
    patient_id: str
    therapist_id: str
    slot_id: str
    scheduled_at: datetime
    duration: int
    session_type: str
    booked_rate: Decimal

    @property
    def initial_status(self) -> SessionStatus:
        if self.origin == ClaimOrigin.PAID_BOOKING:
            return SessionStatus.SCHEDULED
        return SessionStatus.REQUESTED


class BookingService(BaseService):
    def __init__(
        self,
        db: Session,
        notification_service: Optional[NotificationService] = None,
        availability_service: Optional[AvailabilityService] = None,
        clock: Callable[[], datetime] = clinic_now,
    ):
        super().__init__(db)
        self.clock = clock
        self.notifications = notification_service or NotificationService(db)
        self.availability = availability_service or AvailabilityService(db, clock=clock)
        self.availability_repository = RepositoryFactory.create_availability_repository(db)
        self.session_repository = RepositoryFactory.create_session_repository(db)
        self.payment_repository = RepositoryFactory.create_payment_repository(db)
        self.user_repository = RepositoryFactory.create_user_repository(db)
        self.access = AccessPolicy(self.user_repository)

    def get_session(self, session_id: str) -> TherapySession:
        session = self.session_repository.get_by_id(session_id)
        if session is None:
            raise NotFoundException("Session not found")
        return session

    # Shared claim core

    def _claim_and_create(self, claim: SlotClaim) -> TherapySession:
        """
        Claim the slot and create the session. Runs inside the caller's transaction.

        Raises:
            SlotAlreadyBookedException: If another request claimed the slot first
        """
        claimed = self.availability_repository.claim_slot(claim.slot_id)
        prometheus_metrics.record_slot_claim(claimed)
        if not claimed:
            self.logger.info(
                "Slot claim lost",
                extra={"slot_id": claim.slot_id, "origin": claim.origin.value},
            )
            raise SlotAlreadyBookedException(details={"slot_id": claim.slot_id})

        return self.session_repository.create(
            patient_id=claim.patient_id,
            therapist_id=claim.therapist_id,
            availability_slot_id=claim.slot_id,
            scheduled_at=claim.scheduled_at,
            duration=claim.duration,
            session_type=claim.session_type,
            booked_rate=claim.booked_rate,
            status=claim.initial_status.value,
        )

    # Paid bookings

    @staticmethod
    def parse_pending_booking(payment: Payment) -> PendingBooking:
        if payment.purpose != PaymentPurpose.BOOKING.value or not payment.booking_intent:
            raise ValidationException("Payment does not carry a booking")
        try:
            return PendingBooking.model_validate(payment.booking_intent)
        except ValidationError as exc:
            raise ValidationException(
                "Stored booking details are invalid", details={"order_id": payment.order_id}
            ) from exc

    def materialize(self, payment: Payment) -> TherapySession:
        """
        Create the session for a COMPLETED booking payment.

        Idempotent: a payment already linked to a session returns that
        session, including when a concurrent request linked it while this
        one was claiming. Commits on success, rolls back on any failure.
        """
        intent = self.parse_pending_booking(payment)
        if payment.status != PaymentStatus.COMPLETED.value:
            raise PaymentNotCompletedException(payment.status)
        if payment.session_id:
            return self.get_session(payment.session_id)

        try:
            with self.transaction():
                slot = self._reserved_slot(intent)
                session = self._claim_and_create(
                    SlotClaim(
                        origin=ClaimOrigin.PAID_BOOKING,
                        patient_id=payment.patient_id,
                        therapist_id=intent.therapist_id,
                        slot_id=slot.id,
                        scheduled_at=combine(intent.date, intent.time_slot),
                        duration=intent.duration_minutes,
                        session_type=intent.session_type,
                        booked_rate=payment.amount,
                    )
                )
                if not self.payment_repository.link_session(payment.id, session.id):
                    raise SlotAlreadyBookedException(
                        "This payment was already used for a booking",
                        details={"order_id": payment.order_id},
                    )
                self.payment_repository.add_event(
                    payment, "session_linked", {"session_id": session.id}
                )
                self._notify_booked(session)
        except SlotAlreadyBookedException:
            self.db.refresh(payment)
            if payment.session_id:
                self.logger.info(
                    "Payment was linked by a concurrent request",
                    extra={"order_id": payment.order_id, "session_id": payment.session_id},
                )
                return self.get_session(payment.session_id)
            raise

        self.log_operation(
            "materialize", order_id=payment.order_id, session_id=session.id
        )
        return session

    def _reserved_slot(self, intent: PendingBooking) -> AvailabilitySlot:
        """
        The slot row the intent reserved, looked up again by its identity
        when a schedule change deleted the original row.
        """
        slot = self.availability_repository.get_by_id(intent.availability_slot_id)
        if slot is not None:
            return slot
        self.logger.info(
            "Reserved slot row was removed, recreating it",
            extra={"slot_id": intent.availability_slot_id, "therapist_id": intent.therapist_id},
        )
        return self.availability_repository.ensure_slot(
            intent.therapist_id,
            intent.date,
            intent.time_slot,
            duration_minutes=intent.duration_minutes,
        )

    @BaseService.measure_operation("complete_booking")
    def complete_booking(self, principal: UserPrincipal, order_id: str) -> TherapySession:
        """
        Materialize the session for a paid order.

        Raises:
            NotFoundException: Unknown order
            ForbiddenException: Caller does not own the payment's patient
            PaymentNotCompletedException: Payment is not COMPLETED
            SlotAlreadyBookedException: The slot went to another booking
        """
        payment = self.payment_repository.get_by_order_id(order_id)
        if payment is None:
            raise NotFoundException("Payment not found")

        patient = self.user_repository.get_patient(payment.patient_id)
        if patient is None:
            raise NotFoundException("Patient not found")
        if payment.payer_user_id != principal.user_id and not self.access.can_act_for_patient(
            principal, patient
        ):
            raise ForbiddenException("You do not own this payment")

        return self.materialize(payment)

    def _notify_booked(self, session: TherapySession) -> None:
        therapist = self.user_repository.get_therapist(session.therapist_id)
        when = session.scheduled_at.strftime("%Y-%m-%d %H:%M")
        if therapist is not None:
            self.notifications.emit(
                therapist.user_id,
                "New session booked",
                f"A session has been booked for {when}.",
                type=NotificationType.APPOINTMENT,
            )
        self.notifications.emit_many(
            self.access.patient_user_ids(session.patient_id),
            "Session confirmed",
            f"Your session on {when} is confirmed.",
            type=NotificationType.APPOINTMENT,
        )

    # Free-slot requests

    @BaseService.measure_operation("request_session")
    def request_session(
        self, principal: UserPrincipal, request: SessionRequestCreate
    ) -> TherapySession:
        """Request a zero-rate slot directly. The therapist approves or declines later."""
        patient = self.access.resolve_patient(principal, request.patient_id)
        match, slot = self.availability.require_available_slot(
            request.therapist_id, request.date, request.time_slot
        )
        if not match.candidate.is_free:
            raise ValidationException(
                "Paid slots must be booked through payment",
                details={"cost": str(match.cost)},
            )

        with self.transaction():
            session = self._claim_and_create(
                SlotClaim(
                    origin=ClaimOrigin.FREE_REQUEST,
                    patient_id=patient.id,
                    therapist_id=request.therapist_id,
                    slot_id=slot.id,
                    scheduled_at=combine(request.date, match.start_time),
                    duration=match.candidate.duration_minutes,
                    session_type=request.session_type,
                    booked_rate=Decimal("0.00"),
                )
            )
            therapist = self.user_repository.get_therapist(request.therapist_id)
            if therapist is not None:
                self.notifications.emit(
                    therapist.user_id,
                    "Session requested",
                    f"{patient.full_name} requested a session on "
                    f"{session.scheduled_at.strftime('%Y-%m-%d %H:%M')}.",
                    sender_id=principal.user_id,
                )

        self.log_operation("request_session", session_id=session.id, patient_id=patient.id)
        return session

    @BaseService.measure_operation("respond_to_request")
    def respond_to_request(
        self, principal: UserPrincipal, session_id: str, approve: bool
    ) -> TherapySession:
        session = self.get_session(session_id)
        self.access.ensure_therapist_or_admin(principal, session)
        if session.status != SessionStatus.REQUESTED.value:
            raise InvalidStateException(
                "Only requested sessions can be approved or declined",
                current_status=session.status,
            )

        with self.transaction():
            if approve:
                session.transition_to(SessionStatus.APPROVED)
                title, message = "Session approved", "Your session request was approved."
            else:
                session.cancel(principal.user_id, "Declined by therapist")
                if session.availability_slot_id:
                    self.availability_repository.release_slot(session.availability_slot_id)
                title, message = "Session declined", "Your session request was declined."
            self.db.flush()
            self.notifications.emit_many(
                self.access.patient_user_ids(session.patient_id),
                title,
                message,
                sender_id=principal.user_id,
            )
        return session

    # Lifecycle

    @BaseService.measure_operation("acknowledge_reschedule")
    def acknowledge_reschedule(self, principal: UserPrincipal, session_id: str) -> TherapySession:
        """The party that did not move the session confirms the new time."""
        session = self.get_session(session_id)
        if session.status != SessionStatus.RESCHEDULED.value:
            raise InvalidStateException(
                "Session is not awaiting reschedule confirmation", current_status=session.status
            )

        last = self.session_repository.get_latest_reschedule(session.id)
        moved_by_therapist = last is not None and last.rescheduled_by_role == RoleName.THERAPIST.value
        if not principal.is_admin:
            if moved_by_therapist:
                patient = self.user_repository.get_patient(session.patient_id)
                if patient is None or not self.access.can_act_for_patient(principal, patient):
                    raise ForbiddenException("Only the patient side can confirm this reschedule")
            elif not self.access.is_session_therapist(principal, session):
                raise ForbiddenException("Only the therapist can confirm this reschedule")

        with self.transaction():
            session.transition_to(SessionStatus.SCHEDULED)
            self.db.flush()
        return session

    @BaseService.measure_operation("complete_session")
    def complete_session(self, principal: UserPrincipal, session_id: str) -> TherapySession:
        session = self.get_session(session_id)
        self.access.ensure_therapist_or_admin(principal, session)
        with self.transaction():
            session.complete()
            self.db.flush()
        return session

    @BaseService.measure_operation("mark_no_show")
    def mark_no_show(self, principal: UserPrincipal, session_id: str) -> TherapySession:
        session = self.get_session(session_id)
        self.access.ensure_therapist_or_admin(principal, session)
        if session.scheduled_at > self.clock():
            raise ValidationException("A session cannot be marked no-show before it starts")
        with self.transaction():
            session.mark_no_show()
            self.db.flush()
        return session
