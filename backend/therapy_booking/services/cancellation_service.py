# backend/therapy_booking/services/cancellation_service.py
"""
Cancellation Service for the booking engine.

Applies the refund and reschedule policy from ``refund_policy`` to stored
sessions. Every operation validates and checks ownership first, then
performs all of its writes in one transaction:

- cancel_session: session -> CANCELLED, slot freed, refund recorded
- reschedule_session: new slot claimed, old slot freed, history row written
- complete_refund: an administrator settles a guardian refund
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
import logging
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import NotificationType, PaymentPurpose, PaymentStatus, RefundStatus
from ..core.exceptions import (
    ForbiddenException,
    InvalidStateException,
    NotFoundException,
    PaymentRequiredException,
    SlotAlreadyBookedException,
    ValidationException,
)
from ..core.timezone_utils import alternate_time_encodings, clinic_now, combine, time_to_string
from ..models.payment import Payment
from ..models.refund import CancelRefund
from ..models.session import (
    ACTIVE_SESSION_STATUSES,
    SessionReschedule,
    SessionStatus,
    TherapySession,
)
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..principal import UserPrincipal
from ..repositories.factory import RepositoryFactory
from ..schemas.session import BankDetails, RescheduleSessionRequest
from .access import AccessPolicy
from .availability_service import AvailabilityService
from .base import BaseService
from .notification_service import NotificationService
from .refund_policy import (
    RefundQuote,
    RescheduleFeeQuote,
    guardian_cancellation_quote,
    patient_cancellation_quote,
    reschedule_fee_quote,
    to_money,
    validate_bank_details,
)

logger = logging.getLogger(__name__)

CURRENCY_LABEL = "Rs."


@dataclass
class CancellationResult:
    session: TherapySession
    slot_released: bool
    refund: Optional[RefundQuote] = None
    cancel_refund: Optional[CancelRefund] = None


@dataclass
class RescheduleResult:
    session: TherapySession
    previous_scheduled_at: datetime
    fee_amount: Decimal
    fee_order_id: Optional[str] = None


class CancellationService(BaseService):
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
        self.refund_repository = RepositoryFactory.create_refund_repository(db)
        self.user_repository = RepositoryFactory.create_user_repository(db)
        self.access = AccessPolicy(self.user_repository)

    def _get_session(self, principal: UserPrincipal, session_id: str) -> TherapySession:
        session = self.session_repository.get_by_id(session_id)
        if session is None:
            raise NotFoundException("Session not found")
        self.access.ensure_session_access(principal, session)
        return session

    @staticmethod
    def _ensure_active(session: TherapySession, action: str) -> None:
        if session.status not in ACTIVE_SESSION_STATUSES:
            raise InvalidStateException(
                f"Session cannot be {action} in its current state",
                current_status=session.status,
            )

    def _booking_payment(self, session: TherapySession) -> Optional[Payment]:
        payments = self.payment_repository.get_completed_for_session(
            session.id, PaymentPurpose.BOOKING.value
        )
        return payments[0] if payments else None

    def _paid_amount(self, session: TherapySession, payment: Optional[Payment]) -> Decimal:
        if payment is not None:
            return to_money(payment.amount)
        return to_money(session.booked_rate or 0)

    # Quotes

    @BaseService.measure_operation("calculate_refund")
    def calculate_refund(self, principal: UserPrincipal, session_id: str) -> RefundQuote:
        """Refund the caller would get by cancelling now. Guardians get the guardian policy."""
        session = self._get_session(principal, session_id)
        amount = self._paid_amount(session, self._booking_payment(session))
        now = self.clock()
        if principal.is_guardian:
            return guardian_cancellation_quote(session.scheduled_at, now, amount)
        return patient_cancellation_quote(session.scheduled_at, now, amount)

    def get_reschedule_fee(self, principal: UserPrincipal, session_id: str) -> RescheduleFeeQuote:
        session = self._get_session(principal, session_id)
        quote = reschedule_fee_quote(
            session.scheduled_at,
            self.clock(),
            settings.reschedule_fee,
            settings.free_reschedule_days,
        )
        if not principal.is_patient:
            # Only patients pay to move a session.
            return RescheduleFeeQuote(
                days_until_session=quote.days_until_session,
                fee=Decimal("0.00"),
                requires_payment=False,
            )
        return quote

    def get_reschedule_history(
        self, principal: UserPrincipal, session_id: str
    ) -> List[SessionReschedule]:
        session = self._get_session(principal, session_id)
        return self.session_repository.list_reschedules(session.id)

    # Slot release

    def _free_slot(self, session: TherapySession) -> bool:
        """
        Release the slot held by ``session``.

        Uses the stored slot id, then falls back to the therapist, date and
        start time for rows written under other time encodings.
        """
        if session.availability_slot_id and self.availability_repository.release_slot(
            session.availability_slot_id
        ):
            return True
        start = time_to_string(session.scheduled_at.time())
        released = self.availability_repository.release_slot_by_time(
            session.therapist_id,
            session.scheduled_at.date(),
            alternate_time_encodings(start),
        )
        if not released:
            self.logger.warning(
                "No booked slot found to release",
                extra={"session_id": session.id, "slot_id": session.availability_slot_id},
            )
        return released

    # Cancellation

    @BaseService.measure_operation("cancel_session")
    def cancel_session(
        self,
        principal: UserPrincipal,
        session_id: str,
        reason: Optional[str] = None,
        bank_details: Optional[BankDetails] = None,
    ) -> CancellationResult:
        """
        Cancel a session and record what is owed back.

        Raises:
            InvalidStateException: Session is already completed, cancelled or no-show
            ValidationException: A guardian refund is due and bank details are missing or invalid
        """
        session = self._get_session(principal, session_id)
        self._ensure_active(session, "cancelled")
        now = self.clock()

        payment = self._booking_payment(session)
        amount = self._paid_amount(session, payment)
        quote: Optional[RefundQuote] = None
        if principal.is_patient and payment is not None:
            quote = patient_cancellation_quote(session.scheduled_at, now, amount)
        elif principal.is_guardian and amount > 0:
            quote = guardian_cancellation_quote(session.scheduled_at, now, amount)
            if quote.refund_amount > 0:
                if bank_details is None:
                    raise ValidationException(
                        "Bank details are required to receive a refund",
                        details={"refund_amount": str(quote.refund_amount)},
                    )
                validate_bank_details(
                    bank_details.bank_account_name,
                    bank_details.bank_name,
                    bank_details.account_number,
                    bank_details.swift_code,
                )

        cancel_refund = None
        with self.transaction():
            session.cancel(principal.user_id, reason)
            released = self._free_slot(session)

            if principal.is_patient and quote is not None:
                self.payment_repository.merge_metadata(
                    payment,
                    {
                        "refund": {
                            **quote.to_payload(),
                            "cancelled_by": principal.user_id,
                            "recorded_at": now.isoformat(),
                        }
                    },
                )
                self.payment_repository.add_event(payment, "refund_recorded", quote.to_payload())
            elif principal.is_guardian and quote is not None and quote.refund_amount > 0:
                cancel_refund = self.refund_repository.create(
                    session_id=session.id,
                    guardian_user_id=principal.user_id,
                    patient_id=session.patient_id,
                    original_amount=quote.original_amount,
                    refund_amount=quote.refund_amount,
                    platform_fee=quote.platform_fee,
                    therapist_share=quote.therapist_share,
                    tier=quote.tier.value,
                    bank_account_name=bank_details.bank_account_name,
                    bank_name=bank_details.bank_name,
                    account_number=bank_details.account_number,
                    branch_code=bank_details.branch_code,
                    swift_code=bank_details.swift_code,
                )
                self.notifications.notify_admins(
                    "Refund pending",
                    f"A refund of {CURRENCY_LABEL} {quote.refund_amount} is waiting to be transferred.",
                    type=NotificationType.PAYMENT,
                )

            self._notify_cancelled(principal, session, reason)
            self.db.flush()

        self.log_operation(
            "cancel_session",
            session_id=session.id,
            slot_released=released,
            refund_tier=quote.tier.value if quote else None,
        )
        return CancellationResult(
            session=session, slot_released=released, refund=quote, cancel_refund=cancel_refund
        )

    def _notify_cancelled(
        self, principal: UserPrincipal, session: TherapySession, reason: Optional[str]
    ) -> None:
        when = session.scheduled_at.strftime("%Y-%m-%d %H:%M")
        message = f"The session on {when} was cancelled."
        if reason:
            message = f"{message} Reason: {reason}"
        if principal.is_therapist or principal.is_admin:
            self.notifications.emit_many(
                self.access.patient_user_ids(session.patient_id),
                "Session cancelled",
                message,
                sender_id=principal.user_id,
            )
        if not principal.is_therapist:
            therapist = self.user_repository.get_therapist(session.therapist_id)
            if therapist is not None:
                self.notifications.emit(
                    therapist.user_id,
                    "Session cancelled",
                    message,
                    sender_id=principal.user_id,
                    is_urgent=principal.is_guardian,
                )

    # Reschedule

    def _verify_fee_payment(
        self, session: TherapySession, quote: RescheduleFeeQuote, fee_order_id: Optional[str]
    ) -> Payment:
        payment = self.payment_repository.get_by_order_id(fee_order_id) if fee_order_id else None
        if payment is None or payment.status != PaymentStatus.COMPLETED.value:
            raise PaymentRequiredException(
                fee=str(quote.fee),
                days_until_session=quote.days_until_session,
                currency_label=CURRENCY_LABEL,
            )
        if payment.purpose != PaymentPurpose.RESCHEDULE_FEE.value or payment.session_id != session.id:
            raise ValidationException(
                "This payment is not a reschedule fee for this session",
                details={"order_id": payment.order_id},
            )
        if to_money(payment.amount) != quote.fee:
            raise ValidationException(
                "Reschedule fee amount does not match",
                details={"expected": str(quote.fee), "paid": str(to_money(payment.amount))},
            )
        if self.session_repository.fee_payment_consumed(payment.id):
            raise ValidationException(
                "This reschedule fee has already been used",
                details={"order_id": payment.order_id},
            )
        return payment

    @BaseService.measure_operation("reschedule_session")
    def reschedule_session(
        self, principal: UserPrincipal, session_id: str, request: RescheduleSessionRequest
    ) -> RescheduleResult:
        """
        Move a session to another available slot.

        Raises:
            InvalidStateException: Session is no longer active
            PaymentRequiredException: A patient reschedule inside the fee window has no paid fee
            ValidationException: New time is in the past, or the fee payment does not fit
            SlotUnavailableException: The new slot is not offered, booked or blocked
            SlotAlreadyBookedException: The new slot was claimed concurrently
        """
        session = self._get_session(principal, session_id)
        self._ensure_active(session, "rescheduled")
        now = self.clock()

        new_at = combine(request.new_date, request.new_time)
        if new_at <= now:
            raise ValidationException("The new session time must be in the future")
        if new_at == session.scheduled_at:
            raise ValidationException("The session is already scheduled at this time")

        fee_payment: Optional[Payment] = None
        fee_amount = Decimal("0.00")
        if principal.is_patient:
            quote = reschedule_fee_quote(
                session.scheduled_at, now, settings.reschedule_fee, settings.free_reschedule_days
            )
            if quote.requires_payment:
                fee_payment = self._verify_fee_payment(session, quote, request.fee_order_id)
                fee_amount = quote.fee

        match, slot = self.availability.require_available_slot(
            session.therapist_id,
            request.new_date,
            request.new_time,
            exclude_session_id=session.id,
        )

        previous = session.scheduled_at
        with self.transaction():
            claimed = self.availability_repository.claim_slot(slot.id)
            prometheus_metrics.record_slot_claim(claimed)
            if not claimed:
                raise SlotAlreadyBookedException(details={"slot_id": slot.id})
            self._free_slot(session)

            session.transition_to(SessionStatus.RESCHEDULED)
            session.scheduled_at = combine(request.new_date, match.start_time)
            session.availability_slot_id = slot.id
            self.session_repository.add_reschedule(
                session_id=session.id,
                previous_scheduled_at=previous,
                new_scheduled_at=session.scheduled_at,
                rescheduled_by=principal.user_id,
                rescheduled_by_role=principal.role.value,
                reason=request.reason,
                fee_amount=fee_amount,
                fee_payment_id=fee_payment.id if fee_payment else None,
            )
            if fee_payment is not None:
                self.payment_repository.add_event(
                    fee_payment, "fee_consumed", {"session_id": session.id}
                )
            self._notify_rescheduled(principal, session, previous)
            self.db.flush()

        self.log_operation(
            "reschedule_session",
            session_id=session.id,
            previous_scheduled_at=previous.isoformat(),
            new_scheduled_at=session.scheduled_at.isoformat(),
        )
        return RescheduleResult(
            session=session,
            previous_scheduled_at=previous,
            fee_amount=fee_amount,
            fee_order_id=fee_payment.order_id if fee_payment else None,
        )

    def _notify_rescheduled(
        self, principal: UserPrincipal, session: TherapySession, previous: datetime
    ) -> None:
        message = (
            f"The session on {previous.strftime('%Y-%m-%d %H:%M')} was moved to "
            f"{session.scheduled_at.strftime('%Y-%m-%d %H:%M')}. Please confirm the new time."
        )
        if principal.is_therapist or principal.is_admin:
            self.notifications.emit_many(
                self.access.patient_user_ids(session.patient_id),
                "Session rescheduled",
                message,
                sender_id=principal.user_id,
            )
        if not principal.is_therapist:
            therapist = self.user_repository.get_therapist(session.therapist_id)
            if therapist is not None:
                self.notifications.emit(
                    therapist.user_id, "Session rescheduled", message, sender_id=principal.user_id
                )

    # Refund settlement

    def list_refunds(
        self, principal: UserPrincipal, refund_status: RefundStatus = RefundStatus.PENDING
    ) -> List[CancelRefund]:
        if not principal.is_admin:
            raise ForbiddenException("Only administrators can view refunds")
        return self.refund_repository.list_by_status(refund_status.value)

    @BaseService.measure_operation("complete_refund")
    def complete_refund(
        self, principal: UserPrincipal, refund_id: str, note: Optional[str] = None
    ) -> CancelRefund:
        if not principal.is_admin:
            raise ForbiddenException("Only administrators can settle refunds")
        refund = self.refund_repository.get_by_id(refund_id)
        if refund is None:
            raise NotFoundException("Refund not found")

        with self.transaction():
            refund.mark_completed(note)
            self.notifications.emit(
                refund.guardian_user_id,
                "Refund processed",
                f"Your refund of {CURRENCY_LABEL} {to_money(refund.refund_amount)} has been transferred.",
                type=NotificationType.PAYMENT,
                sender_id=principal.user_id,
            )
            self.db.flush()

        self.log_operation("complete_refund", refund_id=refund.id)
        return refund
