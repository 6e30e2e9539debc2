# backend/therapy_booking/services/payment_service.py
"""
Payment Service for the PayHere checkout flow.

Creates PENDING payment intents with signed checkout parameters and
applies the gateway's server-to-server notifications. Initiation never
books a slot: concurrent intents for one slot are settled when a
completed payment is materialized.
"""

from datetime import datetime, timezone
from decimal import Decimal
import logging
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import NotificationType, PaymentPurpose, PaymentStatus
from ..core.exceptions import (
    ConflictException,
    DomainException,
    ForbiddenException,
    InvalidSignatureException,
    NotFoundException,
    ServiceException,
    ValidationException,
)
from ..core.timezone_utils import clinic_now
from ..integrations.payhere import (
    CHARGEBACK_STATUS_CODE,
    ORDER_PREFIX_BOOKING,
    ORDER_PREFIX_RESCHEDULE,
    PayHereError,
    PayHereSigner,
    format_amount,
    generate_order_id,
    map_payment_method,
    map_status_code,
)
from ..models.payment import Payment
from ..models.session import ACTIVE_SESSION_STATUSES
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..principal import UserPrincipal
from ..repositories.factory import RepositoryFactory
from ..schemas.payment import (
    CallbackAck,
    CustomerInfo,
    GatewayParams,
    PayHereCallback,
    PaymentInitiateRequest,
    PaymentInitiateResponse,
    PendingBooking,
)
from .access import AccessPolicy
from .availability_service import AvailabilityService
from .base import BaseService
from .booking_service import BookingService
from .notification_service import NotificationService
from .refund_policy import reschedule_fee_quote, to_money

logger = logging.getLogger(__name__)


def build_signer() -> PayHereSigner:
    secret = settings.merchant_secret()
    if not settings.payhere_merchant_id or not secret:
        raise ServiceException("Payment gateway is not configured")
    return PayHereSigner(merchant_id=settings.payhere_merchant_id, merchant_secret=secret)


class PaymentService(BaseService):
    def __init__(
        self,
        db: Session,
        signer: Optional[PayHereSigner] = None,
        booking_service: Optional[BookingService] = None,
        notification_service: Optional[NotificationService] = None,
        clock: Callable[[], datetime] = clinic_now,
    ):
        super().__init__(db)
        self.clock = clock
        self._signer = signer
        self.notifications = notification_service or NotificationService(db)
        self.availability = AvailabilityService(db, clock=clock)
        self.booking_service = booking_service or BookingService(
            db,
            notification_service=self.notifications,
            availability_service=self.availability,
            clock=clock,
        )
        self.payment_repository = RepositoryFactory.create_payment_repository(db)
        self.session_repository = RepositoryFactory.create_session_repository(db)
        self.user_repository = RepositoryFactory.create_user_repository(db)
        self.access = AccessPolicy(self.user_repository)

    @property
    def signer(self) -> PayHereSigner:
        if self._signer is None:
            self._signer = build_signer()
        return self._signer

    def _gateway_params(
        self,
        order_id: str,
        amount: Decimal,
        items: str,
        customer: CustomerInfo,
        custom_1: Optional[str] = None,
        custom_2: Optional[str] = None,
    ) -> GatewayParams:
        currency = settings.currency
        return GatewayParams(
            checkout_url=settings.payhere_checkout_url,
            merchant_id=self.signer.merchant_id,
            return_url=settings.return_url,
            cancel_url=settings.cancel_url,
            notify_url=settings.notify_url,
            order_id=order_id,
            items=items,
            currency=currency,
            amount=format_amount(amount),
            hash=self.signer.checkout_hash(order_id, amount, currency),
            first_name=customer.first_name,
            last_name=customer.last_name,
            email=customer.email,
            phone=customer.phone,
            address=customer.address or "",
            city=customer.city or "",
            country=customer.country,
            custom_1=custom_1,
            custom_2=custom_2,
        )

    # Initiation

    @BaseService.measure_operation("initiate_payment")
    def initiate_payment(
        self, principal: UserPrincipal, request: PaymentInitiateRequest
    ) -> PaymentInitiateResponse:
        """
        Create a PENDING booking payment for a slot.

        Raises:
            ForbiddenException: Caller cannot pay for the patient
            SlotUnavailableException: Slot is booked, blocked or not offered
            ValidationException: Free slot, or amount differs from the slot cost
        """
        patient = self.access.resolve_patient(principal, request.patient_id)
        match, slot = self.availability.require_available_slot(
            request.therapist_id, request.date, request.time_slot
        )
        if match.candidate.is_free:
            raise ValidationException(
                "Free slots are requested directly, without payment",
                code="FREE_SLOT",
            )
        amount = to_money(request.amount)
        if amount != match.cost:
            raise ValidationException(
                "Amount does not match the session fee",
                details={"expected": str(match.cost), "received": str(amount)},
            )

        intent = PendingBooking(
            therapist_id=request.therapist_id,
            date=request.date,
            time_slot=match.start_time,
            session_type=request.session_type,
            availability_slot_id=slot.id,
            duration_minutes=match.candidate.duration_minutes,
        )
        order_id = generate_order_id(ORDER_PREFIX_BOOKING)
        customer = request.customer

        with self.transaction():
            payment = self.payment_repository.create(
                order_id=order_id,
                amount=amount,
                currency=settings.currency,
                status=PaymentStatus.PENDING.value,
                purpose=PaymentPurpose.BOOKING.value,
                patient_id=patient.id,
                payer_user_id=principal.user_id,
                booking_intent=intent.model_dump(mode="json"),
                payment_metadata={"customer": customer.model_dump(mode="json")},
            )
            self.payment_repository.add_event(
                payment, "initiated", {"amount": format_amount(amount), "slot_id": slot.id}
            )

        self.log_operation("initiate_payment", order_id=order_id, patient_id=patient.id)
        return PaymentInitiateResponse(
            payment_id=payment.id,
            order_id=order_id,
            purpose=PaymentPurpose.BOOKING,
            gateway=self._gateway_params(
                order_id,
                amount,
                f"{request.session_type} therapy session {request.date.isoformat()} {match.start_time}",
                customer,
                custom_1=patient.id,
                custom_2=slot.id,
            ),
        )

    @BaseService.measure_operation("initiate_reschedule_fee_payment")
    def initiate_reschedule_fee_payment(
        self, principal: UserPrincipal, session_id: str, customer: CustomerInfo
    ) -> PaymentInitiateResponse:
        """Create a PENDING payment for the current reschedule fee of a session."""
        session = self.session_repository.get_by_id(session_id)
        if session is None:
            raise NotFoundException("Session not found")
        patient = self.user_repository.get_patient(session.patient_id)
        if patient is None or not self.access.can_act_for_patient(principal, patient):
            raise ForbiddenException("You do not have access to this session")
        if session.status not in ACTIVE_SESSION_STATUSES:
            raise ValidationException(
                "This session can no longer be rescheduled", details={"status": session.status}
            )

        quote = reschedule_fee_quote(
            session.scheduled_at,
            self.clock(),
            settings.reschedule_fee,
            settings.free_reschedule_days,
        )
        if not quote.requires_payment:
            raise ValidationException(
                "No reschedule fee is due for this session",
                details={"days_until_session": quote.days_until_session},
            )

        order_id = generate_order_id(ORDER_PREFIX_RESCHEDULE)
        with self.transaction():
            payment = self.payment_repository.create(
                order_id=order_id,
                amount=quote.fee,
                currency=settings.currency,
                status=PaymentStatus.PENDING.value,
                purpose=PaymentPurpose.RESCHEDULE_FEE.value,
                patient_id=session.patient_id,
                payer_user_id=principal.user_id,
                session_id=session.id,
                payment_metadata={"customer": customer.model_dump(mode="json")},
            )
            self.payment_repository.add_event(
                payment, "initiated", {"amount": format_amount(quote.fee), "session_id": session.id}
            )

        return PaymentInitiateResponse(
            payment_id=payment.id,
            order_id=order_id,
            purpose=PaymentPurpose.RESCHEDULE_FEE,
            gateway=self._gateway_params(
                order_id, quote.fee, "Session reschedule fee", customer, custom_1=session.id
            ),
        )

    def get_payment_status(self, principal: UserPrincipal, order_id: str) -> Payment:
        payment = self.payment_repository.get_by_order_id(order_id)
        if payment is None:
            raise NotFoundException("Payment not found")
        if payment.payer_user_id != principal.user_id:
            patient = self.user_repository.get_patient(payment.patient_id)
            if patient is None or not self.access.can_act_for_patient(principal, patient):
                raise ForbiddenException("You do not own this payment")
        return payment

    # Gateway notification

    @staticmethod
    def _next_status(current: str, incoming: str, status_code: int) -> str:
        """A completed payment only ever leaves COMPLETED through a chargeback."""
        if current == PaymentStatus.COMPLETED.value and status_code != CHARGEBACK_STATUS_CODE:
            return current
        return incoming

    @BaseService.measure_operation("handle_gateway_callback")
    def handle_gateway_callback(self, callback: PayHereCallback) -> CallbackAck:
        """
        Verify and apply a PayHere notification.

        Raises:
            InvalidSignatureException: Wrong merchant or signature mismatch
            ValidationException: Unknown status code or amount mismatch
            NotFoundException: Unknown order
        """
        if not self.signer.verify_notification(
            merchant_id=callback.merchant_id,
            order_id=callback.order_id,
            amount=callback.payhere_amount,
            currency=callback.payhere_currency,
            status_code=callback.status_code,
            md5sig=callback.md5sig,
        ):
            prometheus_metrics.record_gateway_callback("invalid_signature")
            raise InvalidSignatureException()

        try:
            incoming = map_status_code(callback.status_code)
        except PayHereError as exc:
            prometheus_metrics.record_gateway_callback("invalid_payload")
            raise ValidationException(str(exc), code="UNKNOWN_STATUS_CODE") from exc
        status_code = int(callback.status_code)

        payment = self.payment_repository.get_by_order_id(callback.order_id)
        if payment is None:
            raise NotFoundException("Payment not found", details={"order_id": callback.order_id})

        if (
            callback.payhere_amount != format_amount(payment.amount)
            or callback.payhere_currency != payment.currency
        ):
            prometheus_metrics.record_gateway_callback("invalid_payload")
            self.logger.error(
                "Gateway amount does not match payment",
                extra={
                    "order_id": payment.order_id,
                    "expected_amount": format_amount(payment.amount),
                    "received_amount": callback.payhere_amount,
                },
            )
            raise ValidationException("Callback amount does not match the payment")

        previous = payment.status
        new_status = self._next_status(previous, incoming.value, status_code)
        gateway_response: Dict[str, Any] = {
            **callback.to_log_dict(),
            "received_at": datetime.now(timezone.utc).isoformat(),
        }

        with self.transaction():
            self.payment_repository.add_event(payment, "callback_received", gateway_response)
            if new_status != previous:
                payment.status = new_status
                self.payment_repository.add_event(
                    payment, "status_changed", {"from": previous, "to": new_status}
                )
            elif incoming.value != previous:
                self.logger.warning(
                    "Ignoring status downgrade of completed payment",
                    extra={"order_id": payment.order_id, "incoming_status": incoming.value},
                )
            if callback.payment_id:
                payment.gateway_payment_id = callback.payment_id
            payment.payment_method = map_payment_method(callback.method)
            payment.status_code = status_code
            payment.status_message = callback.status_message
            responses = list((payment.payment_metadata or {}).get("gateway_responses", []))
            responses.append(gateway_response)
            self.payment_repository.merge_metadata(payment, {"gateway_responses": responses})

            if new_status == PaymentStatus.COMPLETED.value and previous != new_status:
                self._notify_completed(payment)

        prometheus_metrics.record_gateway_callback("accepted")
        self.log_operation(
            "handle_gateway_callback",
            order_id=payment.order_id,
            previous_status=previous,
            new_status=new_status,
        )

        session_id = payment.session_id
        if (
            new_status == PaymentStatus.COMPLETED.value
            and payment.purpose == PaymentPurpose.BOOKING.value
            and settings.materialize_on_notify
        ):
            session_id = self._materialize_from_callback(payment)

        return CallbackAck(
            order_id=payment.order_id,
            payment_status=PaymentStatus(new_status),
            session_id=session_id,
        )

    def _materialize_from_callback(self, payment: Payment) -> Optional[str]:
        """
        Materialize inside the callback. A conflict is recorded for manual
        reconciliation; the gateway still gets its acknowledgement.
        """
        try:
            return self.booking_service.materialize(payment).id
        except (ConflictException, ValidationException) as exc:
            self.logger.error(
                "Could not materialize booking for completed payment",
                extra={"order_id": payment.order_id, "error_code": exc.code},
            )
            self._record_materialization_failure(payment, exc)
            return None

    def _record_materialization_failure(self, payment: Payment, exc: DomainException) -> None:
        with self.transaction():
            self.payment_repository.add_event(
                payment,
                "materialization_failed",
                {"code": exc.code, "message": exc.message, "details": exc.details},
            )
            self.notifications.notify_admins(
                "Booking needs reconciliation",
                f"Payment {payment.order_id} completed but its session could not be "
                f"created ({exc.code}). Rebook or refund manually.",
                type=NotificationType.PAYMENT,
                is_urgent=True,
            )

    def _notify_completed(self, payment: Payment) -> None:
        amount = format_amount(payment.amount)
        if payment.payer_user_id:
            self.notifications.emit(
                payment.payer_user_id,
                "Payment received",
                f"We received your payment of {payment.currency} {amount} ({payment.order_id}).",
                type=NotificationType.PAYMENT,
            )
        self.notifications.notify_admins(
            "Payment completed",
            f"Order {payment.order_id} was paid: {payment.currency} {amount}.",
            type=NotificationType.PAYMENT,
        )
