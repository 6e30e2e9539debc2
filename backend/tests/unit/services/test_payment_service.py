# backend/tests/unit/services/test_payment_service.py
"""
Tests for payment initiation and the PayHere notification flow.

The gateway side is driven through correctly (or deliberately incorrectly)
signed notification fields; nothing leaves the process.
"""

from decimal import Decimal

import pytest

from therapy_booking.core.enums import PaymentPurpose, PaymentStatus
from therapy_booking.core.exceptions import (
    ForbiddenException,
    InvalidSignatureException,
    NotFoundException,
    SlotUnavailableException,
    ValidationException,
)
from therapy_booking.models import AvailabilitySlot, Notification, PaymentEvent, TherapySession
from therapy_booking.models.session import SessionStatus
from therapy_booking.schemas.payment import PayHereCallback, PaymentInitiateRequest

from tests.factories.booking_data import SESSION_RATE, TUESDAY


def _events(db, payment_id):
    return [
        e.event_type
        for e in db.query(PaymentEvent)
        .filter(PaymentEvent.payment_id == payment_id)
        .order_by(PaymentEvent.created_at, PaymentEvent.id)
    ]


@pytest.fixture
def initiate(payment_service, patient_principal, therapist, customer, tuesday_rule):
    def run(time_slot="09:00", amount=SESSION_RATE, principal=None, patient_id=None):
        return payment_service.initiate_payment(
            principal or patient_principal,
            PaymentInitiateRequest(
                patient_id=patient_id,
                therapist_id=therapist.id,
                date=TUESDAY,
                time_slot=time_slot,
                amount=amount,
                customer=customer,
            ),
        )

    return run


class TestInitiatePayment:
    def test_creates_pending_booking_payment(self, db, payment_service, initiate, patient, signer):
        response = initiate()

        payment = payment_service.payment_repository.get_by_order_id(response.order_id)
        assert payment.status == PaymentStatus.PENDING.value
        assert payment.purpose == PaymentPurpose.BOOKING.value
        assert payment.patient_id == patient.id
        assert payment.amount == SESSION_RATE
        assert payment.booking_intent["time_slot"] == "09:00"
        assert payment.booking_intent["date"] == "2026-03-03"
        assert payment.payment_metadata["customer"]["email"] == "kasun@example.com"
        assert _events(db, payment.id) == ["initiated"]

        gateway = response.gateway
        assert response.order_id.startswith("ORDER_")
        assert gateway.amount == "1500.00"
        assert gateway.currency == "LKR"
        assert gateway.hash == signer.checkout_hash(response.order_id, SESSION_RATE, "LKR")
        assert gateway.notify_url.endswith("/api/v1/payments/notify")

    def test_initiation_does_not_book_the_slot(self, db, initiate):
        initiate()
        slot = db.query(AvailabilitySlot).one()
        assert slot.is_booked is False
        assert db.query(TherapySession).count() == 0

    def test_amount_must_match_rate(self, initiate):
        with pytest.raises(ValidationException) as exc_info:
            initiate(amount=Decimal("1000.00"))
        assert exc_info.value.details == {"expected": "1500.00", "received": "1000.00"}

    def test_unoffered_time_is_unavailable(self, initiate):
        with pytest.raises(SlotUnavailableException):
            initiate(time_slot="09:30")

    def test_free_slot_goes_through_requests(self, initiate, free_tuesday_rule):
        with pytest.raises(ValidationException) as exc_info:
            initiate(time_slot="14:00", amount=Decimal("0.00"))
        assert exc_info.value.code == "FREE_SLOT"

    def test_therapist_cannot_pay(self, initiate, therapist_principal):
        with pytest.raises(ForbiddenException):
            initiate(principal=therapist_principal)

    def test_guardian_pays_for_child(self, initiate, guardian_principal, child_patient, payment_service):
        response = initiate(principal=guardian_principal, patient_id=child_patient.id)
        payment = payment_service.payment_repository.get_by_order_id(response.order_id)
        assert payment.patient_id == child_patient.id
        assert payment.payer_user_id == guardian_principal.user_id

    def test_guardian_needs_guardianship(self, initiate, guardian_principal, patient):
        with pytest.raises(ForbiddenException):
            initiate(principal=guardian_principal, patient_id=patient.id)


class TestGatewayCallback:
    def test_completed_notification_materializes_session(
        self, db, payment_service, initiate, notification_fields, patient
    ):
        response = initiate()
        ack = payment_service.handle_gateway_callback(
            PayHereCallback(**notification_fields(response.order_id, SESSION_RATE))
        )

        assert ack.payment_status == PaymentStatus.COMPLETED
        assert ack.session_id is not None
        session = db.get(TherapySession, ack.session_id)
        assert session.status == SessionStatus.SCHEDULED.value
        assert session.patient_id == patient.id
        assert session.booked_rate == SESSION_RATE
        assert db.query(AvailabilitySlot).one().is_booked is True

        payment = payment_service.payment_repository.get_by_order_id(response.order_id)
        assert payment.session_id == session.id
        assert payment.payment_method == "VISA"
        assert payment.gateway_payment_id == "320025071234"
        assert len(payment.payment_metadata["gateway_responses"]) == 1
        assert _events(db, payment.id) == [
            "initiated",
            "callback_received",
            "status_changed",
            "session_linked",
        ]

    def test_duplicate_notification_is_idempotent(
        self, db, payment_service, initiate, notification_fields
    ):
        response = initiate()
        fields = notification_fields(response.order_id, SESSION_RATE)
        first = payment_service.handle_gateway_callback(PayHereCallback(**fields))
        second = payment_service.handle_gateway_callback(PayHereCallback(**fields))

        assert second.session_id == first.session_id
        assert db.query(TherapySession).count() == 1
        payment = payment_service.payment_repository.get_by_order_id(response.order_id)
        assert _events(db, payment.id).count("status_changed") == 1

    def test_invalid_signature_changes_nothing(
        self, db, payment_service, initiate, notification_fields
    ):
        response = initiate()
        fields = notification_fields(response.order_id, SESSION_RATE)
        fields["md5sig"] = "0" * 32

        with pytest.raises(InvalidSignatureException):
            payment_service.handle_gateway_callback(PayHereCallback(**fields))

        payment = payment_service.payment_repository.get_by_order_id(response.order_id)
        assert payment.status == PaymentStatus.PENDING.value
        assert _events(db, payment.id) == ["initiated"]

    def test_completed_is_not_downgraded(self, payment_service, initiate, notification_fields):
        response = initiate()
        payment_service.handle_gateway_callback(
            PayHereCallback(**notification_fields(response.order_id, SESSION_RATE))
        )
        ack = payment_service.handle_gateway_callback(
            PayHereCallback(**notification_fields(response.order_id, SESSION_RATE, status_code="-2"))
        )

        assert ack.payment_status == PaymentStatus.COMPLETED
        payment = payment_service.payment_repository.get_by_order_id(response.order_id)
        assert payment.status == PaymentStatus.COMPLETED.value
        assert payment.status_code == -2

    def test_chargeback_fails_completed_payment(self, payment_service, initiate, notification_fields):
        response = initiate()
        payment_service.handle_gateway_callback(
            PayHereCallback(**notification_fields(response.order_id, SESSION_RATE))
        )
        ack = payment_service.handle_gateway_callback(
            PayHereCallback(**notification_fields(response.order_id, SESSION_RATE, status_code="-3"))
        )
        assert ack.payment_status == PaymentStatus.FAILED

    def test_failed_payment_creates_no_session(self, db, payment_service, initiate, notification_fields):
        response = initiate()
        ack = payment_service.handle_gateway_callback(
            PayHereCallback(**notification_fields(response.order_id, SESSION_RATE, status_code="-2"))
        )
        assert ack.payment_status == PaymentStatus.FAILED
        assert ack.session_id is None
        assert db.query(TherapySession).count() == 0

    def test_unknown_status_code(self, payment_service, initiate, notification_fields):
        response = initiate()
        with pytest.raises(ValidationException) as exc_info:
            payment_service.handle_gateway_callback(
                PayHereCallback(**notification_fields(response.order_id, SESSION_RATE, status_code="5"))
            )
        assert exc_info.value.code == "UNKNOWN_STATUS_CODE"

    def test_amount_mismatch_is_rejected(self, payment_service, initiate, notification_fields):
        response = initiate()
        with pytest.raises(ValidationException):
            payment_service.handle_gateway_callback(
                PayHereCallback(**notification_fields(response.order_id, "1.00"))
            )
        payment = payment_service.payment_repository.get_by_order_id(response.order_id)
        assert payment.status == PaymentStatus.PENDING.value

    def test_unknown_order(self, payment_service, notification_fields):
        with pytest.raises(NotFoundException):
            payment_service.handle_gateway_callback(
                PayHereCallback(**notification_fields("ORDER_0_missing", SESSION_RATE))
            )

    def test_second_payment_for_same_slot_needs_reconciliation(
        self, db, payment_service, initiate, notification_fields, admin_user
    ):
        first = initiate()
        second = initiate()

        payment_service.handle_gateway_callback(
            PayHereCallback(**notification_fields(first.order_id, SESSION_RATE))
        )
        ack = payment_service.handle_gateway_callback(
            PayHereCallback(**notification_fields(second.order_id, SESSION_RATE))
        )

        assert ack.payment_status == PaymentStatus.COMPLETED
        assert ack.session_id is None
        assert db.query(TherapySession).count() == 1
        loser = payment_service.payment_repository.get_by_order_id(second.order_id)
        assert loser.session_id is None
        assert "materialization_failed" in _events(db, loser.id)
        assert (
            db.query(Notification)
            .filter(Notification.receiver_id == admin_user.id, Notification.is_urgent.is_(True))
            .count()
            == 1
        )


class TestPaymentStatus:
    def test_owner_reads_status(self, payment_service, initiate, patient_principal):
        response = initiate()
        payment = payment_service.get_payment_status(patient_principal, response.order_id)
        assert payment.order_id == response.order_id

    def test_stranger_is_forbidden(self, payment_service, initiate, guardian_principal):
        response = initiate()
        with pytest.raises(ForbiddenException):
            payment_service.get_payment_status(guardian_principal, response.order_id)
