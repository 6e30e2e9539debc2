# backend/tests/unit/services/test_cancellation_service.py
"""
Tests for cancellation refunds, reschedule fees and refund settlement.

Sessions are created through the full paid flow so refunds are computed
from real payment rows.
"""

from datetime import date, datetime
from decimal import Decimal

import pytest

from therapy_booking.core.config import settings
from therapy_booking.core.enums import PaymentPurpose, PaymentStatus, RefundStatus, RefundTier
from therapy_booking.core.exceptions import (
    ForbiddenException,
    InvalidStateException,
    NotFoundException,
    PaymentRequiredException,
    ValidationException,
)
from therapy_booking.models import (
    AvailabilitySlot,
    CancelRefund,
    Notification,
    PaymentEvent,
    SessionReschedule,
    TherapySession,
)
from therapy_booking.models.session import SessionStatus
from therapy_booking.schemas.payment import PayHereCallback
from therapy_booking.schemas.session import BankDetails, RescheduleSessionRequest

from tests.factories.booking_data import SESSION_RATE, TUESDAY

BANK_DETAILS = BankDetails(
    bank_account_name="Dilini Fernando",
    bank_name="Commercial Bank",
    account_number="8001234567",
    branch_code="001",
)


@pytest.fixture
def patient_session_id(book_paid_session, patient_principal, therapist, tuesday_rule):
    return book_paid_session(patient_principal, therapist.id)


@pytest.fixture
def child_session_id(book_paid_session, guardian_principal, therapist, child_patient, tuesday_rule):
    return book_paid_session(guardian_principal, therapist.id, patient_id=child_patient.id)


def _slot(db, session_id):
    session = db.get(TherapySession, session_id)
    return db.get(AvailabilitySlot, session.availability_slot_id)


class TestRefundQuote:
    def test_patient_quote_uses_paid_amount(
        self, cancellation_service, patient_principal, patient_session_id
    ):
        quote = cancellation_service.calculate_refund(patient_principal, patient_session_id)
        assert quote.tier == RefundTier.PARTIAL_REFUND_90
        assert quote.original_amount == SESSION_RATE
        assert quote.refund_amount == Decimal("1350.00")

    def test_late_quote(self, cancellation_service, clock, patient_principal, patient_session_id):
        clock.set(datetime(2026, 3, 3, 0, 0))
        quote = cancellation_service.calculate_refund(patient_principal, patient_session_id)
        assert quote.tier == RefundTier.PARTIAL_REFUND_60
        assert quote.therapist_share == Decimal("450.00")

    def test_stranger_cannot_quote(self, cancellation_service, guardian_principal, patient_session_id):
        with pytest.raises(ForbiddenException):
            cancellation_service.calculate_refund(guardian_principal, patient_session_id)


class TestPatientCancellation:
    def test_cancel_with_full_notice(
        self, db, cancellation_service, patient_principal, therapist, patient_session_id
    ):
        result = cancellation_service.cancel_session(
            patient_principal, patient_session_id, reason="Travelling"
        )

        assert result.session.status == SessionStatus.CANCELLED.value
        assert result.session.cancellation_reason == "Travelling"
        assert result.slot_released is True
        assert result.refund.tier == RefundTier.PARTIAL_REFUND_90
        assert result.cancel_refund is None
        assert _slot(db, patient_session_id).is_booked is False

        payment = cancellation_service.payment_repository.find_one_by(session_id=patient_session_id)
        assert payment.payment_metadata["refund"]["refund_amount"] == "1350.00"
        assert payment.payment_metadata["refund"]["cancelled_by"] == patient_principal.user_id
        assert (
            db.query(PaymentEvent)
            .filter_by(payment_id=payment.id, event_type="refund_recorded")
            .count()
            == 1
        )
        assert (
            db.query(Notification)
            .filter(Notification.receiver_id == therapist.user_id, Notification.title == "Session cancelled")
            .count()
            == 1
        )

    def test_cancelling_twice_has_no_side_effects(
        self, db, cancellation_service, patient_principal, patient_session_id
    ):
        cancellation_service.cancel_session(patient_principal, patient_session_id)
        notifications = db.query(Notification).count()
        events = db.query(PaymentEvent).count()

        with pytest.raises(InvalidStateException):
            cancellation_service.cancel_session(patient_principal, patient_session_id)

        assert db.query(Notification).count() == notifications
        assert db.query(PaymentEvent).count() == events

    def test_released_slot_can_be_booked_again(
        self, cancellation_service, book_paid_session, patient_principal, therapist, patient_session_id
    ):
        cancellation_service.cancel_session(patient_principal, patient_session_id)
        assert book_paid_session(patient_principal, therapist.id) != patient_session_id

    def test_slot_released_by_time_when_link_is_missing(
        self, db, cancellation_service, patient_principal, patient_session_id
    ):
        session = db.get(TherapySession, patient_session_id)
        slot = db.get(AvailabilitySlot, session.availability_slot_id)
        slot.start_time = "9:00 AM"
        session.availability_slot_id = None
        db.commit()

        result = cancellation_service.cancel_session(patient_principal, patient_session_id)
        assert result.slot_released is True
        assert result.session.status == SessionStatus.CANCELLED.value
        assert db.get(AvailabilitySlot, slot.id).is_booked is False

    def test_therapist_cancellation_notifies_patient(
        self, db, cancellation_service, therapist_principal, patient, patient_session_id
    ):
        result = cancellation_service.cancel_session(therapist_principal, patient_session_id)
        assert result.refund is None
        assert (
            db.query(Notification)
            .filter(Notification.receiver_id == patient.user_id, Notification.title == "Session cancelled")
            .count()
            == 1
        )


class TestGuardianCancellation:
    def test_bank_details_required(self, db, cancellation_service, guardian_principal, child_session_id):
        with pytest.raises(ValidationException):
            cancellation_service.cancel_session(guardian_principal, child_session_id)
        assert db.get(TherapySession, child_session_id).status == SessionStatus.SCHEDULED.value

    def test_refund_recorded_and_settled(
        self, db, cancellation_service, guardian_principal, admin_principal, admin_user, child_session_id
    ):
        result = cancellation_service.cancel_session(
            guardian_principal, child_session_id, bank_details=BANK_DETAILS
        )

        refund = result.cancel_refund
        assert refund.refund_amount == Decimal("1350.00")
        assert refund.platform_fee == Decimal("150.00")
        assert refund.tier == RefundTier.PARTIAL_REFUND_90.value
        assert refund.refund_status == RefundStatus.PENDING.value
        assert refund.account_number == "8001234567"
        assert (
            db.query(Notification)
            .filter(Notification.receiver_id == admin_user.id, Notification.title == "Refund pending")
            .count()
            == 1
        )

        settled = cancellation_service.complete_refund(admin_principal, refund.id, note="Transferred")
        assert settled.refund_status == RefundStatus.COMPLETED.value
        assert settled.processed_at is not None
        assert settled.admin_notes == "Transferred"
        assert (
            db.query(Notification)
            .filter(
                Notification.receiver_id == guardian_principal.user_id,
                Notification.title == "Refund processed",
            )
            .count()
            == 1
        )

        with pytest.raises(InvalidStateException):
            cancellation_service.complete_refund(admin_principal, refund.id)

    def test_past_session_records_no_refund_row(
        self, db, cancellation_service, clock, guardian_principal, child_session_id
    ):
        clock.set(datetime(2026, 3, 3, 10, 0))
        result = cancellation_service.cancel_session(guardian_principal, child_session_id)
        assert result.refund.tier == RefundTier.NO_REFUND
        assert result.cancel_refund is None
        assert db.query(CancelRefund).count() == 0

    def test_only_admin_settles(self, cancellation_service, guardian_principal, child_session_id):
        result = cancellation_service.cancel_session(
            guardian_principal, child_session_id, bank_details=BANK_DETAILS
        )
        with pytest.raises(ForbiddenException):
            cancellation_service.complete_refund(guardian_principal, result.cancel_refund.id)

    def test_admin_lists_pending_refunds(
        self, cancellation_service, guardian_principal, admin_principal, child_session_id
    ):
        assert cancellation_service.list_refunds(admin_principal) == []
        result = cancellation_service.cancel_session(
            guardian_principal, child_session_id, bank_details=BANK_DETAILS
        )

        pending = cancellation_service.list_refunds(admin_principal)
        assert [r.id for r in pending] == [result.cancel_refund.id]

        cancellation_service.complete_refund(admin_principal, result.cancel_refund.id)
        assert cancellation_service.list_refunds(admin_principal) == []
        completed = cancellation_service.list_refunds(admin_principal, RefundStatus.COMPLETED)
        assert [r.id for r in completed] == [result.cancel_refund.id]

    def test_only_admin_lists_refunds(self, cancellation_service, guardian_principal):
        with pytest.raises(ForbiddenException):
            cancellation_service.list_refunds(guardian_principal)

    def test_unknown_refund(self, cancellation_service, admin_principal):
        with pytest.raises(NotFoundException):
            cancellation_service.complete_refund(admin_principal, "missing")


class TestReschedule:
    def _request(self, time_slot="10:00", fee_order_id=None, day=TUESDAY):
        return RescheduleSessionRequest(new_date=day, new_time=time_slot, fee_order_id=fee_order_id)

    def _pay_fee(self, payment_service, patient_principal, customer, notification_fields, session_id):
        response = payment_service.initiate_reschedule_fee_payment(
            patient_principal, session_id, customer
        )
        ack = payment_service.handle_gateway_callback(
            PayHereCallback(**notification_fields(response.order_id, Decimal("30.00")))
        )
        assert ack.payment_status == PaymentStatus.COMPLETED
        assert ack.session_id == session_id
        return response.order_id

    def test_fee_required_inside_window(
        self, cancellation_service, patient_principal, patient_session_id
    ):
        quote = cancellation_service.get_reschedule_fee(patient_principal, patient_session_id)
        assert quote.requires_payment
        assert quote.fee == Decimal("30.00")

        with pytest.raises(PaymentRequiredException) as exc_info:
            cancellation_service.reschedule_session(
                patient_principal, patient_session_id, self._request()
            )
        assert exc_info.value.status_code == 402
        assert exc_info.value.details["fee"] == "30.00"

    def test_paid_fee_unlocks_reschedule_once(
        self,
        db,
        cancellation_service,
        payment_service,
        patient_principal,
        customer,
        notification_fields,
        patient_session_id,
    ):
        old_slot = _slot(db, patient_session_id)
        order_id = self._pay_fee(
            payment_service, patient_principal, customer, notification_fields, patient_session_id
        )
        fee_payment = payment_service.payment_repository.get_by_order_id(order_id)
        assert fee_payment.purpose == PaymentPurpose.RESCHEDULE_FEE.value

        result = cancellation_service.reschedule_session(
            patient_principal, patient_session_id, self._request(fee_order_id=order_id)
        )

        assert result.session.status == SessionStatus.RESCHEDULED.value
        assert result.session.scheduled_at == datetime(2026, 3, 3, 10, 0)
        assert result.previous_scheduled_at == datetime(2026, 3, 3, 9, 0)
        assert result.fee_amount == Decimal("30.00")
        assert result.fee_order_id == order_id
        assert db.get(AvailabilitySlot, old_slot.id).is_booked is False
        assert _slot(db, patient_session_id).is_booked is True
        history = db.query(SessionReschedule).filter_by(session_id=patient_session_id).one()
        assert history.fee_payment_id == fee_payment.id

        with pytest.raises(ValidationException):
            cancellation_service.reschedule_session(
                patient_principal, patient_session_id, self._request("11:00", fee_order_id=order_id)
            )

    def test_fee_for_other_purpose_is_rejected(
        self, cancellation_service, payment_service, patient_principal, patient_session_id
    ):
        booking_payment = payment_service.payment_repository.find_one_by(session_id=patient_session_id)
        with pytest.raises(ValidationException):
            cancellation_service.reschedule_session(
                patient_principal,
                patient_session_id,
                self._request(fee_order_id=booking_payment.order_id),
            )

    def test_fee_of_wrong_amount_is_rejected(
        self,
        db,
        cancellation_service,
        payment_service,
        patient_principal,
        customer,
        notification_fields,
        patient_session_id,
        monkeypatch,
    ):
        order_id = self._pay_fee(
            payment_service, patient_principal, customer, notification_fields, patient_session_id
        )
        monkeypatch.setattr(settings, "reschedule_fee", Decimal("50.00"))

        with pytest.raises(ValidationException) as exc_info:
            cancellation_service.reschedule_session(
                patient_principal, patient_session_id, self._request(fee_order_id=order_id)
            )
        assert exc_info.value.details == {"expected": "50.00", "paid": "30.00"}
        assert db.get(TherapySession, patient_session_id).status == SessionStatus.SCHEDULED.value
        assert db.query(SessionReschedule).count() == 0

    def test_history_lists_moves_in_order(
        self, cancellation_service, therapist_principal, patient_principal, patient_session_id
    ):
        assert cancellation_service.get_reschedule_history(patient_principal, patient_session_id) == []

        cancellation_service.reschedule_session(
            therapist_principal, patient_session_id, self._request("10:00")
        )
        cancellation_service.reschedule_session(
            therapist_principal, patient_session_id, self._request("11:00", day=date(2026, 3, 10))
        )

        history = cancellation_service.get_reschedule_history(patient_principal, patient_session_id)
        assert [(h.previous_scheduled_at, h.new_scheduled_at) for h in history] == [
            (datetime(2026, 3, 3, 9, 0), datetime(2026, 3, 3, 10, 0)),
            (datetime(2026, 3, 3, 10, 0), datetime(2026, 3, 10, 11, 0)),
        ]
        assert {h.rescheduled_by_role for h in history} == {"THERAPIST"}

    def test_history_needs_session_access(
        self, cancellation_service, guardian_principal, patient_session_id
    ):
        with pytest.raises(ForbiddenException):
            cancellation_service.get_reschedule_history(guardian_principal, patient_session_id)

    def test_no_fee_outside_window(
        self, cancellation_service, book_paid_session, patient_principal, therapist, tuesday_rule
    ):
        later_tuesday = date(2026, 3, 10)
        session_id = book_paid_session(patient_principal, therapist.id, day=later_tuesday)

        result = cancellation_service.reschedule_session(
            patient_principal, session_id, self._request("11:00", day=later_tuesday)
        )
        assert result.fee_amount == Decimal("0.00")
        assert result.fee_order_id is None

    def test_therapist_reschedule_is_free_and_acknowledged_by_patient(
        self,
        cancellation_service,
        booking_service,
        therapist_principal,
        patient_principal,
        patient_session_id,
    ):
        quote = cancellation_service.get_reschedule_fee(therapist_principal, patient_session_id)
        assert not quote.requires_payment

        result = cancellation_service.reschedule_session(
            therapist_principal, patient_session_id, self._request("11:00")
        )
        assert result.fee_amount == Decimal("0.00")

        with pytest.raises(ForbiddenException):
            booking_service.acknowledge_reschedule(therapist_principal, patient_session_id)

        session = booking_service.acknowledge_reschedule(patient_principal, patient_session_id)
        assert session.status == SessionStatus.SCHEDULED.value

    def test_new_time_must_be_in_future(
        self, cancellation_service, therapist_principal, patient_session_id
    ):
        with pytest.raises(ValidationException):
            cancellation_service.reschedule_session(
                therapist_principal, patient_session_id, self._request(day=date(2026, 3, 1))
            )

    def test_cancelled_session_cannot_move(
        self, cancellation_service, therapist_principal, patient_session_id
    ):
        cancellation_service.cancel_session(therapist_principal, patient_session_id)
        with pytest.raises(InvalidStateException):
            cancellation_service.reschedule_session(
                therapist_principal, patient_session_id, self._request()
            )
