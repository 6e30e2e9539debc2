# backend/tests/unit/services/test_refund_policy.py
"""Tests for the cancellation refund tiers and the reschedule fee window."""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from therapy_booking.core.enums import RefundTier
from therapy_booking.core.exceptions import ValidationException
from therapy_booking.services.refund_policy import (
    guardian_cancellation_quote,
    patient_cancellation_quote,
    reschedule_fee_quote,
    validate_bank_details,
)

SESSION_AT = datetime(2026, 3, 3, 9, 0)


def hours_before(hours: float) -> datetime:
    return SESSION_AT - timedelta(hours=hours)


class TestPatientCancellationQuote:
    def test_full_notice_refunds_ninety_percent(self):
        quote = patient_cancellation_quote(SESSION_AT, hours_before(30), Decimal("1000.00"))
        assert quote.tier == RefundTier.PARTIAL_REFUND_90
        assert quote.refund_amount == Decimal("900.00")
        assert quote.platform_fee == Decimal("100.00")
        assert quote.therapist_share == Decimal("0.00")
        assert quote.cancellation_fee == Decimal("100.00")

    def test_exactly_twenty_four_hours_is_full_notice(self):
        quote = patient_cancellation_quote(SESSION_AT, hours_before(24), Decimal("1000.00"))
        assert quote.tier == RefundTier.PARTIAL_REFUND_90

    def test_late_notice_pays_therapist(self):
        quote = patient_cancellation_quote(SESSION_AT, hours_before(10), Decimal("1000.00"))
        assert quote.tier == RefundTier.PARTIAL_REFUND_60
        assert quote.refund_amount == Decimal("600.00")
        assert quote.therapist_share == Decimal("300.00")
        assert quote.platform_fee == Decimal("100.00")
        assert quote.cancellation_fee == Decimal("400.00")

    def test_past_session_refunds_nothing(self):
        quote = patient_cancellation_quote(SESSION_AT, hours_before(-1), Decimal("1000.00"))
        assert quote.tier == RefundTier.NO_REFUND
        assert quote.refund_amount == Decimal("0.00")
        assert quote.platform_fee == Decimal("1000.00")

    def test_amounts_always_add_up(self):
        for hours in (72, 24, 23.5, 1, 0, -5):
            quote = patient_cancellation_quote(SESSION_AT, hours_before(hours), Decimal("1234.57"))
            assert (
                quote.refund_amount + quote.platform_fee + quote.therapist_share
                == quote.original_amount
            )

    def test_refund_never_grows_closer_to_session(self):
        refunds = [
            patient_cancellation_quote(SESSION_AT, hours_before(h), Decimal("1500.00")).refund_amount
            for h in (96, 48, 24, 23, 5, 0, -1)
        ]
        assert refunds == sorted(refunds, reverse=True)


class TestGuardianCancellationQuote:
    def test_full_notice(self):
        quote = guardian_cancellation_quote(SESSION_AT, hours_before(48), Decimal("1500.00"))
        assert quote.refund_amount == Decimal("1350.00")
        assert quote.platform_fee == Decimal("150.00")

    def test_past_session_pays_therapist(self):
        quote = guardian_cancellation_quote(SESSION_AT, hours_before(-2), Decimal("1000.00"))
        assert quote.tier == RefundTier.NO_REFUND
        assert quote.refund_amount == Decimal("0.00")
        assert quote.therapist_share == Decimal("900.00")
        assert quote.platform_fee == Decimal("100.00")


class TestRescheduleFeeQuote:
    def test_outside_window_is_free(self):
        quote = reschedule_fee_quote(SESSION_AT, SESSION_AT - timedelta(days=6), Decimal("30"), 5)
        assert not quote.requires_payment
        assert quote.fee == Decimal("0.00")

    def test_days_round_up(self):
        # Four days and one hour counts as five days.
        quote = reschedule_fee_quote(
            SESSION_AT, SESSION_AT - timedelta(days=4, hours=1), Decimal("30"), 5
        )
        assert quote.days_until_session == 5
        assert not quote.requires_payment

    def test_inside_window_charges_fee(self):
        quote = reschedule_fee_quote(SESSION_AT, SESSION_AT - timedelta(hours=25), Decimal("30"), 5)
        assert quote.days_until_session == 2
        assert quote.requires_payment
        assert quote.fee == Decimal("30.00")


class TestBankDetails:
    def test_valid_details(self):
        validate_bank_details("D. Fernando", "Commercial Bank", "8001234567", "CCEYLKLX")

    @pytest.mark.parametrize(
        "name,bank,account,swift,field",
        [
            ("", "Commercial Bank", "8001234567", None, "bank_account_name"),
            ("D. Fernando", " ", "8001234567", None, "bank_name"),
            ("D. Fernando", "Commercial Bank", "80-0123", None, "account_number"),
            ("D. Fernando", "Commercial Bank", "8001234567", "BAD", "swift_code"),
        ],
    )
    def test_invalid_details(self, name, bank, account, swift, field):
        with pytest.raises(ValidationException) as exc_info:
            validate_bank_details(name, bank, account, swift)
        assert field in exc_info.value.details
