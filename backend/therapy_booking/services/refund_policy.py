"""
Cancellation and reschedule policy.

Pure functions of (scheduled time, now, amount). Nothing here touches the
database; CancellationService persists what these functions decide.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
import math
import re
from typing import Dict, Optional

from ..core.enums import RefundTier
from ..core.exceptions import ValidationException

CENT = Decimal("0.01")
PLATFORM_FEE_RATE = Decimal("0.10")
FULL_NOTICE_HOURS = 24

_SWIFT_PATTERN = re.compile(r"^[A-Z]{6}[A-Z0-9]{2}([A-Z0-9]{3})?$")
_ACCOUNT_NUMBER_PATTERN = re.compile(r"^\d+$")


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class RefundQuote:
    tier: RefundTier
    hours_before_session: float
    original_amount: Decimal
    refund_amount: Decimal
    platform_fee: Decimal
    therapist_share: Decimal
    cancellation_fee: Decimal
    refund_percentage: int

    def to_payload(self) -> Dict[str, object]:
        return {
            "tier": self.tier.value,
            "hours_before_session": round(self.hours_before_session, 2),
            "original_amount": str(self.original_amount),
            "refund_amount": str(self.refund_amount),
            "platform_fee": str(self.platform_fee),
            "therapist_share": str(self.therapist_share),
            "cancellation_fee": str(self.cancellation_fee),
            "refund_percentage": self.refund_percentage,
        }


@dataclass(frozen=True)
class RescheduleFeeQuote:
    days_until_session: int
    fee: Decimal
    requires_payment: bool


def hours_until(scheduled_at: datetime, now: datetime) -> float:
    return (scheduled_at - now).total_seconds() / 3600


def _tier_for(hours: float) -> RefundTier:
    if hours >= FULL_NOTICE_HOURS:
        return RefundTier.PARTIAL_REFUND_90
    if hours >= 0:
        return RefundTier.PARTIAL_REFUND_60
    return RefundTier.NO_REFUND


# (refund %, therapist %) per tier. The platform keeps the rest.
_PATIENT_SPLITS = {
    RefundTier.PARTIAL_REFUND_90: (90, 0),
    RefundTier.PARTIAL_REFUND_60: (60, 30),
    RefundTier.NO_REFUND: (0, 0),
}

_GUARDIAN_SPLITS = {
    RefundTier.PARTIAL_REFUND_90: (90, 0),
    RefundTier.PARTIAL_REFUND_60: (60, 30),
    RefundTier.NO_REFUND: (0, 90),
}


def _quote(
    splits: Dict[RefundTier, tuple],
    scheduled_at: datetime,
    now: datetime,
    amount,
) -> RefundQuote:
    original = to_money(amount)
    hours = hours_until(scheduled_at, now)
    tier = _tier_for(hours)
    refund_pct, therapist_pct = splits[tier]

    refund = to_money(original * refund_pct / 100)
    therapist = to_money(original * therapist_pct / 100)
    platform = original - refund - therapist
    return RefundQuote(
        tier=tier,
        hours_before_session=hours,
        original_amount=original,
        refund_amount=refund,
        platform_fee=platform,
        therapist_share=therapist,
        cancellation_fee=original - refund,
        refund_percentage=refund_pct,
    )


def patient_cancellation_quote(scheduled_at: datetime, now: datetime, amount) -> RefundQuote:
    """
    Refund owed when a patient cancels a session they paid for.

    >= 24h notice refunds 90%, under 24h refunds 60% and pays the therapist
    30% for the late notice, a past session refunds nothing.
    """
    return _quote(_PATIENT_SPLITS, scheduled_at, now, amount)


def guardian_cancellation_quote(scheduled_at: datetime, now: datetime, amount) -> RefundQuote:
    """Refund owed when a guardian cancels. The platform always keeps 10%."""
    return _quote(_GUARDIAN_SPLITS, scheduled_at, now, amount)


def reschedule_fee_quote(
    scheduled_at: datetime,
    now: datetime,
    fee,
    free_days: int,
) -> RescheduleFeeQuote:
    """
    Fee for moving a session.

    Days are counted by rounding the remaining time up to whole days, so a
    session 4 days and 1 hour away counts as 5 days and is free.
    """
    remaining = scheduled_at - now
    days = math.ceil(remaining / timedelta(days=1))
    if days >= free_days:
        return RescheduleFeeQuote(days_until_session=days, fee=Decimal("0.00"), requires_payment=False)
    return RescheduleFeeQuote(days_until_session=days, fee=to_money(fee), requires_payment=True)


def validate_bank_details(
    bank_account_name: Optional[str],
    bank_name: Optional[str],
    account_number: Optional[str],
    swift_code: Optional[str] = None,
) -> None:
    """
    Raises:
        ValidationException: If the payout details are incomplete or malformed
    """
    errors: Dict[str, str] = {}
    if not (bank_account_name or "").strip():
        errors["bank_account_name"] = "Account holder name is required"
    if not (bank_name or "").strip():
        errors["bank_name"] = "Bank name is required"
    if not _ACCOUNT_NUMBER_PATTERN.match((account_number or "").strip()):
        errors["account_number"] = "Account number must contain digits only"
    if swift_code and not _SWIFT_PATTERN.match(swift_code.strip().upper()):
        errors["swift_code"] = "Invalid SWIFT code"
    if errors:
        raise ValidationException("Invalid bank details", details=errors)
