# backend/therapy_booking/schemas/session.py
"""Therapy session request and response schemas."""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import ConfigDict, Field

from ..core.enums import RefundStatus, RefundTier, RoleName
from ..models.session import SessionStatus
from ._strict_base import StrictModel, StrictRequestModel, TimeOfDay


class SessionRequestCreate(StrictRequestModel):
    """Request a free slot without going through payment."""

    patient_id: Optional[str] = None
    therapist_id: str
    date: date
    time_slot: TimeOfDay
    session_type: str = Field("Individual", max_length=50)


class RespondToRequest(StrictRequestModel):
    approve: bool
    note: Optional[str] = Field(None, max_length=500)


class BankDetails(StrictRequestModel):
    bank_account_name: str = Field(..., max_length=255)
    bank_name: str = Field(..., max_length=255)
    account_number: str = Field(..., max_length=34)
    branch_code: Optional[str] = Field(None, max_length=20)
    swift_code: Optional[str] = Field(None, max_length=11)


class CancelSessionRequest(StrictRequestModel):
    reason: Optional[str] = Field(None, max_length=1000)
    bank_details: Optional[BankDetails] = None


class RescheduleSessionRequest(StrictRequestModel):
    new_date: date
    new_time: TimeOfDay
    reason: Optional[str] = Field(None, max_length=1000)
    fee_order_id: Optional[str] = None


class CompleteRefundRequest(StrictRequestModel):
    note: Optional[str] = Field(None, max_length=1000)


class SessionResponse(StrictModel):
    model_config = ConfigDict(from_attributes=True, extra="forbid")

    id: str
    patient_id: str
    therapist_id: str
    scheduled_at: datetime
    duration: int
    status: SessionStatus
    session_type: str
    booked_rate: Decimal
    availability_slot_id: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None


class RefundQuoteResponse(StrictModel):
    session_id: str
    tier: RefundTier
    hours_before_session: float
    original_amount: Decimal
    refund_amount: Decimal
    platform_fee: Decimal
    therapist_share: Decimal
    cancellation_fee: Decimal
    refund_percentage: int


class RescheduleFeeResponse(StrictModel):
    session_id: str
    days_until_session: int
    fee: Decimal
    requires_payment: bool
    currency: str


class CancelRefundResponse(StrictModel):
    model_config = ConfigDict(from_attributes=True, extra="forbid")

    id: str
    session_id: str
    refund_amount: Decimal
    tier: RefundTier
    refund_status: RefundStatus
    processed_at: Optional[datetime] = None
    admin_notes: Optional[str] = None


class CancellationResponse(StrictModel):
    session: SessionResponse
    refund: Optional[RefundQuoteResponse] = None
    cancel_refund: Optional[CancelRefundResponse] = None
    slot_released: bool


class RescheduleResponse(StrictModel):
    session: SessionResponse
    previous_scheduled_at: datetime
    fee_amount: Decimal
    fee_order_id: Optional[str] = None


class RescheduleHistoryEntry(StrictModel):
    model_config = ConfigDict(from_attributes=True, extra="forbid")

    id: str
    previous_scheduled_at: datetime
    new_scheduled_at: datetime
    rescheduled_by: str
    rescheduled_by_role: RoleName
    reason: Optional[str] = None
    fee_amount: Decimal
    fee_payment_id: Optional[str] = None
    created_at: Optional[datetime] = None
