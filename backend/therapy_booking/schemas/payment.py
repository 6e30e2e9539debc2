# backend/therapy_booking/schemas/payment.py
"""
Payment schemas for the PayHere checkout flow.

PendingBooking is the typed booking intent stored on a BOOKING payment.
It is validated when the payment is initiated and parsed back when the
payment is materialized into a session.
"""

from datetime import date
from decimal import Decimal
from typing import Dict, Optional

from pydantic import ConfigDict, EmailStr, Field

from ..core.enums import PaymentPurpose, PaymentStatus
from ._strict_base import Money, StrictModel, StrictRequestModel, TimeOfDay


class CustomerInfo(StrictRequestModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    phone: str = Field(..., min_length=5, max_length=20)
    address: Optional[str] = Field(None, max_length=255)
    city: Optional[str] = Field(None, max_length=100)
    country: str = "Sri Lanka"


class PendingBooking(StrictModel):
    """Booking details a completed payment turns into a session."""

    therapist_id: str
    date: date
    time_slot: TimeOfDay
    session_type: str = "Individual"
    availability_slot_id: str
    duration_minutes: int = Field(45, gt=0)


class PaymentInitiateRequest(StrictRequestModel):
    patient_id: Optional[str] = Field(
        None, description="Required when a guardian pays for a child"
    )
    therapist_id: str
    date: date
    time_slot: TimeOfDay
    amount: Money
    session_type: str = Field("Individual", max_length=50)
    customer: CustomerInfo


class RescheduleFeePaymentRequest(StrictRequestModel):
    session_id: str
    customer: CustomerInfo


class GatewayParams(StrictModel):
    """Form fields the client posts to the PayHere checkout page."""

    checkout_url: str
    merchant_id: str
    return_url: str
    cancel_url: str
    notify_url: str
    order_id: str
    items: str
    currency: str
    amount: str
    hash: str
    first_name: str
    last_name: str
    email: str
    phone: str
    address: str
    city: str
    country: str
    custom_1: Optional[str] = None
    custom_2: Optional[str] = None


class PaymentInitiateResponse(StrictModel):
    payment_id: str
    order_id: str
    purpose: PaymentPurpose
    gateway: GatewayParams


class PayHereCallback(StrictModel):
    """Form-encoded notification PayHere posts to the notify URL."""

    model_config = ConfigDict(extra="ignore")

    merchant_id: str
    order_id: str
    payhere_amount: str
    payhere_currency: str
    status_code: str
    md5sig: str
    payment_id: Optional[str] = None
    status_message: Optional[str] = None
    method: Optional[str] = None
    custom_1: Optional[str] = None
    custom_2: Optional[str] = None

    def to_log_dict(self) -> Dict[str, Optional[str]]:
        return self.model_dump(exclude={"md5sig"})


class CompleteBookingRequest(StrictRequestModel):
    order_id: str = Field(..., min_length=1)


class PaymentStatusResponse(StrictModel):
    model_config = ConfigDict(from_attributes=True, extra="forbid")

    order_id: str
    status: PaymentStatus
    purpose: PaymentPurpose
    amount: Decimal
    currency: str
    session_id: Optional[str] = None
    payment_method: Optional[str] = None


class CallbackAck(StrictModel):
    status: str = "ok"
    order_id: str
    payment_status: PaymentStatus
    session_id: Optional[str] = None
