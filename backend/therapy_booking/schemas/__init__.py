# backend/therapy_booking/schemas/__init__.py
"""Pydantic schemas for the booking engine."""

from .availability import (
    AvailabilityRuleInput,
    AvailabilityRuleResponse,
    AvailableSlotsResponse,
    BulkSlotsRequest,
    BulkSlotsResponse,
    ReplaceAvailabilityRequest,
    ResolvedSlot,
    SlotResponse,
)
from .payment import (
    CallbackAck,
    CompleteBookingRequest,
    CustomerInfo,
    GatewayParams,
    PayHereCallback,
    PaymentInitiateRequest,
    PaymentInitiateResponse,
    PaymentStatusResponse,
    PendingBooking,
    RescheduleFeePaymentRequest,
)
from .session import (
    BankDetails,
    CancellationResponse,
    CancelRefundResponse,
    CancelSessionRequest,
    CompleteRefundRequest,
    RefundQuoteResponse,
    RescheduleFeeResponse,
    RescheduleResponse,
    RescheduleSessionRequest,
    RespondToRequest,
    SessionRequestCreate,
    SessionResponse,
)
