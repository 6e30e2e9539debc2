# backend/therapy_booking/routes/payments.py
"""
Payment routes - API v1

Endpoints:
    POST /payments/initiate - Create a booking payment and signed checkout params
    POST /payments/reschedule-fee - Create a reschedule fee payment
    POST /payments/complete-booking - Materialize the session of a paid order
    POST /payments/notify - PayHere server-to-server notification (form encoded)
    GET /payments/return - Browser return after checkout
    GET /payments/cancel - Browser return after an abandoned checkout
    GET /payments/{order_id} - Payment status
"""

import asyncio
import logging
from typing import Dict, Optional

from fastapi import APIRouter, Body, Depends, Query, Request, status
from pydantic import ValidationError

from ..api.dependencies import get_booking_service, get_current_principal, get_payment_service
from ..core.exceptions import DomainException, ValidationException
from ..errors import handle_domain_exception
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..principal import UserPrincipal
from ..schemas.payment import (
    CallbackAck,
    CompleteBookingRequest,
    PayHereCallback,
    PaymentInitiateRequest,
    PaymentInitiateResponse,
    PaymentStatusResponse,
    RescheduleFeePaymentRequest,
)
from ..schemas.session import SessionResponse
from ..services.booking_service import BookingService
from ..services.payment_service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments-v1"])


@router.post(
    "/initiate",
    response_model=PaymentInitiateResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"description": "Slot not available"}},
)
async def initiate_payment(
    payload: PaymentInitiateRequest = Body(...),
    principal: UserPrincipal = Depends(get_current_principal),
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentInitiateResponse:
    """
    Start checkout for a slot.

    No slot is held: the session is created only after the gateway
    confirms the payment.
    """
    try:
        return await asyncio.to_thread(payment_service.initiate_payment, principal, payload)
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/reschedule-fee",
    response_model=PaymentInitiateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def initiate_reschedule_fee_payment(
    payload: RescheduleFeePaymentRequest = Body(...),
    principal: UserPrincipal = Depends(get_current_principal),
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentInitiateResponse:
    try:
        return await asyncio.to_thread(
            payment_service.initiate_reschedule_fee_payment,
            principal,
            payload.session_id,
            payload.customer,
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/complete-booking",
    response_model=SessionResponse,
    responses={
        400: {"description": "Payment not completed"},
        409: {"description": "Slot was taken by another booking"},
    },
)
async def complete_booking(
    payload: CompleteBookingRequest = Body(...),
    principal: UserPrincipal = Depends(get_current_principal),
    booking_service: BookingService = Depends(get_booking_service),
) -> SessionResponse:
    """Create the session for a completed payment. Safe to call more than once."""
    try:
        session = await asyncio.to_thread(
            booking_service.complete_booking, principal, payload.order_id
        )
        return SessionResponse.model_validate(session)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/notify", response_model=CallbackAck)
async def payhere_notify(
    request: Request,
    payment_service: PaymentService = Depends(get_payment_service),
) -> CallbackAck:
    """
    PayHere notify URL. Unauthenticated; trust comes from the signature.
    """
    form = await request.form()
    fields = {key: str(value) for key, value in form.items()}
    try:
        callback = PayHereCallback.model_validate(fields)
    except ValidationError as e:
        prometheus_metrics.record_gateway_callback("invalid_payload")
        logger.warning(
            "Malformed PayHere notification",
            extra={"order_id": fields.get("order_id"), "errors": e.error_count()},
        )
        handle_domain_exception(
            ValidationException(
                "Malformed payment notification",
                details={"missing": [".".join(map(str, err["loc"])) for err in e.errors()]},
            )
        )

    try:
        return await asyncio.to_thread(payment_service.handle_gateway_callback, callback)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/return")
async def payment_return(order_id: Optional[str] = Query(None)) -> Dict[str, Optional[str]]:
    """The browser lands here after checkout. Confirmation arrives through /notify."""
    return {
        "order_id": order_id,
        "message": "Payment submitted. Your booking is confirmed once the payment is verified.",
    }


@router.get("/cancel")
async def payment_cancel(order_id: Optional[str] = Query(None)) -> Dict[str, Optional[str]]:
    return {"order_id": order_id, "message": "Payment was cancelled. No booking was made."}


@router.get("/{order_id}", response_model=PaymentStatusResponse)
async def get_payment_status(
    order_id: str,
    principal: UserPrincipal = Depends(get_current_principal),
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentStatusResponse:
    try:
        payment = await asyncio.to_thread(
            payment_service.get_payment_status, principal, order_id
        )
        return PaymentStatusResponse.model_validate(payment)
    except DomainException as e:
        handle_domain_exception(e)
