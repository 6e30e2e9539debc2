# backend/therapy_booking/routes/sessions.py
"""
Therapy session routes - API v1

Endpoints:
    POST /sessions/request - Request a free slot
    POST /sessions/{session_id}/respond - Therapist approves or declines a request
    GET /sessions/{session_id}/refund-quote - Refund if cancelled now
    GET /sessions/{session_id}/reschedule-fee - Fee if rescheduled now
    GET /sessions/{session_id}/reschedule-history - Past moves of a session
    POST /sessions/{session_id}/cancel - Cancel a session
    POST /sessions/{session_id}/reschedule - Move a session
    POST /sessions/{session_id}/acknowledge-reschedule - Confirm a moved session
    POST /sessions/{session_id}/complete - Mark completed
    POST /sessions/{session_id}/no-show - Mark no-show
"""

import asyncio
import logging
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, status

from ..api.dependencies import (
    get_booking_service,
    get_cancellation_service,
    get_current_principal,
)
from ..core.config import settings
from ..core.exceptions import DomainException
from ..errors import handle_domain_exception
from ..principal import UserPrincipal
from ..schemas.session import (
    CancellationResponse,
    CancelRefundResponse,
    CancelSessionRequest,
    RefundQuoteResponse,
    RescheduleFeeResponse,
    RescheduleHistoryEntry,
    RescheduleResponse,
    RescheduleSessionRequest,
    RespondToRequest,
    SessionRequestCreate,
    SessionResponse,
)
from ..services.booking_service import BookingService
from ..services.cancellation_service import CancellationService
from ..services.refund_policy import RefundQuote

logger = logging.getLogger(__name__)

router = APIRouter(tags=["sessions-v1"])


def _quote_response(session_id: str, quote: RefundQuote) -> RefundQuoteResponse:
    return RefundQuoteResponse(
        session_id=session_id,
        tier=quote.tier,
        hours_before_session=round(quote.hours_before_session, 2),
        original_amount=quote.original_amount,
        refund_amount=quote.refund_amount,
        platform_fee=quote.platform_fee,
        therapist_share=quote.therapist_share,
        cancellation_fee=quote.cancellation_fee,
        refund_percentage=quote.refund_percentage,
    )


@router.post(
    "/request",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"description": "Slot not available"}},
)
async def request_session(
    payload: SessionRequestCreate = Body(...),
    principal: UserPrincipal = Depends(get_current_principal),
    booking_service: BookingService = Depends(get_booking_service),
) -> SessionResponse:
    try:
        session = await asyncio.to_thread(booking_service.request_session, principal, payload)
        return SessionResponse.model_validate(session)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{session_id}/respond", response_model=SessionResponse)
async def respond_to_request(
    session_id: str,
    payload: RespondToRequest = Body(...),
    principal: UserPrincipal = Depends(get_current_principal),
    booking_service: BookingService = Depends(get_booking_service),
) -> SessionResponse:
    try:
        session = await asyncio.to_thread(
            booking_service.respond_to_request, principal, session_id, payload.approve
        )
        return SessionResponse.model_validate(session)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/{session_id}/refund-quote", response_model=RefundQuoteResponse)
async def get_refund_quote(
    session_id: str,
    principal: UserPrincipal = Depends(get_current_principal),
    cancellation_service: CancellationService = Depends(get_cancellation_service),
) -> RefundQuoteResponse:
    try:
        quote = await asyncio.to_thread(
            cancellation_service.calculate_refund, principal, session_id
        )
        return _quote_response(session_id, quote)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/{session_id}/reschedule-fee", response_model=RescheduleFeeResponse)
async def get_reschedule_fee(
    session_id: str,
    principal: UserPrincipal = Depends(get_current_principal),
    cancellation_service: CancellationService = Depends(get_cancellation_service),
) -> RescheduleFeeResponse:
    try:
        quote = await asyncio.to_thread(
            cancellation_service.get_reschedule_fee, principal, session_id
        )
        return RescheduleFeeResponse(
            session_id=session_id,
            days_until_session=quote.days_until_session,
            fee=quote.fee,
            requires_payment=quote.requires_payment,
            currency=settings.currency,
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/{session_id}/reschedule-history", response_model=List[RescheduleHistoryEntry])
async def get_reschedule_history(
    session_id: str,
    principal: UserPrincipal = Depends(get_current_principal),
    cancellation_service: CancellationService = Depends(get_cancellation_service),
) -> List[RescheduleHistoryEntry]:
    try:
        history = await asyncio.to_thread(
            cancellation_service.get_reschedule_history, principal, session_id
        )
        return [RescheduleHistoryEntry.model_validate(entry) for entry in history]
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/{session_id}/cancel",
    response_model=CancellationResponse,
    responses={409: {"description": "Session is not cancellable"}},
)
async def cancel_session(
    session_id: str,
    payload: Optional[CancelSessionRequest] = Body(None),
    principal: UserPrincipal = Depends(get_current_principal),
    cancellation_service: CancellationService = Depends(get_cancellation_service),
) -> CancellationResponse:
    """Cancel a session. Guardians owed a refund must include bank details."""
    payload = payload or CancelSessionRequest()
    try:
        result = await asyncio.to_thread(
            cancellation_service.cancel_session,
            principal,
            session_id,
            payload.reason,
            payload.bank_details,
        )
        return CancellationResponse(
            session=SessionResponse.model_validate(result.session),
            refund=_quote_response(session_id, result.refund) if result.refund else None,
            cancel_refund=(
                CancelRefundResponse.model_validate(result.cancel_refund)
                if result.cancel_refund
                else None
            ),
            slot_released=result.slot_released,
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/{session_id}/reschedule",
    response_model=RescheduleResponse,
    responses={
        402: {"description": "Reschedule fee must be paid first"},
        409: {"description": "Slot not available or session not reschedulable"},
    },
)
async def reschedule_session(
    session_id: str,
    payload: RescheduleSessionRequest = Body(...),
    principal: UserPrincipal = Depends(get_current_principal),
    cancellation_service: CancellationService = Depends(get_cancellation_service),
) -> RescheduleResponse:
    """
    Move a session to another slot.

    Patients moving a session inside the fee window first pay the fee
    through /payments/reschedule-fee and pass its ``fee_order_id``.
    """
    try:
        result = await asyncio.to_thread(
            cancellation_service.reschedule_session, principal, session_id, payload
        )
        return RescheduleResponse(
            session=SessionResponse.model_validate(result.session),
            previous_scheduled_at=result.previous_scheduled_at,
            fee_amount=result.fee_amount,
            fee_order_id=result.fee_order_id,
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{session_id}/acknowledge-reschedule", response_model=SessionResponse)
async def acknowledge_reschedule(
    session_id: str,
    principal: UserPrincipal = Depends(get_current_principal),
    booking_service: BookingService = Depends(get_booking_service),
) -> SessionResponse:
    try:
        session = await asyncio.to_thread(
            booking_service.acknowledge_reschedule, principal, session_id
        )
        return SessionResponse.model_validate(session)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{session_id}/complete", response_model=SessionResponse)
async def complete_session(
    session_id: str,
    principal: UserPrincipal = Depends(get_current_principal),
    booking_service: BookingService = Depends(get_booking_service),
) -> SessionResponse:
    try:
        session = await asyncio.to_thread(booking_service.complete_session, principal, session_id)
        return SessionResponse.model_validate(session)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{session_id}/no-show", response_model=SessionResponse)
async def mark_no_show(
    session_id: str,
    principal: UserPrincipal = Depends(get_current_principal),
    booking_service: BookingService = Depends(get_booking_service),
) -> SessionResponse:
    try:
        session = await asyncio.to_thread(booking_service.mark_no_show, principal, session_id)
        return SessionResponse.model_validate(session)
    except DomainException as e:
        handle_domain_exception(e)
