# backend/therapy_booking/routes/refunds.py
"""
Refund settlement routes - API v1 (administrators only)

Endpoints:
    GET /refunds?status=PENDING - Guardian refunds awaiting transfer
    POST /refunds/{refund_id}/complete - Mark a guardian refund as transferred
"""

import asyncio
import logging
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Query

from ..api.dependencies import get_cancellation_service, require_roles
from ..core.enums import RefundStatus, RoleName
from ..core.exceptions import DomainException
from ..errors import handle_domain_exception
from ..principal import UserPrincipal
from ..schemas.session import CancelRefundResponse, CompleteRefundRequest
from ..services.cancellation_service import CancellationService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["refunds-v1"])


@router.get("", response_model=List[CancelRefundResponse])
async def list_refunds(
    refund_status: RefundStatus = Query(RefundStatus.PENDING, alias="status"),
    principal: UserPrincipal = Depends(require_roles(RoleName.ADMIN)),
    cancellation_service: CancellationService = Depends(get_cancellation_service),
) -> List[CancelRefundResponse]:
    try:
        refunds = await asyncio.to_thread(
            cancellation_service.list_refunds, principal, refund_status
        )
        return [CancelRefundResponse.model_validate(refund) for refund in refunds]
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/{refund_id}/complete",
    response_model=CancelRefundResponse,
    responses={409: {"description": "Refund already processed"}},
)
async def complete_refund(
    refund_id: str,
    payload: Optional[CompleteRefundRequest] = Body(None),
    principal: UserPrincipal = Depends(require_roles(RoleName.ADMIN)),
    cancellation_service: CancellationService = Depends(get_cancellation_service),
) -> CancelRefundResponse:
    note = payload.note if payload else None
    try:
        refund = await asyncio.to_thread(
            cancellation_service.complete_refund, principal, refund_id, note
        )
        return CancelRefundResponse.model_validate(refund)
    except DomainException as e:
        handle_domain_exception(e)
