# backend/therapy_booking/routes/availability.py
"""
Therapist availability routes - API v1

Endpoints:
    PUT /therapists/{therapist_id}/availability - Replace the rule set
    GET /therapists/{therapist_id}/availability - List active rules
    POST /therapists/{therapist_id}/availability/slots - Add explicit slots in bulk
    GET /therapists/{therapist_id}/available-slots?date= - Bookable slots of a day
"""

import asyncio
from datetime import date
import logging
from typing import List

from fastapi import APIRouter, Body, Depends, Query, status

from ..api.dependencies import get_availability_service, get_current_principal
from ..core.exceptions import DomainException
from ..errors import handle_domain_exception
from ..principal import UserPrincipal
from ..schemas.availability import (
    AvailabilityRuleResponse,
    AvailableSlotsResponse,
    BulkSlotsRequest,
    BulkSlotsResponse,
    ReplaceAvailabilityRequest,
    ResolvedSlot,
    SlotResponse,
)
from ..services.availability_service import AvailabilityService, SlotResolution

logger = logging.getLogger(__name__)

router = APIRouter(tags=["availability-v1"])


def _to_available_slots(resolution: SlotResolution) -> AvailableSlotsResponse:
    return AvailableSlotsResponse(
        therapist_id=resolution.therapist_id,
        date=resolution.date,
        reason=resolution.reason,
        slots=[
            ResolvedSlot(
                slot=view.candidate.label,
                start_time=view.start_time,
                duration_minutes=view.candidate.duration_minutes,
                is_available=view.is_available,
                is_booked=view.is_booked,
                is_blocked=view.is_blocked,
                is_free=view.candidate.is_free,
                cost=view.cost,
            )
            for view in resolution.slots
        ],
    )


@router.put("/{therapist_id}/availability", response_model=List[AvailabilityRuleResponse])
async def replace_availability(
    therapist_id: str,
    payload: ReplaceAvailabilityRequest = Body(...),
    principal: UserPrincipal = Depends(get_current_principal),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> List[AvailabilityRuleResponse]:
    """Replace every availability rule of a therapist. An empty list clears availability."""
    try:
        rules = await asyncio.to_thread(
            availability_service.replace_availability, principal, therapist_id, payload.rules
        )
        return [AvailabilityRuleResponse.model_validate(rule) for rule in rules]
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/{therapist_id}/availability", response_model=List[AvailabilityRuleResponse])
async def list_availability(
    therapist_id: str,
    principal: UserPrincipal = Depends(get_current_principal),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> List[AvailabilityRuleResponse]:
    try:
        rules = await asyncio.to_thread(availability_service.list_rules, therapist_id)
        return [AvailabilityRuleResponse.model_validate(rule) for rule in rules]
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/{therapist_id}/availability/slots",
    response_model=BulkSlotsResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"description": "Some slots already exist"}},
)
async def add_slots(
    therapist_id: str,
    payload: BulkSlotsRequest = Body(...),
    principal: UserPrincipal = Depends(get_current_principal),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> BulkSlotsResponse:
    try:
        slots = await asyncio.to_thread(
            availability_service.add_slots, principal, therapist_id, payload
        )
        return BulkSlotsResponse(
            created=len(slots), slots=[SlotResponse.model_validate(slot) for slot in slots]
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/{therapist_id}/available-slots", response_model=AvailableSlotsResponse)
async def get_available_slots(
    therapist_id: str,
    day: date = Query(..., alias="date"),
    principal: UserPrincipal = Depends(get_current_principal),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> AvailableSlotsResponse:
    """
    Resolve the bookable slots of ``date``.

    Booked and lead-time-blocked slots are returned with their flags set
    so clients can render them greyed out.
    """
    try:
        resolution = await asyncio.to_thread(
            availability_service.resolve_slots, therapist_id, day
        )
        return _to_available_slots(resolution)
    except DomainException as e:
        handle_domain_exception(e)
