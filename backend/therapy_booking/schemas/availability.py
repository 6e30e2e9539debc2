# backend/therapy_booking/schemas/availability.py
"""
Availability schemas.

Rules describe when a therapist works; resolved slots are what a client
can pick from on a given date.
"""

from datetime import date
from decimal import Decimal
from typing import List, Optional

from pydantic import ConfigDict, Field, field_validator, model_validator

from ..core.enums import RecurrenceType
from ..core.timezone_utils import time_string_to_minutes
from ._strict_base import StrictModel, StrictRequestModel, TimeOfDay


def _check_window(start_time: str, end_time: str) -> None:
    if time_string_to_minutes(end_time) <= time_string_to_minutes(start_time):
        raise ValueError("End time must be after start time")


def _check_weekdays(days: Optional[List[int]]) -> Optional[List[int]]:
    if days is None:
        return None
    for day in days:
        if day < 0 or day > 6:
            raise ValueError("Weekdays must be between 0 (Monday) and 6 (Sunday)")
    return sorted(set(days))


class AvailabilityRuleInput(StrictRequestModel):
    """One rule of a therapist's weekly schedule."""

    day_of_week: Optional[int] = Field(None, ge=0, le=6, description="0=Monday .. 6=Sunday")
    specific_date: Optional[date] = None
    start_time: TimeOfDay
    end_time: TimeOfDay
    session_duration: int = Field(45, gt=0, le=480)
    break_between_sessions: int = Field(15, ge=0, le=240)
    recurrence: RecurrenceType = RecurrenceType.NONE
    recurrence_days: Optional[List[int]] = None
    recurrence_end_date: Optional[date] = None
    is_active: bool = True
    is_free: bool = False

    @field_validator("recurrence_days")
    @classmethod
    def validate_recurrence_days(cls, v: Optional[List[int]]) -> Optional[List[int]]:
        return _check_weekdays(v)

    @model_validator(mode="after")
    def validate_rule(self) -> "AvailabilityRuleInput":
        _check_window(self.start_time, self.end_time)
        if self.recurrence == RecurrenceType.WEEKLY and not self.recurrence_days:
            raise ValueError("Weekly rules need at least one recurrence day")
        if (
            self.recurrence == RecurrenceType.NONE
            and self.day_of_week is None
            and self.specific_date is None
        ):
            raise ValueError("Either day_of_week or specific_date is required")
        return self


class ReplaceAvailabilityRequest(StrictRequestModel):
    rules: List[AvailabilityRuleInput] = Field(default_factory=list)


class AvailabilityRuleResponse(StrictModel):
    model_config = ConfigDict(from_attributes=True, extra="forbid")

    id: str
    therapist_id: str
    day_of_week: Optional[int] = None
    specific_date: Optional[date] = None
    start_time: str
    end_time: str
    session_duration: int
    break_between_sessions: int
    recurrence: RecurrenceType
    recurrence_days: Optional[List[int]] = None
    recurrence_end_date: Optional[date] = None
    is_active: bool
    is_free: bool


class BulkSlotsRequest(StrictRequestModel):
    """Explicit one-off slots generated over a date range."""

    start_date: date
    end_date: Optional[date] = None
    start_time: TimeOfDay
    end_time: TimeOfDay
    session_duration: int = Field(45, gt=0, le=480)
    break_between_sessions: int = Field(15, ge=0, le=240)
    recurrence: RecurrenceType = RecurrenceType.NONE
    recurrence_days: Optional[List[int]] = None
    is_free: bool = False

    @field_validator("recurrence_days")
    @classmethod
    def validate_recurrence_days(cls, v: Optional[List[int]]) -> Optional[List[int]]:
        return _check_weekdays(v)

    @model_validator(mode="after")
    def validate_range(self) -> "BulkSlotsRequest":
        _check_window(self.start_time, self.end_time)
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("End date must not be before start date")
        if self.recurrence == RecurrenceType.WEEKLY and not self.recurrence_days:
            raise ValueError("Weekly slots need at least one recurrence day")
        return self


class SlotResponse(StrictModel):
    model_config = ConfigDict(from_attributes=True, extra="forbid")

    id: str
    therapist_id: str
    date: date
    start_time: str
    duration_minutes: int
    is_booked: bool
    is_free: bool


class BulkSlotsResponse(StrictModel):
    created: int
    slots: List[SlotResponse]


class ResolvedSlot(StrictModel):
    slot: str = Field(..., description="HH:MM-HH:MM")
    start_time: str
    duration_minutes: int
    is_available: bool
    is_booked: bool
    is_blocked: bool
    is_free: bool
    cost: Decimal


class AvailableSlotsResponse(StrictModel):
    therapist_id: str
    date: date
    slots: List[ResolvedSlot]
    reason: Optional[str] = None
