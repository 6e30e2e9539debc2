# backend/therapy_booking/services/availability_service.py
"""
Availability Service for the booking engine.

Owns therapist availability: replacing the rule set, adding explicit
slots in bulk, and resolving the bookable slots of a date. The slot
resolution used here is the same one payment initiation, session
requests and reschedules re-run before they touch a slot.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
import logging
from typing import Callable, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import RecurrenceType
from ..core.exceptions import (
    ConflictException,
    NotFoundException,
    SlotUnavailableException,
    ValidationException,
)
from ..core.timezone_utils import clinic_now, normalize_time_string
from ..models.availability import AvailabilityRule, AvailabilitySlot
from ..models.user import Therapist
from ..principal import UserPrincipal
from ..repositories.factory import RepositoryFactory
from ..schemas.availability import AvailabilityRuleInput, BulkSlotsRequest
from .access import AccessPolicy
from .base import BaseService
from .slot_resolver import (
    NO_AVAILABILITY_REASON,
    ResolvedSlotView,
    expand_rules,
    mark_slots,
    merge_explicit_slots,
    step_windows,
)

logger = logging.getLogger(__name__)

MAX_BULK_RANGE_DAYS = 366
MAX_REPORTED_CONFLICTS = 5


@dataclass
class SlotResolution:
    therapist_id: str
    date: date
    slots: List[ResolvedSlotView] = field(default_factory=list)
    reason: Optional[str] = None


class AvailabilityService(BaseService):
    def __init__(self, db: Session, clock: Callable[[], datetime] = clinic_now):
        super().__init__(db)
        self.clock = clock
        self.repository = RepositoryFactory.create_availability_repository(db)
        self.session_repository = RepositoryFactory.create_session_repository(db)
        self.user_repository = RepositoryFactory.create_user_repository(db)
        self.access = AccessPolicy(self.user_repository)

    def _get_therapist(self, therapist_id: str) -> Therapist:
        therapist = self.user_repository.get_therapist(therapist_id)
        if therapist is None:
            raise NotFoundException("Therapist not found")
        return therapist

    # Rules

    def list_rules(self, therapist_id: str) -> List[AvailabilityRule]:
        self._get_therapist(therapist_id)
        return self.repository.list_rules(therapist_id)

    @BaseService.measure_operation("replace_availability")
    def replace_availability(
        self,
        principal: UserPrincipal,
        therapist_id: str,
        rules: List[AvailabilityRuleInput],
    ) -> List[AvailabilityRule]:
        """
        Replace the therapist's rule set in one transaction.

        Readers never see a mix of old and new rules.
        """
        therapist = self._get_therapist(therapist_id)
        self.access.ensure_manages_therapist(principal, therapist)

        payload = [
            {
                **rule.model_dump(),
                "recurrence": RecurrenceType(rule.recurrence).value,
            }
            for rule in rules
        ]
        with self.transaction():
            created = self.repository.replace_rules(therapist_id, payload)

        self.log_operation("replace_availability", therapist_id=therapist_id, rule_count=len(created))
        return created

    # Explicit slots

    @staticmethod
    def _dates_for(request: BulkSlotsRequest) -> List[date]:
        end_date = request.end_date or request.start_date
        if request.recurrence == RecurrenceType.NONE:
            return [request.start_date]
        if (end_date - request.start_date).days > MAX_BULK_RANGE_DAYS:
            raise ValidationException(
                f"Date range cannot exceed {MAX_BULK_RANGE_DAYS} days"
            )
        days = []
        cursor = request.start_date
        weekdays = set(request.recurrence_days or [])
        while cursor <= end_date:
            if request.recurrence == RecurrenceType.DAILY or cursor.weekday() in weekdays:
                days.append(cursor)
            cursor += timedelta(days=1)
        return days

    @BaseService.measure_operation("add_slots")
    def add_slots(
        self,
        principal: UserPrincipal,
        therapist_id: str,
        request: BulkSlotsRequest,
    ) -> List[AvailabilitySlot]:
        """
        Create explicit slots over a date range.

        Raises:
            ConflictException: If any generated slot already exists
            ValidationException: If the request generates no slots
        """
        therapist = self._get_therapist(therapist_id)
        self.access.ensure_manages_therapist(principal, therapist)

        windows = step_windows(
            request.start_time,
            request.end_time,
            request.session_duration,
            request.break_between_sessions,
        )
        generated = [(day, start) for day in self._dates_for(request) for start, _ in windows]
        if not generated:
            raise ValidationException("No slots generated for the given range and times")

        first_day = generated[0][0]
        last_day = generated[-1][0]
        existing = {
            (row.date, normalize_time_string(row.start_time))
            for row in self.repository.get_slots_in_range(therapist_id, first_day, last_day)
        }
        conflicts = [
            f"{day.isoformat()} {start}" for day, start in generated if (day, start) in existing
        ]
        if conflicts:
            raise ConflictException(
                f"{len(conflicts)} slot(s) already exist in this range",
                code="SLOT_CONFLICT",
                details={"conflicts": conflicts[:MAX_REPORTED_CONFLICTS], "count": len(conflicts)},
            )

        with self.transaction():
            slots = self.repository.bulk_create(
                [
                    {
                        "therapist_id": therapist_id,
                        "date": day,
                        "start_time": start,
                        "duration_minutes": request.session_duration,
                        "is_free": request.is_free,
                        "is_booked": False,
                    }
                    for day, start in generated
                ]
            )

        self.log_operation("add_slots", therapist_id=therapist_id, created=len(slots))
        return slots

    # Resolution

    def resolve_slots(
        self,
        therapist_id: str,
        day: date,
        now: Optional[datetime] = None,
        exclude_session_id: Optional[str] = None,
    ) -> SlotResolution:
        """
        Bookable slots of a therapist on ``day``.

        A day with no rules and no explicit slots is an empty result with a
        reason, not an error.
        """
        therapist = self._get_therapist(therapist_id)
        now = now or self.clock()

        rules = self.repository.list_rules(therapist_id)
        slot_rows = self.repository.get_slots_for_date(therapist_id, day)
        candidates = merge_explicit_slots(expand_rules(rules, day), slot_rows)
        if not candidates:
            return SlotResolution(therapist_id=therapist_id, date=day, reason=NO_AVAILABILITY_REASON)

        sessions = self.session_repository.get_active_for_therapist_on_date(
            therapist_id, day, exclude_session_id=exclude_session_id
        )
        resolved = mark_slots(
            candidates,
            day,
            booked_starts=[row.start_time for row in slot_rows if row.is_booked],
            busy_windows=[(s.scheduled_at, s.ends_at) for s in sessions],
            now=now,
            lead_hours=settings.same_day_lead_hours,
            session_rate=therapist.session_rate,
        )
        return SlotResolution(therapist_id=therapist_id, date=day, slots=resolved)

    def require_available_slot(
        self,
        therapist_id: str,
        day: date,
        time_slot: str,
        *,
        exclude_session_id: Optional[str] = None,
    ) -> Tuple[ResolvedSlotView, AvailabilitySlot]:
        """
        Re-resolve one slot and make sure its row exists.

        Raises:
            SlotUnavailableException: If the slot is not offered, booked or blocked
        """
        start = normalize_time_string(time_slot)
        resolution = self.resolve_slots(therapist_id, day, exclude_session_id=exclude_session_id)
        match = next((s for s in resolution.slots if s.start_time == start), None)
        details = {"therapist_id": therapist_id, "date": day.isoformat(), "time_slot": start}
        if match is None:
            raise SlotUnavailableException(
                "This time is not offered by the therapist", details=details
            )
        if match.is_booked:
            raise SlotUnavailableException(details=details)
        if match.is_blocked:
            raise SlotUnavailableException(
                f"Bookings need at least {settings.same_day_lead_hours} hours notice",
                details=details,
            )

        row = self.repository.ensure_slot(
            therapist_id,
            day,
            start,
            duration_minutes=match.candidate.duration_minutes,
            is_free=match.candidate.is_free,
            rule_id=match.candidate.rule_id,
        )
        return match, row
