"""
Slot resolution.

Expands availability rules into candidate slots for one date and marks
each candidate booked or blocked. Everything here is a pure function of
its arguments; AvailabilityService loads the inputs.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..core.enums import RecurrenceType
from ..core.timezone_utils import (
    combine,
    minutes_to_time_string,
    normalize_time_string,
    time_string_to_minutes,
)

NO_AVAILABILITY_REASON = "Therapist is not available on this day"


@dataclass(frozen=True)
class CandidateSlot:
    start_time: str
    end_time: str
    duration_minutes: int
    is_free: bool
    rule_id: Optional[str] = None

    @property
    def label(self) -> str:
        return f"{self.start_time}-{self.end_time}"


@dataclass(frozen=True)
class ResolvedSlotView:
    candidate: CandidateSlot
    is_booked: bool
    is_blocked: bool
    cost: Decimal

    @property
    def is_available(self) -> bool:
        return not self.is_booked and not self.is_blocked

    @property
    def start_time(self) -> str:
        return self.candidate.start_time


def rule_applies(rule, day: date) -> bool:
    """Whether an availability rule offers time on ``day``."""
    if not rule.is_active:
        return False
    if rule.recurrence_end_date is not None and rule.recurrence_end_date < day:
        return False

    recurrence = RecurrenceType(rule.recurrence or RecurrenceType.NONE)
    if recurrence == RecurrenceType.NONE:
        if rule.specific_date is not None:
            return rule.specific_date == day
        return rule.day_of_week == day.weekday()

    # Recurring rules start on their specific date when one is given.
    if rule.specific_date is not None and day < rule.specific_date:
        return False
    if recurrence == RecurrenceType.DAILY:
        return True
    weekdays = [int(d) for d in (rule.recurrence_days or [])]
    if not weekdays and rule.day_of_week is not None:
        weekdays = [rule.day_of_week]
    return day.weekday() in weekdays


def step_windows(
    start_time: str, end_time: str, duration: int, break_minutes: int
) -> List[Tuple[str, str]]:
    """
    Walk start -> end in steps of duration + break.

    A window is emitted only when the whole session fits before the end:
    09:00-12:00 with 45+15 yields 09:00, 10:00 and 11:00.
    """
    if duration <= 0:
        raise ValueError("duration must be positive")
    step = duration + max(break_minutes, 0)
    cursor = time_string_to_minutes(start_time)
    end = time_string_to_minutes(end_time)
    windows = []
    while cursor + duration <= end:
        windows.append((minutes_to_time_string(cursor), minutes_to_time_string(cursor + duration)))
        cursor += step
    return windows


def expand_rules(rules: Iterable, day: date) -> List[CandidateSlot]:
    candidates: Dict[str, CandidateSlot] = {}
    for rule in rules:
        if not rule_applies(rule, day):
            continue
        for start, end in step_windows(
            rule.start_time, rule.end_time, rule.session_duration, rule.break_between_sessions
        ):
            candidates.setdefault(
                start,
                CandidateSlot(
                    start_time=start,
                    end_time=end,
                    duration_minutes=rule.session_duration,
                    is_free=bool(rule.is_free),
                    rule_id=rule.id,
                ),
            )
    return sorted(candidates.values(), key=lambda c: c.start_time)


def merge_explicit_slots(candidates: List[CandidateSlot], slot_rows: Iterable) -> List[CandidateSlot]:
    """Add slot rows for the date that no rule produced."""
    merged = {c.start_time: c for c in candidates}
    for row in slot_rows:
        start = normalize_time_string(row.start_time)
        if start in merged:
            continue
        end = minutes_to_time_string(time_string_to_minutes(start) + row.duration_minutes)
        merged[start] = CandidateSlot(
            start_time=start,
            end_time=end,
            duration_minutes=row.duration_minutes,
            is_free=bool(row.is_free),
            rule_id=row.rule_id,
        )
    return sorted(merged.values(), key=lambda c: c.start_time)


def mark_slots(
    candidates: Sequence[CandidateSlot],
    day: date,
    *,
    booked_starts: Iterable[str],
    busy_windows: Iterable[Tuple[datetime, datetime]],
    now: datetime,
    lead_hours: int,
    session_rate: Decimal,
) -> List[ResolvedSlotView]:
    """
    Mark candidates booked or blocked.

    Booked: the slot row is booked, or a non-cancelled session overlaps
    [start, start + duration). Blocked: the start is earlier than
    now + lead time, which covers every past slot.
    """
    booked = {normalize_time_string(s) for s in booked_starts}
    windows = list(busy_windows)
    cutoff = now + timedelta(hours=lead_hours)
    rate = Decimal(str(session_rate or 0)).quantize(Decimal("0.01"))

    resolved = []
    for candidate in candidates:
        start_dt = combine(day, candidate.start_time)
        end_dt = start_dt + timedelta(minutes=candidate.duration_minutes)
        is_booked = candidate.start_time in booked or any(
            busy_start < end_dt and start_dt < busy_end for busy_start, busy_end in windows
        )
        resolved.append(
            ResolvedSlotView(
                candidate=candidate,
                is_booked=is_booked,
                is_blocked=start_dt < cutoff,
                cost=Decimal("0.00") if candidate.is_free else rate,
            )
        )
    return resolved
