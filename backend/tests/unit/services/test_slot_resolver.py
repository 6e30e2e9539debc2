# backend/tests/unit/services/test_slot_resolver.py
"""
Tests for slot resolution: rule expansion, booked/blocked marking and the
service-level resolution of a date.
"""

from datetime import date, datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest

from therapy_booking.core.enums import RecurrenceType
from therapy_booking.core.exceptions import SlotUnavailableException
from therapy_booking.models import AvailabilitySlot, TherapySession
from therapy_booking.services.slot_resolver import (
    NO_AVAILABILITY_REASON,
    expand_rules,
    mark_slots,
    merge_explicit_slots,
    rule_applies,
    step_windows,
)

from tests.factories.booking_data import TUESDAY


def make_rule(**overrides):
    values = {
        "id": "rule-1",
        "day_of_week": 1,
        "specific_date": None,
        "start_time": "09:00",
        "end_time": "12:00",
        "session_duration": 45,
        "break_between_sessions": 15,
        "recurrence": RecurrenceType.NONE.value,
        "recurrence_days": None,
        "recurrence_end_date": None,
        "is_active": True,
        "is_free": False,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


class TestStepWindows:
    def test_three_hour_window_with_breaks(self):
        assert step_windows("09:00", "12:00", 45, 15) == [
            ("09:00", "09:45"),
            ("10:00", "10:45"),
            ("11:00", "11:45"),
        ]

    def test_partial_session_at_end_is_dropped(self):
        assert step_windows("09:00", "10:30", 60, 0) == [("09:00", "10:00")]

    def test_window_shorter_than_session(self):
        assert step_windows("09:00", "09:30", 45, 15) == []

    def test_rejects_non_positive_duration(self):
        with pytest.raises(ValueError):
            step_windows("09:00", "12:00", 0, 15)


class TestRuleApplies:
    def test_weekday_rule(self):
        rule = make_rule()
        assert rule_applies(rule, TUESDAY)
        assert not rule_applies(rule, TUESDAY + timedelta(days=1))

    def test_specific_date_rule(self):
        rule = make_rule(day_of_week=None, specific_date=date(2026, 3, 5))
        assert rule_applies(rule, date(2026, 3, 5))
        assert not rule_applies(rule, date(2026, 3, 12))

    def test_inactive_rule_offers_nothing(self):
        assert not rule_applies(make_rule(is_active=False), TUESDAY)

    def test_weekly_recurrence_with_end_date(self):
        rule = make_rule(
            day_of_week=None,
            recurrence=RecurrenceType.WEEKLY.value,
            recurrence_days=[0, 2],
            recurrence_end_date=date(2026, 3, 10),
        )
        assert rule_applies(rule, date(2026, 3, 4))  # Wednesday
        assert not rule_applies(rule, TUESDAY)
        assert not rule_applies(rule, date(2026, 3, 11))

    def test_daily_recurrence_starts_on_specific_date(self):
        rule = make_rule(
            day_of_week=None,
            specific_date=date(2026, 3, 4),
            recurrence=RecurrenceType.DAILY.value,
        )
        assert not rule_applies(rule, TUESDAY)
        assert rule_applies(rule, date(2026, 3, 8))


class TestMarkSlots:
    def _resolve(self, now, **kwargs):
        candidates = expand_rules([make_rule()], TUESDAY)
        params = {
            "booked_starts": [],
            "busy_windows": [],
            "now": now,
            "lead_hours": 3,
            "session_rate": Decimal("1500.00"),
        }
        params.update(kwargs)
        return mark_slots(candidates, TUESDAY, **params)

    def test_all_available_a_day_ahead(self):
        slots = self._resolve(datetime(2026, 3, 2, 8, 0))
        assert [s.candidate.label for s in slots] == ["09:00-09:45", "10:00-10:45", "11:00-11:45"]
        assert all(s.is_available for s in slots)
        assert all(s.cost == Decimal("1500.00") for s in slots)

    def test_lead_time_blocks_near_slots(self):
        slots = self._resolve(datetime(2026, 3, 3, 8, 0))
        status = {s.start_time: (s.is_blocked, s.is_available) for s in slots}
        assert status["09:00"] == (True, False)
        assert status["10:00"] == (True, False)
        assert status["11:00"] == (False, True)

    def test_past_slots_are_blocked(self):
        slots = self._resolve(datetime(2026, 3, 4, 8, 0), lead_hours=0)
        assert all(s.is_blocked for s in slots)

    def test_booked_row_marks_slot(self):
        slots = self._resolve(datetime(2026, 3, 2, 8, 0), booked_starts=["9:00"])
        assert slots[0].is_booked
        assert not slots[1].is_booked

    def test_overlapping_session_marks_slot(self):
        busy = [(datetime(2026, 3, 3, 10, 30), datetime(2026, 3, 3, 11, 15))]
        slots = self._resolve(datetime(2026, 3, 2, 8, 0), busy_windows=busy)
        assert [s.is_booked for s in slots] == [False, True, True]

    def test_free_rule_costs_nothing(self):
        candidates = expand_rules([make_rule(is_free=True)], TUESDAY)
        slots = mark_slots(
            candidates,
            TUESDAY,
            booked_starts=[],
            busy_windows=[],
            now=datetime(2026, 3, 2, 8, 0),
            lead_hours=3,
            session_rate=Decimal("1500.00"),
        )
        assert all(s.cost == Decimal("0.00") for s in slots)

    def test_explicit_rows_extend_rule_slots(self):
        rows = [
            SimpleNamespace(start_time="9:00 AM", duration_minutes=45, is_free=False, rule_id=None),
            SimpleNamespace(start_time="13:00:00", duration_minutes=30, is_free=True, rule_id=None),
        ]
        merged = merge_explicit_slots(expand_rules([make_rule()], TUESDAY), rows)
        assert [c.start_time for c in merged] == ["09:00", "10:00", "11:00", "13:00"]
        assert merged[-1].label == "13:00-13:30"
        assert merged[-1].is_free


class TestAvailabilityResolution:
    def test_resolves_rule_slots(self, availability_service, therapist, tuesday_rule):
        resolution = availability_service.resolve_slots(therapist.id, TUESDAY)
        assert resolution.reason is None
        assert [s.start_time for s in resolution.slots] == ["09:00", "10:00", "11:00"]

    def test_no_availability_is_not_an_error(self, availability_service, therapist, tuesday_rule):
        resolution = availability_service.resolve_slots(therapist.id, TUESDAY + timedelta(days=1))
        assert resolution.slots == []
        assert resolution.reason == NO_AVAILABILITY_REASON

    def test_active_session_marks_overlap(
        self, db, availability_service, therapist, patient, tuesday_rule
    ):
        db.add(
            TherapySession(
                patient_id=patient.id,
                therapist_id=therapist.id,
                scheduled_at=datetime(2026, 3, 3, 10, 0),
                duration=45,
                booked_rate=Decimal("1500.00"),
            )
        )
        db.commit()

        resolution = availability_service.resolve_slots(therapist.id, TUESDAY)
        booked = {s.start_time: s.is_booked for s in resolution.slots}
        assert booked == {"09:00": False, "10:00": True, "11:00": False}

    def test_require_available_slot_materializes_row(
        self, db, availability_service, therapist, tuesday_rule
    ):
        match, row = availability_service.require_available_slot(therapist.id, TUESDAY, "9:00 AM")
        assert match.start_time == "09:00"
        assert row.start_time == "09:00"
        assert row.rule_id == tuesday_rule.id

        _, again = availability_service.require_available_slot(therapist.id, TUESDAY, "09:00")
        assert again.id == row.id
        assert db.query(AvailabilitySlot).count() == 1

    def test_require_available_slot_rejects_unoffered_time(
        self, availability_service, therapist, tuesday_rule
    ):
        with pytest.raises(SlotUnavailableException) as exc_info:
            availability_service.require_available_slot(therapist.id, TUESDAY, "09:30")
        assert exc_info.value.code == "SLOT_UNAVAILABLE"

    def test_require_available_slot_rejects_blocked_time(
        self, availability_service, clock, therapist, tuesday_rule
    ):
        clock.set(datetime(2026, 3, 3, 8, 0))
        with pytest.raises(SlotUnavailableException):
            availability_service.require_available_slot(therapist.id, TUESDAY, "10:00")
