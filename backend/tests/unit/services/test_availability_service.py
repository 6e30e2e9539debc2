# backend/tests/unit/services/test_availability_service.py
from datetime import date

import pytest

from therapy_booking.core.enums import RecurrenceType
from therapy_booking.core.exceptions import ConflictException, ForbiddenException, NotFoundException
from therapy_booking.models import AvailabilityRule, AvailabilitySlot
from therapy_booking.schemas.availability import AvailabilityRuleInput, BulkSlotsRequest

from tests.factories.booking_data import TUESDAY


def weekday_rule(day_of_week: int, start: str = "09:00", end: str = "12:00") -> AvailabilityRuleInput:
    return AvailabilityRuleInput(day_of_week=day_of_week, start_time=start, end_time=end)


class TestReplaceAvailability:
    def test_replaces_whole_rule_set(
        self, db, availability_service, therapist, therapist_principal, tuesday_rule
    ):
        created = availability_service.replace_availability(
            therapist_principal,
            therapist.id,
            [weekday_rule(0, "14:00", "17:00"), weekday_rule(3, "8:00 AM", "10:00 AM")],
        )

        assert len(created) == 2
        rules = availability_service.list_rules(therapist.id)
        assert {(r.day_of_week, r.start_time, r.end_time) for r in rules} == {
            (0, "14:00", "17:00"),
            (3, "08:00", "10:00"),
        }
        assert db.query(AvailabilityRule).filter_by(id=tuesday_rule.id).count() == 0

    def test_empty_list_clears_rules(self, availability_service, therapist, therapist_principal, tuesday_rule):
        availability_service.replace_availability(therapist_principal, therapist.id, [])
        assert availability_service.list_rules(therapist.id) == []

    def test_booked_slots_survive_replacement(
        self, db, availability_service, therapist, therapist_principal, tuesday_rule
    ):
        _, booked = availability_service.require_available_slot(therapist.id, TUESDAY, "09:00")
        _, unbooked = availability_service.require_available_slot(therapist.id, TUESDAY, "10:00")
        booked.is_booked = True
        db.commit()

        availability_service.replace_availability(therapist_principal, therapist.id, [weekday_rule(4)])

        survivor = db.get(AvailabilitySlot, booked.id)
        assert survivor is not None
        assert survivor.rule_id is None
        assert db.query(AvailabilitySlot).filter_by(id=unbooked.id).count() == 0

    def test_other_therapist_is_forbidden(self, availability_service, therapist, patient_principal):
        with pytest.raises(ForbiddenException):
            availability_service.replace_availability(patient_principal, therapist.id, [weekday_rule(1)])

    def test_admin_may_replace(self, availability_service, therapist, admin_principal):
        created = availability_service.replace_availability(admin_principal, therapist.id, [weekday_rule(1)])
        assert len(created) == 1

    def test_unknown_therapist(self, availability_service, admin_principal):
        with pytest.raises(NotFoundException):
            availability_service.replace_availability(admin_principal, "missing", [])


class TestAddSlots:
    def test_weekly_range(self, availability_service, therapist, therapist_principal):
        slots = availability_service.add_slots(
            therapist_principal,
            therapist.id,
            BulkSlotsRequest(
                start_date=date(2026, 3, 2),
                end_date=date(2026, 3, 15),
                start_time="09:00",
                end_time="11:00",
                recurrence=RecurrenceType.WEEKLY,
                recurrence_days=[0, 2],
            ),
        )
        # Four days, two sessions each.
        assert len(slots) == 8
        assert {s.date.weekday() for s in slots} == {0, 2}
        assert {s.start_time for s in slots} == {"09:00", "10:00"}

    def test_conflict_rejects_whole_batch(self, db, availability_service, therapist, therapist_principal):
        request = BulkSlotsRequest(start_date=TUESDAY, start_time="09:00", end_time="11:00")
        availability_service.add_slots(therapist_principal, therapist.id, request)

        with pytest.raises(ConflictException) as exc_info:
            availability_service.add_slots(
                therapist_principal,
                therapist.id,
                BulkSlotsRequest(start_date=TUESDAY, start_time="10:00", end_time="12:00"),
            )
        assert exc_info.value.code == "SLOT_CONFLICT"
        assert exc_info.value.details["conflicts"] == ["2026-03-03 10:00"]
        assert db.query(AvailabilitySlot).count() == 2

    def test_explicit_slots_are_resolvable(self, availability_service, therapist, therapist_principal):
        availability_service.add_slots(
            therapist_principal,
            therapist.id,
            BulkSlotsRequest(start_date=TUESDAY, start_time="15:00", end_time="16:00", is_free=True),
        )
        resolution = availability_service.resolve_slots(therapist.id, TUESDAY)
        assert [(s.start_time, s.candidate.is_free) for s in resolution.slots] == [("15:00", True)]

    def test_patient_cannot_add_slots(self, availability_service, therapist, patient_principal):
        with pytest.raises(ForbiddenException):
            availability_service.add_slots(
                patient_principal,
                therapist.id,
                BulkSlotsRequest(start_date=TUESDAY, start_time="09:00", end_time="10:00"),
            )
