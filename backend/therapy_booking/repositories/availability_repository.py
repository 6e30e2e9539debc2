# backend/therapy_booking/repositories/availability_repository.py
"""
AvailabilityRepository - rules and slots.

Holds every query that touches ``availability_rules`` and
``availability_slots``. The booked flag of a slot is only changed by the
conditional updates in ``claim_slot`` and ``release_slot``: a claim
succeeds for exactly one writer because the UPDATE matches zero rows once
another transaction has set ``is_booked``.
"""

from datetime import date
import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, insert, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..core.ulid_helper import generate_ulid
from ..models.availability import AvailabilityRule, AvailabilitySlot
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class AvailabilityRepository(BaseRepository[AvailabilitySlot]):
    """Repository for availability rules and concrete slots."""

    def __init__(self, db: Session):
        super().__init__(db, AvailabilitySlot)

    @property
    def _dialect(self) -> str:
        return self.db.get_bind().dialect.name

    # Rule operations

    def list_rules(self, therapist_id: str, active_only: bool = True) -> List[AvailabilityRule]:
        query = self.db.query(AvailabilityRule).filter(AvailabilityRule.therapist_id == therapist_id)
        if active_only:
            query = query.filter(AvailabilityRule.is_active.is_(True))
        return self._execute_query(
            query.order_by(
                AvailabilityRule.specific_date,
                AvailabilityRule.day_of_week,
                AvailabilityRule.start_time,
            )
        )

    def replace_rules(self, therapist_id: str, rules: List[Dict[str, Any]]) -> List[AvailabilityRule]:
        """
        Swap the therapist's whole rule set.

        Unbooked slots derived from the old rules go with them. Booked slots
        stay, detached from their rule, so sessions keep their slot row.

        Returns:
            The newly created rules
        """
        try:
            removed_slots = self.db.execute(
                delete(AvailabilitySlot)
                .where(
                    AvailabilitySlot.therapist_id == therapist_id,
                    AvailabilitySlot.rule_id.isnot(None),
                    AvailabilitySlot.is_booked.is_(False),
                )
                .execution_options(synchronize_session=False)
            ).rowcount
            self.db.execute(
                update(AvailabilitySlot)
                .where(
                    AvailabilitySlot.therapist_id == therapist_id,
                    AvailabilitySlot.rule_id.isnot(None),
                )
                .values(rule_id=None)
                .execution_options(synchronize_session=False)
            )
            removed_rules = self.db.execute(
                delete(AvailabilityRule)
                .where(AvailabilityRule.therapist_id == therapist_id)
                .execution_options(synchronize_session=False)
            ).rowcount

            created = [AvailabilityRule(therapist_id=therapist_id, **data) for data in rules]
            self.db.add_all(created)
            self.db.flush()
            # Bulk statements bypassed the identity map.
            self.db.expire_all()

            self.logger.info(
                "Replaced availability rules",
                extra={
                    "therapist_id": therapist_id,
                    "removed_rules": removed_rules,
                    "removed_slots": removed_slots,
                    "created_rules": len(created),
                },
            )
            return created
        except SQLAlchemyError as e:
            self.logger.error(f"Error replacing rules for therapist {therapist_id}: {str(e)}")
            raise RepositoryException(f"Failed to replace availability rules: {str(e)}")

    # Slot queries

    def get_slot(self, therapist_id: str, slot_date: date, start_time: str) -> Optional[AvailabilitySlot]:
        return self.find_one_by(therapist_id=therapist_id, date=slot_date, start_time=start_time)

    def get_slots_for_date(self, therapist_id: str, slot_date: date) -> List[AvailabilitySlot]:
        return self._execute_query(
            self._build_query()
            .filter(
                AvailabilitySlot.therapist_id == therapist_id,
                AvailabilitySlot.date == slot_date,
            )
            .order_by(AvailabilitySlot.start_time)
        )

    def get_slots_in_range(
        self, therapist_id: str, start_date: date, end_date: date
    ) -> List[AvailabilitySlot]:
        return self._execute_query(
            self._build_query()
            .filter(
                AvailabilitySlot.therapist_id == therapist_id,
                AvailabilitySlot.date >= start_date,
                AvailabilitySlot.date <= end_date,
            )
            .order_by(AvailabilitySlot.date, AvailabilitySlot.start_time)
        )

    def ensure_slot(
        self,
        therapist_id: str,
        slot_date: date,
        start_time: str,
        *,
        duration_minutes: int,
        is_free: bool = False,
        rule_id: Optional[str] = None,
    ) -> AvailabilitySlot:
        """
        Get or create the slot row for (therapist, date, start_time).

        The insert ignores a unique-key conflict, so a concurrent writer of
        the same identity makes this call return the winner's row.
        """
        existing = self.get_slot(therapist_id, slot_date, start_time)
        if existing:
            return existing

        values = {
            "id": generate_ulid(),
            "therapist_id": therapist_id,
            "date": slot_date,
            "start_time": start_time,
            "duration_minutes": duration_minutes,
            "is_free": is_free,
            "rule_id": rule_id,
            "is_booked": False,
        }
        try:
            if self._dialect == "postgresql":
                stmt = pg_insert(AvailabilitySlot).values(**values).on_conflict_do_nothing(
                    constraint="uq_availability_slots_therapist_date_start"
                )
            else:
                stmt = insert(AvailabilitySlot).values(**values)
                if self._dialect == "sqlite":
                    stmt = stmt.prefix_with("OR IGNORE")
            result = self.db.execute(stmt)
        except SQLAlchemyError as e:
            self.logger.error(f"Error creating slot for therapist {therapist_id}: {str(e)}")
            raise RepositoryException(f"Failed to create slot: {str(e)}")

        if not getattr(result, "rowcount", 0):
            self.logger.info(
                "Slot row created concurrently, re-reading",
                extra={"therapist_id": therapist_id, "date": str(slot_date), "start_time": start_time},
            )
        slot = self.get_slot(therapist_id, slot_date, start_time)
        if slot is None:
            raise RepositoryException("Slot row could not be reloaded after insert")
        return slot

    # Conditional booked-flag updates

    def claim_slot(self, slot_id: str) -> bool:
        """
        Atomically flip ``is_booked`` false -> true.

        Returns:
            True when this caller won the slot, False when it was already booked
        """
        try:
            result = self.db.execute(
                update(AvailabilitySlot)
                .where(AvailabilitySlot.id == slot_id, AvailabilitySlot.is_booked.is_(False))
                .values(is_booked=True)
                .execution_options(synchronize_session=False)
            )
            self._expire_slot(slot_id)
            return result.rowcount == 1
        except SQLAlchemyError as e:
            self.logger.error(f"Error claiming slot {slot_id}: {str(e)}")
            raise RepositoryException(f"Failed to claim slot: {str(e)}")

    def release_slot(self, slot_id: str) -> bool:
        """Atomically flip ``is_booked`` true -> false. Returns whether a row changed."""
        try:
            result = self.db.execute(
                update(AvailabilitySlot)
                .where(AvailabilitySlot.id == slot_id, AvailabilitySlot.is_booked.is_(True))
                .values(is_booked=False)
                .execution_options(synchronize_session=False)
            )
            self._expire_slot(slot_id)
            return result.rowcount == 1
        except SQLAlchemyError as e:
            self.logger.error(f"Error releasing slot {slot_id}: {str(e)}")
            raise RepositoryException(f"Failed to release slot: {str(e)}")

    def release_slot_by_time(
        self, therapist_id: str, slot_date: date, start_time_encodings: Iterable[str]
    ) -> bool:
        """
        Free a booked slot located by its start-time string.

        Tries each encoding in order and stops at the first one that
        matches a booked row.
        """
        try:
            # Pending changes must survive the expire_all below.
            self.db.flush()
            for encoding in start_time_encodings:
                result = self.db.execute(
                    update(AvailabilitySlot)
                    .where(
                        AvailabilitySlot.therapist_id == therapist_id,
                        AvailabilitySlot.date == slot_date,
                        AvailabilitySlot.start_time == encoding,
                        AvailabilitySlot.is_booked.is_(True),
                    )
                    .values(is_booked=False)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount:
                    self.db.expire_all()
                    return True
            return False
        except SQLAlchemyError as e:
            self.logger.error(f"Error releasing slot for therapist {therapist_id}: {str(e)}")
            raise RepositoryException(f"Failed to release slot: {str(e)}")

    def _expire_slot(self, slot_id: str) -> None:
        slot = self.db.get(AvailabilitySlot, slot_id)
        if slot is not None:
            self.db.expire(slot)
