# backend/therapy_booking/models/availability.py
"""
Availability models for the booking engine.

AvailabilityRule describes when a therapist works, either on one weekday,
on a specific date, or recurring daily/weekly. AvailabilitySlot is a
concrete bookable time, created explicitly in bulk or materialized from a
rule the first time it is chosen. Slot identity is
(therapist_id, date, start_time) with start_time a normalized "HH:MM"
string, and ``is_booked`` is only ever flipped by conditional updates.
"""

from typing import Any, List

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..core.enums import RecurrenceType
from ..database import Base


class AvailabilityRule(Base):
    __tablename__ = "availability_rules"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    therapist_id = Column(
        String(26), ForeignKey("therapists.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # 0=Monday .. 6=Sunday, as date.weekday()
    day_of_week = Column(Integer, nullable=True)
    specific_date = Column(Date, nullable=True)

    start_time = Column(String(5), nullable=False)
    end_time = Column(String(5), nullable=False)
    session_duration = Column(Integer, nullable=False, default=45)
    break_between_sessions = Column(Integer, nullable=False, default=15)

    recurrence = Column(String(10), nullable=False, default=RecurrenceType.NONE)
    recurrence_days = Column(JSON, nullable=True)
    recurrence_end_date = Column(Date, nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)
    is_free = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    therapist = relationship("Therapist", back_populates="availability_rules")

    __table_args__ = (
        CheckConstraint("session_duration > 0", name="ck_availability_rules_duration_positive"),
        CheckConstraint("break_between_sessions >= 0", name="ck_availability_rules_break_non_negative"),
        CheckConstraint(
            "day_of_week IS NULL OR (day_of_week >= 0 AND day_of_week <= 6)",
            name="ck_availability_rules_day_of_week",
        ),
        CheckConstraint(
            "recurrence IN ('NONE', 'DAILY', 'WEEKLY')",
            name="ck_availability_rules_recurrence",
        ),
    )

    @property
    def weekdays(self) -> List[int]:
        return [int(day) for day in (self.recurrence_days or [])]

    def __repr__(self) -> str:
        when = self.specific_date or f"dow={self.day_of_week}"
        return (
            f"<AvailabilityRule {self.id}: therapist={self.therapist_id}, {when}, "
            f"{self.start_time}-{self.end_time}, {self.recurrence}>"
        )


class AvailabilitySlot(Base):
    """
    A concrete bookable time for a therapist.

    ``rule_id`` points at the rule the slot was derived from. It is nulled
    when the rule set is replaced while the slot is booked, so the booking
    keeps its slot row.
    """

    __tablename__ = "availability_slots"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    therapist_id = Column(
        String(26), ForeignKey("therapists.id", ondelete="CASCADE"), nullable=False
    )
    rule_id = Column(
        String(26), ForeignKey("availability_rules.id", ondelete="SET NULL"), nullable=True
    )
    date = Column(Date, nullable=False)
    start_time = Column(String(8), nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=45)
    is_booked = Column(Boolean, nullable=False, default=False)
    is_free = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint(
            "therapist_id", "date", "start_time", name="uq_availability_slots_therapist_date_start"
        ),
        Index("ix_availability_slots_therapist_date", "therapist_id", "date"),
        CheckConstraint("duration_minutes > 0", name="ck_availability_slots_duration_positive"),
    )

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        if self.is_booked is None:
            self.is_booked = False
        if self.is_free is None:
            self.is_free = False

    def __repr__(self) -> str:
        return (
            f"<AvailabilitySlot {self.id}: therapist={self.therapist_id}, "
            f"{self.date} {self.start_time}, booked={self.is_booked}>"
        )
