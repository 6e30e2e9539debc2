# backend/therapy_booking/models/session.py
"""
Therapy session model and its lifecycle.

A TherapySession is only ever created by the booking materializer (after a
completed payment) or by the direct request flow for free slots. Status
changes go through ``transition_to`` so every path honours the same
transition table.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
import logging
from typing import Any, Dict, FrozenSet, Optional

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..core.exceptions import InvalidStateException
from ..database import Base

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    """Therapy session lifecycle statuses."""

    REQUESTED = "REQUESTED"  # Free slot requested, awaiting therapist
    SCHEDULED = "SCHEDULED"  # Paid and confirmed
    APPROVED = "APPROVED"  # Request approved by therapist
    RESCHEDULED = "RESCHEDULED"  # Moved, awaiting acknowledgement
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


SESSION_TRANSITIONS: Dict[SessionStatus, FrozenSet[SessionStatus]] = {
    SessionStatus.REQUESTED: frozenset(
        {
            SessionStatus.APPROVED,
            SessionStatus.SCHEDULED,
            SessionStatus.RESCHEDULED,
            SessionStatus.CANCELLED,
        }
    ),
    SessionStatus.SCHEDULED: frozenset(
        {
            SessionStatus.COMPLETED,
            SessionStatus.CANCELLED,
            SessionStatus.NO_SHOW,
            SessionStatus.RESCHEDULED,
        }
    ),
    SessionStatus.APPROVED: frozenset(
        {
            SessionStatus.COMPLETED,
            SessionStatus.CANCELLED,
            SessionStatus.NO_SHOW,
            SessionStatus.RESCHEDULED,
        }
    ),
    SessionStatus.RESCHEDULED: frozenset(
        {
            SessionStatus.SCHEDULED,
            SessionStatus.COMPLETED,
            SessionStatus.CANCELLED,
            SessionStatus.NO_SHOW,
            SessionStatus.RESCHEDULED,
        }
    ),
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.CANCELLED: frozenset(),
    SessionStatus.NO_SHOW: frozenset(),
}

# Statuses from which a session may still be cancelled or rescheduled.
ACTIVE_SESSION_STATUSES: FrozenSet[SessionStatus] = frozenset(
    {
        SessionStatus.REQUESTED,
        SessionStatus.SCHEDULED,
        SessionStatus.APPROVED,
        SessionStatus.RESCHEDULED,
    }
)

TERMINAL_SESSION_STATUSES: FrozenSet[SessionStatus] = frozenset(
    {SessionStatus.COMPLETED, SessionStatus.CANCELLED, SessionStatus.NO_SHOW}
)


def can_transition(current: str, target: str) -> bool:
    try:
        return SessionStatus(target) in SESSION_TRANSITIONS[SessionStatus(current)]
    except (KeyError, ValueError):
        return False


class TherapySession(Base):
    """
    A booked therapy session.

    ``scheduled_at`` is a naive wall-clock datetime in the clinic timezone.
    ``availability_slot_id`` references the claimed slot so cancellation can
    free it by id.
    """

    __tablename__ = "therapy_sessions"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    patient_id = Column(String(26), ForeignKey("patients.id"), nullable=False, index=True)
    therapist_id = Column(String(26), ForeignKey("therapists.id"), nullable=False)
    availability_slot_id = Column(
        String(26), ForeignKey("availability_slots.id", ondelete="SET NULL"), nullable=True
    )

    scheduled_at = Column(DateTime, nullable=False, index=True)
    duration = Column(Integer, nullable=False, default=45)
    status = Column(String(20), nullable=False, default=SessionStatus.SCHEDULED, index=True)
    session_type = Column(String(50), nullable=False, default="Individual")
    booked_rate = Column(Numeric(10, 2), nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # Cancellation tracking
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_by_id = Column(String(26), ForeignKey("users.id"), nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    patient = relationship("Patient")
    therapist = relationship("Therapist")
    availability_slot = relationship("AvailabilitySlot")
    reschedules = relationship(
        "SessionReschedule",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="SessionReschedule.created_at",
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('REQUESTED', 'SCHEDULED', 'APPROVED', 'RESCHEDULED', "
            "'COMPLETED', 'CANCELLED', 'NO_SHOW')",
            name="ck_therapy_sessions_status",
        ),
        CheckConstraint("duration > 0", name="check_session_duration_positive"),
        CheckConstraint("booked_rate >= 0", name="check_booked_rate_non_negative"),
        Index("ix_therapy_sessions_therapist_scheduled", "therapist_id", "scheduled_at"),
    )

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        if not self.status:
            self.status = SessionStatus.SCHEDULED

    def __repr__(self) -> str:
        return (
            f"<TherapySession {self.id}: patient={self.patient_id}, "
            f"therapist={self.therapist_id}, at={self.scheduled_at}, status={self.status}>"
        )

    @property
    def ends_at(self) -> datetime:
        return self.scheduled_at + timedelta(minutes=int(self.duration or 0))

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_SESSION_STATUSES

    def transition_to(self, target: SessionStatus) -> None:
        """
        Move the session to ``target``.

        Raises:
            InvalidStateException: If the transition table forbids the move
        """
        if not can_transition(self.status, target):
            raise InvalidStateException(
                f"Cannot move session from {self.status} to {SessionStatus(target).value}",
                current_status=str(SessionStatus(self.status).value),
            )
        self.status = SessionStatus(target).value

    def cancel(self, cancelled_by_user_id: str, reason: Optional[str] = None) -> None:
        """Cancel this session."""
        self.transition_to(SessionStatus.CANCELLED)
        self.cancelled_at = datetime.now(timezone.utc)
        self.cancelled_by_id = cancelled_by_user_id
        self.cancellation_reason = reason
        logger.info(f"Session {self.id} cancelled by user {cancelled_by_user_id}")

    def complete(self) -> None:
        """Mark session as completed."""
        self.transition_to(SessionStatus.COMPLETED)
        self.completed_at = datetime.now(timezone.utc)
        logger.info(f"Session {self.id} marked as completed")

    def mark_no_show(self) -> None:
        """Mark session as no-show."""
        self.transition_to(SessionStatus.NO_SHOW)
        logger.info(f"Session {self.id} marked as no-show")


class SessionReschedule(Base):
    """History of reschedules, one row per move."""

    __tablename__ = "session_reschedules"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    session_id = Column(
        String(26), ForeignKey("therapy_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    previous_scheduled_at = Column(DateTime, nullable=False)
    new_scheduled_at = Column(DateTime, nullable=False)
    rescheduled_by = Column(String(26), ForeignKey("users.id"), nullable=False)
    rescheduled_by_role = Column(String(20), nullable=False)
    reason = Column(Text, nullable=True)
    fee_amount = Column(Numeric(10, 2), nullable=False, default=0)
    fee_payment_id = Column(
        String(26), ForeignKey("payments.id"), nullable=True, unique=True
    )

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
    )

    session = relationship("TherapySession", back_populates="reschedules")

    def __repr__(self) -> str:
        return (
            f"<SessionReschedule {self.session_id}: "
            f"{self.previous_scheduled_at} -> {self.new_scheduled_at}>"
        )
