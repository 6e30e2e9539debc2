# backend/therapy_booking/repositories/session_repository.py
"""
SessionRepository - therapy sessions and reschedule history.
"""

from datetime import date, datetime, time, timedelta
import logging
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.session import SessionReschedule, SessionStatus, TherapySession
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class SessionRepository(BaseRepository[TherapySession]):
    def __init__(self, db: Session):
        super().__init__(db, TherapySession)

    def get_active_for_therapist_on_date(
        self, therapist_id: str, day: date, exclude_session_id: Optional[str] = None
    ) -> List[TherapySession]:
        """
        Non-cancelled sessions of a therapist that start on ``day`` or the day before.

        The previous day is included so a late session running past midnight
        still counts as an overlap.
        """
        window_start = datetime.combine(day - timedelta(days=1), time.min)
        window_end = datetime.combine(day + timedelta(days=1), time.min)
        query = self._build_query().filter(
            TherapySession.therapist_id == therapist_id,
            TherapySession.status != SessionStatus.CANCELLED.value,
            TherapySession.scheduled_at >= window_start,
            TherapySession.scheduled_at < window_end,
        )
        if exclude_session_id:
            query = query.filter(TherapySession.id != exclude_session_id)
        return self._execute_query(query.order_by(TherapySession.scheduled_at))

    # Reschedule history

    def add_reschedule(self, **kwargs) -> SessionReschedule:
        try:
            record = SessionReschedule(**kwargs)
            self.db.add(record)
            self.db.flush()
            return record
        except SQLAlchemyError as e:
            self.logger.error(f"Error recording reschedule: {str(e)}")
            raise RepositoryException(f"Failed to record reschedule: {str(e)}")

    def list_reschedules(self, session_id: str) -> List[SessionReschedule]:
        """Reschedule history of a session, oldest first."""
        return self._execute_query(
            self.db.query(SessionReschedule)
            .filter(SessionReschedule.session_id == session_id)
            .order_by(SessionReschedule.created_at, SessionReschedule.id)
        )

    def get_latest_reschedule(self, session_id: str) -> Optional[SessionReschedule]:
        return (
            self.db.query(SessionReschedule)
            .filter(SessionReschedule.session_id == session_id)
            .order_by(SessionReschedule.created_at.desc(), SessionReschedule.id.desc())
            .first()
        )

    def fee_payment_consumed(self, payment_id: str) -> bool:
        """Whether a reschedule already used this fee payment."""
        return (
            self.db.query(SessionReschedule.id)
            .filter(SessionReschedule.fee_payment_id == payment_id)
            .first()
            is not None
        )
