# backend/therapy_booking/repositories/payment_repository.py
"""
PaymentRepository - gateway payments and their event history.

``link_session`` is a conditional update: a payment is linked to a session
at most once, whoever gets there first.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.payment import Payment, PaymentEvent
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class PaymentRepository(BaseRepository[Payment]):
    def __init__(self, db: Session):
        super().__init__(db, Payment)

    def get_by_order_id(self, order_id: str) -> Optional[Payment]:
        return self.find_one_by(order_id=order_id)

    def link_session(self, payment_id: str, session_id: str) -> bool:
        """
        Set ``session_id`` if it is still empty.

        Returns:
            True when this call linked the payment
        """
        try:
            result = self.db.execute(
                update(Payment)
                .where(Payment.id == payment_id, Payment.session_id.is_(None))
                .values(session_id=session_id)
                .execution_options(synchronize_session=False)
            )
            payment = self.db.get(Payment, payment_id)
            if payment is not None:
                self.db.expire(payment)
            return result.rowcount == 1
        except SQLAlchemyError as e:
            self.logger.error(f"Error linking payment {payment_id}: {str(e)}")
            raise RepositoryException(f"Failed to link payment to session: {str(e)}")

    def get_completed_for_session(self, session_id: str, purpose: str) -> List[Payment]:
        return self._execute_query(
            self._build_query().filter(
                Payment.session_id == session_id,
                Payment.purpose == purpose,
                Payment.status == "COMPLETED",
            )
        )

    def merge_metadata(self, payment: Payment, values: Dict[str, Any]) -> None:
        """Merge keys into the JSON metadata column."""
        merged = dict(payment.payment_metadata or {})
        merged.update(values)
        # Reassign so the JSON column is marked dirty.
        payment.payment_metadata = merged
        self.db.flush()

    # Event history

    def add_event(self, payment: Payment, event_type: str, data: Optional[Dict[str, Any]] = None) -> PaymentEvent:
        try:
            event = PaymentEvent(payment_id=payment.id, event_type=event_type, data=data or {})
            self.db.add(event)
            self.db.flush()
            return event
        except SQLAlchemyError as e:
            self.logger.error(f"Error recording payment event {event_type}: {str(e)}")
            raise RepositoryException(f"Failed to record payment event: {str(e)}")