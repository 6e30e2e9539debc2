# backend/therapy_booking/repositories/refund_repository.py
from typing import List

from sqlalchemy.orm import Session

from ..models.refund import CancelRefund
from .base_repository import BaseRepository


class RefundRepository(BaseRepository[CancelRefund]):
    def __init__(self, db: Session):
        super().__init__(db, CancelRefund)

    def list_by_status(self, refund_status: str) -> List[CancelRefund]:
        """Refunds in ``refund_status``, oldest first so the queue is worked in order."""
        return self._execute_query(
            self._build_query()
            .filter(CancelRefund.refund_status == refund_status)
            .order_by(CancelRefund.created_at, CancelRefund.id)
        )
