# backend/therapy_booking/models/refund.py
"""
CancelRefund: refunds owed to a guardian after a cancellation.

Rows are written when a parent or guardian cancels a paid session with a
refund due, and are settled manually by an administrator.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..core.enums import RefundStatus
from ..core.exceptions import InvalidStateException
from ..database import Base


class CancelRefund(Base):
    __tablename__ = "cancel_refunds"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    session_id = Column(
        String(26), ForeignKey("therapy_sessions.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    guardian_user_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)
    patient_id = Column(String(26), ForeignKey("patients.id"), nullable=False)

    original_amount = Column(Numeric(10, 2), nullable=False)
    refund_amount = Column(Numeric(10, 2), nullable=False)
    platform_fee = Column(Numeric(10, 2), nullable=False)
    therapist_share = Column(Numeric(10, 2), nullable=False)
    tier = Column(String(30), nullable=False)

    # Bank details for the manual transfer
    bank_account_name = Column(String(255), nullable=False)
    bank_name = Column(String(255), nullable=False)
    account_number = Column(String(34), nullable=False)
    branch_code = Column(String(20), nullable=True)
    swift_code = Column(String(11), nullable=True)

    refund_status = Column(String(20), nullable=False, default=RefundStatus.PENDING.value)
    admin_notes = Column(Text, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    session = relationship("TherapySession")

    __table_args__ = (
        CheckConstraint("refund_amount >= 0", name="check_refund_non_negative"),
        CheckConstraint(
            "refund_status IN ('PENDING', 'COMPLETED')", name="ck_cancel_refunds_status"
        ),
    )

    def mark_completed(self, note: Optional[str] = None, *, when: Optional[datetime] = None) -> None:
        if self.refund_status != RefundStatus.PENDING.value:
            raise InvalidStateException(
                "Refund has already been processed", current_status=self.refund_status
            )
        self.refund_status = RefundStatus.COMPLETED.value
        self.processed_at = when or datetime.now(timezone.utc)
        if note:
            self.admin_notes = note

    def __repr__(self) -> str:
        return f"<CancelRefund {self.id}: session={self.session_id}, amount={self.refund_amount}, {self.refund_status}>"
