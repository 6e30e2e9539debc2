"""
Payment models for the PayHere integration.

A Payment is one checkout attempt at the gateway. Booking payments carry
the typed pending booking they will materialize into; reschedule-fee
payments point at the session they unlock. PaymentEvent keeps the
append-only history of every gateway interaction for an order.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
import ulid

from ..core.enums import PaymentPurpose, PaymentStatus
from ..database import Base

if TYPE_CHECKING:
    from .session import TherapySession


class Payment(Base):
    """Gateway payment intent, keyed by the order id sent to PayHere."""

    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    order_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="LKR")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=PaymentStatus.PENDING.value)
    purpose: Mapped[str] = mapped_column(String(20), nullable=False, default=PaymentPurpose.BOOKING.value)

    patient_id: Mapped[str] = mapped_column(String(26), ForeignKey("patients.id"), nullable=False, index=True)
    payer_user_id: Mapped[Optional[str]] = mapped_column(String(26), ForeignKey("users.id"), nullable=True)
    session_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("therapy_sessions.id", ondelete="SET NULL"), nullable=True, index=True
    )

    # Gateway response fields
    gateway_payment_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    payment_method: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    status_code: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    status_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    booking_intent: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        JSON, nullable=True, comment="PendingBooking for BOOKING payments"
    )
    # "metadata" is reserved on declarative classes, so the attribute is renamed.
    payment_metadata: Mapped[Optional[Dict[str, Any]]] = mapped_column("metadata", JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    session: Mapped[Optional["TherapySession"]] = relationship("TherapySession", foreign_keys=[session_id])
    events: Mapped[List["PaymentEvent"]] = relationship(
        "PaymentEvent",
        back_populates="payment",
        cascade="all, delete-orphan",
        order_by="PaymentEvent.created_at",
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'COMPLETED', 'FAILED', 'CANCELLED')",
            name="ck_payments_status",
        ),
        CheckConstraint("purpose IN ('BOOKING', 'RESCHEDULE_FEE')", name="ck_payments_purpose"),
    )

    def __repr__(self) -> str:
        return f"<Payment(order_id={self.order_id}, amount={self.amount}, status={self.status})>"


class PaymentEvent(Base):
    """Append-only history entry for a payment."""

    __tablename__ = "payment_events"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    payment_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("payments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    data: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    # Set client-side so events written in one second keep their order.
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
        nullable=False,
    )

    payment: Mapped["Payment"] = relationship("Payment", back_populates="events")

    def __repr__(self) -> str:
        return f"<PaymentEvent(payment_id={self.payment_id}, type={self.event_type})>"
