"""
In-app notification records.

Delivery (push, email) is handled elsewhere; the booking engine only
writes the rows.
"""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.sql import func
import ulid

from ..core.enums import NotificationType
from ..database import Base


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    sender_id = Column(String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    receiver_id = Column(String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    type = Column(String(20), nullable=False, default=NotificationType.SYSTEM.value)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    is_urgent = Column(Boolean, nullable=False, default=False)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (Index("ix_notifications_receiver_read", "receiver_id", "is_read"),)

    def __repr__(self) -> str:
        return f"<Notification {self.id} to={self.receiver_id} type={self.type}>"
