# backend/therapy_booking/services/notification_service.py
"""
Notification Service for the booking engine.

Writes notification records inside the caller's transaction. Delivery
(push, email) is someone else's job, so nothing here commits or performs I/O
beyond the insert.
"""

import logging
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from ..core.enums import NotificationType
from ..models.notification import Notification
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)


class NotificationService(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)
        self.repository = RepositoryFactory.create_notification_repository(db)
        self.user_repository = RepositoryFactory.create_user_repository(db)

    def emit(
        self,
        receiver_id: str,
        title: str,
        message: str,
        *,
        type: NotificationType = NotificationType.APPOINTMENT,
        sender_id: Optional[str] = None,
        is_urgent: bool = False,
    ) -> Notification:
        notification = self.repository.create(
            receiver_id=receiver_id,
            sender_id=sender_id,
            type=type.value,
            title=title,
            message=message,
            is_urgent=is_urgent,
            is_read=False,
        )
        self.logger.debug(f"Notification {notification.id} queued for {receiver_id}")
        return notification

    def emit_many(
        self,
        receiver_ids: Iterable[str],
        title: str,
        message: str,
        **kwargs,
    ) -> List[Notification]:
        seen = set()
        created = []
        for receiver_id in receiver_ids:
            if not receiver_id or receiver_id in seen:
                continue
            seen.add(receiver_id)
            created.append(self.emit(receiver_id, title, message, **kwargs))
        return created

    def notify_admins(
        self,
        title: str,
        message: str,
        *,
        type: NotificationType = NotificationType.SYSTEM,
        is_urgent: bool = False,
    ) -> List[Notification]:
        admin_ids = self.user_repository.get_admin_ids()
        if not admin_ids:
            self.logger.warning(f"No administrators to notify: {title}")
        return self.emit_many(admin_ids, title, message, type=type, is_urgent=is_urgent)
