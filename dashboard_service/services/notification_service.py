"""站内通知服务"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from dashboard_service.db.repositories import NotificationRepository
from dashboard_service.errors import NotFoundError
from dashboard_service.models.schemas import Notification

logger = logging.getLogger(__name__)


class NotificationService:

    def __init__(self, repository: Optional[NotificationRepository] = None):
        self._repo = repository or NotificationRepository()

    async def list_notifications(self, user_id: str) -> List[Notification]:
        return await self._repo.list_for_user(user_id)

    async def notify(
        self,
        user_id: str,
        title: str,
        message: str,
        kind: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Notification:
        notification = Notification(
            id=uuid.uuid4().hex,
            user_id=user_id,
            title=title,
            message=message,
            type=kind,
            data=data or {},
            created_at=datetime.now(tz=timezone.utc),
        )
        await self._repo.insert(notification)
        return notification

    async def mark_read(
        self, user_id: str, notification_id: str, read: Optional[bool] = None
    ) -> Notification:
        """未指定 read 时默认标记为已读"""
        notification = await self._repo.update(
            user_id, notification_id, read=True if read is None else read
        )
        if notification is None:
            raise NotFoundError("Notification not found")
        return notification


# ── 模块级别单例 ──────────────────────────────────────────
_notification_service: Optional[NotificationService] = None


def get_notification_service() -> NotificationService:
    global _notification_service
    if _notification_service is None:
        _notification_service = NotificationService()
    return _notification_service
