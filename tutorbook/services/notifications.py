"""
Notification Sink

Fire-and-forget in-app notifications. Each notification is written in its own
unit of work after the primary operation has committed; failures are logged
and never reach the caller.
"""
import logging
import uuid
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select

from tutorbook.database import AsyncSessionLocal
from tutorbook.models.notification import Notification

logger = logging.getLogger(__name__)


def notice(
    user_id: uuid.UUID,
    type: str,
    title: str,
    message: str,
    link: Optional[str] = None,
    related_id: Optional[Any] = None,
) -> Dict[str, Any]:
    """Build a pending notification to send once the transaction commits"""
    return {
        "user_id": user_id,
        "type": type,
        "title": title,
        "message": message,
        "link": link,
        "related_id": str(related_id) if related_id is not None else None,
    }


class NotificationService:
    def __init__(self, session_factory=AsyncSessionLocal):
        self.session_factory = session_factory

    async def create_notification(
        self,
        user_id: uuid.UUID,
        type: str,
        title: str,
        message: str,
        link: Optional[str] = None,
        related_id: Optional[str] = None,
    ) -> Optional[Notification]:
        try:
            async with self.session_factory() as db:
                notification = Notification(
                    user_id=user_id,
                    type=type,
                    title=title,
                    message=message,
                    link=link,
                    related_id=related_id,
                )
                db.add(notification)
                await db.commit()
                logger.debug(f"Notification '{type}' sent to user {user_id}")
                return notification
        except Exception as e:
            logger.error(f"Failed to send '{type}' notification to {user_id}: {e}", exc_info=True)
            return None

    async def send_all(self, notices: Iterable[Dict[str, Any]]) -> int:
        """Send pending notifications; returns how many were stored"""
        sent = 0
        for pending in notices:
            if await self.create_notification(**pending) is not None:
                sent += 1
        return sent

    async def list_for_user(self, user_id: uuid.UUID, unread_only: bool = False) -> List[Notification]:
        async with self.session_factory() as db:
            query = select(Notification).where(Notification.user_id == user_id)
            if unread_only:
                query = query.where(Notification.is_read.is_(False))
            result = await db.execute(query.order_by(Notification.created_at.desc()))
            return list(result.scalars().all())


# Global notification service instance
_notifier: Optional[NotificationService] = None


def get_notification_service() -> NotificationService:
    """Get or create global NotificationService instance."""
    global _notifier
    if _notifier is None:
        _notifier = NotificationService()
    return _notifier
