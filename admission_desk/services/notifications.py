import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Callable, List, Optional

from admission_desk.core.errors import NotFoundError
from admission_desk.models.notification import Notification, NotificationType, Priority
from admission_desk.stores.base import NotificationStore

logger = logging.getLogger(__name__)

Listener = Callable[[Notification], None]


class NotificationEmitter:
    """
    The shared admin review inbox.

    There is one inbox for the whole admin team: read state is a single
    flag per notification, so marking read is visible to every viewer.
    """

    def __init__(self, store: NotificationStore):
        self.store = store
        self._listeners: List[Listener] = []
        self._listeners_lock = threading.Lock()

    def notify(
        self,
        type: NotificationType,
        title: str,
        message: str,
        link: Optional[str] = None,
        priority: Priority = Priority.MEDIUM,
        related_id: Optional[str] = None,
    ) -> Notification:
        notification = Notification(
            id=str(uuid.uuid4()),
            type=type,
            title=title,
            message=message,
            link=link,
            priority=priority,
            related_id=related_id,
            created_at=datetime.now(timezone.utc),
        )
        self.store.add(notification)
        self._publish(notification)
        return notification

    def notify_safely(self, **kwargs) -> Optional[Notification]:
        """notify() for callers whose durable write already happened."""
        try:
            return self.notify(**kwargs)
        except Exception:
            logger.warning("Notification creation failed (non-critical)", exc_info=True)
            return None

    def list(
        self,
        limit: int = 50,
        offset: int = 0,
        is_read: Optional[bool] = None,
        type: Optional[NotificationType] = None,
    ) -> List[Notification]:
        return self.store.list(limit=limit, offset=offset, is_read=is_read, type=type)

    def unread_count(self) -> int:
        return self.store.unread_count()

    def mark_read(self, notification_id: str) -> Notification:
        notification = self.store.mark_read(notification_id, datetime.now(timezone.utc))
        if notification is None:
            raise NotFoundError("Notification", notification_id)
        return notification

    def mark_all_read(self) -> int:
        return self.store.mark_all_read(datetime.now(timezone.utc))

    def delete(self, notification_id: str) -> None:
        if not self.store.delete(notification_id):
            raise NotFoundError("Notification", notification_id)

    # --- push channel ---

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener for new notifications; returns the unsubscribe call."""
        with self._listeners_lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._listeners_lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, notification: Notification) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(notification)
            except Exception:
                logger.exception("Notification listener failed")
