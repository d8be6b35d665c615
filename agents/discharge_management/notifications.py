"""
Notification sink for the discharge panel.

Staff see short success/failure messages (toasts). The workflow only knows
the ``NotificationSink`` interface; ``RecentNotifications`` logs every
message and keeps a bounded history that the API serves to the panel.
"""

import logging
from collections import deque
from typing import Deque, List, Optional, Protocol

from .records import Notification

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    def notify_success(self, message: str) -> None:
        ...

    def notify_failure(self, message: str) -> None:
        ...


class RecentNotifications:
    """Keeps the most recent notifications, newest first."""

    def __init__(self, max_size: int = 50) -> None:
        self._items: Deque[Notification] = deque(maxlen=max_size)

    def notify_success(self, message: str) -> None:
        logger.info(f"Notify success: {message}")
        self._items.appendleft(Notification(level="success", message=message))

    def notify_failure(self, message: str) -> None:
        logger.warning(f"Notify failure: {message}")
        self._items.appendleft(Notification(level="error", message=message))

    def recent(self, limit: Optional[int] = None) -> List[Notification]:
        items = list(self._items)
        return items if limit is None else items[:limit]

    def clear(self) -> None:
        self._items.clear()
