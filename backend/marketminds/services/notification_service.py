"""
Notification Service - fire-and-forget emission of transactional events
"""
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict

from ..core.events import EventKind
from ..tasks.notifications import send_notification
import logging

logger = logging.getLogger(__name__)


def _jsonable(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


class NotificationService:
    """
    Hands events to the task queue and returns immediately.

    Delivery happens in a worker; a broker or delivery failure is logged
    and never reaches the business operation that emitted the event.
    """

    def emit(self, kind: EventKind, payload: Dict[str, Any]) -> bool:
        try:
            send_notification.apply_async(args=[kind.value, _jsonable(payload)], retry=False)
            return True
        except Exception as e:
            logger.error(f"Failed to enqueue {kind.value} notification: {e}")
            return False


# Singleton instance
notification_service = NotificationService()


def get_notifier() -> NotificationService:
    """Dependency to get the notifier"""
    return notification_service
