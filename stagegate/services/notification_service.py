"""Notification dispatch boundary.

The review core only hands events to a dispatcher; content and channel are
someone else's concern. The default dispatcher writes one structured log line
per recipient, which is enough for local runs and tests. Deployments install
their own dispatcher with ``set_dispatcher``.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    event_type: str
    recipient_id: str
    mockup_id: int
    recipient_name: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)


class NotificationDispatcher(Protocol):
    def send(self, notification: Notification) -> None: ...


class LogNotificationDispatcher:
    def send(self, notification: Notification) -> None:
        logger.info(
            "Notification dispatched",
            extra={
                "event_type": notification.event_type,
                "recipient_id": notification.recipient_id,
                "mockup_id": notification.mockup_id,
            },
        )


class RecordingNotificationDispatcher:
    """Keeps sent notifications in memory."""

    def __init__(self) -> None:
        self.sent: List[Notification] = []

    def send(self, notification: Notification) -> None:
        self.sent.append(notification)


_dispatcher: NotificationDispatcher = LogNotificationDispatcher()


def get_dispatcher() -> NotificationDispatcher:
    return _dispatcher


def set_dispatcher(dispatcher: NotificationDispatcher) -> NotificationDispatcher:
    """Install a dispatcher; returns the previous one."""
    global _dispatcher
    previous = _dispatcher
    _dispatcher = dispatcher
    return previous
