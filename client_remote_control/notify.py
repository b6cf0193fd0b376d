"""
User-visible notifications.

The relay only decides *when* to notify and with which category; how the
notification is shown is up to the notifier the session is given. The
default notifier writes to the log.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Callable, List

logger = logging.getLogger(__name__)


class Level(enum.Enum):
    INFO = "info"
    ERROR = "error"


@dataclass(frozen=True)
class Notification:
    """
    A single user-visible notification.

    Attributes:
        category: Stable machine-readable category (e.g. "connected")
        level: INFO or ERROR
        message: Human-readable description
    """
    category: str
    level: Level
    message: str


Notifier = Callable[[Notification], None]


def log_notifier(notification: Notification) -> None:
    """Default notifier: write the notification to the log."""
    if notification.level is Level.ERROR:
        logger.error(f"[{notification.category}] {notification.message}")
    else:
        logger.info(f"[{notification.category}] {notification.message}")


class NotificationRecorder:
    """Notifier that keeps every notification, used by the CLI status line and tests."""

    def __init__(self, forward: Notifier = log_notifier):
        self.forward = forward
        self.notifications: List[Notification] = []

    def __call__(self, notification: Notification) -> None:
        self.notifications.append(notification)
        if self.forward:
            self.forward(notification)

    @property
    def categories(self) -> List[str]:
        return [n.category for n in self.notifications]

    @property
    def last(self):
        return self.notifications[-1] if self.notifications else None
