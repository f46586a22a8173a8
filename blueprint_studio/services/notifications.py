from __future__ import annotations

import logging
from collections import deque
from datetime import datetime
from enum import Enum
from typing import Optional, Protocol

from pydantic import BaseModel, Field

from blueprint_studio.schemas.editor import utcnow

logger = logging.getLogger(__name__)


class NotificationLevel(str, Enum):
    info = "info"
    success = "success"
    error = "error"


class Notification(BaseModel):
    level: NotificationLevel
    message: str
    kind: Optional[str] = None
    createdAt: datetime = Field(default_factory=utcnow)


class Notifier(Protocol):
    def notify(self, notification: Notification) -> None: ...


class CollectingNotifier:
    """Keeps the most recent toasts until a client drains them."""

    def __init__(self, *, limit: int = 50) -> None:
        self._pending: deque[Notification] = deque(maxlen=limit)

    def notify(self, notification: Notification) -> None:
        log = logger.warning if notification.level == NotificationLevel.error else logger.info
        log(
            "notification.emitted",
            extra={"level": notification.level.value, "kind": notification.kind, "toast": notification.message},
        )
        self._pending.append(notification)

    @property
    def pending(self) -> list[Notification]:
        return list(self._pending)

    def drain(self) -> list[Notification]:
        drained = list(self._pending)
        self._pending.clear()
        return drained
