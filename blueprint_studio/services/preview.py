from __future__ import annotations

import asyncio
import logging
from typing import Any

from pydantic import TypeAdapter

from blueprint_studio.schemas.blueprint import Blueprint, blueprint_payload
from blueprint_studio.schemas.editor import BlueprintUpdateMessage, CommandMessage, PreviewMessage

logger = logging.getLogger(__name__)

_preview_message_adapter: TypeAdapter[PreviewMessage] = TypeAdapter(PreviewMessage)


def parse_preview_message(raw: dict[str, Any]) -> BlueprintUpdateMessage | CommandMessage:
    return _preview_message_adapter.validate_python(raw)


class InMemoryPreviewChannel:
    """
    Fan-out of preview messages to subscriber queues.

    Publishing never blocks: a subscriber whose queue is full misses the message and will catch up
    on the next `blueprint-update`, which always carries the whole document.
    """

    def __init__(self, *, queue_size: int = 32) -> None:
        self.queue_size = queue_size
        self._subscribers: list[asyncio.Queue[dict[str, Any]]] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue[dict[str, Any]]:
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[dict[str, Any]]) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def publish(self, message: BlueprintUpdateMessage | CommandMessage) -> int:
        payload = message.model_dump(mode="json")
        delivered = 0
        for queue in self._subscribers:
            try:
                queue.put_nowait(payload)
            except asyncio.QueueFull:
                logger.warning("preview.subscriber_lagging", extra={"message_type": message.type})
                continue
            delivered += 1
        return delivered

    def publish_document(self, document: Blueprint) -> int:
        return self.publish(BlueprintUpdateMessage(document=blueprint_payload(document)))

    def publish_command(self, instruction: str) -> int:
        return self.publish(CommandMessage(instruction=instruction))
