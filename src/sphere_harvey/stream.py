from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional

from .logging import get_logger

logger = get_logger(__name__)

URL_TRANSFORM_EVENT = "url_transform"


@dataclass(frozen=True)
class ResolutionEvent:
    """A url context item finished resolving into Pricing2Yaml content."""

    id: str
    yaml_content: str

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ResolutionEvent":
        item_id = payload.get("id")
        yaml_content = payload.get("yaml_content")
        if not isinstance(item_id, str) or not item_id:
            raise ValueError("url_transform event is missing its context item id")
        if not isinstance(yaml_content, str):
            raise ValueError("url_transform event is missing its yaml_content")
        return cls(id=item_id, yaml_content=yaml_content)


class ResolutionChannel:
    """Queue of resolution events, independent of how they were transported."""

    def __init__(self) -> None:
        self._queue: Optional[asyncio.Queue[ResolutionEvent]] = None

    @property
    def queue(self) -> asyncio.Queue[ResolutionEvent]:
        if self._queue is None:
            self._queue = asyncio.Queue()
        return self._queue

    def __aiter__(self) -> "ResolutionChannel":
        return self

    async def __anext__(self) -> ResolutionEvent:
        return await self.queue.get()

    async def asend(self, event: ResolutionEvent) -> None:
        await self.queue.put(event)

    def send_nowait(self, event: ResolutionEvent) -> None:
        self.queue.put_nowait(event)


async def dispatch_resolutions(
    channel: ResolutionChannel,
    apply: Callable[[ResolutionEvent], Any],
) -> None:
    """Feed every event of ``channel`` to ``apply`` until cancelled."""

    async for event in channel:
        try:
            apply(event)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("harvey.events.dispatch.failed", id=event.id, error=str(exc))


class EventBroadcaster:
    """Fan-out of named events to any number of subscriber queues."""

    def __init__(self) -> None:
        self._subscribers: List[asyncio.Queue[Dict[str, Any]]] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue[Dict[str, Any]]:
        queue: asyncio.Queue[Dict[str, Any]] = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[Dict[str, Any]]) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def publish(self, event: str, data: Dict[str, Any]) -> None:
        for queue in list(self._subscribers):
            queue.put_nowait({"event": event, "data": data})
