"""
In-process publish/subscribe channel per negotiation.

Every subscriber owns a bounded ``asyncio.Queue``. Publishing never
blocks: when a slow subscriber's queue is full the oldest pending event is
dropped to make room, and the subscriber can always fall back to
re-reading the conversation log.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import defaultdict
from typing import Any, AsyncIterator, Dict, Set, Tuple

logger = logging.getLogger(__name__)

SUBSCRIBER_QUEUE_SIZE = 100

BroadcastItem = Tuple[str, Dict[str, Any]]


class NegotiationBroadcaster:
    """Fan out negotiation events to live subscribers."""

    def __init__(self, queue_size: int = SUBSCRIBER_QUEUE_SIZE) -> None:
        self._queue_size = queue_size
        self._subscribers: Dict[int, Set["asyncio.Queue[BroadcastItem]"]] = defaultdict(set)

    @contextlib.asynccontextmanager
    async def subscribe(self, negotiation_id: int) -> AsyncIterator["asyncio.Queue[BroadcastItem]"]:
        queue: "asyncio.Queue[BroadcastItem]" = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers[negotiation_id].add(queue)
        try:
            yield queue
        finally:
            subscribers = self._subscribers.get(negotiation_id)
            if subscribers is not None:
                subscribers.discard(queue)
                if not subscribers:
                    del self._subscribers[negotiation_id]

    def subscriber_count(self, negotiation_id: int) -> int:
        return len(self._subscribers.get(negotiation_id, ()))

    def publish(self, negotiation_id: int, event: str, payload: Dict[str, Any]) -> int:
        """Deliver an event to every subscriber; returns how many received it."""
        subscribers = self._subscribers.get(negotiation_id)
        if not subscribers:
            return 0
        for queue in list(subscribers):
            if queue.full():
                with contextlib.suppress(asyncio.QueueEmpty):
                    queue.get_nowait()
                logger.debug("Dropped oldest event for a slow subscriber of negotiation %s", negotiation_id)
            queue.put_nowait((event, payload))
        return len(subscribers)
