"""
Tests for the in-process broadcaster and the SSE helpers.
"""
import asyncio

import orjson
import pytest

from trackdeal.api.sse import sse_comment, sse_json
from trackdeal.core.services.broadcast import NegotiationBroadcaster


@pytest.mark.asyncio
async def test_publish_reaches_subscribers_of_the_same_negotiation() -> None:
    broadcaster = NegotiationBroadcaster()
    async with broadcaster.subscribe(1) as first, broadcaster.subscribe(1) as second:
        async with broadcaster.subscribe(2) as other:
            assert broadcaster.subscriber_count(1) == 2
            delivered = broadcaster.publish(1, "message", {"sequence": 1})
            assert delivered == 2
            assert await first.get() == ("message", {"sequence": 1})
            assert await second.get() == ("message", {"sequence": 1})
            assert other.empty()
    assert broadcaster.subscriber_count(1) == 0
    assert broadcaster.publish(1, "message", {"sequence": 2}) == 0


@pytest.mark.asyncio
async def test_slow_subscriber_drops_oldest_event() -> None:
    broadcaster = NegotiationBroadcaster(queue_size=2)
    async with broadcaster.subscribe(7) as queue:
        for sequence in (1, 2, 3):
            broadcaster.publish(7, "message", {"sequence": sequence})
        received = [queue.get_nowait()[1]["sequence"] for _ in range(queue.qsize())]
    assert received == [2, 3]


@pytest.mark.asyncio
async def test_subscription_is_released_on_cancel() -> None:
    broadcaster = NegotiationBroadcaster()
    subscribed = asyncio.Event()

    async def listen() -> None:
        async with broadcaster.subscribe(3) as queue:
            subscribed.set()
            await queue.get()

    task = asyncio.create_task(listen())
    await subscribed.wait()
    assert broadcaster.subscriber_count(3) == 1
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    assert broadcaster.subscriber_count(3) == 0


def test_sse_framing() -> None:
    frame = sse_json("status", {"status": "completed", "id": 4})
    lines = frame.split("\n")
    assert lines[0] == "event: status"
    assert lines[1].startswith("data: ")
    assert orjson.loads(lines[1][len("data: "):]) == {"status": "completed", "id": 4}
    assert frame.endswith("\n\n")
    assert sse_comment("ping") == ": ping\n\n"
