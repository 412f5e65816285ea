"""Event channel and NDJSON stream encoding.

The agent loop produces AgentEvents; the HTTP layer consumes encoded
lines. EventChannel sits between them: a bounded queue, so a slow client
pauses the producer instead of buffering without limit. Cancellation
travels the other way through a CancellationToken.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncGenerator, AsyncIterator

from sprintwise.api.models import AgentEvent

logger = logging.getLogger(__name__)

_CLOSED = object()


class CancellationToken:
    """Set once by the consumer; checked by the producer between steps."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class ChannelClosed(Exception):
    """send() on a closed channel."""


class EventChannel:
    """Bounded single-producer/single-consumer queue of AgentEvents."""

    def __init__(self, maxsize: int = 64) -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    async def send(self, event: AgentEvent) -> None:
        """Enqueue an event, waiting while the queue is full."""
        if self._closed:
            raise ChannelClosed("channel is closed")
        await self._queue.put(event)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._queue.put(_CLOSED)

    def __aiter__(self) -> AsyncIterator[AgentEvent]:
        return self._drain()

    async def _drain(self) -> AsyncGenerator[AgentEvent, None]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item  # type: ignore[misc]


def encode_event(event: AgentEvent) -> str:
    """One event as one NDJSON line."""
    return json.dumps(event.to_dict(), ensure_ascii=False, default=str) + "\n"


async def stream_events(
    events: AsyncIterator[AgentEvent],
    token: CancellationToken,
    maxsize: int = 64,
) -> AsyncGenerator[str, None]:
    """Drive ``events`` in a task and yield encoded lines.

    Guarantees a terminal ``done``: an uncaught producer error becomes one
    ``error`` event, and ``done`` is appended if the producer never sent
    it. Nothing is written after ``done``. If the consumer goes away
    first, the token is cancelled and the producer task torn down.
    """
    channel = EventChannel(maxsize)

    async def pump() -> None:
        try:
            async for event in events:
                if token.cancelled:
                    break
                await channel.send(event)
        except Exception as e:
            logger.error("Agent stream error: %s", e)
            await channel.send(AgentEvent(type="error", content=str(e) or "Unknown error"))
        await channel.close()

    task = asyncio.create_task(pump())
    finished = False
    try:
        async for event in channel:
            yield encode_event(event)
            if event.type == "done":
                break
        else:
            yield encode_event(AgentEvent(type="done"))
        finished = True
    finally:
        if not task.done():
            if not finished:
                token.cancel()
            task.cancel()
