"""Downstream sinks that receive relayed event payloads for one relay session."""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncGenerator, Dict, Optional, Protocol

from relay_api.errors import SinkClosed

logger = logging.getLogger(__name__)

DEFAULT_MAX_PENDING_EVENTS = 1000


class DownstreamSink(Protocol):
    """Writable destination owned by exactly one relay session."""

    @property
    def closed(self) -> bool: ...

    async def send(self, payload: str) -> None: ...

    async def close(self) -> None: ...


class SSEQueueSink:
    """
    Bridge relayed payloads to an EventSourceResponse through an asyncio queue.

    At most ``max_pending`` payloads wait for the subscriber. A subscriber that falls further behind
    is treated as gone: the sink closes, and the events already queued are still delivered.
    """

    def __init__(self, max_pending: int = DEFAULT_MAX_PENDING_EVENTS) -> None:
        self._queue: asyncio.Queue[Optional[Dict[str, str]]] = asyncio.Queue()
        self._max_pending = max_pending
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, payload: str) -> None:
        if self._closed:
            raise SinkClosed("SSE subscriber is gone")
        if self._queue.qsize() >= self._max_pending:
            logger.warning(f"SSE subscriber is too slow, {self._queue.qsize()} events pending. Closing the stream.")
            await self.close()
            raise SinkClosed("SSE subscriber is too slow")
        self._queue.put_nowait({"data": payload})

    async def stream(self) -> AsyncGenerator[Dict[str, str], None]:
        """Yield events suitable for EventSourceResponse until the sink is closed."""
        while True:
            item = await self._queue.get()
            if item is None:
                break
            yield item

    async def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(None)


class DiscardSink:
    """Sink for in-process sessions that have no downstream subscriber."""

    def __init__(self) -> None:
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, payload: str) -> None:
        if self._closed:
            raise SinkClosed("sink is closed")
        logger.debug(f"Discarding payload without subscriber. length: {len(payload)}")

    async def close(self) -> None:
        self._closed = True
