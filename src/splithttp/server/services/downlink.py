"""
Downlink multiplexer.

Binds a session's outbound byte stream (upstream → client) to whichever GET
response is currently attached. Only one sink is live at a time; a new GET
supersedes the previous one. Bytes read from upstream wait in a bounded
pending queue, so a slow or absent client pushes backpressure onto the
upstream read side instead of growing memory.

Flow:
    upstream reader ──publish()──► pending queue ──stream(sink)──► GET body
"""

import asyncio
from collections import deque
from collections.abc import AsyncIterator

from splithttp.utils.logger import get_logger

logger = get_logger(__name__)


class DownlinkSink:
    """One attached GET response body."""

    def __init__(self, sink_id: int):
        self.sink_id = sink_id
        self.closed = False
        self.preamble_sent = False
        self.bytes_sent = 0

    def __repr__(self) -> str:
        return f"DownlinkSink(id={self.sink_id}, closed={self.closed})"


class DownlinkMultiplexer:
    """
    Routes upstream bytes into the current downlink sink.

    Args:
        max_pending_chunks: Upstream reads buffered while no sink drains them.
    """

    def __init__(self, max_pending_chunks: int = 16):
        self.max_pending_chunks = max_pending_chunks
        self._pending: deque[bytes] = deque()
        self._cond = asyncio.Condition()
        self._sink: DownlinkSink | None = None
        self._next_sink_id = 1
        self._preamble: bytes | None = None
        self._finished = False
        self._closed = False

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def sink(self) -> DownlinkSink | None:
        return self._sink

    @property
    def has_sink(self) -> bool:
        return self._sink is not None

    @property
    def finished(self) -> bool:
        """Upstream signalled end of data."""
        return self._finished

    @property
    def drained(self) -> bool:
        """Upstream finished and every pending byte was handed to a sink."""
        return self._finished and not self._pending

    @property
    def closed(self) -> bool:
        return self._closed

    # -------------------------------------------------------------------------
    # Sink management
    # -------------------------------------------------------------------------

    async def attach(self) -> DownlinkSink:
        """Attach a new sink, closing the previous one."""
        async with self._cond:
            if self._closed:
                sink = DownlinkSink(0)
                sink.closed = True
                return sink

            if self._sink is not None:
                logger.debug(f"Superseding downlink sink {self._sink.sink_id}")
                self._sink.closed = True

            sink = DownlinkSink(self._next_sink_id)
            self._next_sink_id += 1
            self._sink = sink
            self._cond.notify_all()
            return sink

    async def detach(self, sink: DownlinkSink) -> None:
        """Release a sink. Upstream and pending bytes are left untouched."""
        async with self._cond:
            sink.closed = True
            if self._sink is sink:
                self._sink = None
            self._cond.notify_all()

    async def set_preamble(self, preamble: bytes) -> None:
        """Record the reply preamble every sink must start with."""
        async with self._cond:
            self._preamble = preamble
            self._cond.notify_all()

    # -------------------------------------------------------------------------
    # Producer side (downlink pump)
    # -------------------------------------------------------------------------

    async def publish(self, data: bytes) -> bool:
        """
        Queue upstream bytes for the client.

        Waits while the pending queue is full. Returns False once the
        multiplexer is closed and the bytes were dropped.
        """
        async with self._cond:
            await self._cond.wait_for(
                lambda: self._closed or len(self._pending) < self.max_pending_chunks
            )
            if self._closed:
                return False
            self._pending.append(data)
            self._cond.notify_all()
            return True

    async def finish(self) -> None:
        """Upstream ended; sinks close once pending bytes are delivered."""
        async with self._cond:
            self._finished = True
            self._cond.notify_all()

    async def close(self) -> None:
        """Close the multiplexer and its current sink. Idempotent."""
        async with self._cond:
            if self._closed:
                return
            self._closed = True
            self._pending.clear()
            if self._sink is not None:
                self._sink.closed = True
                self._sink = None
            self._cond.notify_all()

    # -------------------------------------------------------------------------
    # Consumer side (GET response body)
    # -------------------------------------------------------------------------

    def _ready(self, sink: DownlinkSink) -> bool:
        if sink.closed or self._pending or self._finished:
            return True
        return self._preamble is not None and not sink.preamble_sent

    async def _next_chunk(self, sink: DownlinkSink) -> bytes | None:
        async with self._cond:
            await self._cond.wait_for(lambda: self._ready(sink))

            if sink.closed:
                return None

            if self._preamble is not None and not sink.preamble_sent:
                sink.preamble_sent = True
                return self._preamble

            if self._pending:
                data = self._pending.popleft()
                self._cond.notify_all()
                return data

            # Finished and drained
            sink.closed = True
            if self._sink is sink:
                self._sink = None
            self._cond.notify_all()
            return None

    async def stream(self, sink: DownlinkSink) -> AsyncIterator[bytes]:
        """Yield bytes for ``sink`` in arrival order until it is closed."""
        while True:
            data = await self._next_chunk(sink)
            if data is None:
                return
            sink.bytes_sent += len(data)
            yield data
