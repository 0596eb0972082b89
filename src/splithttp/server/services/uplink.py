"""
Bounded uplink buffer.

Accepted uplink chunks wait here until the relay's uplink pump writes them
to the upstream channel. The buffer never grows past its chunk and byte
limits: a push that would exceed them raises ``BufferOverflowError`` and the
caller tears the session down.
"""

import asyncio
from collections import deque

from splithttp.tunnel.exceptions import BufferOverflowError


class UplinkBuffer:
    """
    FIFO of pending uplink chunks with a single consumer.

    Args:
        max_chunks: Maximum number of chunks waiting to be written.
        max_bytes: Maximum number of bytes waiting to be written.
    """

    def __init__(self, max_chunks: int, max_bytes: int):
        self.max_chunks = max_chunks
        self.max_bytes = max_bytes
        self._chunks: deque[bytes] = deque()
        self._size = 0
        self._closed = False
        self._cond = asyncio.Condition()

    def __len__(self) -> int:
        return len(self._chunks)

    @property
    def size(self) -> int:
        """Bytes currently waiting."""
        return self._size

    @property
    def closed(self) -> bool:
        return self._closed

    def would_overflow(self, nbytes: int) -> bool:
        """Check whether a chunk of ``nbytes`` fits."""
        return (
            len(self._chunks) >= self.max_chunks
            or self._size + nbytes > self.max_bytes
        )

    async def push(self, data: bytes) -> None:
        """
        Queue a chunk for the uplink pump.

        Raises:
            BufferOverflowError: If the chunk does not fit.
        """
        if self.would_overflow(len(data)):
            raise BufferOverflowError(
                f"Uplink buffer full ({len(self._chunks)} chunks, {self._size} bytes)"
            )
        if self._closed or not data:
            return
        async with self._cond:
            self._chunks.append(data)
            self._size += len(data)
            self._cond.notify_all()

    async def get(self) -> bytes | None:
        """Wait for the next chunk. Returns None once closed and drained."""
        async with self._cond:
            await self._cond.wait_for(lambda: self._chunks or self._closed)
            if not self._chunks:
                return None
            data = self._chunks.popleft()
            self._size -= len(data)
            return data

    async def close(self) -> None:
        """Stop accepting chunks; ``get`` drains what is left, then returns None."""
        async with self._cond:
            self._closed = True
            self._cond.notify_all()

    def __aiter__(self):
        return self

    async def __anext__(self) -> bytes:
        data = await self.get()
        if data is None:
            raise StopAsyncIteration
        return data
