"""
Incremental byte reader over an async fragment source.

HTTP bodies arrive in fragments of arbitrary size. ``BinaryReader`` buffers
fragments until a requested number of bytes (counted from the start of the
stream) is available, and tells "not enough yet" apart from "the stream
ended" by raising ``TruncatedInputError`` only once the source is exhausted.
"""

from collections.abc import AsyncIterable, AsyncIterator

from splithttp.tunnel.exceptions import TruncatedInputError


async def _single(data: bytes) -> AsyncIterator[bytes]:
    yield data


class BinaryReader:
    """
    Accumulating reader over an async iterable of byte fragments.

    Args:
        source: Async iterable yielding ``bytes`` fragments. Empty fragments
            are skipped.
    """

    def __init__(self, source: AsyncIterable[bytes]):
        self._source = source.__aiter__()
        self._buffer = bytearray()
        self._exhausted = False

    @classmethod
    def from_bytes(cls, data: bytes) -> "BinaryReader":
        """Create a reader over a single, fully buffered chunk."""
        return cls(_single(bytes(data)))

    @property
    def buffered(self) -> bytes:
        """All bytes pulled from the source so far."""
        return bytes(self._buffer)

    async def _pull(self) -> bool:
        """Pull one fragment. Returns False once the source is exhausted."""
        if self._exhausted:
            return False
        try:
            fragment = await self._source.__anext__()
        except StopAsyncIteration:
            self._exhausted = True
            return False
        if fragment:
            self._buffer.extend(fragment)
        return True

    async def read_at_least(self, n: int) -> bytes:
        """
        Ensure at least ``n`` bytes are buffered and return the buffer.

        Raises:
            TruncatedInputError: If the source ends before ``n`` bytes
                accumulate.
        """
        while len(self._buffer) < n:
            if not await self._pull():
                raise TruncatedInputError(obtained=len(self._buffer), required=n)
        return bytes(self._buffer)
