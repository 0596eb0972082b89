"""Shared fixtures and fakes for the splithttp test-suite."""

import asyncio
import uuid

import pytest

from splithttp.server.config import TunnelConfig

SECRET_TEXT = "0cf85927-2c71-4e87-9df3-b1eb7d5a9e1b"
SECRET = uuid.UUID(SECRET_TEXT).bytes


# =============================================================================
# Upstream Fakes
# =============================================================================


class FakeWriter:
    """Records what the relay writes upstream and how often it is closed."""

    def __init__(self):
        self.data = bytearray()
        self.eof_written = False
        self.close_calls = 0
        self.fail_writes = False
        self.unblocked = asyncio.Event()
        self.unblocked.set()

    def write(self, data: bytes) -> None:
        if self.fail_writes:
            raise ConnectionResetError("upstream reset")
        self.data.extend(data)

    async def drain(self) -> None:
        await self.unblocked.wait()

    def can_write_eof(self) -> bool:
        return True

    def write_eof(self) -> None:
        self.eof_written = True

    def close(self) -> None:
        self.close_calls += 1

    async def wait_closed(self) -> None:
        pass


class FakeConnector:
    """
    Connector handing out in-memory upstream channels.

    Args:
        initial: Bytes the upstream sends right away.
        eof: Whether the upstream closes after ``initial``.
        error: Exception to raise instead of connecting.
        delay: Seconds to wait before connecting.
    """

    def __init__(
        self,
        initial: bytes = b"",
        eof: bool = False,
        error: Exception | None = None,
        delay: float = 0.0,
    ):
        self.initial = initial
        self.eof = eof
        self.error = error
        self.delay = delay
        self.calls: list[tuple[str, int]] = []
        self.channels: list[tuple[asyncio.StreamReader, FakeWriter]] = []

    async def __call__(self, host: str, port: int):
        self.calls.append((host, port))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error

        reader = asyncio.StreamReader()
        if self.initial:
            reader.feed_data(self.initial)
        if self.eof:
            reader.feed_eof()
        writer = FakeWriter()
        self.channels.append((reader, writer))
        return reader, writer

    @property
    def reader(self) -> asyncio.StreamReader:
        return self.channels[-1][0]

    @property
    def writer(self) -> FakeWriter:
        return self.channels[-1][1]


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it holds, failing the test on timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(0.005)


async def fragments(*parts: bytes):
    for part in parts:
        yield part


# =============================================================================
# Fixtures
# =============================================================================


def make_config(**overrides) -> TunnelConfig:
    values = {
        "SECRET": SECRET_TEXT,
        "SESSION_IDLE_TIMEOUT_SECONDS": 30.0,
        "SESSION_BOOTSTRAP_TIMEOUT_SECONDS": 10.0,
        "CLEANUP_CHECK_INTERVAL_SECONDS": 60.0,
        "UPSTREAM_CONNECT_TIMEOUT_SECONDS": 1.0,
        "PADDING_MIN": 10,
        "PADDING_MAX": 20,
    }
    values.update(overrides)
    return TunnelConfig(**values)


@pytest.fixture
def config() -> TunnelConfig:
    return make_config()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
