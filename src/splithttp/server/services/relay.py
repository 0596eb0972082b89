"""
Relay engine.

Opens the upstream TCP channel for a decoded destination and drives two
independent pumps over it:

    uplink:   UplinkBuffer ──► upstream writer   (half-closes with write_eof)
    downlink: upstream reader ──► DownlinkMultiplexer.publish()

A supervisor task waits for both pumps and marks the relay finished; the
session store evicts finished sessions once their downlink has drained.
"""

import asyncio
from collections.abc import Awaitable, Callable

from splithttp.server.services.downlink import DownlinkMultiplexer
from splithttp.server.services.uplink import UplinkBuffer
from splithttp.tunnel.exceptions import UpstreamUnreachableError
from splithttp.tunnel.protocol import Destination
from splithttp.utils.logger import format_traceback, get_logger

logger = get_logger(__name__)

Connector = Callable[
    [str, int], Awaitable[tuple[asyncio.StreamReader, asyncio.StreamWriter]]
]


async def open_tcp_connection(
    host: str, port: int
) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    """Default connector: a plain TCP connection to host:port."""
    return await asyncio.open_connection(host, port)


# =============================================================================
# Relay
# =============================================================================


class Relay:
    """
    A live upstream channel with its two pumps.

    Args:
        tag: Short label used in log lines.
        reader: Upstream read side.
        writer: Upstream write side.
        uplink: Source of client bytes.
        downlink: Destination of upstream bytes.
        read_size: Maximum bytes per upstream read.
        on_activity: Called whenever bytes move in either direction.
    """

    def __init__(
        self,
        tag: str,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        uplink: UplinkBuffer,
        downlink: DownlinkMultiplexer,
        read_size: int = 16384,
        on_activity: Callable[[], None] | None = None,
    ):
        self.tag = tag
        self.reader = reader
        self.writer = writer
        self.uplink = uplink
        self.downlink = downlink
        self.read_size = read_size
        self._on_activity = on_activity

        self.bytes_up = 0
        self.bytes_down = 0
        self.uplink_done = False
        self.downlink_done = False
        self._closed = False
        self._pumps: list[asyncio.Task] = []
        self._supervisor: asyncio.Task | None = None

    @property
    def finished(self) -> bool:
        """Both directions have ended."""
        return self.uplink_done and self.downlink_done

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        """Start both pumps and the supervisor joining them."""
        self._pumps = [
            asyncio.create_task(self._uplink_pump(), name=f"uplink-{self.tag}"),
            asyncio.create_task(self._downlink_pump(), name=f"downlink-{self.tag}"),
        ]
        self._supervisor = asyncio.create_task(
            self._supervise(), name=f"relay-{self.tag}"
        )

    def _touch(self) -> None:
        if self._on_activity is not None:
            self._on_activity()

    # -------------------------------------------------------------------------
    # Pumps
    # -------------------------------------------------------------------------

    async def _uplink_pump(self) -> None:
        """Forward buffered client chunks to upstream."""
        try:
            async for data in self.uplink:
                self.writer.write(data)
                await self.writer.drain()
                self.bytes_up += len(data)
                self._touch()
            # Client side is done sending, half-close upstream
            if self.writer.can_write_eof():
                self.writer.write_eof()
        except (ConnectionError, OSError) as e:
            logger.debug(f"[Relay {self.tag}] Upstream write failed: {e}")
        finally:
            self.uplink_done = True

    async def _downlink_pump(self) -> None:
        """Forward upstream bytes to the downlink multiplexer."""
        try:
            while True:
                data = await self.reader.read(self.read_size)
                if not data:
                    logger.debug(f"[Relay {self.tag}] Upstream EOF")
                    break
                self.bytes_down += len(data)
                self._touch()
                if not await self.downlink.publish(data):
                    break
        except (ConnectionError, OSError) as e:
            logger.debug(f"[Relay {self.tag}] Upstream read failed: {e}")
        finally:
            self.downlink_done = True
            await self.downlink.finish()

    async def _supervise(self) -> None:
        results = await asyncio.gather(*self._pumps, return_exceptions=True)
        for task, result in zip(self._pumps, results):
            if isinstance(result, Exception):
                logger.error(
                    f"[Relay {self.tag}] {task.get_name()} pump failed: {result}"
                )
                logger.debug(format_traceback(result))
        logger.info(
            f"[Relay {self.tag}] Finished: up={self.bytes_up}b down={self.bytes_down}b"
        )

    # -------------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------------

    async def close(self) -> None:
        """Cancel pumps and close the upstream channel. Idempotent."""
        if self._closed:
            return
        self._closed = True

        current = asyncio.current_task()
        tasks = [t for t in [*self._pumps, self._supervisor] if t is not None]
        for task in tasks:
            if task is not current and not task.done():
                task.cancel()
        await asyncio.gather(
            *(t for t in tasks if t is not current), return_exceptions=True
        )

        try:
            self.writer.close()
            await self.writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug(f"[Relay {self.tag}] Error closing upstream: {e}")

        logger.debug(f"[Relay {self.tag}] Upstream closed")


# =============================================================================
# Relay Engine
# =============================================================================


class RelayEngine:
    """
    Opens upstream channels through a connector.

    Args:
        connector: Coroutine function (host, port) -> (reader, writer).
        connect_timeout: Seconds to wait for the connector.
        read_size: Maximum bytes per upstream read.
    """

    def __init__(
        self,
        connector: Connector = open_tcp_connection,
        connect_timeout: float = 10.0,
        read_size: int = 16384,
    ):
        self.connector = connector
        self.connect_timeout = connect_timeout
        self.read_size = read_size

    async def open(
        self,
        tag: str,
        destination: Destination,
        uplink: UplinkBuffer,
        downlink: DownlinkMultiplexer,
        on_activity: Callable[[], None] | None = None,
    ) -> Relay:
        """
        Connect to ``destination`` and start relaying.

        Raises:
            UpstreamUnreachableError: If the connector fails or times out.
        """
        logger.info(f"[Relay {tag}] Connecting to {destination}")
        try:
            reader, writer = await asyncio.wait_for(
                self.connector(destination.host, destination.port),
                timeout=self.connect_timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"[Relay {tag}] Timeout connecting to {destination}")
            raise UpstreamUnreachableError(
                destination.host, destination.port, "timeout"
            )
        except OSError as e:
            logger.error(f"[Relay {tag}] Failed to connect to {destination}: {e}")
            raise UpstreamUnreachableError(destination.host, destination.port, str(e))

        relay = Relay(
            tag,
            reader,
            writer,
            uplink,
            downlink,
            read_size=self.read_size,
            on_activity=on_activity,
        )
        relay.start()
        logger.info(f"[Relay {tag}] Connected to {destination}")
        return relay
