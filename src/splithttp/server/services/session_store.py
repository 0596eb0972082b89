"""
Session store and uplink sequencer.

Keeps per-client tunnel state keyed by the client-chosen session id.
Uplink chunks must arrive strictly in order: resubmissions of already
accepted sequence numbers are acknowledged without effect, anything ahead
of the next expected number destroys the session. Sequence 0 carries the
handshake; once it decodes, the relay engine opens the upstream channel.
Only a sequence 0 chunk whose handshake decodes creates a session, any
other chunk for an unknown id is treated as not-found.

Locking:
    - The store lock guards only the id → Session map.
    - Each Session has its own lock guarding its fields.
    - Order is always session lock → store lock, never the reverse.
"""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from splithttp.models.enums import EvictionReason
from splithttp.server.config import TunnelConfig
from splithttp.server.services.downlink import DownlinkMultiplexer, DownlinkSink
from splithttp.server.services.relay import Relay, RelayEngine
from splithttp.server.services.uplink import UplinkBuffer
from splithttp.tunnel.exceptions import (
    BufferOverflowError,
    ChunkTooLargeError,
    HandshakeError,
    SequenceGapError,
    SessionExpiredError,
    UpstreamUnreachableError,
)
from splithttp.tunnel.protocol import HandshakeResult, decode_handshake
from splithttp.utils.logger import get_logger

logger = get_logger(__name__)


def _session_tag(session_id: str) -> str:
    """Short, log-safe form of an untrusted session id."""
    return "".join(c if c.isalnum() or c in "-_" else "?" for c in session_id[:12])


# =============================================================================
# Session
# =============================================================================


@dataclass
class Session:
    """Server-side state of one logical client tunnel."""

    session_id: str
    uplink: UplinkBuffer
    downlink: DownlinkMultiplexer
    created_at: float
    last_activity: float
    expected_seq: int = 0
    handshake: HandshakeResult | None = None
    relay: Relay | None = None
    established: bool = False
    closed: bool = False
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def tag(self) -> str:
        return _session_tag(self.session_id)

    def touch(self, now: float) -> None:
        self.last_activity = max(self.last_activity, now)

    def expiry_reason(
        self, now: float, idle_timeout: float, bootstrap_timeout: float
    ) -> EvictionReason | None:
        """Return why this session should be evicted at ``now``, if at all."""
        if self.relay is not None and self.relay.finished and self.downlink.drained:
            return EvictionReason.FINISHED
        if not self.established and now - self.created_at > bootstrap_timeout:
            return EvictionReason.BOOTSTRAP
        if now - self.last_activity > idle_timeout:
            return EvictionReason.IDLE
        return None


# =============================================================================
# Session Store
# =============================================================================


class SessionStore:
    """
    Registry of live sessions.

    Args:
        config: Server configuration (limits, timeouts, secret).
        relay_engine: Opens upstream channels after a successful handshake.
        clock: Monotonic time source, replaceable in tests.
    """

    def __init__(
        self,
        config: TunnelConfig,
        relay_engine: RelayEngine,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.relay_engine = relay_engine
        self._clock = clock
        self._secret = config.get_secret()
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def active_count(self) -> int:
        """Number of live sessions."""
        return len(self._sessions)

    async def get(self, session_id: str) -> Session | None:
        async with self._lock:
            return self._sessions.get(session_id)

    async def _get_or_create(self, session_id: str) -> Session:
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                now = self._clock()
                session = Session(
                    session_id=session_id,
                    uplink=UplinkBuffer(
                        max_chunks=self.config.MAX_BUFFERED_CHUNKS,
                        max_bytes=self.config.get_max_buffered_bytes(),
                    ),
                    downlink=DownlinkMultiplexer(
                        max_pending_chunks=self.config.DOWNLINK_MAX_PENDING_CHUNKS
                    ),
                    created_at=now,
                    last_activity=now,
                )
                self._sessions[session_id] = session
                logger.debug(f"[Session {session.tag}] Created")
            return session

    # -------------------------------------------------------------------------
    # Uplink
    # -------------------------------------------------------------------------

    async def admit(self, session_id: str, seq: int, chunk: bytes) -> bool:
        """
        Accept one uplink chunk.

        Returns:
            True if the chunk was accepted, False if it was a duplicate.

        Raises:
            SessionExpiredError: Unknown id with ``seq`` > 0, or the session
                was torn down concurrently.
            SequenceGapError: ``seq`` is ahead of the next expected number.
            ChunkTooLargeError: The chunk exceeds the per-chunk limit.
            BufferOverflowError: The uplink buffer is full.
            HandshakeError: Chunk 0 did not decode.
            UpstreamUnreachableError: The destination could not be reached.
        """
        handshake = None
        session = await self.get(session_id)
        if session is None:
            if seq != 0:
                raise SessionExpiredError("Unknown session", session_id)
            # Nothing is registered until chunk 0 proves the secret
            handshake = await self._decode_first_chunk(
                _session_tag(session_id), chunk
            )
            session = await self._get_or_create(session_id)

        async with session.lock:
            if session.closed:
                raise SessionExpiredError("Session closed", session_id)

            now = self._clock()

            if seq < session.expected_seq:
                session.touch(now)
                logger.debug(f"[Session {session.tag}] Duplicate chunk seq={seq}")
                return False

            if seq > session.expected_seq:
                expected = session.expected_seq
                logger.warning(
                    f"[Session {session.tag}] Sequence gap: "
                    f"expected={expected} received={seq}"
                )
                await self._destroy_locked(session, EvictionReason.PROTOCOL)
                raise SequenceGapError(session_id, expected, seq)

            if len(chunk) > self.config.get_max_chunk_bytes():
                logger.warning(
                    f"[Session {session.tag}] Oversized chunk seq={seq} "
                    f"({len(chunk)} bytes)"
                )
                await self._destroy_locked(session, EvictionReason.PROTOCOL)
                raise ChunkTooLargeError("Chunk too large", session_id)

            if session.uplink.would_overflow(len(chunk)):
                logger.warning(
                    f"[Session {session.tag}] Uplink buffer full at seq={seq} "
                    f"({len(session.uplink)} chunks, {session.uplink.size} bytes)"
                )
                await self._destroy_locked(session, EvictionReason.PROTOCOL)
                raise BufferOverflowError("Uplink buffer full", session_id)

            session.touch(now)

            if seq == 0 and session.handshake is None:
                await self._bootstrap_locked(session, chunk, handshake)
            else:
                await session.uplink.push(chunk)

            session.expected_seq += 1
            logger.debug(
                f"[Session {session.tag}] Accepted chunk seq={seq} len={len(chunk)}"
            )
            return True

    async def _decode_first_chunk(self, tag: str, chunk: bytes) -> HandshakeResult:
        """Size-check and decode chunk 0 before any session exists for it."""
        if len(chunk) > self.config.get_max_chunk_bytes():
            logger.warning(
                f"[Session {tag}] Oversized chunk seq=0 ({len(chunk)} bytes)"
            )
            raise ChunkTooLargeError("Chunk too large")
        try:
            return await decode_handshake(chunk, self._secret)
        except HandshakeError as e:
            logger.warning(f"[Session {tag}] Handshake rejected: {type(e).__name__}")
            logger.debug(f"[Session {tag}] Handshake detail: {e}")
            raise

    async def _bootstrap_locked(
        self,
        session: Session,
        chunk: bytes,
        handshake: HandshakeResult | None = None,
    ) -> None:
        """Install the chunk 0 handshake and open the upstream channel."""
        if handshake is None:
            try:
                handshake = await self._decode_first_chunk(session.tag, chunk)
            except HandshakeError:
                await self._destroy_locked(session, EvictionReason.HANDSHAKE)
                raise

        session.handshake = handshake
        await session.downlink.set_preamble(handshake.reply_preamble)
        if session.downlink.has_sink:
            session.established = True

        try:
            session.relay = await self.relay_engine.open(
                session.tag,
                handshake.destination,
                session.uplink,
                session.downlink,
                on_activity=lambda: session.touch(self._clock()),
            )
        except UpstreamUnreachableError:
            await self._destroy_locked(session, EvictionReason.UPSTREAM)
            raise

        # Stream bytes glued onto the handshake go upstream first
        await session.uplink.push(handshake.leftover)

        logger.info(
            f"[Session {session.tag}] Tunnel to {handshake.destination} opened "
            f"(leftover={len(handshake.leftover)}b)"
        )

    # -------------------------------------------------------------------------
    # Downlink
    # -------------------------------------------------------------------------

    async def attach(self, session_id: str) -> tuple[Session, DownlinkSink]:
        """
        Attach a GET response as the session's downlink sink.

        Raises:
            SessionExpiredError: Unknown, evicted or closed session.
        """
        session = await self.get(session_id)
        if session is None:
            raise SessionExpiredError("Unknown session", session_id)

        async with session.lock:
            if session.closed:
                raise SessionExpiredError("Session closed", session_id)

            sink = await session.downlink.attach()
            session.touch(self._clock())
            if session.handshake is not None and not session.established:
                session.established = True
            logger.info(f"[Session {session.tag}] Downlink {sink.sink_id} attached")
            return session, sink

    async def detach(self, session: Session, sink: DownlinkSink) -> None:
        """Release a downlink sink after its client went away."""
        async with session.lock:
            if session.closed:
                return
            await session.downlink.detach(sink)
            session.touch(self._clock())
        logger.info(
            f"[Session {session.tag}] Downlink {sink.sink_id} detached "
            f"after {sink.bytes_sent}b"
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def touch(self, session_id: str) -> bool:
        """Refresh a session's activity time. Returns False if unknown."""
        session = await self.get(session_id)
        if session is None:
            return False
        session.touch(self._clock())
        return True

    async def close(self, session_id: str) -> bool:
        """Destroy a session on client request. Returns False if unknown."""
        session = await self.get(session_id)
        if session is None:
            return False
        async with session.lock:
            if session.closed:
                return False
            await self._destroy_locked(session, EvictionReason.CLOSED)
        return True

    async def evict_expired(self, now: float | None = None) -> int:
        """
        Evict idle, unestablished and finished sessions.

        Sessions whose lock is held by an in-flight request are skipped until
        the next sweep.

        Returns:
            Number of sessions evicted.
        """
        if now is None:
            now = self._clock()
        idle = self.config.SESSION_IDLE_TIMEOUT_SECONDS
        bootstrap = self.config.SESSION_BOOTSTRAP_TIMEOUT_SECONDS

        async with self._lock:
            candidates = list(self._sessions.values())

        evicted = 0
        for session in candidates:
            if session.expiry_reason(now, idle, bootstrap) is None:
                continue
            if session.lock.locked():
                continue
            async with session.lock:
                reason = session.expiry_reason(now, idle, bootstrap)
                if reason is None or session.closed:
                    continue
                await self._destroy_locked(session, reason)
                evicted += 1
        return evicted

    async def close_all(self) -> None:
        """Destroy every session (server shutdown)."""
        async with self._lock:
            sessions = list(self._sessions.values())
        for session in sessions:
            async with session.lock:
                await self._destroy_locked(session, EvictionReason.SHUTDOWN)

    async def _destroy_locked(self, session: Session, reason: EvictionReason) -> None:
        """Tear down a session exactly once. Caller holds the session lock."""
        if session.closed:
            return
        session.closed = True

        async with self._lock:
            if self._sessions.get(session.session_id) is session:
                del self._sessions[session.session_id]

        await session.uplink.close()
        await session.downlink.close()
        if session.relay is not None:
            await session.relay.close()

        logger.info(f"[Session {session.tag}] Destroyed ({reason.value})")
