"""
Enumeration types for splithttp.

This module defines the enumeration types shared by the protocol decoder,
the server and the CLI.
"""

from enum import Enum, IntEnum


# =============================================================================
# Protocol Enums
# =============================================================================


class Command(IntEnum):
    """Handshake command byte. Only TCP streams are supported."""

    TCP = 0x01


class AddressType(IntEnum):
    """
    Handshake address type byte.

    - IPV4: 4 raw bytes
    - DOMAIN: 1 length byte followed by that many UTF-8 bytes
    - IPV6: 16 raw bytes
    """

    IPV4 = 0x01
    DOMAIN = 0x02
    IPV6 = 0x03


# =============================================================================
# Session Enums
# =============================================================================


class EvictionReason(str, Enum):
    """Why a session was torn down. Used in log lines."""

    IDLE = "idle"  # No traffic within the idle timeout
    BOOTSTRAP = "bootstrap"  # Never established within the bootstrap timeout
    FINISHED = "finished"  # Both relay directions ended and downlink drained
    PROTOCOL = "protocol"  # Sequence gap, overflow or oversized chunk
    HANDSHAKE = "handshake"  # Chunk 0 failed to decode
    UPSTREAM = "upstream"  # Destination unreachable
    CLOSED = "closed"  # Explicit close by the client
    SHUTDOWN = "shutdown"  # Server shutting down


# =============================================================================
# Configuration Enums
# =============================================================================


class LogLevel(str, Enum):
    """
    Logging verbosity levels.

    Levels (from most to least verbose):
        - FULL: Complete trace with detailed stack information
        - DEBUG: Debug messages and above (per-chunk traffic)
        - INFO: Informational messages and above (session lifecycle)
        - WARNING: Only warnings and errors
    """

    FULL = "full"
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
