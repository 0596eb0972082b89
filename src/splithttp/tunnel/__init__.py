"""
Tunnel protocol for carrying a TCP stream over split HTTP requests.

This module provides the handshake decoder, the incremental byte reader it
runs on, and the exception taxonomy shared with the server.
"""

from splithttp.tunnel.exceptions import (
    AuthenticationError,
    BufferOverflowError,
    ChunkTooLargeError,
    HandshakeError,
    InvalidAddressTypeError,
    InvalidHostnameError,
    SequenceGapError,
    SessionError,
    SessionExpiredError,
    TruncatedInputError,
    TunnelError,
    UnsupportedCommandError,
    UpstreamUnreachableError,
)
from splithttp.tunnel.protocol import (
    AUTH_PREFIX_SIZE,
    SECRET_SIZE,
    Destination,
    HandshakeResult,
    build_handshake,
    decode_handshake,
    parse_secret,
    read_handshake,
)
from splithttp.tunnel.reader import BinaryReader

__all__ = [
    "AUTH_PREFIX_SIZE",
    "SECRET_SIZE",
    "BinaryReader",
    "Destination",
    "HandshakeResult",
    "build_handshake",
    "decode_handshake",
    "parse_secret",
    "read_handshake",
    "TunnelError",
    "HandshakeError",
    "TruncatedInputError",
    "AuthenticationError",
    "UnsupportedCommandError",
    "InvalidAddressTypeError",
    "InvalidHostnameError",
    "SessionError",
    "SequenceGapError",
    "BufferOverflowError",
    "ChunkTooLargeError",
    "SessionExpiredError",
    "UpstreamUnreachableError",
]
