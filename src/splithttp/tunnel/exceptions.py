"""Tunnel exception classes."""


class TunnelError(Exception):
    """Base exception for tunnel operations."""

    pass


# =============================================================================
# Handshake Errors
# =============================================================================


class HandshakeError(TunnelError):
    """The client handshake could not be decoded or was rejected."""

    pass


class TruncatedInputError(HandshakeError):
    """The byte source ended before the promised bytes arrived."""

    def __init__(self, obtained: int, required: int):
        self.obtained = obtained
        self.required = required
        super().__init__(f"Truncated input: got {obtained} of {required} bytes")


class AuthenticationError(HandshakeError):
    """Handshake secret does not match the configured secret."""

    pass


class UnsupportedCommandError(HandshakeError):
    """Handshake requested a command other than a TCP stream."""

    def __init__(self, command: int):
        self.command = command
        super().__init__(f"Unsupported command: {command}")


class InvalidAddressTypeError(HandshakeError):
    """Handshake address type byte is unknown."""

    def __init__(self, address_type: int):
        self.address_type = address_type
        super().__init__(f"Invalid address type: {address_type}")


class InvalidHostnameError(HandshakeError):
    """Handshake address decoded to an empty or undecodable hostname."""

    pass


# =============================================================================
# Session Errors
# =============================================================================


class SessionError(TunnelError):
    """Base exception for session state violations."""

    def __init__(self, message: str, session_id: str = ""):
        self.session_id = session_id
        super().__init__(message)


class SequenceGapError(SessionError):
    """An uplink chunk arrived ahead of the next expected sequence number."""

    def __init__(self, session_id: str, expected: int, received: int):
        self.expected = expected
        self.received = received
        super().__init__(
            f"Sequence gap: expected {expected}, received {received}", session_id
        )


class BufferOverflowError(SessionError):
    """The session's uplink buffer is at capacity."""

    pass


class ChunkTooLargeError(SessionError):
    """An uplink chunk exceeds the per-chunk size limit."""

    pass


class SessionExpiredError(SessionError):
    """The session does not exist or was already torn down."""

    pass


# =============================================================================
# Upstream Errors
# =============================================================================


class UpstreamUnreachableError(TunnelError):
    """The destination could not be connected to."""

    def __init__(self, host: str, port: int, reason: str = ""):
        self.host = host
        self.port = port
        message = f"Upstream {host}:{port} unreachable"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
