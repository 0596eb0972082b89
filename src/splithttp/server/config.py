"""
Server configuration for splithttp.

This module defines the configuration dataclass for the tunnel server,
providing a centralized place for all configurable parameters.

Configuration can be modified at runtime by importing the global config
instance and updating its attributes before creating the application.

Usage:
    from splithttp.server.config import config

    # Modify configuration before starting
    config.PORT = 9000
    config.SECRET = "0cf85927-2c71-4e87-9df3-b1eb7d5a9e1b"
"""

from dataclasses import dataclass

from splithttp.models.enums import LogLevel
from splithttp.tunnel.protocol import parse_secret


# =============================================================================
# Configuration Dataclass
# =============================================================================


@dataclass
class TunnelConfig:
    """
    Tunnel server configuration.

    Attributes:
        BIND_IP: IP address to bind the server to.
        PORT: HTTP port.
        XHTTP_PATH: Base path under which tunnel requests are served.
        SECRET: Shared client secret as a UUID string.
        LOG_LEVEL: Logging verbosity level.
    """

    # -------------------------------------------------------------------------
    # Network Configuration
    # -------------------------------------------------------------------------

    BIND_IP: str = "0.0.0.0"
    PORT: int = 3000
    XHTTP_PATH: str = "/xblog"

    # -------------------------------------------------------------------------
    # Authentication
    # -------------------------------------------------------------------------

    # 16-byte secret shared with clients, written as a UUID
    SECRET: str = ""

    # -------------------------------------------------------------------------
    # Buffer Limits
    # -------------------------------------------------------------------------

    # Largest accepted uplink POST body
    MAX_CHUNK_KIB: int = 128

    # Uplink chunks accepted but not yet written upstream
    MAX_BUFFERED_CHUNKS: int = 30

    # Byte cap over the same buffer (0 = MAX_BUFFERED_CHUNKS * MAX_CHUNK_KIB)
    MAX_BUFFERED_KIB: int = 0

    # Upstream reads waiting for a downlink GET to drain them
    DOWNLINK_MAX_PENDING_CHUNKS: int = 16

    # Maximum bytes per upstream read
    DOWNLINK_READ_SIZE: int = 16384

    # -------------------------------------------------------------------------
    # Timing Configuration
    # -------------------------------------------------------------------------

    SESSION_IDLE_TIMEOUT_SECONDS: float = 30.0

    # Sessions without a completed handshake and a downlink are reaped sooner
    SESSION_BOOTSTRAP_TIMEOUT_SECONDS: float = 10.0

    CLEANUP_CHECK_INTERVAL_SECONDS: float = 5.0
    UPSTREAM_CONNECT_TIMEOUT_SECONDS: float = 10.0

    # -------------------------------------------------------------------------
    # Response Decoration
    # -------------------------------------------------------------------------

    # Length range of the random X-Padding response header
    PADDING_MIN: int = 100
    PADDING_MAX: int = 1000

    DOWNLINK_CONTENT_TYPE: str = "application/grpc"

    # -------------------------------------------------------------------------
    # Logging Configuration
    # -------------------------------------------------------------------------

    LOG_LEVEL: LogLevel = LogLevel.INFO
    LOG_FILE: str = ""

    # =========================================================================
    # Helper Methods
    # =========================================================================

    def get_secret(self) -> bytes:
        """
        Get the parsed 16-byte secret.

        Raises:
            ValueError: If SECRET is empty or not a UUID.
        """
        if not self.SECRET:
            raise ValueError("SECRET is not configured")
        return parse_secret(self.SECRET)

    def get_base_path(self) -> str:
        """Get XHTTP_PATH with a leading slash and no trailing slash."""
        path = "/" + self.XHTTP_PATH.strip("/")
        return "" if path == "/" else path

    def get_max_chunk_bytes(self) -> int:
        return self.MAX_CHUNK_KIB * 1024

    def get_max_buffered_bytes(self) -> int:
        """Byte cap of a session's uplink buffer."""
        if self.MAX_BUFFERED_KIB:
            return self.MAX_BUFFERED_KIB * 1024
        return self.MAX_BUFFERED_CHUNKS * self.get_max_chunk_bytes()

    def validate(self) -> None:
        """
        Check the configuration for inconsistent values.

        Raises:
            ValueError: On the first problem found.
        """
        self.get_secret()
        if self.MAX_CHUNK_KIB <= 0 or self.MAX_BUFFERED_CHUNKS <= 0:
            raise ValueError("Buffer limits must be positive")
        if self.get_max_buffered_bytes() < self.get_max_chunk_bytes():
            raise ValueError("MAX_BUFFERED_KIB must hold at least one chunk")
        if self.SESSION_BOOTSTRAP_TIMEOUT_SECONDS >= self.SESSION_IDLE_TIMEOUT_SECONDS:
            raise ValueError(
                "SESSION_BOOTSTRAP_TIMEOUT_SECONDS must be shorter than "
                "SESSION_IDLE_TIMEOUT_SECONDS"
            )
        if not 0 <= self.PADDING_MIN <= self.PADDING_MAX:
            raise ValueError("PADDING_MIN must be between 0 and PADDING_MAX")


# =============================================================================
# Global Instance
# =============================================================================

# Global config instance - modify before server startup
config = TunnelConfig()
