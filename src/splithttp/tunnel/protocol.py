"""
Handshake protocol definitions and decoder.

Wire format (binary, big-endian):
┌──────────┬────────────┬─────────┬──────────┬──────────┬──────────┬──────────┬──────────┬─────────────┐
│Version 1B│ Secret 16B │ ExtLen E│ Extra E B│ Cmd (1B) │ Port (2B)│ AType(1B)│ Address  │ Payload ... │
└──────────┴────────────┴─────────┴──────────┴──────────┴──────────┴──────────┴──────────┴─────────────┘

Address: 4 bytes (IPv4), 1 length byte + N UTF-8 bytes (domain), 16 bytes (IPv6).
Reply preamble sent first on the downlink: version(1) + 0x00(1).
"""

import hmac
import ipaddress
import struct
import uuid
from dataclasses import dataclass

from splithttp.models.enums import AddressType, Command
from splithttp.tunnel.exceptions import (
    AuthenticationError,
    InvalidAddressTypeError,
    InvalidHostnameError,
    UnsupportedCommandError,
)
from splithttp.tunnel.reader import BinaryReader

# =============================================================================
# Header Layout
# =============================================================================

VERSION_SIZE = 1
SECRET_SIZE = 16
EXTRA_LEN_SIZE = 1

# version(1) + secret(16) + extra_len(1) = 18 bytes, enough to authenticate
AUTH_PREFIX_SIZE = VERSION_SIZE + SECRET_SIZE + EXTRA_LEN_SIZE

# command(1) + port(2) + address_type(1)
TARGET_FORMAT = ">BHB"
TARGET_SIZE = struct.calcsize(TARGET_FORMAT)

IPV4_SIZE = 4
IPV6_SIZE = 16

REPLY_STATUS_OK = 0x00


# =============================================================================
# Decoded Types
# =============================================================================


@dataclass(frozen=True)
class Destination:
    """Where the tunnelled stream should be connected."""

    host: str
    port: int
    command_ok: bool = True

    def __str__(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class HandshakeResult:
    """Decoded handshake: destination, payload glued onto it, reply preamble."""

    version: int
    destination: Destination
    leftover: bytes = b""

    @property
    def reply_preamble(self) -> bytes:
        """Bytes that open every downlink response."""
        return bytes([self.version, REPLY_STATUS_OK])


# =============================================================================
# Secret Handling
# =============================================================================


def parse_secret(text: str) -> bytes:
    """
    Parse a configured secret into its 16 raw bytes.

    Accepts a UUID string (with or without dashes or braces) or 32 hex digits.

    Raises:
        ValueError: If the text is not a valid 16-byte secret.
    """
    return uuid.UUID(text.strip()).bytes


def build_handshake(
    secret: bytes,
    host: str,
    port: int,
    payload: bytes = b"",
    version: int = 0,
    extra: bytes = b"",
) -> bytes:
    """
    Build a client handshake.

    The address type is picked from ``host``: dotted IPv4, colon separated
    IPv6, otherwise a domain name.
    """
    if len(secret) != SECRET_SIZE:
        raise ValueError(f"Secret must be {SECRET_SIZE} bytes")

    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        ip = None

    if isinstance(ip, ipaddress.IPv4Address):
        atype = AddressType.IPV4
        address = ip.packed
    elif isinstance(ip, ipaddress.IPv6Address):
        atype = AddressType.IPV6
        address = ip.packed
    else:
        atype = AddressType.DOMAIN
        encoded = host.encode("utf-8")
        address = bytes([len(encoded)]) + encoded

    return (
        bytes([version])
        + secret
        + bytes([len(extra)])
        + extra
        + struct.pack(TARGET_FORMAT, Command.TCP, port, atype)
        + address
        + payload
    )


# =============================================================================
# Decoder
# =============================================================================


def _format_ipv6(raw: bytes) -> str:
    """Eight big-endian 16-bit groups in hex, no zero compression."""
    groups = struct.unpack(">8H", raw)
    return ":".join(f"{g:x}" for g in groups)


async def read_handshake(reader: BinaryReader, secret: bytes) -> HandshakeResult:
    """
    Read and validate a handshake from a byte reader.

    Args:
        reader: Reader over the first bytes of the client stream.
        secret: Configured 16-byte secret.

    Returns:
        Decoded HandshakeResult with any bytes past the header as leftover.

    Raises:
        TruncatedInputError: Stream ended inside the header.
        AuthenticationError: Secret mismatch (only 18 bytes are requested).
        UnsupportedCommandError: Command is not a TCP stream.
        InvalidAddressTypeError: Unknown address type.
        InvalidHostnameError: Empty or undecodable hostname.
    """
    header = await reader.read_at_least(AUTH_PREFIX_SIZE)

    version = header[0]
    client_secret = header[VERSION_SIZE : VERSION_SIZE + SECRET_SIZE]
    if not hmac.compare_digest(client_secret, secret):
        raise AuthenticationError("Invalid secret")

    extra_len = header[VERSION_SIZE + SECRET_SIZE]
    target_offset = AUTH_PREFIX_SIZE + extra_len
    addr_offset = target_offset + TARGET_SIZE

    # One byte past the address type, the domain length lives there
    header = await reader.read_at_least(addr_offset + 1)

    command, port, atype = struct.unpack_from(TARGET_FORMAT, header, target_offset)
    if command != Command.TCP:
        raise UnsupportedCommandError(command)

    if atype == AddressType.IPV4:
        header_len = addr_offset + IPV4_SIZE
    elif atype == AddressType.IPV6:
        header_len = addr_offset + IPV6_SIZE
    elif atype == AddressType.DOMAIN:
        header_len = addr_offset + 1 + header[addr_offset]
    else:
        raise InvalidAddressTypeError(atype)

    header = await reader.read_at_least(header_len)

    if atype == AddressType.IPV4:
        hostname = ".".join(str(b) for b in header[addr_offset:header_len])
    elif atype == AddressType.IPV6:
        hostname = _format_ipv6(header[addr_offset:header_len])
    else:
        try:
            hostname = header[addr_offset + 1 : header_len].decode("utf-8")
        except UnicodeDecodeError:
            raise InvalidHostnameError("Domain is not valid UTF-8")

    if not hostname:
        raise InvalidHostnameError("Empty hostname")

    return HandshakeResult(
        version=version,
        destination=Destination(host=hostname, port=port, command_ok=True),
        leftover=header[header_len:],
    )


async def decode_handshake(data: bytes, secret: bytes) -> HandshakeResult:
    """Decode a handshake that must fit entirely in ``data``."""
    return await read_handshake(BinaryReader.from_bytes(data), secret)
