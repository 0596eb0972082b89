import pytest

from conftest import SECRET, SECRET_TEXT

from splithttp.tunnel.exceptions import (
    AuthenticationError,
    HandshakeError,
    InvalidAddressTypeError,
    InvalidHostnameError,
    TruncatedInputError,
    UnsupportedCommandError,
)
from splithttp.tunnel.protocol import (
    AUTH_PREFIX_SIZE,
    Destination,
    build_handshake,
    decode_handshake,
    parse_secret,
    read_handshake,
)
from splithttp.tunnel.reader import BinaryReader


def raw_handshake(
    addr_type: int,
    address: bytes,
    port: bytes = b"\x01\xbb",
    command: int = 1,
    version: int = 0,
    secret: bytes = SECRET,
    extra: bytes = b"",
    payload: bytes = b"",
) -> bytes:
    return (
        bytes([version])
        + secret
        + bytes([len(extra)])
        + extra
        + bytes([command])
        + port
        + bytes([addr_type])
        + address
        + payload
    )


# =============================================================================
# Address decoding
# =============================================================================


async def test_ipv4_and_port():
    result = await decode_handshake(raw_handshake(1, bytes([192, 168, 0, 1])), SECRET)

    assert result.destination == Destination("192.168.0.1", 443)
    assert result.destination.command_ok
    assert result.leftover == b""


async def test_domain_with_leftover_payload():
    data = raw_handshake(2, bytes([11]) + b"example.com", payload=b"hello")

    result = await decode_handshake(data, SECRET)

    assert result.destination.host == "example.com"
    assert result.destination.port == 443
    assert result.leftover == b"hello"


async def test_ipv6_groups_without_compression():
    address = bytes.fromhex("20010db8000000000000000000000001")

    result = await decode_handshake(raw_handshake(3, address, port=b"\x00\x50"), SECRET)

    assert result.destination.host == "2001:db8:0:0:0:0:0:1"
    assert result.destination.port == 80
    assert str(result.destination) == "[2001:db8:0:0:0:0:0:1]:80"


async def test_extra_bytes_are_skipped():
    data = raw_handshake(1, bytes([10, 0, 0, 1]), extra=b"\x0a\x0b\x0c", payload=b"x")

    result = await decode_handshake(data, SECRET)

    assert result.destination.host == "10.0.0.1"
    assert result.leftover == b"x"


async def test_reply_preamble_echoes_version():
    result = await decode_handshake(
        raw_handshake(1, bytes([127, 0, 0, 1]), version=7), SECRET
    )

    assert result.version == 7
    assert result.reply_preamble == b"\x07\x00"


async def test_fragmented_source_decodes_identically():
    data = raw_handshake(2, bytes([11]) + b"example.com", payload=b"tail")
    one_byte_parts = [data[i : i + 1] for i in range(len(data))]

    async def source():
        for part in one_byte_parts:
            yield part

    result = await read_handshake(BinaryReader(source()), SECRET)

    assert result.destination == Destination("example.com", 443)
    # Decoding stops at the header boundary, nothing past it was pulled yet
    assert result.leftover == b""


async def test_build_handshake_round_trips_through_decoder():
    data = build_handshake(SECRET, "example.com", 8443, payload=b"abc", version=1)

    result = await decode_handshake(data, SECRET)

    assert result.destination == Destination("example.com", 8443)
    assert result.leftover == b"abc"
    assert result.reply_preamble == b"\x01\x00"


# =============================================================================
# Rejections
# =============================================================================


@pytest.mark.parametrize("index", range(16))
async def test_secret_mismatch_in_any_byte(index):
    secret = bytearray(SECRET)
    secret[index] ^= 0xFF
    data = raw_handshake(1, bytes([1, 2, 3, 4]), secret=bytes(secret), payload=b"z" * 64)
    pulls = []

    async def source():
        for part in (data[:AUTH_PREFIX_SIZE], data[AUTH_PREFIX_SIZE:]):
            pulls.append(part)
            yield part

    with pytest.raises(AuthenticationError):
        await read_handshake(BinaryReader(source()), SECRET)

    assert pulls == [data[:AUTH_PREFIX_SIZE]]


async def test_unsupported_command():
    with pytest.raises(UnsupportedCommandError) as exc_info:
        await decode_handshake(raw_handshake(1, bytes(4), command=2), SECRET)
    assert exc_info.value.command == 2


async def test_invalid_address_type():
    with pytest.raises(InvalidAddressTypeError) as exc_info:
        await decode_handshake(raw_handshake(9, bytes(4)), SECRET)
    assert exc_info.value.address_type == 9


async def test_empty_domain():
    with pytest.raises(InvalidHostnameError):
        await decode_handshake(raw_handshake(2, b"\x00"), SECRET)


async def test_domain_not_utf8():
    with pytest.raises(InvalidHostnameError):
        await decode_handshake(raw_handshake(2, b"\x02\xff\xfe"), SECRET)


async def test_truncated_address():
    data = raw_handshake(2, bytes([11]) + b"example")

    with pytest.raises(TruncatedInputError) as exc_info:
        await decode_handshake(data, SECRET)

    assert exc_info.value.obtained == len(data)
    assert exc_info.value.required == len(data) + 4


async def test_truncated_prefix():
    with pytest.raises(TruncatedInputError):
        await decode_handshake(SECRET[:10], SECRET)


@pytest.mark.parametrize(
    "error",
    [
        TruncatedInputError(1, 2),
        AuthenticationError("x"),
        UnsupportedCommandError(2),
        InvalidAddressTypeError(4),
        InvalidHostnameError("x"),
    ],
)
def test_decoder_errors_are_handshake_errors(error):
    assert isinstance(error, HandshakeError)


# =============================================================================
# Secret parsing
# =============================================================================


def test_parse_secret_accepts_uuid_forms():
    assert parse_secret(SECRET_TEXT) == SECRET
    assert parse_secret(SECRET_TEXT.replace("-", "")) == SECRET
    assert parse_secret(f"  {SECRET_TEXT.upper()}\n") == SECRET


def test_parse_secret_rejects_garbage():
    with pytest.raises(ValueError):
        parse_secret("not-a-secret")
