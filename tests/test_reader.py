import pytest

from conftest import fragments

from splithttp.tunnel.exceptions import HandshakeError, TruncatedInputError
from splithttp.tunnel.reader import BinaryReader


async def test_accumulates_small_fragments():
    reader = BinaryReader(fragments(b"a", b"", b"bc", b"d", b"ef"))

    assert await reader.read_at_least(3) == b"abc"
    assert await reader.read_at_least(5) == b"abcdef"
    assert reader.buffered == b"abcdef"


async def test_satisfied_request_does_not_pull():
    pulls = []

    async def source():
        for part in (b"0123456789", b"more"):
            pulls.append(part)
            yield part

    reader = BinaryReader(source())
    await reader.read_at_least(4)
    await reader.read_at_least(10)

    assert pulls == [b"0123456789"]


async def test_truncated_input_reports_counts():
    reader = BinaryReader(fragments(b"ab", b"c"))

    with pytest.raises(TruncatedInputError) as exc_info:
        await reader.read_at_least(10)

    assert exc_info.value.obtained == 3
    assert exc_info.value.required == 10
    assert isinstance(exc_info.value, HandshakeError)


async def test_truncated_input_is_terminal():
    reader = BinaryReader(fragments(b"abc"))

    with pytest.raises(TruncatedInputError):
        await reader.read_at_least(4)
    with pytest.raises(TruncatedInputError):
        await reader.read_at_least(4)
    # Bytes already buffered are still served
    assert await reader.read_at_least(3) == b"abc"


async def test_from_bytes():
    reader = BinaryReader.from_bytes(b"hello")

    assert await reader.read_at_least(5) == b"hello"
    with pytest.raises(TruncatedInputError):
        await reader.read_at_least(6)
