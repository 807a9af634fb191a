import pytest
from votingcache.proposals.compression import Compressor
from votingcache.proposals.errors import SerializationError


def test_encode_is_deterministic():
    data = b'{"votingInfo": []}' * 100
    first = Compressor().encode(data)
    second = Compressor().encode(data)

    assert first == second
    assert len(first) < len(data)
    assert Compressor().decode(first) == data


def test_decode_invalid_raises():
    with pytest.raises(SerializationError, match="decompressing"):
        Compressor().decode(b"definitely not zstd")


def test_decode_truncated_raises():
    compressor = Compressor()
    frame = compressor.encode(b"x" * 4096)
    with pytest.raises(SerializationError):
        compressor.decode(frame[:-4])
