# MIT License
# Copyright (c) 2025 Hashborn

"""
zstd compression for cached files and pollard transport.
"""

import zstandard

from .errors import SerializationError

# Highest level that doesn't need zstd's "ultra" window sizes; cached data is
# written once per block and read many times.
BEST_COMPRESSION_LEVEL = 19


class Compressor:
    """
    Holds one zstd encoder and one decoder for the lifetime of its owner.

    Output is deterministic for identical input (single-threaded, no
    dictionary, no frame checksum), which the checksum index relies on.
    Instances are not safe for concurrent use.
    """

    def __init__(self, level: int = BEST_COMPRESSION_LEVEL):
        self.level = level
        self._encoder = zstandard.ZstdCompressor(
            level=level,
            write_checksum=False,
            write_content_size=True,
            threads=0,
        )
        self._decoder = zstandard.ZstdDecompressor()

    def encode(self, data: bytes) -> bytes:
        """Compress a complete buffer into a single zstd frame."""
        try:
            return self._encoder.compress(data)
        except zstandard.ZstdError as e:
            raise SerializationError(f"error compressing data: {e}") from e

    def decode(self, data: bytes) -> bytes:
        """
        Decompress a complete zstd frame.

        Frames must record their content size, as encode() does.

        Raises:
            SerializationError: If the buffer isn't valid zstd data
        """
        try:
            return self._decoder.decompress(data)
        except zstandard.ZstdError as e:
            raise SerializationError(f"error decompressing data: {e}") from e
