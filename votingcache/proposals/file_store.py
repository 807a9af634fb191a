# MIT License
# Copyright (c) 2025 Hashborn

"""
Checksum-indexed File Store

Shared save/load machinery for artifacts cached as zstd-compressed JSON next
to a checksum table:

    <directory>/<artifact filename>.json.zst
    <directory>/checksums.sha384

The SHA384 checksum is taken over the compressed bytes, so it authenticates
exactly what is on disk.
"""

import binascii
import logging
import re
from pathlib import Path
from typing import Generic, List, Optional, Tuple, Type, TypeVar, Union

from pydantic import ValidationError

from ..observability.metrics import CacheMetrics, LOOKUP_HIT, LOOKUP_INVALID, LOOKUP_MISS
from ..protocol.config.params import CHECKSUM_TABLE_FILENAME, LATEST_COMPATIBLE_VERSION
from ..protocol.crypto.hash import sha384, sha384_hex
from ..upgrade.types import Version, is_compatible
from .checksum_index import FILENAME_PATTERN, ChecksumEntry, ChecksumIndex, write_file_atomic
from .compression import Compressor
from .errors import (
    CacheError,
    CompatibilityError,
    IndexCorruptionError,
    IntegrityError,
    SerializationError,
)
from .types import CachedArtifact

T = TypeVar("T", bound=CachedArtifact)


class ChecksumFileStore(Generic[T]):
    """
    Persists and validates one kind of cached artifact in one directory.

    Subclasses set `model` (the pydantic type stored), `kind` (used in log
    messages), `store_label` (used as the metrics label) and, when their
    filenames carry more than the block number, `filename_pattern`.
    """

    model: Type[T]
    kind: str = "artifact"
    store_label: str = "artifact"
    filename_pattern: re.Pattern = FILENAME_PATTERN

    def __init__(
        self,
        directory: Union[str, Path],
        network: str,
        compressor: Optional[Compressor] = None,
        metrics: Optional[CacheMetrics] = None,
        logger: Optional[logging.Logger] = None,
        latest_compatible_version: str = LATEST_COMPATIBLE_VERSION,
    ):
        """
        Initialize the store, creating its directory if needed.

        Args:
            directory: Directory holding the artifacts and their checksum table
            network: Network the artifacts must belong to
            compressor: Shared zstd compressor (a new one is created if omitted)
            metrics: Metrics sink (optional)
            logger: Logger (default: this module's logger)
            latest_compatible_version: Oldest generator version still trusted
        """
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.network = network
        self.compressor = compressor if compressor is not None else Compressor()
        self.metrics = metrics
        self.logger = logger if logger is not None else logging.getLogger(__name__)
        self.index = ChecksumIndex(self.directory / CHECKSUM_TABLE_FILENAME, self.filename_pattern)
        self.latest_compatible_version = Version.from_string(latest_compatible_version)

    def path_for(self, filename: str) -> Path:
        return self.directory / filename

    def save(self, item: T) -> ChecksumEntry:
        """
        Compress an artifact to disk and record its checksum in the index.

        Returns:
            The index entry written for the artifact

        Raises:
            SerializationError: If the artifact can't be serialized or compressed
            OSError: If the artifact or the index can't be written
            IndexCorruptionError: If the existing index can't be parsed
        """
        try:
            data = item.to_json_bytes()
        except ValueError as e:
            raise SerializationError(f"error serializing {self.kind}: {e}") from e

        compressed = self.compressor.encode(data)
        checksum_hex = sha384_hex(compressed)

        filename = item.filename
        write_file_atomic(self.path_for(filename), compressed)

        _, lines = self.index.parse()
        lines = self.index.sort(lines)
        block_number, node_index = item.index_key
        entry = ChecksumEntry(
            checksum_hex=checksum_hex, filename=filename, block_number=block_number, node_index=node_index
        )
        lines = self.index.upsert(lines, entry)
        self.index.write(lines)

        if self.metrics:
            self.metrics.record_save(self.store_label)

        ratio = (1 - len(compressed) / len(data)) * 100 if data else 0.0
        self.logger.info(
            f"Saved {self.kind} for {self.describe_key(block_number, node_index)} to [{filename}]: "
            f"{len(compressed) / 1024:.2f} KB compressed ({ratio:.1f}% reduction)"
        )
        return entry

    def load(self, block_number: int, node_index: Optional[int] = None) -> Optional[T]:
        """
        Load the artifact for a block (and node index, for node trees) if a
        valid copy is cached.

        Returns None on any cache miss: nothing indexed for the block, checksum
        mismatch, unreadable or undecodable file, other network, or a
        generator version below the compatibility floor.

        Raises:
            IndexCorruptionError: If the index has malformed lines or the
                matched entry's checksum isn't valid hex
        """
        exists, lines = self.index.parse()
        if not exists:
            self.logger.info(
                f"Checksum table [{self.index.path}] not found, cannot load any previously saved {self.kind}s."
            )
            self._record(LOOKUP_MISS)
            return None

        entry = self.index.lookup(lines, block_number, node_index)
        if entry is None:
            self.logger.info(f"A {self.kind} for {self.describe_key(block_number, node_index)} could not be found.")
            self._record(LOOKUP_MISS)
            return None

        expected_checksum = self._decode_checksum(entry)

        try:
            item = self._read_verified(entry, expected_checksum)
            if item.index_key != (block_number, node_index):
                raise CompatibilityError(
                    f"file [{entry.filename}] holds {self.describe_key(*item.index_key)} "
                    f"instead of {self.describe_key(block_number, node_index)}"
                )
            self._check_compatible(item, entry.filename)
        except CacheError as e:
            self.logger.warning(f"Cannot use the saved {self.kind} [{entry.filename}]: {e}")
            self._record(LOOKUP_INVALID)
            return None

        self.logger.info(f"Loaded {self.kind} for {self.describe_key(block_number, node_index)} from [{entry.filename}].")
        self._record(LOOKUP_HIT)
        return item

    def entries(self) -> List[ChecksumEntry]:
        """Indexed entries sorted by block number (then node index)."""
        _, lines = self.index.parse()
        return [self.index.parse_entry(line, self.index.pattern) for line in self.index.sort(lines)]

    def verify(self) -> List[Tuple[ChecksumEntry, bool]]:
        """
        Re-hash every indexed file against its recorded checksum.

        Missing files and malformed checksums count as failures.
        """
        results = []
        for entry in self.entries():
            try:
                expected = binascii.unhexlify(entry.checksum_hex)
                valid = sha384(self.path_for(entry.filename).read_bytes()) == expected
            except (binascii.Error, ValueError, OSError) as e:
                self.logger.warning(f"Could not verify [{entry.filename}]: {e}")
                valid = False
            results.append((entry, valid))
        return results

    def _decode_checksum(self, entry: ChecksumEntry) -> bytes:
        try:
            return binascii.unhexlify(entry.checksum_hex)
        except (binascii.Error, ValueError) as e:
            raise IndexCorruptionError(
                f"error scanning checksum line for [{entry.filename}]: "
                f"checksum ({entry.checksum_hex}) could not be parsed"
            ) from e

    def _read_verified(self, entry: ChecksumEntry, expected_checksum: bytes) -> T:
        path = self.path_for(entry.filename)
        try:
            compressed = path.read_bytes()
        except OSError as e:
            raise IntegrityError(f"error reading file [{path}]: {e}") from e

        actual_checksum = sha384(compressed)
        if actual_checksum != expected_checksum:
            raise IntegrityError(
                f"checksum mismatch (expected {entry.checksum_hex}, but it was {actual_checksum.hex()})"
            )

        data = self.compressor.decode(compressed)
        try:
            return self.model.model_validate_json(data)
        except ValidationError as e:
            raise SerializationError(f"error deserializing {self.kind}: {e}") from e

    def _check_compatible(self, item: T, filename: str):
        if item.network != self.network:
            raise CompatibilityError(
                f"file [{filename}] is for network {item.network} instead of {self.network}"
            )

        try:
            compatible = is_compatible(item.generator_version, self.latest_compatible_version)
        except ValueError as e:
            raise CompatibilityError(f"failed to parse the version info for file [{filename}]: {e}") from e

        if not compatible:
            raise CompatibilityError(
                f"file [{filename}] was made with v{item.generator_version} which is not compatible "
                f"(lowest compatible = v{self.latest_compatible_version})"
            )

    @staticmethod
    def describe_key(block_number: int, node_index: Optional[int] = None) -> str:
        if node_index is None:
            return f"block {block_number}"
        return f"block {block_number}, node index {node_index}"

    def _record(self, result: str):
        if self.metrics:
            self.metrics.record_lookup(self.store_label, result)
