# MIT License
# Copyright (c) 2025 Hashborn

"""
Checksum Index

Flat text table mapping content hashes to cached filenames, one entry per line:

    <sha384-hex>  <filename>

The key of every entry is recovered from its filename: the block number for
snapshots and network trees (`*-<block>.json.zst`), plus the node index for
node trees (`*-<block>-<address>-<index>.json.zst`).
"""

import os
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from .errors import IndexCorruptionError

ENTRY_SEPARATOR = "  "
FILENAME_PATTERN = re.compile(r"-(?P<block>\d+)\.json\.zst$")
NODE_TREE_FILENAME_PATTERN = re.compile(
    r"-(?P<block>\d+)-(?P<address>0x[0-9a-fA-F]{40})-(?P<index>\d+)\.json\.zst$"
)
MAX_UINT64 = 2**64 - 1

EntryKey = Tuple[int, Optional[int]]


@dataclass(frozen=True)
class ChecksumEntry:
    """One parsed line of the checksum index."""
    checksum_hex: str
    filename: str
    block_number: int
    node_index: Optional[int] = None

    @property
    def key(self) -> EntryKey:
        return self.block_number, self.node_index

    def to_line(self) -> str:
        return ChecksumIndex.format_line(self.checksum_hex, self.filename)


def _parse_uint64(value: str, name: str) -> int:
    number = int(value)
    if number > MAX_UINT64:
        raise IndexCorruptionError(f"{name} ({value}) could not be parsed to a number")
    return number


def parse_filename(filename: str, pattern: re.Pattern = FILENAME_PATTERN) -> EntryKey:
    """
    Extract (block number, node index) from a cached filename.

    The node index is None for patterns without an `index` group.

    Raises:
        IndexCorruptionError: If the filename doesn't match the expected format
    """
    match = pattern.search(filename)
    if match is None:
        raise IndexCorruptionError(f"filename ({filename}) did not match the expected format")

    block_number = _parse_uint64(match.group("block"), "block number")
    node_index = None
    if "index" in pattern.groupindex:
        node_index = _parse_uint64(match.group("index"), "node index")
    return block_number, node_index


def block_number_from_filename(filename: str) -> int:
    """
    Extract the block number from a snapshot or network tree filename.

    Raises:
        IndexCorruptionError: If the filename doesn't match the expected format
    """
    block_number, _ = parse_filename(filename)
    return block_number


def write_file_atomic(path: Path, data: bytes):
    """Write bytes to `path` through a temp file in the same directory and os.replace."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


class ChecksumIndex:
    """
    Reads and rewrites a single checksum table file.

    The index is rewritten in full on every save; only one writer process may
    use a given directory at a time.
    """

    def __init__(self, path: Union[str, Path], pattern: re.Pattern = FILENAME_PATTERN):
        self.path = Path(path)
        self.pattern = pattern

    @staticmethod
    def format_line(checksum_hex: str, filename: str) -> str:
        return f"{checksum_hex}{ENTRY_SEPARATOR}{filename}"

    def parse(self) -> Tuple[bool, List[str]]:
        """
        Read the index lines in on-disk order, without blank lines.

        Returns:
            (exists, lines); (False, []) when the index file doesn't exist yet

        Raises:
            IndexCorruptionError: If the file isn't valid UTF-8
        """
        if not self.path.exists():
            return False, []

        try:
            contents = self.path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise IndexCorruptionError(f"checksum table [{self.path}] is not valid UTF-8: {e}") from e

        lines = [line for line in contents.split("\n") if line.strip()]
        return True, lines

    @staticmethod
    def parse_entry(line: str, pattern: re.Pattern = FILENAME_PATTERN) -> ChecksumEntry:
        """
        Split an index line into its checksum, filename and key.

        Raises:
            IndexCorruptionError: If the line is malformed
        """
        elems = line.split(ENTRY_SEPARATOR)
        if len(elems) != 2:
            raise IndexCorruptionError(
                f"error parsing checksum line ({line}): expected 2 elements, but got {len(elems)}"
            )
        checksum_hex, filename = elems

        try:
            block_number, node_index = parse_filename(filename, pattern)
        except IndexCorruptionError as e:
            raise IndexCorruptionError(f"error scanning checksum line ({line}): {e}") from e

        return ChecksumEntry(
            checksum_hex=checksum_hex,
            filename=filename,
            block_number=block_number,
            node_index=node_index,
        )

    def sort(self, lines: List[str]) -> List[str]:
        """
        Stable sort of index lines by block number (then node index), ascending.

        Every line is parsed before anything is reordered, so a malformed line
        raises without producing a partial result.
        """
        keyed = []
        for line in lines:
            entry = self.parse_entry(line, self.pattern)
            node_index = entry.node_index if entry.node_index is not None else -1
            keyed.append(((entry.block_number, node_index), line))
        keyed.sort(key=lambda item: item[0])
        return [line for _, line in keyed]

    def upsert(self, lines: List[str], entry: ChecksumEntry) -> List[str]:
        """
        Replace the line for `entry.filename` in place, or append it.

        Any further lines for the same filename are dropped, so the result
        holds exactly one line per file. Does not re-sort; call sort() first
        when block order matters.
        """
        new_line = entry.to_line()
        suffix = f"{ENTRY_SEPARATOR}{entry.filename}"
        updated = []
        replaced = False
        for line in lines:
            if not line.endswith(suffix):
                updated.append(line)
            elif not replaced:
                updated.append(new_line)
                replaced = True

        if not replaced:
            updated.append(new_line)
        return updated

    def write(self, lines: List[str]):
        """Replace the index file with the given lines."""
        write_file_atomic(self.path, "\n".join(lines).encode("utf-8"))

    def lookup(self, lines: List[str], block_number: int, node_index: Optional[int] = None) -> Optional[ChecksumEntry]:
        """
        Find the entry for a block number (and node index, for node trees).

        When several lines share a key the one closest to the end of the file
        wins.

        Raises:
            IndexCorruptionError: If any line is malformed
        """
        by_key: Dict[EntryKey, ChecksumEntry] = {}
        for line in lines:
            entry = self.parse_entry(line, self.pattern)
            by_key[entry.key] = entry
        return by_key.get((block_number, node_index))

    def entries(self) -> List[ChecksumEntry]:
        """All parsed entries of the current index file, in file order."""
        _, lines = self.parse()
        return [self.parse_entry(line, self.pattern) for line in lines]
