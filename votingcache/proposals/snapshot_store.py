# MIT License
# Copyright (c) 2025 Hashborn

"""
Voting Info Snapshot Store

Persists voting info snapshots in the voting directory:
- <voting path>/<network>-<block>.json.zst (compressed snapshot)
- <voting path>/checksums.sha384 (checksum table)
"""

import logging
from typing import Optional

from ..observability.metrics import CacheMetrics
from ..protocol.config.params import VotingConfig
from .compression import Compressor
from .file_store import ChecksumFileStore
from .types import VotingPowerSnapshot


class SnapshotStore(ChecksumFileStore[VotingPowerSnapshot]):
    """
    The only reader and writer of snapshot files and their checksum table.

    A snapshot is accepted from disk only if its checksum matches, it is for
    the configured network and its generator version is at or above the
    compatibility floor; anything else is a cache miss and gets regenerated.
    """

    model = VotingPowerSnapshot
    kind = "voting info snapshot"
    store_label = "snapshot"

    @classmethod
    def from_config(
        cls,
        config: VotingConfig,
        compressor: Optional[Compressor] = None,
        metrics: Optional[CacheMetrics] = None,
        logger: Optional[logging.Logger] = None,
    ) -> "SnapshotStore":
        return cls(
            config.voting_path,
            config.network,
            compressor=compressor,
            metrics=metrics,
            logger=logger,
        )
