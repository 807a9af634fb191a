# MIT License
# Copyright (c) 2025 Hashborn

"""
Voting Tree Stores

Derived trees live in their own folders with their own checksum tables:
- <voting path>/network-trees/network-tree-<network>-<block>.json.zst
- <voting path>/node-trees/node-tree-<block>-<address>-<node index>.json.zst
"""

import logging
from typing import Optional

from ..observability.metrics import CacheMetrics
from ..protocol.config.params import VotingConfig
from .checksum_index import NODE_TREE_FILENAME_PATTERN
from .compression import Compressor
from .file_store import ChecksumFileStore
from .voting_tree import NetworkVotingTree, NodeVotingTree


class NetworkTreeStore(ChecksumFileStore[NetworkVotingTree]):
    """Disk cache of network voting trees, validated like snapshots."""

    model = NetworkVotingTree
    kind = "network tree"
    store_label = "network_tree"

    @classmethod
    def from_config(
        cls,
        config: VotingConfig,
        compressor: Optional[Compressor] = None,
        metrics: Optional[CacheMetrics] = None,
        logger: Optional[logging.Logger] = None,
    ) -> "NetworkTreeStore":
        return cls(
            config.tree_path,
            config.network,
            compressor=compressor,
            metrics=metrics,
            logger=logger,
        )


class NodeTreeStore(ChecksumFileStore[NodeVotingTree]):
    """Disk cache of node voting trees, keyed by block and node index."""

    model = NodeVotingTree
    kind = "node tree"
    store_label = "node_tree"
    filename_pattern = NODE_TREE_FILENAME_PATTERN

    @classmethod
    def from_config(
        cls,
        config: VotingConfig,
        compressor: Optional[Compressor] = None,
        metrics: Optional[CacheMetrics] = None,
        logger: Optional[logging.Logger] = None,
    ) -> "NodeTreeStore":
        return cls(
            config.node_tree_path,
            config.network,
            compressor=compressor,
            metrics=metrics,
            logger=logger,
        )
