# MIT License
# Copyright (c) 2025 Hashborn

"""
Proposal Voting Cache

Checksum-indexed on-disk cache of voting info snapshots, network voting trees
and node voting trees, and the manager that serves proposal artifacts from it.
"""

from .errors import (
    CacheError,
    ChainQueryError,
    CompatibilityError,
    IndexCorruptionError,
    IntegrityError,
    SerializationError,
    VotingCacheError,
)
from .checksum_index import ChecksumEntry, ChecksumIndex
from .compression import Compressor
from .generator import (
    FinalizedBlockProvider,
    NodeClient,
    RpcFinalizedBlockProvider,
    RpcVotingTreeGenerator,
    VotingPowerTreeGenerator,
)
from .manager import ProposalManager
from .snapshot_store import SnapshotStore
from .tree_store import NetworkTreeStore, NodeTreeStore
from .types import VotingPowerSnapshot
from .voting_tree import NetworkVotingTree, NodeVotingTree, VotingTree

__all__ = [
    "CacheError",
    "ChainQueryError",
    "ChecksumEntry",
    "ChecksumIndex",
    "CompatibilityError",
    "Compressor",
    "FinalizedBlockProvider",
    "IndexCorruptionError",
    "IntegrityError",
    "NetworkTreeStore",
    "NetworkVotingTree",
    "NodeClient",
    "NodeTreeStore",
    "NodeVotingTree",
    "ProposalManager",
    "RpcFinalizedBlockProvider",
    "RpcVotingTreeGenerator",
    "SerializationError",
    "SnapshotStore",
    "VotingCacheError",
    "VotingPowerSnapshot",
    "VotingPowerTreeGenerator",
    "VotingTree",
]
