# MIT License
# Copyright (c) 2025 Hashborn

"""
Proposal Manager

Serves voting trees, pollards and proofs for any block while querying the
chain at most once per block:

1. tree cache (NetworkTreeStore, NodeTreeStore)
2. voting info snapshot cache (SnapshotStore), tree derived locally
3. cold generation through the chain-backed generator
"""

import base64
import logging
import time
from typing import List, Optional, Sequence, Tuple

from pydantic import TypeAdapter

from ..observability.metrics import CacheMetrics
from ..protocol.config.params import VotingConfig
from ..protocol.types.voting import VotingTreeNode
from .compression import Compressor
from .errors import CacheError, ChainQueryError, SerializationError
from .file_store import ChecksumFileStore
from .generator import (
    FinalizedBlockProvider,
    NodeClient,
    RpcFinalizedBlockProvider,
    RpcVotingTreeGenerator,
    VotingPowerTreeGenerator,
)
from .snapshot_store import SnapshotStore
from .tree_store import NetworkTreeStore, NodeTreeStore
from .types import CachedArtifact, VotingPowerSnapshot
from .voting_tree import (
    NetworkVotingTree,
    NodeVotingTree,
    VotingTree,
    create_network_tree,
    create_node_tree,
    node_index_from_tree_node_index,
    tree_node_index_from_node_index,
)

_pollard_adapter = TypeAdapter(List[VotingTreeNode])


class ProposalManager:
    """
    Cache-aside controller for proposal artifacts.

    Cache failures are logged and fall through to the next strategy; only a
    failed chain query (or an artifact that cannot be serialized) reaches the
    caller. Not safe for concurrent use; callers serialize access.
    """

    def __init__(
        self,
        config: VotingConfig,
        snapshot_store: SnapshotStore,
        tree_store: NetworkTreeStore,
        node_tree_store: NodeTreeStore,
        generator: VotingPowerTreeGenerator,
        block_provider: Optional[FinalizedBlockProvider] = None,
        compressor: Optional[Compressor] = None,
        metrics: Optional[CacheMetrics] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.snapshot_store = snapshot_store
        self.tree_store = tree_store
        self.node_tree_store = node_tree_store
        self.generator = generator
        self.block_provider = block_provider
        self.compressor = compressor if compressor is not None else snapshot_store.compressor
        self.metrics = metrics
        self.logger = logger if logger is not None else logging.getLogger(__name__)

    @classmethod
    def from_config(
        cls,
        config: VotingConfig,
        generator: Optional[VotingPowerTreeGenerator] = None,
        block_provider: Optional[FinalizedBlockProvider] = None,
        metrics: Optional[CacheMetrics] = None,
        logger: Optional[logging.Logger] = None,
    ) -> "ProposalManager":
        """
        Wire up stores sharing one compressor, falling back to the node API
        for anything not supplied.
        """
        compressor = Compressor()
        snapshot_store = SnapshotStore.from_config(config, compressor=compressor, metrics=metrics, logger=logger)
        tree_store = NetworkTreeStore.from_config(config, compressor=compressor, metrics=metrics, logger=logger)
        node_tree_store = NodeTreeStore.from_config(config, compressor=compressor, metrics=metrics, logger=logger)

        if generator is None or block_provider is None:
            client = NodeClient.from_config(config)
            if generator is None:
                generator = RpcVotingTreeGenerator(client, config.network_config.depth_per_round)
            if block_provider is None:
                block_provider = RpcFinalizedBlockProvider(client)

        return cls(
            config,
            snapshot_store,
            tree_store,
            node_tree_store,
            generator,
            block_provider=block_provider,
            compressor=compressor,
            metrics=metrics,
            logger=logger,
        )

    @property
    def depth_per_round(self) -> int:
        return self.config.network_config.depth_per_round

    # Snapshots

    def get_voting_info_snapshot(self, block_number: int) -> VotingPowerSnapshot:
        """
        Cached snapshot for a block, generating and saving one on a miss.

        Raises:
            ChainQueryError: If cold generation fails
            SerializationError: If a generated snapshot can't be serialized
        """
        snapshot = self._load_cached(self.snapshot_store, block_number)
        if snapshot is not None:
            return snapshot

        self.logger.info(f"Voting info snapshot for block {block_number} didn't exist, creating one.")
        snapshot = self.create_snapshot_for_block(block_number)
        self._persist(self.snapshot_store, snapshot)
        return snapshot

    def create_snapshot_for_block(self, block_number: int) -> VotingPowerSnapshot:
        """
        Query the chain for a fresh snapshot. Bypasses and doesn't touch the cache.

        Raises:
            ChainQueryError: If the generator fails
        """
        start = time.monotonic()
        if self.metrics:
            self.metrics.generations_total.inc()

        try:
            voting_info = self.generator.get_voting_info(block_number)
        except ChainQueryError:
            raise
        except Exception as e:
            raise ChainQueryError(f"error getting node voting info for block {block_number}: {e}") from e

        elapsed = time.monotonic() - start
        if self.metrics:
            self.metrics.generation_seconds.observe(elapsed)
        self.logger.info(
            f"Generated voting info snapshot for block {block_number}: "
            f"{len(voting_info)} nodes in {elapsed:.1f}s"
        )

        return VotingPowerSnapshot(
            network=self.config.network,
            block_number=block_number,
            voting_info=voting_info,
        )

    # Trees

    def get_network_tree(self, block_number: int, snapshot: Optional[VotingPowerSnapshot] = None) -> NetworkVotingTree:
        """
        Network voting tree for a block: tree cache, then snapshot, then chain.

        Args:
            block_number: Execution block the tree is built against
            snapshot: Snapshot to derive from on a tree cache miss (loaded or
                generated if omitted)
        """
        tree = self._load_cached(self.tree_store, block_number)
        if tree is not None:
            return tree

        self.logger.info(f"Network tree for block {block_number} didn't exist, creating one.")
        if snapshot is None:
            snapshot = self.get_voting_info_snapshot(block_number)

        tree = create_network_tree(snapshot, self.depth_per_round)
        self._persist(self.tree_store, tree)
        return tree

    def get_node_tree(self, block_number: int, node_index: int, snapshot: Optional[VotingPowerSnapshot] = None) -> NodeVotingTree:
        """
        Tree of the voting power delegated to one node, cached like network trees.

        Raises:
            IndexError: If the node index is outside the snapshot
        """
        tree = self._load_cached(self.node_tree_store, block_number, node_index)
        if tree is not None:
            return tree

        self.logger.info(f"Node tree for block {block_number}, node index {node_index} didn't exist, creating one.")
        if snapshot is None:
            snapshot = self.get_voting_info_snapshot(block_number)

        node_count = len(snapshot.voting_info)
        tree_index = tree_node_index_from_node_index(node_count, node_index)
        tree = create_node_tree(snapshot, node_index, tree_index, self.depth_per_round)
        self._persist(self.node_tree_store, tree)
        return tree

    def create_latest_finalized_tree(self) -> Tuple[int, NetworkVotingTree]:
        """Network tree for the latest finalized block."""
        block_number = self.latest_finalized_block()
        return block_number, self.get_network_tree(block_number)

    def latest_finalized_block(self) -> int:
        if self.block_provider is None:
            raise ChainQueryError("No finalized block provider configured")
        try:
            return self.block_provider.latest_finalized_block()
        except ChainQueryError:
            raise
        except Exception as e:
            raise ChainQueryError(f"error determining latest finalized block: {e}") from e

    # Proposal artifacts

    def get_pollard_for_proposal(self, block_number: int) -> List[VotingTreeNode]:
        _, pollard = self.get_network_tree(block_number).get_pollard_for_proposal()
        return pollard

    def create_pollard_for_proposal(self) -> Tuple[int, List[VotingTreeNode]]:
        """Block number and pollard for a proposal against the latest finalized block."""
        block_number, tree = self.create_latest_finalized_tree()
        _, pollard = tree.get_pollard_for_proposal()
        return block_number, pollard

    def get_artifacts_for_proposal(self, block_number: int) -> Tuple[int, List[VotingTreeNode], str]:
        """Block number, pollard and encoded pollard, served from the tree cache when possible."""
        pollard = self.get_pollard_for_proposal(block_number)
        return block_number, pollard, self.encode_pollard(pollard)

    def create_artifacts_for_proposal(self, snapshot: VotingPowerSnapshot) -> Tuple[int, List[VotingTreeNode], str]:
        """
        Build the proposal pollard for a snapshot and encode it for submission.

        Pure transform: nothing is read from or written to the cache.

        Returns:
            (block number, pollard, base64 of the zstd-compressed pollard JSON)
        """
        pollard = list(self.generator.build_pollard(snapshot.voting_info))
        return snapshot.block_number, pollard, self.encode_pollard(pollard)

    def encode_pollard(self, pollard: List[VotingTreeNode]) -> str:
        try:
            pollard_bytes = _pollard_adapter.dump_json(pollard)
        except ValueError as e:
            raise SerializationError(f"error serializing pollard: {e}") from e

        compressed = self.compressor.encode(pollard_bytes)
        return base64.b64encode(compressed).decode("ascii")

    def decode_pollard(self, encoded: str) -> List[VotingTreeNode]:
        """Inverse of encode_pollard."""
        try:
            compressed = base64.b64decode(encoded, validate=True)
        except ValueError as e:
            raise SerializationError(f"error decoding pollard: {e}") from e

        data = self.compressor.decode(compressed)
        try:
            return _pollard_adapter.validate_json(data)
        except ValueError as e:
            raise SerializationError(f"error deserializing pollard: {e}") from e

    # Voting and challenges

    def get_artifacts_for_voting(self, block_number: int, node_address: str) -> Tuple[int, int, List[VotingTreeNode]]:
        """
        Voting artifacts for a node: its total delegated voting power, its index
        in the snapshot and the Merkle proof of its leaf in the network tree.

        Raises:
            ValueError: If the node isn't part of the snapshot
        """
        snapshot = self.get_voting_info_snapshot(block_number)

        address = node_address.lower()
        node_index = next(
            (i for i, info in enumerate(snapshot.voting_info) if info.node_address.lower() == address),
            None,
        )
        if node_index is None:
            raise ValueError(f"Node {node_address} is not in the voting info snapshot for block {block_number}")

        network_tree = self.get_network_tree(block_number, snapshot)
        node_tree = self.get_node_tree(block_number, node_index, snapshot)

        leaf_index = network_tree.leaf_local_index(node_index)
        return node_tree.root.sum, node_index, network_tree.generate_merkle_proof(leaf_index)

    def get_artifacts_for_challenge_response(self, block_number: int, challenged_index: int) -> Tuple[VotingTreeNode, List[VotingTreeNode]]:
        """
        Challenged node and its pollard, for responding to a challenge.

        Indices above the network leaf row are served from the network tree;
        anything at or below a leaf comes from that node's tree.

        Raises:
            IndexError: If the index is outside the tree
        """
        tree = self._tree_for_index(block_number, challenged_index)
        return tree.get_artifacts_for_challenge_response(challenged_index)

    def check_for_challengeable_artifacts(
        self,
        block_number: int,
        index: int,
        proposed_pollard: Sequence[VotingTreeNode],
    ) -> Optional[Tuple[int, VotingTreeNode, List[VotingTreeNode]]]:
        """
        Compare a pollard submitted for the node at `index` against local data.

        Returns:
            None if the pollard matches; otherwise the index to challenge, the
            submitted node there and its proof against the submitted pollard

        Raises:
            ValueError: If the pollard has the wrong size
            IndexError: If the index is outside the tree
        """
        tree = self._tree_for_index(block_number, index)
        result = tree.check_for_challengeable_artifacts(index, proposed_pollard)
        if result is not None:
            self.logger.info(f"Pollard for block {block_number}, index {index} differs at index {result[0]}.")
        return result

    def _tree_for_index(self, block_number: int, index: int) -> VotingTree:
        snapshot = self.get_voting_info_snapshot(block_number)
        node_index = node_index_from_tree_node_index(len(snapshot.voting_info), index)
        if node_index is None:
            return self.get_network_tree(block_number, snapshot)
        return self.get_node_tree(block_number, node_index, snapshot)

    # Cache helpers

    def _load_cached(self, store: ChecksumFileStore, *key: int) -> Optional[CachedArtifact]:
        try:
            return store.load(*key)
        except (CacheError, OSError) as e:
            self.logger.error(f"Loading {store.kind} for {store.describe_key(*key)} failed: {e}; regenerating.")
            return None

    def _persist(self, store: ChecksumFileStore, item: CachedArtifact):
        try:
            store.save(item)
        except SerializationError:
            raise
        except (CacheError, OSError) as e:
            self.logger.error(
                f"Saving {store.kind} for {store.describe_key(*item.index_key)} failed: {e}; "
                f"it will be regenerated when next requested."
            )
