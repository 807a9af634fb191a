# MIT License
# Copyright (c) 2025 Hashborn

"""
Voting Trees

Summation Merkle trees over delegated voting power, stored as flat arrays with
the root first. Local indices are 1-based (root = 1, children of i are 2i and
2i+1); virtual indices locate a subtree inside the full on-chain tree.

The on-chain tree is the network tree (one leaf per node) with a node tree
hanging below every leaf. A node tree's leaves hold the voting power each node
delegates to the leaf's node, and its virtual root is that network leaf.
"""

from typing import Dict, List, Optional, Sequence, Tuple

from pydantic import Field

from ..protocol.crypto.hash import hash_for_balance, keccak256, uint256_bytes
from ..protocol.types.voting import NodeVotingInfo, VotingTreeNode
from .types import CachedArtifact, VotingPowerSnapshot

NETWORK_TREE_FILENAME_FORMAT = "network-tree-{network}-{block}.json.zst"
NODE_TREE_FILENAME_FORMAT = "node-tree-{block}-{address}-{index}.json.zst"


def _hash_bytes(node: VotingTreeNode) -> bytes:
    value = node.hash[2:] if node.hash.startswith("0x") else node.hash
    return bytes.fromhex(value)


def zero_node() -> VotingTreeNode:
    return VotingTreeNode(sum=0, hash=hash_for_balance(0))


def _leaf(voting_power: int) -> VotingTreeNode:
    if voting_power == 0:
        return zero_node()
    return VotingTreeNode(sum=voting_power, hash=hash_for_balance(voting_power))


def _same_node(a: VotingTreeNode, b: VotingTreeNode) -> bool:
    return a.sum == b.sum and _hash_bytes(a) == _hash_bytes(b)


def get_parent_node_from_children(left: VotingTreeNode, right: VotingTreeNode) -> VotingTreeNode:
    """Parent hash is keccak256(leftHash, leftSum, rightHash, rightSum) with sums as uint256."""
    digest = keccak256(
        _hash_bytes(left), uint256_bytes(left.sum),
        _hash_bytes(right), uint256_bytes(right.sum),
    )
    return VotingTreeNode(sum=left.sum + right.sum, hash="0x" + digest.hex())


def virtual_index_from_local(local_index: int, virtual_root_index: int) -> int:
    """Position of a local index in the full tree, given the subtree's virtual root."""
    level = local_index.bit_length() - 1
    level_start = 1 << level
    return (virtual_root_index << level) + (local_index - level_start)


def local_index_from_virtual(virtual_index: int, virtual_root_index: int) -> int:
    """
    Inverse of virtual_index_from_local.

    Raises:
        IndexError: If the index isn't in the subtree below `virtual_root_index`
    """
    level = virtual_index.bit_length() - virtual_root_index.bit_length()
    if virtual_index < 1 or level < 0 or virtual_index >> level != virtual_root_index:
        raise IndexError(f"Tree index {virtual_index} is not below virtual root {virtual_root_index}")
    return (1 << level) + virtual_index - (virtual_root_index << level)


class VotingTree(CachedArtifact):
    """
    Voting power tree rooted at `virtual_root_index` of the on-chain tree.

    Methods taking a tree index expect a virtual one unless noted otherwise.
    """
    depth: int = Field(..., ge=0, description="Level of the leaf row (root is level 0)")
    virtual_root_index: int = Field(default=1, alias="virtualRootIndex", ge=1)
    depth_per_round: int = Field(..., alias="depthPerRound", ge=1)
    nodes: List[VotingTreeNode] = Field(default_factory=list)

    @property
    def root(self) -> VotingTreeNode:
        return self.nodes[0]

    def leaf_local_index(self, position: int) -> int:
        """Local index of the leaf holding the node at `position` in the snapshot."""
        leaf_count = 1 << self.depth
        if not 0 <= position < leaf_count:
            raise IndexError(f"Leaf position {position} outside tree with {leaf_count} leaves")
        return leaf_count + position

    def get_pollard_for_proposal(self) -> Tuple[VotingTreeNode, List[VotingTreeNode]]:
        """Root node and pollard row used when submitting a new proposal."""
        return self._generate_pollard(self.virtual_root_index)

    def get_artifacts_for_challenge_response(self, challenged_index: int) -> Tuple[VotingTreeNode, List[VotingTreeNode]]:
        """Challenged node and the pollard below it, for answering a challenge."""
        return self._generate_pollard(challenged_index)

    def get_artifacts_for_challenge(self, target_index: int) -> Tuple[VotingTreeNode, List[VotingTreeNode]]:
        """Node at a virtual index and its Merkle proof up to this tree's root."""
        local_index = local_index_from_virtual(target_index, self.virtual_root_index)
        self._check_local_index(local_index)
        return self.nodes[local_index - 1], self.generate_merkle_proof(local_index)

    def check_for_challengeable_artifacts(
        self,
        virtual_root_index: int,
        proposed_pollard: Sequence[VotingTreeNode],
    ) -> Optional[Tuple[int, VotingTreeNode, List[VotingTreeNode]]]:
        """
        Compare a submitted pollard against the local one below `virtual_root_index`.

        Returns:
            None if they match; otherwise the virtual index of the first
            differing node, the submitted node there and its proof within the
            subtree rebuilt from the submitted pollard

        Raises:
            ValueError: If the submitted pollard doesn't have the local size
            IndexError: If `virtual_root_index` isn't in this tree
        """
        _, local_pollard = self._generate_pollard(virtual_root_index)
        if len(proposed_pollard) != len(local_pollard):
            raise ValueError(
                f"pollard size mismatch: expected {len(local_pollard)} nodes, got {len(proposed_pollard)}"
            )

        for i, (local_node, proposed_node) in enumerate(zip(local_pollard, proposed_pollard)):
            if _same_node(local_node, proposed_node):
                continue

            # Pollard nodes are the leaf row of the subtree they were proposed for
            virtual_index = virtual_index_from_local(len(local_pollard) + i, virtual_root_index)
            proposed_subtree = create_tree_from_leaves(
                self.block_number, self.network, proposed_pollard, virtual_root_index, self.depth_per_round
            )
            node, proof = proposed_subtree.get_artifacts_for_challenge(virtual_index)
            return virtual_index, node, proof

        return None

    def generate_merkle_proof(self, local_index: int) -> List[VotingTreeNode]:
        """
        Sibling nodes from `local_index` up to (excluding) the root.

        Note the index is a *local* one, not a virtual one.
        """
        self._check_local_index(local_index)
        proof = []
        index = local_index
        while index > 1:
            partner_index = index + 1 if index % 2 == 0 else index - 1
            proof.append(self.nodes[partner_index - 1])
            index //= 2
        return proof

    def _generate_pollard(self, virtual_root_index: int) -> Tuple[VotingTreeNode, List[VotingTreeNode]]:
        index = local_index_from_virtual(virtual_root_index, self.virtual_root_index)
        self._check_local_index(index)
        root_node = self.nodes[index - 1]

        root_level = index.bit_length() - 1
        absolute_depth = min(root_level + self.depth_per_round, self.depth)
        relative_depth = absolute_depth - root_level

        pollard_size = 1 << relative_depth
        first_index = index * pollard_size - 1
        return root_node, self.nodes[first_index:first_index + pollard_size]

    def _check_local_index(self, local_index: int):
        if not 1 <= local_index <= len(self.nodes):
            raise IndexError(f"Tree index {local_index} outside tree with {len(self.nodes)} nodes")


class NetworkVotingTree(VotingTree):
    """
    Network-wide voting power tree built from a voting info snapshot.
    """

    @property
    def filename(self) -> str:
        return NETWORK_TREE_FILENAME_FORMAT.format(network=self.network, block=self.block_number)


class NodeVotingTree(VotingTree):
    """
    Voting power delegated to one node, hanging below its network tree leaf.
    """
    address: str = Field(..., description="Address of the node the tree belongs to")
    node_index: int = Field(..., alias="nodeIndex", ge=0, description="Position of the node in the snapshot")

    @property
    def filename(self) -> str:
        return NODE_TREE_FILENAME_FORMAT.format(block=self.block_number, address=self.address, index=self.node_index)

    @property
    def index_key(self) -> Tuple[int, Optional[int]]:
        return self.block_number, self.node_index


def _build_nodes(leaves: Sequence[VotingTreeNode]) -> Tuple[int, List[VotingTreeNode]]:
    leaves = list(leaves) or [zero_node()]
    ceiling_power = (len(leaves) - 1).bit_length()
    total_leaf_nodes = 1 << ceiling_power

    nodes: List[VotingTreeNode] = [None] * (total_leaf_nodes * 2 - 1)
    leaf_start = total_leaf_nodes - 1
    nodes[leaf_start:leaf_start + len(leaves)] = leaves

    if total_leaf_nodes != len(leaves):
        padding = zero_node()
        for i in range(leaf_start + len(leaves), len(nodes)):
            nodes[i] = padding

    # Fill each level from the one below, bottom-up
    for level in range(ceiling_power - 1, -1, -1):
        level_length = 1 << level
        start_index = level_length - 1
        for j in range(start_index, start_index + level_length):
            nodes[j] = get_parent_node_from_children(nodes[j * 2 + 1], nodes[j * 2 + 2])

    return ceiling_power, nodes


def create_tree_from_leaves(
    block_number: int,
    network: str,
    leaves: Sequence[VotingTreeNode],
    virtual_root_index: int,
    depth_per_round: int,
) -> NetworkVotingTree:
    """
    Build the full tree from its leaf row, zero-padding to a power of two.
    """
    depth, nodes = _build_nodes(leaves)
    return NetworkVotingTree(
        network=network,
        block_number=block_number,
        depth=depth,
        virtual_root_index=virtual_root_index,
        depth_per_round=depth_per_round,
        nodes=nodes,
    )


def delegated_voting_power(voting_info: Sequence[NodeVotingInfo]) -> Dict[str, int]:
    """Total voting power delegated to each address (lowercased)."""
    power: Dict[str, int] = {}
    for info in voting_info:
        delegate = info.delegate.lower()
        power[delegate] = power.get(delegate, 0) + info.voting_power
    return power


def network_leaves(voting_info: Sequence[NodeVotingInfo]) -> List[VotingTreeNode]:
    """One leaf per node, in snapshot order, holding the power delegated to it."""
    power = delegated_voting_power(voting_info)
    return [_leaf(power.get(info.node_address.lower(), 0)) for info in voting_info]


def node_leaves(voting_info: Sequence[NodeVotingInfo], node_address: str) -> List[VotingTreeNode]:
    """One leaf per node, in snapshot order, holding what it delegates to `node_address`."""
    address = node_address.lower()
    return [
        _leaf(info.voting_power) if info.delegate.lower() == address else zero_node()
        for info in voting_info
    ]


def network_depth(node_count: int) -> int:
    """Level of the network tree's leaf row for a snapshot of `node_count` nodes."""
    return (max(node_count, 1) - 1).bit_length()


def tree_node_index_from_node_index(node_count: int, node_index: int) -> int:
    """Virtual index of a node's leaf in the network tree."""
    if not 0 <= node_index < node_count:
        raise IndexError(f"Node index {node_index} outside snapshot with {node_count} nodes")
    return (1 << network_depth(node_count)) + node_index


def node_index_from_tree_node_index(node_count: int, tree_index: int) -> Optional[int]:
    """
    Node whose tree holds a virtual index, or None for network tree indices.

    Network leaves are the roots of node trees, so they map to their node.

    Raises:
        IndexError: If the index is below a padding leaf or isn't a tree index
    """
    if tree_index < 1:
        raise IndexError(f"Tree index {tree_index} is not a valid tree index")

    depth = network_depth(node_count)
    level = tree_index.bit_length() - 1
    if level < depth:
        return None

    node_index = (tree_index >> (level - depth)) - (1 << depth)
    if node_index >= node_count:
        raise IndexError(
            f"Tree index {tree_index} is below network leaf {node_index}, "
            f"but the snapshot only has {node_count} nodes"
        )
    return node_index


def create_network_tree(snapshot: VotingPowerSnapshot, depth_per_round: int) -> NetworkVotingTree:
    """Derive the network voting tree from a snapshot; no chain access."""
    return create_tree_from_leaves(
        block_number=snapshot.block_number,
        network=snapshot.network,
        leaves=network_leaves(snapshot.voting_info),
        virtual_root_index=1,
        depth_per_round=depth_per_round,
    )


def create_node_tree(
    snapshot: VotingPowerSnapshot,
    node_index: int,
    network_tree_node_index: int,
    depth_per_round: int,
) -> NodeVotingTree:
    """
    Derive the tree of power delegated to one node from a snapshot.

    Args:
        snapshot: Snapshot holding the node
        node_index: Position of the node in the snapshot
        network_tree_node_index: Virtual index of the node's network tree leaf
        depth_per_round: Pollard depth per challenge round
    """
    if not 0 <= node_index < len(snapshot.voting_info):
        raise IndexError(f"Node index {node_index} outside snapshot with {len(snapshot.voting_info)} nodes")

    address = snapshot.voting_info[node_index].node_address
    depth, nodes = _build_nodes(node_leaves(snapshot.voting_info, address))
    return NodeVotingTree(
        network=snapshot.network,
        block_number=snapshot.block_number,
        depth=depth,
        virtual_root_index=network_tree_node_index,
        depth_per_round=depth_per_round,
        nodes=nodes,
        address=address,
        node_index=node_index,
    )


def proposal_pollard(voting_info: Sequence[NodeVotingInfo], depth_per_round: int) -> List[VotingTreeNode]:
    """
    Pollard row for a new proposal, straight from voting info.

    The block number and network of the intermediate tree don't affect any hash.
    """
    tree = create_tree_from_leaves(
        block_number=0,
        network="",
        leaves=network_leaves(voting_info),
        virtual_root_index=1,
        depth_per_round=depth_per_round,
    )
    _, pollard = tree.get_pollard_for_proposal()
    return list(pollard)
