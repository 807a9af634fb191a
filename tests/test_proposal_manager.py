import logging
import shutil
import pytest
from conftest import ETH, FINALIZED_BLOCK, FakeGenerator, node_address
from votingcache.observability.metrics import LOOKUP_HIT, LOOKUP_INVALID
from votingcache.protocol.crypto.hash import hash_for_balance
from votingcache.protocol.types.voting import VotingTreeNode
from votingcache.protocol.config.params import CHECKSUM_TABLE_FILENAME
from votingcache.proposals.errors import ChainQueryError, IndexCorruptionError, SerializationError
from votingcache.proposals.manager import ProposalManager
from votingcache.proposals.voting_tree import get_parent_node_from_children


def generations(metrics):
    return metrics.registry.get_sample_value("votingcache_generations_total") or 0


def test_block_1000_queries_chain_once(manager, generator, config, voting_info, block_provider):
    snapshot = manager.get_voting_info_snapshot(1000)
    block, pollard, encoded = manager.create_artifacts_for_proposal(snapshot)
    assert generator.calls == [1000]
    assert block == 1000

    again = manager.get_voting_info_snapshot(1000)
    block_again, pollard_again, encoded_again = manager.create_artifacts_for_proposal(again)
    assert generator.calls == [1000]
    assert again == snapshot
    assert pollard_again == pollard
    assert encoded_again == encoded

    # A new manager on the same data dir serves from disk as well
    fresh_generator = FakeGenerator(voting_info)
    fresh = ProposalManager.from_config(config, generator=fresh_generator, block_provider=block_provider)
    assert fresh.create_artifacts_for_proposal(fresh.get_voting_info_snapshot(1000))[2] == encoded
    assert fresh_generator.calls == []


def test_encoded_pollard_decodes(manager):
    snapshot = manager.get_voting_info_snapshot(1000)
    _, pollard, encoded = manager.create_artifacts_for_proposal(snapshot)

    assert manager.decode_pollard(encoded) == pollard
    assert sum(node.sum for node in pollard) == 15 * ETH

    with pytest.raises(SerializationError):
        manager.decode_pollard("not base64!")


def test_artifacts_match_cached_tree(manager):
    snapshot = manager.get_voting_info_snapshot(1000)
    _, pollard, encoded = manager.create_artifacts_for_proposal(snapshot)

    block, tree_pollard, tree_encoded = manager.get_artifacts_for_proposal(1000)
    assert block == 1000
    assert tree_pollard == pollard
    assert tree_encoded == encoded


def test_network_tree_cold_then_cached(manager, generator, config, metrics):
    tree = manager.get_network_tree(1000)
    assert generator.calls == [1000]
    assert (config.tree_path / "network-tree-devnet-1000.json.zst").exists()
    assert (config.voting_path / "devnet-1000.json.zst").exists()

    # Tree hits don't need the snapshot
    (config.voting_path / "devnet-1000.json.zst").unlink()
    assert manager.get_network_tree(1000) == tree
    assert generator.calls == [1000]
    assert metrics.lookup_count("network_tree", LOOKUP_HIT) == 1
    assert generations(metrics) == 1


def test_network_tree_derived_from_cached_snapshot(manager, generator, config):
    tree = manager.get_network_tree(1000)
    shutil.rmtree(config.tree_path)

    assert manager.get_network_tree(1000) == tree
    assert generator.calls == [1000]


def test_corrupt_snapshot_is_regenerated(manager, generator, config, metrics, caplog):
    manager.get_voting_info_snapshot(1000)
    path = config.voting_path / "devnet-1000.json.zst"
    path.write_bytes(b"corrupted")

    with caplog.at_level(logging.WARNING):
        snapshot = manager.get_voting_info_snapshot(1000)

    assert snapshot.block_number == 1000
    assert generator.calls == [1000, 1000]
    assert metrics.lookup_count("snapshot", LOOKUP_INVALID) == 1
    assert "checksum mismatch" in caplog.text
    # Regenerated copy replaced the corrupt one
    assert manager.snapshot_store.load(1000) == snapshot


def test_corrupt_index_degrades_to_generation(manager, generator, config, caplog):
    (config.voting_path / CHECKSUM_TABLE_FILENAME).write_text("garbage\n")

    with caplog.at_level(logging.ERROR):
        snapshot = manager.get_voting_info_snapshot(1000)

    assert snapshot.block_number == 1000
    assert generator.calls == [1000]
    assert "Saving voting info snapshot for block 1000 failed" in caplog.text


def test_undecodable_index_degrades_to_generation(manager, generator, config, caplog):
    (config.voting_path / CHECKSUM_TABLE_FILENAME).write_bytes(b"\xff\xfe garbage")
    (config.tree_path / CHECKSUM_TABLE_FILENAME).write_bytes(b"\xff\xfe garbage")

    with caplog.at_level(logging.ERROR):
        tree = manager.get_network_tree(1000)

    assert tree.block_number == 1000
    assert generator.calls == [1000]
    assert "Loading network tree for block 1000 failed" in caplog.text
    assert "Loading voting info snapshot for block 1000 failed" in caplog.text


def test_chain_query_error_propagates(config, failing_generator, block_provider, metrics):
    manager = ProposalManager.from_config(config, generator=failing_generator, block_provider=block_provider, metrics=metrics)

    with pytest.raises(ChainQueryError, match="node unreachable"):
        manager.get_network_tree(1000)
    assert manager.snapshot_store.entries() == []
    assert manager.tree_store.entries() == []


def test_generator_errors_are_wrapped(config, voting_info, block_provider):
    generator = FakeGenerator(voting_info, error=RuntimeError("boom"))
    manager = ProposalManager.from_config(config, generator=generator, block_provider=block_provider)

    with pytest.raises(ChainQueryError, match="block 1000: boom"):
        manager.get_voting_info_snapshot(1000)


def test_save_failure_is_not_fatal(manager, generator, monkeypatch):
    def disk_full(item):
        raise OSError("No space left on device")

    monkeypatch.setattr(manager.snapshot_store, "save", disk_full)
    assert manager.get_voting_info_snapshot(1000).block_number == 1000
    assert manager.get_voting_info_snapshot(1000).block_number == 1000
    assert generator.calls == [1000, 1000]


def test_save_serialization_error_is_fatal(manager, monkeypatch):
    def unserializable(item):
        raise SerializationError("error serializing voting info snapshot")

    monkeypatch.setattr(manager.snapshot_store, "save", unserializable)
    with pytest.raises(SerializationError):
        manager.get_voting_info_snapshot(1000)


def test_index_corruption_on_load_is_logged(manager, generator, monkeypatch, caplog):
    def corrupt(block_number):
        raise IndexCorruptionError("error parsing checksum line")

    monkeypatch.setattr(manager.tree_store, "load", corrupt)
    with caplog.at_level(logging.ERROR):
        tree = manager.get_network_tree(1000)

    assert tree.block_number == 1000
    assert "Loading network tree for block 1000 failed" in caplog.text


def test_latest_finalized(manager, generator):
    block, tree = manager.create_latest_finalized_tree()
    assert block == FINALIZED_BLOCK
    assert tree.block_number == FINALIZED_BLOCK

    block, pollard = manager.create_pollard_for_proposal()
    assert block == FINALIZED_BLOCK
    assert pollard == manager.get_pollard_for_proposal(FINALIZED_BLOCK)
    assert generator.calls == [FINALIZED_BLOCK]


def test_latest_finalized_without_provider(config, generator):
    manager = ProposalManager.from_config(config, generator=generator, block_provider=None)
    manager.block_provider = None
    with pytest.raises(ChainQueryError, match="No finalized block provider"):
        manager.create_pollard_for_proposal()


def test_artifacts_for_voting(manager):
    power, node_index, proof = manager.get_artifacts_for_voting(1000, node_address(0))
    assert power == 5 * ETH
    assert node_index == 0

    tree = manager.get_network_tree(1000)
    node, index = tree.nodes[tree.leaf_local_index(0) - 1], tree.leaf_local_index(0)
    for sibling in proof:
        node = get_parent_node_from_children(node, sibling) if index % 2 == 0 else get_parent_node_from_children(sibling, node)
        index //= 2
    assert node == tree.root

    power, node_index, _ = manager.get_artifacts_for_voting(1000, node_address(3))
    assert (power, node_index) == (0, 3)

    with pytest.raises(ValueError, match="not in the voting info snapshot"):
        manager.get_artifacts_for_voting(1000, "0x" + "ff" * 20)


def test_artifacts_for_challenge_response(manager):
    tree = manager.get_network_tree(1000)
    node, pollard = manager.get_artifacts_for_challenge_response(1000, 3)

    assert node == tree.nodes[2]
    assert pollard == tree.nodes[11:15]

    # Index 16 is below network leaf 8, so it comes from node 0's tree
    node_tree = manager.get_node_tree(1000, 0)
    node, pollard = manager.get_artifacts_for_challenge_response(1000, 16)
    assert node == node_tree.nodes[1]
    assert pollard == node_tree.nodes[7:11]

    # Leaf of node 4's tree holding its own power
    node, pollard = manager.get_artifacts_for_challenge_response(1000, 100)
    assert node.sum == 5 * ETH
    assert pollard == [node]

    with pytest.raises(IndexError):
        manager.get_artifacts_for_challenge_response(1000, 128)
    # Below padding leaf 15, which has no node
    with pytest.raises(IndexError):
        manager.get_artifacts_for_challenge_response(1000, 30)


def test_node_tree_cold_then_cached(manager, generator, config, metrics, voting_info):
    tree = manager.get_node_tree(1000, 0)
    assert tree.address == voting_info[0].node_address
    assert tree.node_index == 0
    assert tree.virtual_root_index == 8
    assert tree.root.sum == 5 * ETH
    assert (config.node_tree_path / f"node-tree-1000-{node_address(0)}-0.json.zst").exists()

    assert manager.get_node_tree(1000, 0) == tree
    assert metrics.lookup_count("node_tree", LOOKUP_HIT) == 1

    assert manager.get_node_tree(1000, 4).root.sum == 5 * ETH
    assert [e.node_index for e in manager.node_tree_store.entries()] == [0, 4]
    assert generator.calls == [1000]

    with pytest.raises(IndexError):
        manager.get_node_tree(1000, 5)


def test_check_for_challengeable_artifacts(manager):
    _, pollard = manager.get_network_tree(1000).get_pollard_for_proposal()
    assert manager.check_for_challengeable_artifacts(1000, 1, pollard) is None

    _, node_pollard = manager.get_node_tree(1000, 0).get_artifacts_for_challenge_response(8)
    assert manager.check_for_challengeable_artifacts(1000, 8, node_pollard) is None

    tampered = list(node_pollard)
    tampered[1] = VotingTreeNode(sum=ETH, hash=hash_for_balance(ETH))
    index, node, proof = manager.check_for_challengeable_artifacts(1000, 8, tampered)

    # Second node two levels below virtual index 8
    assert index == 33
    assert node == tampered[1]
    assert proof == [tampered[0], get_parent_node_from_children(tampered[2], tampered[3])]

    with pytest.raises(ValueError, match="pollard size mismatch"):
        manager.check_for_challengeable_artifacts(1000, 1, pollard[:3])
