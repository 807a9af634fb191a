import json
import pytest
from conftest import FINALIZED_BLOCK
from votingcache.cli import main as cli
from votingcache.proposals.errors import ChainQueryError
from votingcache.proposals.manager import ProposalManager
from votingcache.proposals.snapshot_store import SnapshotStore
from votingcache.proposals.types import VotingPowerSnapshot


@pytest.fixture
def argv(data_dir):
    return ["--network", "devnet", "--datadir", data_dir]


@pytest.fixture
def fake_manager(monkeypatch, generator, block_provider):
    def build(config, metrics=None):
        return ProposalManager.from_config(config, generator=generator, block_provider=block_provider, metrics=metrics)

    monkeypatch.setattr(cli, "build_manager", build)


def test_snapshot(argv, fake_manager, generator, capsys):
    cli.main(argv + ["snapshot", "--block", "1000"])
    out = capsys.readouterr().out
    assert "Snapshot for block 1000 (devnet)" in out
    assert "Nodes:     5" in out
    assert generator.calls == [1000]


def test_pollard(argv, fake_manager, capsys):
    cli.main(argv + ["pollard"])
    latest = json.loads(capsys.readouterr().out)
    assert latest["blockNumber"] == FINALIZED_BLOCK

    cli.main(argv + ["pollard", "--block", str(FINALIZED_BLOCK)])
    assert json.loads(capsys.readouterr().out) == latest


def test_proof(argv, fake_manager, voting_info, capsys):
    cli.main(argv + ["proof", voting_info[1].node_address, "--block", "1000"])
    data = json.loads(capsys.readouterr().out)
    assert data["nodeIndex"] == 1
    assert len(data["proof"]) == 3


def test_index_list_and_verify(argv, config, voting_info, capsys):
    cli.main(argv + ["index", "list"])
    assert "No voting info snapshots" in capsys.readouterr().out

    store = SnapshotStore.from_config(config)
    for block in (12, 3):
        store.save(VotingPowerSnapshot(network="devnet", block_number=block, voting_info=voting_info))

    cli.main(argv + ["index", "list"])
    out = capsys.readouterr().out
    assert out.index("devnet-3.json.zst") < out.index("devnet-12.json.zst")

    cli.main(argv + ["index", "verify"])
    assert "2/2 files verified" in capsys.readouterr().out

    (config.voting_path / "devnet-3.json.zst").write_bytes(b"tampered")
    with pytest.raises(SystemExit) as exc:
        cli.main(argv + ["index", "verify"])
    assert exc.value.code == 1
    assert "FAILED  devnet-3.json.zst" in capsys.readouterr().out


def test_chain_error_exits(argv, monkeypatch, capsys):
    def build(config, metrics=None):
        raise ChainQueryError("node unreachable")

    monkeypatch.setattr(cli, "build_manager", build)
    with pytest.raises(SystemExit) as exc:
        cli.main(argv + ["snapshot", "--block", "5"])
    assert exc.value.code == 1
    assert "Error: node unreachable" in capsys.readouterr().out


def test_unknown_network_exits(data_dir, capsys):
    with pytest.raises(SystemExit):
        cli.main(["--network", "ropsten", "--datadir", data_dir, "index", "list"])
    assert "Unknown network" in capsys.readouterr().out


def test_challenge_and_node_tree_index(argv, fake_manager, capsys):
    cli.main(argv + ["challenge", "8", "--block", "1000"])
    data = json.loads(capsys.readouterr().out)
    assert data["index"] == 8
    assert len(data["pollard"]) == 4

    cli.main(argv + ["index", "list", "--node-trees"])
    assert "node-tree-1000-" in capsys.readouterr().out

    with pytest.raises(SystemExit) as exc:
        cli.main(argv + ["challenge", "128", "--block", "1000"])
    assert exc.value.code == 1
    assert "Error:" in capsys.readouterr().out
