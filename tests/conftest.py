import pytest
import tempfile
import shutil
from votingcache.observability.metrics import CacheMetrics
from votingcache.protocol.config.params import VotingConfig
from votingcache.protocol.types.voting import NodeVotingInfo
from votingcache.proposals.compression import Compressor
from votingcache.proposals.errors import ChainQueryError
from votingcache.proposals.manager import ProposalManager
from votingcache.proposals.snapshot_store import SnapshotStore
from votingcache.proposals.voting_tree import proposal_pollard

ETH = 10**18
FINALIZED_BLOCK = 1000


def node_address(i: int) -> str:
    return f"0x{i + 1:040x}"


def make_voting_info(count: int = 5):
    """Node i has (i + 1) ETH of power; node 3 delegates to node 0, the rest to themselves."""
    infos = []
    for i in range(count):
        delegate = node_address(0) if i == 3 else node_address(i)
        infos.append(NodeVotingInfo(
            node_address=node_address(i),
            delegate=delegate,
            voting_power=(i + 1) * ETH,
        ))
    return infos


class FakeGenerator:
    """Deterministic generator that counts chain queries."""

    def __init__(self, voting_info, depth_per_round: int = 2, error: Exception = None):
        self.voting_info = voting_info
        self.depth_per_round = depth_per_round
        self.error = error
        self.calls = []

    def get_voting_info(self, block_number: int):
        self.calls.append(block_number)
        if self.error is not None:
            raise self.error
        return [info.model_copy() for info in self.voting_info]

    def build_pollard(self, voting_info):
        return proposal_pollard(voting_info, self.depth_per_round)


class FixedBlockProvider:
    def __init__(self, block_number: int = FINALIZED_BLOCK):
        self.block_number = block_number

    def latest_finalized_block(self) -> int:
        return self.block_number


@pytest.fixture
def data_dir():
    temp_dir = tempfile.mkdtemp()
    yield temp_dir
    shutil.rmtree(temp_dir)


@pytest.fixture
def config(data_dir):
    # devnet uses 2 levels per round, which keeps test trees small
    return VotingConfig(network="devnet", data_dir=data_dir, node_url="http://node.invalid")


@pytest.fixture
def voting_info():
    return make_voting_info()


@pytest.fixture
def generator(voting_info):
    return FakeGenerator(voting_info)


@pytest.fixture
def failing_generator(voting_info):
    return FakeGenerator(voting_info, error=ChainQueryError("node unreachable"))


@pytest.fixture
def block_provider():
    return FixedBlockProvider()


@pytest.fixture
def metrics():
    return CacheMetrics()


@pytest.fixture
def compressor():
    return Compressor()


@pytest.fixture
def snapshot_store(config, compressor, metrics):
    return SnapshotStore.from_config(config, compressor=compressor, metrics=metrics)


@pytest.fixture
def manager(config, generator, block_provider, metrics):
    return ProposalManager.from_config(config, generator=generator, block_provider=block_provider, metrics=metrics)
