# MIT License
# Copyright (c) 2025 Hashborn

"""
Voting Info Generators

Interfaces to the slow, chain-backed side of the cache and their
implementation against a node's JSON API.
"""

import logging
from typing import Any, List, Optional, Protocol, Sequence, runtime_checkable

import requests
from pydantic import ValidationError

from ..protocol.config.params import DEFAULT_DEPTH_PER_ROUND, VotingConfig
from ..protocol.types.voting import NodeVotingInfo, VotingTreeNode
from .errors import ChainQueryError
from .voting_tree import proposal_pollard

logger = logging.getLogger(__name__)


@runtime_checkable
class VotingPowerTreeGenerator(Protocol):
    """Produces voting info from the chain and pollards from voting info."""

    def get_voting_info(self, block_number: int) -> List[NodeVotingInfo]:
        """Voting power and delegate of every node at a block (blocking, queries the chain)."""
        ...

    def build_pollard(self, voting_info: Sequence[NodeVotingInfo]) -> List[VotingTreeNode]:
        """Pollard row for a new proposal (pure, in-memory)."""
        ...


@runtime_checkable
class FinalizedBlockProvider(Protocol):
    """Source of the latest finalized execution block."""

    def latest_finalized_block(self) -> int:
        ...


class NodeClient:
    """
    Minimal JSON client for the node API.

    Every failure (connection, status, payload) surfaces as ChainQueryError.
    """

    def __init__(self, node_url: str, timeout: float = 60.0, session: Optional[requests.Session] = None):
        self.node_url = node_url.rstrip("/")
        self.timeout = timeout
        self.session = session if session is not None else requests.Session()

    @classmethod
    def from_config(cls, config: VotingConfig) -> "NodeClient":
        return cls(config.node_url, timeout=config.request_timeout)

    def get_json(self, path: str) -> Any:
        url = f"{self.node_url}{path}"
        try:
            resp = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise ChainQueryError(f"Connection error querying {url}: {e}") from e

        if resp.status_code != 200:
            raise ChainQueryError(f"Node error querying {url} ({resp.status_code}): {resp.text}")

        try:
            return resp.json()
        except ValueError as e:
            raise ChainQueryError(f"Invalid JSON from {url}: {e}") from e


class RpcVotingTreeGenerator:
    """
    Voting info from `GET /voting/info/{block}`; pollards computed locally.
    """

    def __init__(self, client: NodeClient, depth_per_round: int = DEFAULT_DEPTH_PER_ROUND):
        self.client = client
        self.depth_per_round = depth_per_round

    def get_voting_info(self, block_number: int) -> List[NodeVotingInfo]:
        logger.info(f"Querying node voting info at block {block_number}...")
        data = self.client.get_json(f"/voting/info/{block_number}")
        try:
            infos = [NodeVotingInfo.model_validate(item) for item in data["votingInfo"]]
        except (KeyError, TypeError, ValidationError) as e:
            raise ChainQueryError(f"Malformed voting info for block {block_number}: {e}") from e

        logger.info(f"Got voting info for {len(infos)} nodes at block {block_number}")
        return infos

    def build_pollard(self, voting_info: Sequence[NodeVotingInfo]) -> List[VotingTreeNode]:
        return proposal_pollard(voting_info, self.depth_per_round)


class RpcFinalizedBlockProvider:
    """Latest finalized execution block from `GET /finalized`."""

    def __init__(self, client: NodeClient):
        self.client = client

    def latest_finalized_block(self) -> int:
        data = self.client.get_json("/finalized")
        try:
            return int(data["executionBlockNumber"])
        except (KeyError, TypeError, ValueError) as e:
            raise ChainQueryError(f"Malformed finalized block response: {e}") from e
