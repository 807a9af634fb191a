# MIT License
# Copyright (c) 2025 Hashborn

import os
from pathlib import Path
from types import MappingProxyType
from typing import Mapping

from pydantic import BaseModel, Field, field_validator

# Global Constants
CHECKSUM_TABLE_FILENAME = "checksums.sha384"
# Oldest generator release whose cached snapshots and trees are still trusted
LATEST_COMPATIBLE_VERSION = "1.12.0-dev"
DEFAULT_NODE = "http://localhost:8545"
DEFAULT_DATA_DIR = "~/.votingcache"
DEFAULT_DEPTH_PER_ROUND = 5

VOTING_FOLDER_NAME = "voting"
NETWORK_TREE_FOLDER_NAME = "network-trees"
NODE_TREE_FOLDER_NAME = "node-trees"

class NetworkConfig:
    def __init__(self,
                 network_id: str,
                 chain_id: int,
                 depth_per_round: int = DEFAULT_DEPTH_PER_ROUND):
        self.network_id = network_id
        self.chain_id = chain_id
        # Pollard depth below the proposal root (on-chain proposal.depth.per.round)
        self.depth_per_round = depth_per_round

NETWORKS: Mapping[str, NetworkConfig] = MappingProxyType({
    "mainnet": NetworkConfig(
        network_id="mainnet",
        chain_id=1,
    ),
    "holesky": NetworkConfig(
        network_id="holesky",
        chain_id=17000,
    ),
    "devnet": NetworkConfig(
        network_id="devnet",
        chain_id=1337,
        depth_per_round=2,
    ),
})


class VotingConfig(BaseModel):
    """
    Settings for one voting cache instance. Passed explicitly to every manager.
    """
    network: str = Field(default="mainnet", description="Network the cache serves")
    data_dir: str = Field(default=DEFAULT_DATA_DIR, description="Root data directory")
    node_url: str = Field(default=DEFAULT_NODE, description="Node JSON API used for chain queries")
    request_timeout: float = Field(default=60.0, gt=0, description="Chain query timeout (seconds)")

    @field_validator("network")
    @classmethod
    def _known_network(cls, value: str) -> str:
        if value not in NETWORKS:
            raise ValueError(f"Unknown network '{value}' (expected one of {sorted(NETWORKS)})")
        return value

    @property
    def network_config(self) -> NetworkConfig:
        return NETWORKS[self.network]

    @property
    def voting_path(self) -> Path:
        """Directory holding voting info snapshots and their checksum table."""
        return Path(self.data_dir).expanduser() / VOTING_FOLDER_NAME / self.network

    @property
    def tree_path(self) -> Path:
        """Directory holding derived network voting trees."""
        return self.voting_path / NETWORK_TREE_FOLDER_NAME

    @property
    def node_tree_path(self) -> Path:
        """Directory holding derived node voting trees."""
        return self.voting_path / NODE_TREE_FOLDER_NAME

    @classmethod
    def from_env(cls, **overrides) -> "VotingConfig":
        """
        Build a config from VOTINGCACHE_* environment variables.

        Explicit keyword overrides that are not None take precedence.
        """
        values = {}
        env_map = {
            "network": "VOTINGCACHE_NETWORK",
            "data_dir": "VOTINGCACHE_DATA_DIR",
            "node_url": "VOTINGCACHE_NODE",
        }
        for field_name, env_name in env_map.items():
            if os.environ.get(env_name):
                values[field_name] = os.environ[env_name]

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
