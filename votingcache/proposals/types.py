# MIT License
# Copyright (c) 2025 Hashborn

"""
Cached Artifact Data Structures
"""

from abc import abstractmethod
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .. import __version__
from ..protocol.types.voting import NodeVotingInfo

MAX_UINT32 = 2**32 - 1

SNAPSHOT_FILENAME_FORMAT = "{network}-{block}.json.zst"


class CachedArtifact(BaseModel):
    """
    Fields shared by everything stored behind a checksum index.

    Field order is part of the serialized form and must stay fixed.
    """
    model_config = ConfigDict(populate_by_name=True)

    generator_version: str = Field(
        default=__version__, alias="generatorVersion", description="Generator release that built this"
    )
    network: str = Field(..., description="Network ID (mainnet/holesky/devnet)")
    block_number: int = Field(..., alias="blockNumber", ge=0, le=MAX_UINT32, description="Execution block number")

    @property
    @abstractmethod
    def filename(self) -> str:
        """Name of the compressed file in the store directory."""

    @property
    def index_key(self) -> Tuple[int, Optional[int]]:
        """(block number, node index) the checksum index files this under."""
        return self.block_number, None

    def to_json_bytes(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode()


class VotingPowerSnapshot(CachedArtifact):
    """
    Voting power and delegation of every node at one execution block.

    Built once by cold generation from chain queries and never mutated.
    """
    voting_info: List[NodeVotingInfo] = Field(default_factory=list, alias="votingInfo")

    @property
    def filename(self) -> str:
        return SNAPSHOT_FILENAME_FORMAT.format(network=self.network, block=self.block_number)
