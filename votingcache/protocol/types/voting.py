# MIT License
# Copyright (c) 2025 Hashborn

from pydantic import BaseModel, ConfigDict, Field


class NodeVotingInfo(BaseModel):
    """
    Voting power and delegation of a single node at a historical block.
    """
    model_config = ConfigDict(populate_by_name=True)

    node_address: str = Field(..., alias="nodeAddress", description="Node address (0x hex)")
    delegate: str = Field(..., description="Address the node delegates its voting power to")
    voting_power: int = Field(default=0, alias="votingPower", ge=0, description="Voting power (wei)")


class VotingTreeNode(BaseModel):
    """
    Node of a summation Merkle tree: the summed voting power below it and its hash.
    """
    sum: int = Field(default=0, ge=0, description="Total voting power under this node")
    hash: str = Field(..., description="0x-prefixed keccak256 hash")
