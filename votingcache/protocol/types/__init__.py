from .voting import NodeVotingInfo, VotingTreeNode

__all__ = ["NodeVotingInfo", "VotingTreeNode"]
