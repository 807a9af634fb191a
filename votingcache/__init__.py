# MIT License
# Copyright (c) 2025 Hashborn

"""
Voting power snapshot cache for Protocol DAO proposals.

Builds, persists and re-serves per-block voting power snapshots and the
network voting trees derived from them.
"""

__version__ = "1.14.0"
