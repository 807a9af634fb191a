# MIT License
# Copyright (c) 2025 Hashborn

"""
Error taxonomy for the voting cache.

Only ChainQueryError (and SerializationError raised while saving) is meant to
reach users; every other CacheError makes the ProposalManager fall back to the
next, more expensive strategy.
"""


class VotingCacheError(Exception):
    """Base class for all voting cache errors."""


class ChainQueryError(VotingCacheError):
    """Cold generation failed while querying the chain."""


class CacheError(VotingCacheError):
    """Failure in the on-disk cache layer."""


class SerializationError(CacheError):
    """Data could not be serialized, compressed, decompressed or deserialized."""


class IntegrityError(CacheError):
    """A cached file does not match the checksum recorded in the index."""


class CompatibilityError(CacheError):
    """A cached file is for another network or was made by a too old generator."""


class IndexCorruptionError(CacheError):
    """The checksum index contains a line that cannot be parsed."""
