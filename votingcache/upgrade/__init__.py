# MIT License
# Copyright (c) 2025 Hashborn

"""
Generator versioning.

Cached artifacts record the generator release that produced them; anything
older than the compatibility floor is regenerated.
"""

from .types import Version, is_compatible

__all__ = ["Version", "is_compatible"]
