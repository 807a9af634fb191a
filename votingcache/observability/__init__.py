# MIT License
# Copyright (c) 2025 Hashborn

"""
Observability Module

Provides Prometheus metrics for the voting cache.
"""

from .metrics import CacheMetrics, LOOKUP_HIT, LOOKUP_MISS, LOOKUP_INVALID

__all__ = ['CacheMetrics', 'LOOKUP_HIT', 'LOOKUP_MISS', 'LOOKUP_INVALID']
