# MIT License
# Copyright (c) 2025 Hashborn

"""
Prometheus Metrics Exporter

Exports voting cache metrics in Prometheus format.

Metrics:
- Cache lookups per store and result (hit, miss, invalid)
- Saves per store
- Cold generations (chain queries) and their latency
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

LOOKUP_HIT = "hit"
LOOKUP_MISS = "miss"
LOOKUP_INVALID = "invalid"


class CacheMetrics:
    """
    Voting cache metrics on their own registry, one instance per cache.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry if registry is not None else CollectorRegistry()

        self.lookups_total = Counter(
            'votingcache_lookups_total',
            'Cache lookups by store and result',
            ['store', 'result'],
            registry=self.registry
        )

        self.saves_total = Counter(
            'votingcache_saves_total',
            'Artifacts written to disk by store',
            ['store'],
            registry=self.registry
        )

        self.generations_total = Counter(
            'votingcache_generations_total',
            'Voting info snapshots generated from chain queries',
            registry=self.registry
        )

        self.generation_seconds = Histogram(
            'votingcache_generation_seconds',
            'Time spent querying the chain for a voting info snapshot',
            buckets=[1, 5, 15, 30, 60, 120, 300, 600],
            registry=self.registry
        )

    def record_lookup(self, store: str, result: str):
        self.lookups_total.labels(store=store, result=result).inc()

    def record_save(self, store: str):
        self.saves_total.labels(store=store).inc()

    def lookup_count(self, store: str, result: str) -> float:
        """Current value of a lookup counter (0 if never incremented)."""
        value = self.registry.get_sample_value(
            'votingcache_lookups_total', {'store': store, 'result': result}
        )
        return value or 0.0

    def render(self) -> bytes:
        """Prometheus text exposition of every metric on this registry."""
        return generate_latest(self.registry)
