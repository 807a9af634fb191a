# MIT License
# Copyright (c) 2025 Hashborn

"""
Voting Cache HTTP API

Read-only view of the proposal manager. Manager calls are serialized with a
lock; the manager and its compressors are not thread-safe.
"""

import logging
import threading
from typing import List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST

from .. import __version__
from ..observability.metrics import CacheMetrics
from ..protocol.types.voting import VotingTreeNode
from ..proposals.errors import CacheError, ChainQueryError
from ..proposals.manager import ProposalManager
from ..proposals.types import MAX_UINT32

logger = logging.getLogger(__name__)


def _nodes(nodes: List[VotingTreeNode]) -> List[dict]:
    return [node.model_dump() for node in nodes]


def _check_block(block_number: int):
    if not 0 <= block_number <= MAX_UINT32:
        raise HTTPException(status_code=400, detail=f"Invalid block number {block_number}")


def create_app(manager: ProposalManager, metrics: Optional[CacheMetrics] = None) -> FastAPI:
    """
    Build the API around one manager.

    Args:
        manager: Manager serving every request
        metrics: Metrics exposed on /metrics (default: the manager's)
    """
    app = FastAPI(title="Voting Cache API", version=__version__)
    app.state.manager = manager
    app.state.metrics = metrics if metrics is not None else manager.metrics
    lock = threading.Lock()

    def call(fn, *args):
        try:
            with lock:
                return fn(*args)
        except ChainQueryError as e:
            logger.error(f"Chain query failed: {e}")
            raise HTTPException(status_code=502, detail=f"Chain query failed: {e}")
        except CacheError as e:
            logger.error(f"Cache error: {e}")
            raise HTTPException(status_code=500, detail=f"Cache error: {e}")
        except (IndexError, ValueError) as e:
            raise HTTPException(status_code=404, detail=str(e))

    def cached_entries():
        return (
            manager.snapshot_store.entries(),
            manager.tree_store.entries(),
            manager.node_tree_store.entries(),
        )

    @app.get("/status")
    def get_status():
        snapshots, trees, node_trees = call(cached_entries)
        return {
            "network": manager.config.network,
            "version": __version__,
            "latest_compatible_version": str(manager.snapshot_store.latest_compatible_version),
            "depth_per_round": manager.depth_per_round,
            "snapshots": len(snapshots),
            "trees": len(trees),
            "node_trees": len(node_trees),
            "latest_snapshot_block": snapshots[-1].block_number if snapshots else None,
        }

    # Declared before /pollard/{block_number} so "latest" isn't parsed as a block
    @app.get("/pollard/latest")
    def get_latest_pollard():
        block_number, pollard = call(manager.create_pollard_for_proposal)
        encoded = call(manager.encode_pollard, pollard)
        return {"block_number": block_number, "pollard": _nodes(pollard), "encoded": encoded}

    @app.get("/pollard/{block_number}")
    def get_pollard(block_number: int):
        _check_block(block_number)
        _, pollard, encoded = call(manager.get_artifacts_for_proposal, block_number)
        return {"block_number": block_number, "pollard": _nodes(pollard), "encoded": encoded}

    @app.get("/voting/{block_number}/{node_address}")
    def get_voting_artifacts(block_number: int, node_address: str):
        _check_block(block_number)
        power, node_index, proof = call(manager.get_artifacts_for_voting, block_number, node_address)
        return {
            "block_number": block_number,
            "node_address": node_address,
            "node_index": node_index,
            "voting_power": str(power),
            "proof": _nodes(proof),
        }

    @app.get("/challenge/{block_number}/{index}")
    def get_challenge_response(block_number: int, index: int):
        _check_block(block_number)
        node, pollard = call(manager.get_artifacts_for_challenge_response, block_number, index)
        return {
            "block_number": block_number,
            "index": index,
            "node": node.model_dump(),
            "pollard": _nodes(pollard),
        }

    @app.post("/challenge/{block_number}/{index}/check")
    def check_pollard(block_number: int, index: int, pollard: List[VotingTreeNode]):
        """Compare a submitted pollard for `index` against the local trees."""
        _check_block(block_number)
        result = call(manager.check_for_challengeable_artifacts, block_number, index, pollard)
        if result is None:
            return {"block_number": block_number, "index": index, "challengeable": False}

        challenged_index, node, proof = result
        return {
            "block_number": block_number,
            "index": index,
            "challengeable": True,
            "challenged_index": challenged_index,
            "node": node.model_dump(),
            "proof": _nodes(proof),
        }

    @app.get("/metrics")
    def get_metrics():
        """Prometheus metrics in text format."""
        if app.state.metrics is None:
            raise HTTPException(status_code=404, detail="Metrics not enabled")
        return Response(content=app.state.metrics.render(), media_type=CONTENT_TYPE_LATEST)

    return app
