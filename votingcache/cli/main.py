# MIT License
# Copyright (c) 2025 Hashborn

import argparse
import json
import logging
import sys

from .. import __version__
from ..observability.metrics import CacheMetrics
from ..protocol.config.params import DEFAULT_DATA_DIR, DEFAULT_NODE, VotingConfig
from ..proposals.errors import VotingCacheError
from ..proposals.manager import ProposalManager
from ..proposals.snapshot_store import SnapshotStore
from ..proposals.tree_store import NetworkTreeStore, NodeTreeStore


def get_config(args) -> VotingConfig:
    return VotingConfig.from_env(network=args.network, data_dir=args.datadir, node_url=args.node)


def build_manager(config: VotingConfig, metrics: CacheMetrics = None) -> ProposalManager:
    return ProposalManager.from_config(config, metrics=metrics)


def get_store(args):
    config = get_config(args)
    if args.node_trees:
        return NodeTreeStore.from_config(config)
    if args.trees:
        return NetworkTreeStore.from_config(config)
    return SnapshotStore.from_config(config)


# --- Cache Commands ---
def cmd_snapshot(args):
    manager = build_manager(get_config(args))
    snapshot = manager.get_voting_info_snapshot(args.block)
    total_power = sum(info.voting_power for info in snapshot.voting_info)
    print(f"Snapshot for block {snapshot.block_number} ({snapshot.network})")
    print(f"Generator: v{snapshot.generator_version}")
    print(f"Nodes:     {len(snapshot.voting_info)}")
    print(f"Power:     {total_power}")


def cmd_pollard(args):
    manager = build_manager(get_config(args))
    if args.block is None:
        block_number, pollard = manager.create_pollard_for_proposal()
        encoded = manager.encode_pollard(pollard)
    else:
        block_number, pollard, encoded = manager.get_artifacts_for_proposal(args.block)

    print(json.dumps({
        "blockNumber": block_number,
        "pollard": [node.model_dump() for node in pollard],
        "encoded": encoded,
    }, indent=2))


def cmd_proof(args):
    manager = build_manager(get_config(args))
    power, node_index, proof = manager.get_artifacts_for_voting(args.block, args.address)
    print(json.dumps({
        "blockNumber": args.block,
        "nodeIndex": node_index,
        "votingPower": str(power),
        "proof": [node.model_dump() for node in proof],
    }, indent=2))


def cmd_challenge(args):
    manager = build_manager(get_config(args))
    node, pollard = manager.get_artifacts_for_challenge_response(args.block, args.index)
    print(json.dumps({
        "blockNumber": args.block,
        "index": args.index,
        "node": node.model_dump(),
        "pollard": [n.model_dump() for n in pollard],
    }, indent=2))


# --- Index Commands ---
def cmd_index_list(args):
    store = get_store(args)
    entries = store.entries()
    if not entries:
        print(f"No {store.kind}s in {store.directory}")
        return

    print(f"{'Block':<12} {'Filename':<48} {'Checksum':<20}")
    print("-" * 82)
    for entry in entries:
        print(f"{entry.block_number:<12} {entry.filename:<48} {entry.checksum_hex[:16]}...")


def cmd_index_verify(args):
    store = get_store(args)
    results = store.verify()
    failed = 0
    for entry, valid in results:
        status = "OK" if valid else "FAILED"
        if not valid:
            failed += 1
        print(f"{status:<7} {entry.filename}")

    print(f"{len(results) - failed}/{len(results)} files verified")
    if failed:
        sys.exit(1)


# --- Server ---
def cmd_serve(args):
    import uvicorn
    from ..rpc.api import create_app

    metrics = CacheMetrics()
    manager = build_manager(get_config(args), metrics=metrics)
    app = create_app(manager, metrics)
    print(f"Serving {manager.config.network} voting cache on http://{args.host}:{args.port}")
    uvicorn.run(app, host=args.host, port=args.port, log_level="info")


def main(argv=None):
    parser = argparse.ArgumentParser(prog="votingcache", description="Voting power snapshot cache")
    parser.add_argument("--network", help="Network (mainnet, holesky, devnet; default: mainnet)")
    parser.add_argument("--datadir", help=f"Data directory (default: {DEFAULT_DATA_DIR})")
    parser.add_argument("--node", help=f"Node URL (default: {DEFAULT_NODE})")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Sub-commands")

    p_snap = subparsers.add_parser("snapshot", help="Load or generate the voting info snapshot for a block")
    p_snap.add_argument("--block", type=int, required=True, help="Execution block number")

    p_pollard = subparsers.add_parser("pollard", help="Proposal pollard for a block")
    p_pollard.add_argument("--block", type=int, help="Execution block number (default: latest finalized)")

    p_proof = subparsers.add_parser("proof", help="Voting power and Merkle proof for a node")
    p_proof.add_argument("address", help="Node address")
    p_proof.add_argument("--block", type=int, required=True, help="Execution block number")

    p_challenge = subparsers.add_parser("challenge", help="Challenge response for a tree index")
    p_challenge.add_argument("index", type=int, help="Challenged tree index")
    p_challenge.add_argument("--block", type=int, required=True, help="Execution block number")

    # index
    p_index = subparsers.add_parser("index", help="Inspect the checksum index")
    sp_index = p_index.add_subparsers(dest="subcommand")

    pi_list = sp_index.add_parser("list", help="List indexed files")
    pi_list.add_argument("--trees", action="store_true", help="Use the network tree index")
    pi_list.add_argument("--node-trees", action="store_true", help="Use the node tree index")

    pi_verify = sp_index.add_parser("verify", help="Re-hash indexed files")
    pi_verify.add_argument("--trees", action="store_true", help="Use the network tree index")
    pi_verify.add_argument("--node-trees", action="store_true", help="Use the node tree index")

    p_serve = subparsers.add_parser("serve", help="Run the HTTP API")
    p_serve.add_argument("--host", default="127.0.0.1", help="Bind address")
    p_serve.add_argument("--port", type=int, default=8600, help="Port")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        if args.command == "snapshot": cmd_snapshot(args)
        elif args.command == "pollard": cmd_pollard(args)
        elif args.command == "proof": cmd_proof(args)
        elif args.command == "challenge": cmd_challenge(args)
        elif args.command == "index":
            if args.subcommand == "list": cmd_index_list(args)
            elif args.subcommand == "verify": cmd_index_verify(args)
            else: p_index.print_help()
        elif args.command == "serve": cmd_serve(args)
        else:
            parser.print_help()
    except (VotingCacheError, ValueError, IndexError) as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
