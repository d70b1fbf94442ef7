# MIT License
# Copyright (c) 2025 Hashborn

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from ..core.fork import ForkBuilder, ForkPaths
from ..observability import dump_metrics
from ..rpc.client import NodeRpcClient
from ..rpc.metadata import JsonSubsystemSource
from ...protocol.config.options import ClassifierRules, ForkOptions
from ...protocol.config.params import (
    DEFAULT_CHUNKS_LEVEL, DEFAULT_ENDPOINT, DEFAULT_MAX_CONCURRENCY, DEFAULT_MAX_RETRIES,
    DEFAULT_PAGE_SIZE, DEFAULT_REQUEST_TIMEOUT, DEV_ALICE_ACCOUNT, FETCH_VOLUME_LIMIT,
    LAYOUTS, MERGE_VOLUME_LIMIT, WRITE_BATCH_SIZE, get_layout,
)
from ...protocol.types.common import FetchMode, ForkError

logger = logging.getLogger(__name__)


def env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in ("1", "true", "yes")


def env_sudo_key() -> Optional[str]:
    if os.environ.get("SUDO_KEY"):
        return os.environ["SUDO_KEY"]
    # ALICE=<anything> installs the dev account //Alice
    if os.environ.get("ALICE"):
        return DEV_ALICE_ACCOUNT
    return None


def resolve_sudo_key(value: Optional[str]) -> Optional[str]:
    if value is not None and value.lower() == "alice":
        return DEV_ALICE_ACCOUNT
    return value


def build_options(args) -> ForkOptions:
    """Translate parsed CLI args into ForkOptions."""
    fields = {"endpoint": args.endpoint}
    if hasattr(args, "chunks_level"):
        fields.update(
            at=args.at,
            chunks_level=args.chunks_level,
            fetch_mode=FetchMode(args.mode),
            page_size=args.page_size,
            parallel=args.parallel,
            max_concurrency=args.max_concurrency,
            fetch_volume_limit=args.fetch_volume_limit,
            request_timeout=args.timeout,
            max_retries=args.retries,
        )
    if hasattr(args, "keep_collator"):
        fields.update(
            update_code=not args.ignore_wasm_update,
            sudo_key=resolve_sudo_key(args.sudo_key),
            merge_volume_limit=args.merge_volume_limit,
            write_batch_size=args.batch_size,
            rules=ClassifierRules(
                keep_collator=args.keep_collator,
                keep_asset=args.keep_asset,
                keep_parachain=args.keep_parachain,
            ),
        )
    return ForkOptions(**fields)


def build_paths(args) -> ForkPaths:
    paths = ForkPaths.in_data_dir(args.datadir)
    if args.template:
        paths.template = Path(args.template)
    if args.output:
        paths.output = Path(args.output)
    if args.snapshot:
        paths.snapshot = Path(args.snapshot)
    if args.source:
        paths.source = Path(args.source)
    if args.runtime:
        paths.runtime = Path(args.runtime)
    return paths


def build_builder(args) -> ForkBuilder:
    pallets = args.pallets or os.path.join(args.datadir, "pallets.json")
    return ForkBuilder(
        options=build_options(args),
        paths=build_paths(args),
        subsystems=JsonSubsystemSource(pallets),
        layout=get_layout(args.layout),
    )


def make_client(options: ForkOptions) -> NodeRpcClient:
    return NodeRpcClient(
        options.endpoint,
        timeout=options.request_timeout,
        max_retries=options.max_retries,
        retry_backoff=options.retry_backoff,
    )


async def cmd_fetch(args):
    """Download a fresh snapshot of the live chain."""
    builder = build_builder(args)
    async with make_client(builder.options) as client:
        metadata = await builder.refresh_snapshot(client)
    print(f"Snapshot of block {metadata.block_hash}: {metadata.pairs_count} pairs in {builder.paths.snapshot}")


async def cmd_build(args):
    """Build the forked spec from the cached snapshot."""
    builder = build_builder(args)
    report = await builder.run(service=None)
    print(f"Forked genesis written to {builder.paths.output} ({report.top_entries} storage entries)")


async def cmd_run(args):
    """Fetch (unless cached) and build."""
    builder = build_builder(args)
    async with make_client(builder.options) as client:
        report = await builder.run(service=client, refresh=args.refresh)
    print(f"Forked genesis written to {builder.paths.output} ({report.top_entries} storage entries)")


def _add_fetch_args(p: argparse.ArgumentParser):
    p.add_argument("--at", default=None, help="Block hash to snapshot (default: best block)")
    p.add_argument("--chunks-level", type=int,
                   default=int(os.environ.get("FORK_CHUNKS_LEVEL", DEFAULT_CHUNKS_LEVEL)),
                   help="Split the download into 256^N chunks (env FORK_CHUNKS_LEVEL)")
    p.add_argument("--mode", choices=[m.value for m in FetchMode], default=FetchMode.PAGED.value,
                   help="bulk: state_getPairs per chunk, paged: state_getKeysPaged with volume limits")
    p.add_argument("--page-size", type=int, default=DEFAULT_PAGE_SIZE, help="Keys per page")
    p.add_argument("--parallel", action="store_true", default=env_flag("QUICK_MODE"),
                   help="Fetch the last chunk level concurrently (env QUICK_MODE)")
    p.add_argument("--max-concurrency", type=int, default=DEFAULT_MAX_CONCURRENCY,
                   help="Concurrent chunks in parallel mode")
    p.add_argument("--fetch-volume-limit", type=int, default=FETCH_VOLUME_LIMIT,
                   help="Keys fetched per bounded pallet before skipping it")
    p.add_argument("--timeout", type=float, default=DEFAULT_REQUEST_TIMEOUT, help="Request timeout (seconds)")
    p.add_argument("--retries", type=int, default=DEFAULT_MAX_RETRIES, help="Retries per failed request")


def _add_build_args(p: argparse.ArgumentParser):
    p.add_argument("--keep-collator", action="store_true", default=env_flag("KEEP_COLLATOR"),
                   help="Keep collator selection pallets (env KEEP_COLLATOR)")
    p.add_argument("--keep-asset", action="store_true", default=env_flag("KEEP_ASSET"),
                   help="Keep asset and EVM pallets (env KEEP_ASSET)")
    p.add_argument("--keep-parachain", action="store_true", default=env_flag("KEEP_PARACHAIN"),
                   help="Keep parachain system pallets (env KEEP_PARACHAIN)")
    p.add_argument("--ignore-wasm-update", action="store_true", default=env_flag("IGNORE_WASM_UPDATE"),
                   help="Keep the template spec's :code (env IGNORE_WASM_UPDATE)")
    p.add_argument("--sudo-key", default=env_sudo_key(),
                   help="Sudo account (0x hex, or 'alice'; env SUDO_KEY / ALICE)")
    p.add_argument("--merge-volume-limit", type=int, default=MERGE_VOLUME_LIMIT,
                   help="Pairs merged per bounded pallet")
    p.add_argument("--batch-size", type=int, default=WRITE_BATCH_SIZE,
                   help="Storage entries per streamed write")


def make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Fork a live Substrate chain into a new chain spec")
    parser.add_argument("--datadir", default="./data", help="Data directory")
    parser.add_argument("--endpoint", default=os.environ.get("HTTP_RPC_ENDPOINT", DEFAULT_ENDPOINT),
                        help="Node HTTP RPC endpoint (env HTTP_RPC_ENDPOINT)")
    parser.add_argument("--layout", choices=sorted(LAYOUTS), default=os.environ.get("FORK_LAYOUT", "parachain"),
                        help="Storage layout of the chain family (env FORK_LAYOUT)")
    parser.add_argument("--pallets", default=None, help="Pallet list JSON (default: <datadir>/pallets.json)")
    parser.add_argument("--template", default=None, help="Template raw spec (default: <datadir>/fork.json)")
    parser.add_argument("--source", default=None, help="Live chain raw spec (default: <datadir>/genesis.json)")
    parser.add_argument("--output", default=None, help="Output spec (default: <datadir>/fork.json)")
    parser.add_argument("--snapshot", default=None, help="Snapshot file (default: <datadir>/storage.json)")
    parser.add_argument("--runtime", default=None, help="Runtime blob (default: <datadir>/runtime.wasm)")
    parser.add_argument("--metrics-file", default=None, help="Write Prometheus metrics to this file on exit")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    fetch_parser = subparsers.add_parser("fetch", help="Download a fresh state snapshot")
    _add_fetch_args(fetch_parser)

    build_parser = subparsers.add_parser("build", help="Build the forked spec from the cached snapshot")
    _add_build_args(build_parser)

    run_parser = subparsers.add_parser("run", help="Fetch (unless cached) and build")
    _add_fetch_args(run_parser)
    _add_build_args(run_parser)
    run_parser.add_argument("--refresh", action="store_true", help="Ignore the cached snapshot")

    return parser


COMMANDS = {"fetch": cmd_fetch, "build": cmd_build, "run": cmd_run}


def main(argv: Optional[List[str]] = None):
    parser = make_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s %(levelname)s: %(message)s',
        datefmt='%H:%M:%S'
    )

    try:
        asyncio.run(COMMANDS[args.command](args))
    except ValidationError as e:
        parser.error(str(e))
    except ForkError as e:
        logger.error(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        logger.warning("Interrupted; a partially written snapshot will be discarded on the next run")
        sys.exit(130)
    finally:
        if args.metrics_file:
            dump_metrics(args.metrics_file)


if __name__ == "__main__":
    main()
