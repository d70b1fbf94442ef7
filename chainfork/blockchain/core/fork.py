# MIT License
# Copyright (c) 2025 Hashborn

"""
Fork pipeline: snapshot the live chain and assemble the forked chain spec.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..genesis.classifier import classify_subsystems
from ..genesis.merger import MergeReport, merge_genesis
from ..genesis.writer import write_genesis
from ..observability import metrics
from ..rpc.client import StateQueryService
from ..rpc.metadata import SubsystemSource
from ..snapshot.fetcher import SnapshotDownloader, build_strategy
from ..snapshot.snapshot_manager import SnapshotManager
from ..snapshot.types import SnapshotMetadata
from ...protocol.config.options import ForkOptions
from ...protocol.config.params import DEFAULT_LAYOUT, ChainLayout
from ...protocol.types.common import MalformedDocumentError, PreconditionError
from ...protocol.types.storage import ClassifiedPrefixes, validate_chain_spec

logger = logging.getLogger(__name__)


@dataclass
class ForkPaths:
    template: Path                  # raw spec the fork starts from (e.g. a --dev build-spec)
    output: Path
    snapshot: Path
    source: Optional[Path] = None   # raw spec of the live chain, for name/id/protocolId
    runtime: Optional[Path] = None  # runtime.wasm (raw bytes) or runtime.hex

    @classmethod
    def in_data_dir(cls, data_dir: str) -> "ForkPaths":
        base = Path(data_dir)
        source = base / "genesis.json"
        runtime = base / "runtime.wasm"
        if not runtime.exists() and (base / "runtime.hex").exists():
            runtime = base / "runtime.hex"
        return cls(
            template=base / "fork.json",
            output=base / "fork.json",
            snapshot=base / "storage.json",
            source=source if source.exists() else None,
            runtime=runtime,
        )


def load_chain_spec(path: Path, label: str = "chain spec") -> Dict[str, Any]:
    """
    Raises:
        PreconditionError: If the file is missing
        MalformedDocumentError: If it isn't a raw chain spec
    """
    if not path.exists():
        raise PreconditionError(f"{label} {path} missing. Generate it with `<node> build-spec --raw`.")
    try:
        with open(path, "r") as f:
            spec = json.load(f)
    except json.JSONDecodeError as e:
        raise MalformedDocumentError(f"{label} {path} is not valid JSON: {e}") from e
    return validate_chain_spec(spec, f"{label} {path}")


def load_runtime_code(path: Optional[Path]) -> str:
    """
    Returns:
        0x-prefixed hex of the runtime blob

    Raises:
        PreconditionError: If the blob is missing
    """
    if path is None or not path.exists():
        raise PreconditionError(
            f"Runtime missing. Copy the WASM blob of your node to {path or 'the data folder'} "
            f"or disable the code update."
        )
    if path.suffix == ".hex":
        text = path.read_text().strip()
        return text if text.startswith("0x") else "0x" + text
    return "0x" + path.read_bytes().hex()


class ForkBuilder:
    """
    Runs the fork pipeline.

    All local inputs are loaded and validated before the node is contacted.
    """

    def __init__(
        self,
        options: ForkOptions,
        paths: ForkPaths,
        subsystems: SubsystemSource,
        layout: ChainLayout = DEFAULT_LAYOUT,
    ):
        self.options = options
        self.paths = paths
        self.subsystems = subsystems
        self.layout = layout
        self.snapshots = SnapshotManager(str(paths.snapshot))

    def restricted_pallets(self) -> List[str]:
        rules = self.options.rules
        if "restricted" in rules.model_fields_set:
            return list(rules.restricted)
        return list(self.layout.restricted_pallets)

    def classify(self) -> ClassifiedPrefixes:
        """Keep and bounded prefixes; rule lists not set explicitly come from the chain layout."""
        rules = self.options.rules
        updates = {}
        if "restricted" not in rules.model_fields_set:
            updates["restricted"] = self.restricted_pallets()
        if "always_included" not in rules.model_fields_set:
            updates["always_included"] = list(self.layout.always_included_prefixes)
        if updates:
            rules = rules.model_copy(update=updates)
        return classify_subsystems(self.subsystems.list_subsystems(), rules)

    async def fetch(self, service: StateQueryService, bounded_prefixes=()) -> SnapshotMetadata:
        """Download a fresh snapshot from the node."""
        at = self.options.at or await service.get_block_hash()
        strategy = build_strategy(
            self.options.fetch_mode,
            service,
            page_size=self.options.page_size,
            bounded_prefixes=bounded_prefixes,
            volume_limit=self.options.fetch_volume_limit,
        )
        downloader = SnapshotDownloader(
            strategy,
            depth=self.options.chunks_level,
            parallel=self.options.parallel,
            max_concurrency=self.options.max_concurrency,
        )
        return await self.snapshots.download(downloader, at, self.options.endpoint)

    async def refresh_snapshot(self, service: StateQueryService) -> SnapshotMetadata:
        """
        Fetch a new snapshot without building a spec.

        The pallet list is only read when restricted pallets need volume bounds.
        """
        bounded = self.classify().bounded if self.restricted_pallets() else []
        return await self.fetch(service, bounded)

    async def run(self, service: Optional[StateQueryService] = None, refresh: bool = False) -> MergeReport:
        """
        Build the forked spec, fetching the snapshot if no completed one is cached.

        Args:
            service: Node to fetch from; only needed without a cached snapshot
            refresh: Ignore the cached snapshot

        Returns:
            MergeReport of the written spec
        """
        template = load_chain_spec(self.paths.template, "Template spec")
        source = load_chain_spec(self.paths.source, "Source spec") if self.paths.source else None
        code_hex = load_runtime_code(self.paths.runtime) if self.options.update_code else None
        prefixes = self.classify()

        self.snapshots.discard_partial()
        if self.snapshots.has_cached_snapshot() and not refresh:
            logger.warning(
                f"Reusing cached storage. Delete {self.paths.snapshot} and rerun to fetch the latest state."
            )
            snapshot = self.snapshots.load()
        else:
            if service is None:
                raise PreconditionError(f"No completed snapshot at {self.paths.snapshot}; fetch one first.")
            await self.fetch(service, prefixes.bounded)
            snapshot = self.snapshots.load(verify_hash=False)

        forked, report = merge_genesis(
            snapshot,
            template,
            prefixes,
            source=source,
            layout=self.layout,
            code_hex=code_hex,
            update_code=self.options.update_code,
            sudo_key=self.options.sudo_key,
            merge_volume_limit=self.options.merge_volume_limit,
        )
        del snapshot
        metrics.update_merge_metrics(report)

        await write_genesis(self.paths.output, forked, self.options.write_batch_size)
        logger.info(f"Forked genesis generated successfully: {self.paths.output}")
        return report
