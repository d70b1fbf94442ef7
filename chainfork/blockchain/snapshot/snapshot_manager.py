# MIT License
# Copyright (c) 2025 Hashborn

"""
Snapshot Manager

Handles download, caching and loading of the live chain's state snapshot.

Files:
- <snapshot>            JSON array of [key, value] pairs
- <snapshot stem>.meta.json  completion metadata; a snapshot without it is partial
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from .fetcher import FetchProgress, PagedFetchStrategy, SnapshotDownloader
from .storage import SnapshotWriter, read_snapshot
from .types import SnapshotMetadata
from ...protocol.crypto.hash import sha256_file
from ...protocol.types.common import MalformedDocumentError, StoragePair

logger = logging.getLogger(__name__)


class SnapshotManager:
    """
    Memoizes the state snapshot on disk.

    A snapshot is reused only if its metadata sidecar exists and matches the
    file. Leftovers of an interrupted download are deleted before fetching.
    """

    def __init__(self, snapshot_path: str = "data/storage.json"):
        """
        Args:
            snapshot_path: Snapshot file (default: "data/storage.json")
        """
        self.snapshot_path = Path(snapshot_path)
        self.metadata_path = self.snapshot_path.with_name(self.snapshot_path.stem + ".meta.json")

    def has_cached_snapshot(self) -> bool:
        """True if a completed snapshot is available."""
        return self.snapshot_path.exists() and self.metadata_path.exists()

    def discard_partial(self) -> bool:
        """
        Delete a snapshot left behind by an interrupted download.

        Returns:
            True if a partial snapshot was deleted
        """
        if self.snapshot_path.exists() and not self.metadata_path.exists():
            logger.warning(f"Discarding partial snapshot {self.snapshot_path} (no completion metadata)")
            self.snapshot_path.unlink()
            return True
        return False

    def delete_snapshot(self):
        """Delete the snapshot and its metadata."""
        if self.metadata_path.exists():
            self.metadata_path.unlink()
        if self.snapshot_path.exists():
            self.snapshot_path.unlink()
            logger.info(f"Deleted snapshot {self.snapshot_path}")

    def load_metadata(self) -> Optional[SnapshotMetadata]:
        """
        Returns:
            Metadata of the cached snapshot, or None if there is none

        Raises:
            MalformedDocumentError: If the metadata file can't be parsed
        """
        if not self.metadata_path.exists():
            return None
        try:
            with open(self.metadata_path, "r") as f:
                return SnapshotMetadata.model_validate_json(f.read())
        except ValidationError as e:
            raise MalformedDocumentError(f"Snapshot metadata {self.metadata_path} is invalid: {e}") from e

    async def download(self, downloader: SnapshotDownloader, at: str, endpoint: str) -> SnapshotMetadata:
        """
        Download a fresh snapshot, replacing any existing one.

        The metadata sidecar is written last; if the download fails the
        snapshot file stays without it and is discarded on the next run.
        """
        self.delete_snapshot()
        self.snapshot_path.parent.mkdir(parents=True, exist_ok=True)

        logger.info(f"Fetching state at {at} into {self.snapshot_path}. This can take a while.")
        with SnapshotWriter(self.snapshot_path) as writer:
            progress = await downloader.download(writer, at)

        metadata = self._build_metadata(downloader, progress, at, endpoint)
        with open(self.metadata_path, "w") as f:
            f.write(metadata.model_dump_json(indent=2))

        logger.info(
            f"Snapshot complete: {metadata.pairs_count} pairs, "
            f"{metadata.size / 1024 / 1024:.2f} MB at block {at}"
        )
        return metadata

    def load(self, verify_hash: bool = True) -> List[StoragePair]:
        """
        Load the cached snapshot.

        Raises:
            FileNotFoundError: If no completed snapshot exists
            MalformedDocumentError: If the snapshot doesn't match its metadata
        """
        metadata = self.load_metadata()
        if metadata is None or not self.snapshot_path.exists():
            raise FileNotFoundError(f"No completed snapshot at {self.snapshot_path}")

        if verify_hash and sha256_file(self.snapshot_path) != metadata.hash:
            raise MalformedDocumentError(f"Snapshot {self.snapshot_path} failed hash verification")

        pairs = read_snapshot(self.snapshot_path)
        if len(pairs) != metadata.pairs_count:
            raise MalformedDocumentError(
                f"Snapshot {self.snapshot_path} has {len(pairs)} pairs, metadata says {metadata.pairs_count}"
            )
        logger.info(f"Reusing snapshot of block {metadata.block_hash} ({metadata.timestamp})")
        return pairs

    def _build_metadata(self, downloader: SnapshotDownloader, progress: FetchProgress, at: str, endpoint: str) -> SnapshotMetadata:
        strategy = downloader.strategy
        paged = isinstance(strategy, PagedFetchStrategy)
        return SnapshotMetadata(
            endpoint=endpoint,
            block_hash=at,
            fetch_mode=strategy.mode.value,
            chunks_level=downloader.depth,
            page_size=strategy.page_size if paged else 0,
            bounded_prefixes=strategy.bounded_prefixes if paged else [],
            pairs_count=progress.pairs,
            chunks_count=progress.chunks_done,
            volume_bound_jumps=progress.jumps,
            timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            size=self.snapshot_path.stat().st_size,
            hash=sha256_file(self.snapshot_path),
        )
