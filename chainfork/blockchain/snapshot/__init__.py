# MIT License
# Copyright (c) 2025 Hashborn

"""
State Snapshot System

Downloads the live chain's storage into a cached JSON snapshot and loads it back.
"""

from .fetcher import BulkFetchStrategy, FetchProgress, PagedFetchStrategy, SnapshotDownloader, build_strategy
from .partition import iter_prefixes, next_prefix, total_chunks
from .snapshot_manager import SnapshotManager
from .storage import SnapshotWriter, read_snapshot
from .types import SnapshotMetadata

__all__ = [
    "BulkFetchStrategy", "FetchProgress", "PagedFetchStrategy", "SnapshotDownloader", "build_strategy",
    "iter_prefixes", "next_prefix", "total_chunks",
    "SnapshotManager", "SnapshotWriter", "read_snapshot", "SnapshotMetadata",
]
