# MIT License
# Copyright (c) 2025 Hashborn

"""
Snapshot Data Structures
"""

from pydantic import BaseModel, Field

from ...protocol.config.params import SNAPSHOT_FORMAT_VERSION


class SnapshotMetadata(BaseModel):
    """
    Sidecar written after a snapshot is completely downloaded.

    A snapshot file without it is a partial download.
    """
    version: str = Field(default=SNAPSHOT_FORMAT_VERSION, description="Snapshot format version")
    endpoint: str = Field(..., description="Node the state was read from")
    block_hash: str = Field(..., description="Block hash all queries observed")
    fetch_mode: str = Field(..., description="bulk or paged")
    chunks_level: int = Field(..., description="Keyspace depth")
    page_size: int = Field(default=0, description="Keys per page (paged mode)")
    bounded_prefixes: list = Field(default_factory=list, description="Prefixes fetched with a volume ceiling")
    pairs_count: int = Field(..., description="Number of pairs in the snapshot")
    chunks_count: int = Field(..., description="Leaf chunks fetched")
    volume_bound_jumps: int = Field(default=0, description="Skips past bounded prefixes")
    timestamp: str = Field(..., description="ISO 8601 completion time")
    size: int = Field(..., description="Snapshot file size (bytes)")
    hash: str = Field(..., description="SHA256 of the snapshot file")
