# MIT License
# Copyright (c) 2025 Hashborn

"""
Run options of the fork pipeline.
"""

from pydantic import BaseModel, Field, field_validator
from typing import List, Optional

from ..types.common import FetchMode
from .params import (
    DEFAULT_CHUNKS_LEVEL, DEFAULT_ENDPOINT, DEFAULT_MAX_CONCURRENCY, DEFAULT_MAX_RETRIES,
    DEFAULT_PAGE_SIZE, DEFAULT_REQUEST_TIMEOUT, DEFAULT_RETRY_BACKOFF, FETCH_VOLUME_LIMIT,
    MERGE_VOLUME_LIMIT, SKIPPED_ASSET_PALLETS, SKIPPED_COLLATOR_PALLETS,
    SKIPPED_PALLETS, SKIPPED_PARACHAIN_PALLETS, SYSTEM_ACCOUNT_PREFIX, WRITE_BATCH_SIZE,
)


class ClassifierRules(BaseModel):
    """
    Pallet selection rules for the forked genesis.
    """
    skipped: List[str] = Field(default_factory=lambda: list(SKIPPED_PALLETS), description="Always skipped pallets")
    collator: List[str] = Field(default_factory=lambda: list(SKIPPED_COLLATOR_PALLETS), description="Collator selection pallets")
    asset: List[str] = Field(default_factory=lambda: list(SKIPPED_ASSET_PALLETS), description="Asset and EVM pallets")
    parachain: List[str] = Field(default_factory=lambda: list(SKIPPED_PARACHAIN_PALLETS), description="Parachain system pallets")
    keep_collator: bool = Field(default=False, description="Keep collator pallets")
    keep_asset: bool = Field(default=False, description="Keep asset pallets")
    keep_parachain: bool = Field(default=False, description="Keep parachain pallets")
    restricted: List[str] = Field(default_factory=list, description="Pallets merged with a volume ceiling")
    always_included: List[str] = Field(default_factory=lambda: [SYSTEM_ACCOUNT_PREFIX], description="Prefixes always kept")


class ForkOptions(BaseModel):
    """
    Configuration surface of a fork run.
    """
    endpoint: str = Field(default=DEFAULT_ENDPOINT, description="Node HTTP JSON-RPC endpoint")
    at: Optional[str] = Field(default=None, description="Block hash to snapshot (default: best block)")
    chunks_level: int = Field(default=DEFAULT_CHUNKS_LEVEL, ge=0, description="Keyspace depth in bytes")
    fetch_mode: FetchMode = Field(default=FetchMode.PAGED, description="bulk or paged fetching")
    page_size: int = Field(default=DEFAULT_PAGE_SIZE, gt=0, description="Keys per state_getKeysPaged page")
    parallel: bool = Field(default=False, description="Fetch leaf chunks concurrently")
    max_concurrency: int = Field(default=DEFAULT_MAX_CONCURRENCY, gt=0, description="Concurrent leaves in parallel mode")
    fetch_volume_limit: int = Field(default=FETCH_VOLUME_LIMIT, gt=0, description="Keys fetched per bounded prefix before skipping ahead")
    merge_volume_limit: int = Field(default=MERGE_VOLUME_LIMIT, gt=0, description="Pairs merged per bounded prefix")
    write_batch_size: int = Field(default=WRITE_BATCH_SIZE, gt=0, description="top entries per streamed write")
    update_code: bool = Field(default=True, description="Replace :code with the supplied runtime")
    sudo_key: Optional[str] = Field(default=None, description="Account to install as sudo key")
    request_timeout: float = Field(default=DEFAULT_REQUEST_TIMEOUT, gt=0, description="Per request timeout (seconds)")
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0, description="Retries per failed request")
    retry_backoff: float = Field(default=DEFAULT_RETRY_BACKOFF, ge=0, description="Initial retry delay (seconds), doubled per attempt")
    rules: ClassifierRules = Field(default_factory=ClassifierRules)

    @field_validator("sudo_key")
    @classmethod
    def _check_sudo_key(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.startswith("0x"):
            raise ValueError("sudo key must be 0x-prefixed hex")
        return value
