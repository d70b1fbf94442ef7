# MIT License
# Copyright (c) 2025 Hashborn

"""
Snapshot Fetching

Walks the partitioned key space of a live node and streams every storage pair
at one block hash into a SnapshotWriter.

Two strategies fetch a single leaf prefix:
- BulkFetchStrategy: one state_getPairs call per leaf
- PagedFetchStrategy: state_getKeysPaged pages plus concurrent
  state_getStorage lookups, with a volume ceiling for bounded prefixes
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

from .partition import child_prefixes, next_prefix, total_chunks
from .storage import SnapshotWriter
from ..observability import metrics
from ..rpc.client import StateQueryService
from ...protocol.config.params import DEFAULT_MAX_CONCURRENCY, DEFAULT_PAGE_SIZE, FETCH_VOLUME_LIMIT
from ...protocol.types.common import FetchMode, StoragePair

logger = logging.getLogger(__name__)


async def gather_or_cancel(aws: Iterable[Awaitable]) -> List:
    """
    Like asyncio.gather, but the first failure cancels the remaining tasks and
    waits for them before the exception propagates.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


@dataclass
class FetchProgress:
    """Run state of one download, threaded through the fetch calls."""
    total_chunks: int
    chunks_done: int = 0
    pages: int = 0
    pairs: int = 0
    jumps: int = 0


class FetchStrategy(ABC):
    mode: FetchMode

    def __init__(self, service: StateQueryService):
        self.service = service

    @abstractmethod
    def fetch_leaf(self, prefix: str, at: str, progress: FetchProgress) -> AsyncIterator[List[StoragePair]]:
        """Yield pages of pairs whose keys start with prefix."""

    def _record_page(self, pairs: List[StoragePair], progress: FetchProgress):
        progress.pages += 1
        progress.pairs += len(pairs)
        metrics.record_page(self.mode.value, len(pairs))


class BulkFetchStrategy(FetchStrategy):
    """Whole leaf in a single state_getPairs call."""
    mode = FetchMode.BULK

    async def fetch_leaf(self, prefix: str, at: str, progress: FetchProgress) -> AsyncIterator[List[StoragePair]]:
        pairs = await self.service.get_pairs(prefix, at)
        self._record_page(pairs, progress)
        yield pairs


class PagedFetchStrategy(FetchStrategy):
    """
    Leaf fetched page by page.

    Keys under a bounded prefix are counted per leaf. Once more than
    volume_limit of them have been seen since the last reset and the page
    still ends inside the bounded prefix, the cursor skips to the next prefix
    of the same width. Keys after the bounded range that share the leaf are
    still enumerated.
    """
    mode = FetchMode.PAGED

    def __init__(
        self,
        service: StateQueryService,
        page_size: int = DEFAULT_PAGE_SIZE,
        bounded_prefixes: Sequence[str] = (),
        volume_limit: int = FETCH_VOLUME_LIMIT,
    ):
        super().__init__(service)
        if page_size <= 0:
            raise ValueError(f"page_size must be positive, got {page_size}")
        self.page_size = page_size
        self.bounded_prefixes = list(bounded_prefixes)
        self.volume_limit = volume_limit

    async def fetch_leaf(self, prefix: str, at: str, progress: FetchProgress) -> AsyncIterator[List[StoragePair]]:
        cursor: Optional[str] = None
        seen = {bounded: 0 for bounded in self.bounded_prefixes}

        while True:
            keys = await self.service.get_keys_paged(prefix, self.page_size, cursor, at)
            if keys:
                values = await gather_or_cancel(self.service.get_storage(key, at) for key in keys)
                pairs = list(zip(keys, values))
                self._record_page(pairs, progress)
                yield pairs

            if len(keys) < self.page_size:
                return

            cursor = keys[-1]
            bounded = self._exceeded_prefix(keys, seen)
            if bounded is None:
                continue

            seen[bounded] = 0
            progress.jumps += 1
            metrics.record_jump()
            target = next_prefix(bounded)
            if target is None or not target.startswith(prefix):
                logger.debug(f"Volume limit reached for {bounded}, leaf {prefix} done")
                return
            logger.debug(f"Volume limit reached for {bounded}, skipping to {target}")
            cursor = target

    def _exceeded_prefix(self, keys: List[str], seen: Dict[str, int]) -> Optional[str]:
        """Count the page against bounded prefixes; return one the page ends inside and that is over the limit."""
        last = keys[-1]
        exceeded = None
        for bounded in self.bounded_prefixes:
            seen[bounded] += sum(1 for key in keys if key.startswith(bounded))
            if exceeded is None and last.startswith(bounded) and seen[bounded] > self.volume_limit:
                exceeded = bounded
        return exceeded


class SnapshotDownloader:
    """
    Drives a FetchStrategy over every leaf of the partitioned key space.

    Leaves are visited in order. With parallel=True the last level is fetched
    concurrently (bounded by max_concurrency) and the order of batches in the
    snapshot no longer follows the partition order.
    """

    def __init__(
        self,
        strategy: FetchStrategy,
        depth: int,
        parallel: bool = False,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        on_progress: Optional[Callable[[int, int], None]] = None,
    ):
        self.strategy = strategy
        self.depth = depth
        self.parallel = parallel
        self.max_concurrency = max_concurrency
        self.on_progress = on_progress

    async def download(self, writer: SnapshotWriter, at: str, root: str = "0x") -> FetchProgress:
        """
        Fetch every pair under root at block `at` into writer.

        Returns:
            FetchProgress with one completed chunk per leaf
        """
        progress = FetchProgress(total_chunks=total_chunks(self.depth))
        metrics.start_download(progress.total_chunks)
        logger.info(
            f"Fetching {progress.total_chunks} chunks at {at} "
            f"({self.strategy.mode.value} mode{', parallel' if self.parallel else ''})"
        )

        semaphore = asyncio.Semaphore(self.max_concurrency) if self.parallel else None
        await self._fetch_chunks(root, self.depth, writer, at, progress, semaphore)

        logger.info(
            f"Fetched {progress.pairs} pairs in {progress.pages} pages "
            f"({progress.jumps} volume-bound skips)"
        )
        return progress

    async def _fetch_chunks(self, prefix, levels_remaining, writer, at, progress, semaphore):
        if levels_remaining <= 0:
            await self._fetch_leaf(prefix, writer, at, progress, semaphore)
            return

        if semaphore is not None and levels_remaining == 1:
            await gather_or_cancel(
                self._fetch_leaf(child, writer, at, progress, semaphore)
                for child in child_prefixes(prefix)
            )
        else:
            for child in child_prefixes(prefix):
                await self._fetch_chunks(child, levels_remaining - 1, writer, at, progress, semaphore)

    async def _fetch_leaf(self, prefix, writer, at, progress, semaphore):
        if semaphore is None:
            await self._drain_leaf(prefix, writer, at, progress)
        else:
            async with semaphore:
                await self._drain_leaf(prefix, writer, at, progress)

        progress.chunks_done += 1
        metrics.update_chunk_progress(progress.chunks_done)
        if self.on_progress:
            self.on_progress(progress.chunks_done, progress.total_chunks)

        step = max(1, progress.total_chunks // 10)
        if progress.chunks_done % step == 0 or progress.chunks_done == progress.total_chunks:
            logger.info(f"Chunks fetched: {progress.chunks_done}/{progress.total_chunks}")

    async def _drain_leaf(self, prefix, writer, at, progress):
        async for pairs in self.strategy.fetch_leaf(prefix, at, progress):
            writer.write_batch(pairs)


def build_strategy(
    mode: FetchMode,
    service: StateQueryService,
    page_size: int = DEFAULT_PAGE_SIZE,
    bounded_prefixes: Sequence[str] = (),
    volume_limit: int = FETCH_VOLUME_LIMIT,
) -> FetchStrategy:
    if mode == FetchMode.BULK:
        if bounded_prefixes:
            logger.warning("Bulk mode fetches bounded prefixes in full; use paged mode to cap them")
        return BulkFetchStrategy(service)
    return PagedFetchStrategy(service, page_size, bounded_prefixes, volume_limit)
