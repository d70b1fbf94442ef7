# MIT License
# Copyright (c) 2025 Hashborn

"""
Prometheus Metrics

Counters for a fork run, kept in a dedicated registry.

Metrics:
- Snapshot download: chunks, pages, keys, volume-bound jumps
- Genesis assembly: merged pairs, written entries
"""

from prometheus_client import CollectorRegistry, Counter, Gauge, write_to_textfile

# Create registry for metrics
metrics_registry = CollectorRegistry()

# ═══════════════════════════════════════════════════════════════════
# SNAPSHOT METRICS
# ═══════════════════════════════════════════════════════════════════

chunks_total = Gauge(
    'chainfork_chunks_total',
    'Number of leaf chunks in the current download',
    registry=metrics_registry
)

chunks_fetched = Gauge(
    'chainfork_chunks_fetched',
    'Leaf chunks completed in the current download',
    registry=metrics_registry
)

pages_fetched_total = Counter(
    'chainfork_pages_fetched_total',
    'Key pages fetched from the node',
    ['mode'],
    registry=metrics_registry
)

keys_fetched_total = Counter(
    'chainfork_keys_fetched_total',
    'Storage pairs fetched from the node',
    registry=metrics_registry
)

volume_bound_jumps_total = Counter(
    'chainfork_volume_bound_jumps_total',
    'Skips past a bounded prefix after reaching the fetch ceiling',
    registry=metrics_registry
)

# ═══════════════════════════════════════════════════════════════════
# GENESIS METRICS
# ═══════════════════════════════════════════════════════════════════

merged_pairs = Gauge(
    'chainfork_merged_pairs',
    'Snapshot pairs merged into the forked genesis',
    ['kind'],
    registry=metrics_registry
)

genesis_top_entries = Gauge(
    'chainfork_genesis_top_entries',
    'Entries in genesis.raw.top of the written spec',
    registry=metrics_registry
)


def start_download(total: int):
    chunks_total.set(total)
    chunks_fetched.set(0)


def update_chunk_progress(done: int):
    chunks_fetched.set(done)


def record_page(mode: str, pairs: int):
    pages_fetched_total.labels(mode=mode).inc()
    keys_fetched_total.inc(pairs)


def record_jump():
    volume_bound_jumps_total.inc()


def update_merge_metrics(report):
    """
    Args:
        report: MergeReport of the last merge
    """
    merged_pairs.labels(kind="keep").set(report.kept)
    merged_pairs.labels(kind="bounded").set(report.bounded)
    genesis_top_entries.set(report.top_entries)


def dump_metrics(path: str):
    """Write the registry in Prometheus text format (node_exporter textfile collector)."""
    write_to_textfile(path, metrics_registry)
