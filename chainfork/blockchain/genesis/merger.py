# MIT License
# Copyright (c) 2025 Hashborn

"""
Genesis Merger

Copies selected snapshot storage into a template raw chain spec and applies
the patches that let the forked chain start from it.
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ...protocol.config.params import DEFAULT_LAYOUT, MERGE_VOLUME_LIMIT, ChainLayout
from ...protocol.types.common import PreconditionError, StoragePair
from ...protocol.types.storage import ClassifiedPrefixes, raw_top

logger = logging.getLogger(__name__)

FORK_SUFFIX = "-fork"


@dataclass
class MergeReport:
    kept: int = 0
    bounded: int = 0
    absent: int = 0
    bounded_per_prefix: Dict[str, int] = field(default_factory=dict)
    removed_keys: List[str] = field(default_factory=list)
    top_entries: int = 0


def merge_genesis(
    snapshot: Iterable[StoragePair],
    template: Dict[str, Any],
    prefixes: ClassifiedPrefixes,
    *,
    source: Optional[Dict[str, Any]] = None,
    layout: ChainLayout = DEFAULT_LAYOUT,
    code_hex: Optional[str] = None,
    update_code: bool = True,
    sudo_key: Optional[str] = None,
    merge_volume_limit: int = MERGE_VOLUME_LIMIT,
) -> Tuple[Dict[str, Any], MergeReport]:
    """
    Build a forked chain spec.

    Selected snapshot pairs overwrite the template's top entries. A pair whose
    value is None (key absent at the snapshot block) removes the key from top
    instead of writing a null value.

    Args:
        snapshot: Storage pairs of the live chain (iterated once)
        template: Raw chain spec to start from; not modified
        prefixes: Keep and bounded prefix sets
        source: Spec of the live chain for name/id/protocolId (default: template)
        layout: Well-known keys of the chain family
        code_hex: 0x-prefixed runtime code for :code
        update_code: Replace :code with code_hex
        sudo_key: Account to install as sudo key
        merge_volume_limit: Pairs merged per bounded prefix

    Returns:
        (forked spec, MergeReport)

    Raises:
        PreconditionError: If update_code is set without code_hex
    """
    if update_code and layout.code_key is not None and code_hex is None:
        raise PreconditionError("Runtime code update requested but no runtime code was supplied")

    source = template if source is None else source
    forked = copy.deepcopy(template)
    top = raw_top(forked)
    report = MergeReport()

    # Modify chain name and id
    forked["name"] = source["name"] + FORK_SUFFIX
    forked["id"] = source["id"] + FORK_SUFFIX
    if "protocolId" in source:
        forked["protocolId"] = source["protocolId"]

    keep = tuple(prefixes.keep)
    bounded_counts = {prefix: 0 for prefix in prefixes.bounded}

    for key, value in snapshot:
        selected = False
        if keep and key.startswith(keep):
            report.kept += 1
            selected = True
        for prefix, count in bounded_counts.items():
            if count < merge_volume_limit and key.startswith(prefix):
                bounded_counts[prefix] = count + 1
                report.bounded += 1
                selected = True
        if not selected:
            continue
        if value is None:
            # Absent at the snapshot block
            top.pop(key, None)
            report.absent += 1
        else:
            top[key] = value

    for prefix, count in bounded_counts.items():
        logger.info(f"Added {count} items for bounded prefix {prefix}")
    report.bounded_per_prefix = bounded_counts
    logger.info(f"Merged {report.kept} pairs from {len(keep)} prefixes")

    _apply_patches(top, layout, code_hex if update_code else None, sudo_key, report)
    report.top_entries = len(top)
    return forked, report


def _apply_patches(top: Dict[str, Any], layout: ChainLayout, code_hex: Optional[str], sudo_key: Optional[str], report: MergeReport):
    # Delete System.LastRuntimeUpgrade so on_runtime_upgrade runs on the first block
    if layout.last_runtime_upgrade_key is not None:
        _remove(top, layout.last_runtime_upgrade_key, report)

    # Storage of pallets missing from the forked topology
    for key in layout.removed_keys:
        _remove(top, key, report)

    if layout.code_key is not None:
        if code_hex is not None:
            logger.info("Updating runtime code")
            top[layout.code_key] = code_hex
        else:
            logger.warning("Keeping runtime code of the template spec")

    # Freeze the validator set (Staking.ForceEra = ForceNone)
    if layout.force_era_key is not None:
        top[layout.force_era_key] = layout.force_era_value

    # Relay chain block number must strictly increase between parachain blocks
    if layout.last_relay_block_key is not None:
        top[layout.last_relay_block_key] = layout.last_relay_block_value

    if sudo_key is not None and layout.sudo_key is not None:
        logger.info(f"Setting sudo key to {sudo_key}")
        top[layout.sudo_key] = sudo_key


def _remove(top: Dict[str, Any], key: str, report: MergeReport):
    if top.pop(key, None) is not None:
        report.removed_keys.append(key)
