# MIT License
# Copyright (c) 2025 Hashborn

"""
Pallet classification.

Decides which pallets' storage is carried over into the forked genesis.
"""

import logging
from typing import Iterable, List, Optional

from ...protocol.config.options import ClassifierRules
from ...protocol.crypto.hash import pallet_prefix
from ...protocol.types.storage import ClassifiedPrefixes, SubsystemDescriptor

logger = logging.getLogger(__name__)


def _add_unique(prefixes: List[str], prefix: str):
    if prefix not in prefixes:
        prefixes.append(prefix)


def skip_reason(name: str, rules: ClassifierRules) -> Optional[str]:
    """
    First matching rule that excludes a pallet from the keep set, or None.
    """
    if name in rules.skipped:
        return "core"
    if not rules.keep_collator and name in rules.collator:
        return "collator"
    if not rules.keep_asset and name in rules.asset:
        return "asset"
    if not rules.keep_parachain and name in rules.parachain:
        return "parachain"
    if name in rules.restricted:
        return "restricted"
    return None


def classify_subsystems(subsystems: Iterable[SubsystemDescriptor], rules: ClassifierRules) -> ClassifiedPrefixes:
    """
    Build the keep and bounded prefix sets.

    Args:
        subsystems: Pallets of the live runtime
        rules: Skip lists and keep flags

    Returns:
        ClassifiedPrefixes; keep starts with the always-included prefixes,
        bounded holds every restricted pallet with storage
    """
    keep: List[str] = []
    bounded: List[str] = []
    for prefix in rules.always_included:
        _add_unique(keep, prefix)

    for subsystem in subsystems:
        if not subsystem.has_storage:
            continue

        prefix = pallet_prefix(subsystem.name)
        if subsystem.name in rules.restricted:
            logger.info(f"Adding bounded prefix for pallet: {subsystem.name}")
            _add_unique(bounded, prefix)

        reason = skip_reason(subsystem.name, rules)
        if reason is not None:
            logger.info(f"Skipping prefix for {reason} pallet: {subsystem.name}")
            continue

        logger.info(f"Adding prefix for pallet: {subsystem.name}")
        _add_unique(keep, prefix)

    return ClassifiedPrefixes(keep=keep, bounded=bounded)
