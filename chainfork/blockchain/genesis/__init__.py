# MIT License
# Copyright (c) 2025 Hashborn

"""
Forked genesis assembly: pallet classification, storage merge and streamed output.
"""

from .classifier import classify_subsystems
from .merger import MergeReport, merge_genesis
from .writer import iter_genesis_fragments, write_genesis

__all__ = ["classify_subsystems", "MergeReport", "merge_genesis", "iter_genesis_fragments", "write_genesis"]
