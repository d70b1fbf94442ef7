# MIT License
# Copyright (c) 2025 Hashborn

"""
Keyspace partitioning.

The key space under a root prefix is split into 256^depth leaf prefixes, one
per combination of the next `depth` bytes, in byte-lexicographic order.
"""

from itertools import product
from typing import Iterator, Optional

BYTE_HEX = [f"{i:02x}" for i in range(256)]


def total_chunks(depth: int) -> int:
    """Number of leaf prefixes for a keyspace depth."""
    if depth < 0:
        raise ValueError(f"Keyspace depth must be >= 0, got {depth}")
    return 256 ** depth


def child_prefixes(prefix: str) -> Iterator[str]:
    """The 256 one-byte extensions of a prefix, in order."""
    for byte in BYTE_HEX:
        yield prefix + byte


def iter_prefixes(depth: int, root: str = "0x") -> Iterator[str]:
    """
    Yield all leaf prefixes of the given depth under root.

    Args:
        depth: Number of leading bytes to enumerate
        root: Prefix to partition (default: the whole key space)
    """
    total_chunks(depth)
    for combo in product(BYTE_HEX, repeat=depth):
        yield root + "".join(combo)


def next_prefix(prefix: str) -> Optional[str]:
    """
    Smallest prefix of the same width strictly greater than prefix.

    "0x10" -> "0x11", "0x10ff" -> "0x1100". Returns None when prefix is all
    0xff (nothing of that width sorts after it).
    """
    digits = prefix[2:] if prefix.startswith("0x") else prefix
    if not digits:
        return None
    width = len(digits)
    value = int(digits, 16) + 1
    if value >= 16 ** width:
        return None
    return "0x" + format(value, f"0{width}x")
