# MIT License
# Copyright (c) 2025 Hashborn

from enum import Enum
from typing import Optional, Tuple

StorageKey = str
StorageValue = Optional[str]
StoragePair = Tuple[StorageKey, StorageValue]


class FetchMode(str, Enum):
    BULK = "bulk"     # state_getPairs per leaf
    PAGED = "paged"   # state_getKeysPaged + state_getStorage, volume bounded


class ForkError(Exception):
    pass

class TransportError(ForkError):
    """A node query failed (after retries) or returned a JSON-RPC error."""
    pass

class MalformedDocumentError(ForkError):
    """A persisted snapshot or chain spec could not be parsed."""
    pass

class PreconditionError(ForkError):
    """A required input artifact is missing."""
    pass
