# MIT License
# Copyright (c) 2025 Hashborn

"""
Storage and chain-spec data types.
"""

from pydantic import BaseModel, Field
from typing import Any, Dict, List

from .common import MalformedDocumentError


class SubsystemDescriptor(BaseModel):
    """
    A runtime pallet as described by the chain metadata.
    """
    name: str = Field(..., description="Pallet name, e.g. 'Balances'")
    has_storage: bool = Field(default=True, description="Whether the pallet declares storage items")


class ClassifiedPrefixes(BaseModel):
    """
    Storage prefixes selected for the forked genesis.
    """
    keep: List[str] = Field(default_factory=list, description="Prefixes merged in full")
    bounded: List[str] = Field(default_factory=list, description="Prefixes merged and fetched with a volume ceiling")


def raw_top(spec: Dict[str, Any]) -> Dict[str, Any]:
    """Returns genesis.raw.top of a raw chain spec, validating its shape."""
    try:
        top = spec["genesis"]["raw"]["top"]
    except (KeyError, TypeError):
        raise MalformedDocumentError("Chain spec has no genesis.raw.top (is it a --raw spec?)")
    if not isinstance(top, dict):
        raise MalformedDocumentError("genesis.raw.top must be an object")
    return top


def validate_chain_spec(spec: Any, source: str = "chain spec") -> Dict[str, Any]:
    """
    Check that a parsed document looks like a raw chain spec.

    Raises:
        MalformedDocumentError: If a required field is missing
    """
    if not isinstance(spec, dict):
        raise MalformedDocumentError(f"{source}: top level must be a JSON object")
    for field in ("name", "id"):
        if not isinstance(spec.get(field), str):
            raise MalformedDocumentError(f"{source}: missing string field '{field}'")
    raw_top(spec)
    return spec
