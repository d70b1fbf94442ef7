# MIT License
# Copyright (c) 2025 Hashborn

import json
import logging
from pathlib import Path
from typing import List, Protocol

from pydantic import ValidationError

from ...protocol.types.common import MalformedDocumentError, PreconditionError
from ...protocol.types.storage import SubsystemDescriptor

logger = logging.getLogger(__name__)


class SubsystemSource(Protocol):
    def list_subsystems(self) -> List[SubsystemDescriptor]: ...


class StaticSubsystemSource:
    """Pallet list given in code."""

    def __init__(self, subsystems: List[SubsystemDescriptor]):
        self.subsystems = list(subsystems)

    def list_subsystems(self) -> List[SubsystemDescriptor]:
        return list(self.subsystems)


class JsonSubsystemSource:
    """
    Pallet list exported from runtime metadata to a JSON file.

    Accepted shapes:
    - ["Balances", "Sudo", ...]                       (all with storage)
    - [{"name": "Balances", "storage": true}, ...]    ("has_storage" also accepted)
    - {"pallets": <either list above>}

    To export the list from a running node with @polkadot/api:

        const pallets = api.runtimeMetadata.asLatest.pallets.map(p => ({
            name: p.name.toString(), storage: p.storage.isSome,
        }));
        fs.writeFileSync("data/pallets.json", JSON.stringify(pallets));

    A hand-written list of pallet names works as well.
    """

    def __init__(self, path: str):
        self.path = Path(path)

    def list_subsystems(self) -> List[SubsystemDescriptor]:
        if not self.path.exists():
            raise PreconditionError(
                f"Pallet list {self.path} missing. Export the runtime pallets of the live chain to this file."
            )
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise MalformedDocumentError(f"{self.path}: invalid JSON ({e})") from e

        if isinstance(data, dict):
            data = data.get("pallets")
        if not isinstance(data, list):
            raise MalformedDocumentError(f"{self.path}: expected a list of pallets")

        subsystems = []
        for entry in data:
            try:
                subsystems.append(self._parse_entry(entry))
            except (ValidationError, TypeError) as e:
                raise MalformedDocumentError(f"{self.path}: invalid pallet entry {entry!r}") from e

        logger.info(f"Loaded {len(subsystems)} pallets from {self.path}")
        return subsystems

    @staticmethod
    def _parse_entry(entry) -> SubsystemDescriptor:
        if isinstance(entry, str):
            return SubsystemDescriptor(name=entry)
        if not isinstance(entry, dict):
            raise TypeError(f"unsupported pallet entry type {type(entry).__name__}")
        has_storage = entry.get("has_storage", entry.get("storage", True))
        # Metadata exports carry the storage section itself; treat non-empty as "has storage"
        return SubsystemDescriptor(name=entry.get("name"), has_storage=bool(has_storage))
