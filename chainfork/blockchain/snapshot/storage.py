# MIT License
# Copyright (c) 2025 Hashborn

"""
Snapshot file format.

A snapshot is a single JSON array of [key, value] pairs. It is written
incrementally, one batch at a time, so the full set is never buffered on the
write side.
"""

import json
import logging
from pathlib import Path
from typing import IO, List, Optional, Sequence, Union

from ...protocol.types.common import MalformedDocumentError, StoragePair

logger = logging.getLogger(__name__)


class SnapshotWriter:
    """
    Streams storage pairs into a JSON array.

    Usage:
        with SnapshotWriter(path) as writer:
            writer.write_batch(pairs)

    The closing bracket is only written on a clean exit; a file left behind by
    an exception is incomplete and must not be reused.
    """

    def __init__(self, target: Union[str, Path, IO[str]]):
        self._target = target
        self._stream: Optional[IO[str]] = None
        self._owns_stream = not hasattr(target, "write")
        self._separator = False
        self.pairs_written = 0
        self.batches_written = 0

    def __enter__(self) -> "SnapshotWriter":
        if self._owns_stream:
            self._stream = open(self._target, "w")
        else:
            self._stream = self._target
        self._stream.write("[")
        return self

    def __exit__(self, exc_type, exc, tb):
        try:
            if exc_type is None:
                self._stream.write("]")
                self._stream.flush()
        finally:
            if self._owns_stream:
                self._stream.close()
        return False

    def write_batch(self, pairs: Sequence[StoragePair]):
        """
        Append a batch of pairs. Empty batches write nothing.

        The separator check and the write happen in one step, so callers
        sharing the writer on one event loop never interleave inside a batch.
        """
        if self._stream is None:
            raise RuntimeError("SnapshotWriter used outside of its context")
        if not pairs:
            return
        encoded = json.dumps([[key, value] for key, value in pairs])[1:-1]
        if self._separator:
            self._stream.write(",")
        else:
            self._separator = True
        self._stream.write(encoded)
        self.pairs_written += len(pairs)
        self.batches_written += 1


def read_snapshot(path: Union[str, Path]) -> List[StoragePair]:
    """
    Load a complete snapshot into memory.

    Raises:
        FileNotFoundError: If the snapshot doesn't exist
        MalformedDocumentError: If it isn't an array of [key, value] pairs
    """
    path = Path(path)
    logger.info(f"Loading snapshot from {path}...")

    try:
        with open(path, "r") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise MalformedDocumentError(f"Snapshot {path} is not valid JSON (incomplete download?): {e}") from e

    if not isinstance(data, list):
        raise MalformedDocumentError(f"Snapshot {path} must be a JSON array")

    pairs: List[StoragePair] = []
    for index, item in enumerate(data):
        if (
            not isinstance(item, list)
            or len(item) != 2
            or not isinstance(item[0], str)
            or not (item[1] is None or isinstance(item[1], str))
        ):
            raise MalformedDocumentError(f"Snapshot {path}: item {index} is not a [key, value] pair")
        pairs.append((item[0], item[1]))

    logger.info(f"Snapshot loaded: {len(pairs)} pairs")
    return pairs
