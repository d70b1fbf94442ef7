# MIT License
# Copyright (c) 2025 Hashborn

"""
Genesis Writer

Streams a (possibly very large) chain spec to disk. The output is identical
to json.dumps(spec, indent=4); genesis.raw.top is encoded in batches so no
single write has to hold the whole storage map as one string.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Iterator, List, TextIO, Tuple, Union

from ...protocol.config.params import WRITE_BATCH_SIZE

logger = logging.getLogger(__name__)

INDENT = " " * 4
TOP_PATH = ("genesis", "raw", "top")
DEFAULT_HIGH_WATER_MARK = 8 * 1024 * 1024  # characters buffered before the writer waits on the file


def iter_genesis_fragments(spec: Dict[str, Any], batch_size: int = WRITE_BATCH_SIZE) -> Iterator[str]:
    """
    Yield the indented JSON encoding of spec, depth first.

    Every genesis.raw.top batch of batch_size entries is one fragment.

    Raises:
        TypeError: For keys that aren't strings or values JSON can't encode
    """
    if batch_size <= 0:
        raise ValueError(f"batch_size must be positive, got {batch_size}")
    yield from _encode(spec, 0, (), batch_size)


def _encode(value: Any, level: int, path: Tuple, batch_size: int) -> Iterator[str]:
    if isinstance(value, dict):
        if path == TOP_PATH:
            yield from _encode_top(value, level, batch_size)
        else:
            yield from _encode_dict(value, level, path, batch_size)
    elif isinstance(value, (list, tuple)):
        yield from _encode_list(value, level, path, batch_size)
    else:
        yield json.dumps(value)


def _encode_key(key: Any) -> str:
    if not isinstance(key, str):
        raise TypeError(f"Chain spec keys must be strings, got {type(key).__name__}")
    return json.dumps(key)


def _encode_dict(value: Dict, level: int, path: Tuple, batch_size: int) -> Iterator[str]:
    if not value:
        yield "{}"
        return
    newline = "\n" + INDENT * (level + 1)
    yield "{"
    first = True
    for key, item in value.items():
        yield ("" if first else ",") + newline + _encode_key(key) + ": "
        first = False
        yield from _encode(item, level + 1, path + (key,), batch_size)
    yield "\n" + INDENT * level + "}"


def _encode_list(value, level: int, path: Tuple, batch_size: int) -> Iterator[str]:
    if not value:
        yield "[]"
        return
    newline = "\n" + INDENT * (level + 1)
    yield "["
    first = True
    for item in value:
        yield ("" if first else ",") + newline
        first = False
        yield from _encode(item, level + 1, path + (None,), batch_size)
    yield "\n" + INDENT * level + "]"


def _encode_top(top: Dict, level: int, batch_size: int) -> Iterator[str]:
    if not top:
        yield "{}"
        return
    separator = ",\n" + INDENT * (level + 1)
    yield "{\n" + INDENT * (level + 1)
    batch: List[str] = []
    first = True
    for key, item in top.items():
        batch.append(_encode_key(key) + ": " + "".join(_encode(item, level + 1, (), batch_size)))
        if len(batch) == batch_size:
            yield ("" if first else separator) + separator.join(batch)
            first = False
            batch = []
    if batch:
        yield ("" if first else separator) + separator.join(batch)
    yield "\n" + INDENT * level + "}"


class FileSink:
    """
    Buffered text sink with explicit backpressure.

    Producers call write() and, whenever needs_drain is set, await drain(),
    which hands the buffer to the file in a worker thread.
    """

    def __init__(self, stream: TextIO, high_water_mark: int = DEFAULT_HIGH_WATER_MARK):
        self._stream = stream
        self._buffer: List[str] = []
        self._buffered = 0
        self.high_water_mark = high_water_mark
        self.chars_written = 0

    def write(self, fragment: str):
        self._buffer.append(fragment)
        self._buffered += len(fragment)

    @property
    def needs_drain(self) -> bool:
        return self._buffered >= self.high_water_mark

    async def drain(self):
        if not self._buffer:
            return
        data = "".join(self._buffer)
        self._buffer = []
        self._buffered = 0
        await asyncio.to_thread(self._stream.write, data)
        self.chars_written += len(data)


@asynccontextmanager
async def open_sink(path: Union[str, Path], high_water_mark: int = DEFAULT_HIGH_WATER_MARK) -> AsyncIterator[FileSink]:
    """
    Open a FileSink on path. Pending output is drained on a clean exit; the
    file is closed either way.
    """
    stream = open(path, "w", encoding="utf-8")
    try:
        sink = FileSink(stream, high_water_mark)
        yield sink
        await sink.drain()
        await asyncio.to_thread(stream.flush)
    finally:
        stream.close()


async def write_genesis(
    path: Union[str, Path],
    spec: Dict[str, Any],
    batch_size: int = WRITE_BATCH_SIZE,
    high_water_mark: int = DEFAULT_HIGH_WATER_MARK,
) -> int:
    """
    Write spec to path.

    If serialization or I/O fails the exception propagates and the file is
    left incomplete; it must not be used.

    Returns:
        Number of characters written
    """
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    async with open_sink(path, high_water_mark) as sink:
        for fragment in iter_genesis_fragments(spec, batch_size):
            sink.write(fragment)
            if sink.needs_drain:
                await sink.drain()

    logger.info(f"Chain spec written to {path} ({sink.chars_written / 1024 / 1024:.2f} MB)")
    return sink.chars_written
