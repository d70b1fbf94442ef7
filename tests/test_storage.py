import io
import json

import pytest

from chainfork.blockchain.snapshot.storage import SnapshotWriter, read_snapshot
from chainfork.protocol.types.common import MalformedDocumentError


def write_batches(path, batches):
    with SnapshotWriter(path) as writer:
        for batch in batches:
            writer.write_batch(batch)
    return writer


def test_round_trip_multiple_batches(tmp_path):
    path = tmp_path / "storage.json"
    batches = [
        [("0x01", "0xaa"), ("0x02", "0xbb")],
        [],
        [("0x03", None)],
        [("0x04", "0x")],
    ]

    writer = write_batches(path, batches)

    assert read_snapshot(path) == [("0x01", "0xaa"), ("0x02", "0xbb"), ("0x03", None), ("0x04", "0x")]
    assert writer.pairs_written == 4
    assert writer.batches_written == 3


def test_round_trip_empty(tmp_path):
    path = tmp_path / "storage.json"

    write_batches(path, [[], []])

    assert path.read_text() == "[]"
    assert read_snapshot(path) == []


def test_separators_between_batches():
    buffer = io.StringIO()
    with SnapshotWriter(buffer) as writer:
        writer.write_batch([("0x01", "0x02")])
        writer.write_batch([])
        writer.write_batch([("0x03", None), ("0x04", "0x05")])

    assert buffer.getvalue() == '[["0x01", "0x02"],["0x03", null], ["0x04", "0x05"]]'
    assert json.loads(buffer.getvalue()) == [["0x01", "0x02"], ["0x03", None], ["0x04", "0x05"]]


def test_failed_write_leaves_incomplete_snapshot(tmp_path):
    path = tmp_path / "storage.json"

    with pytest.raises(RuntimeError):
        with SnapshotWriter(path) as writer:
            writer.write_batch([("0x01", "0x02")])
            raise RuntimeError("connection lost")

    assert not path.read_text().endswith("]]")
    with pytest.raises(MalformedDocumentError):
        read_snapshot(path)


def test_write_outside_context():
    with pytest.raises(RuntimeError):
        SnapshotWriter(io.StringIO()).write_batch([("0x01", "0x02")])


@pytest.mark.parametrize("content", [
    '{"0x01": "0x02"}',
    '[["0x01"]]',
    '[["0x01", "0x02", "0x03"]]',
    '[[1, "0x02"]]',
    '[["0x01", 2]]',
    '["0x01"]',
])
def test_malformed_snapshot(tmp_path, content):
    path = tmp_path / "storage.json"
    path.write_text(content)

    with pytest.raises(MalformedDocumentError):
        read_snapshot(path)


def test_missing_snapshot(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_snapshot(tmp_path / "nope.json")
