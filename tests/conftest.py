from bisect import bisect_left, bisect_right

import pytest


class FakeStateService:
    """In-memory node storage with state_getKeysPaged semantics."""

    def __init__(self, storage, block_hash="0xb10c"):
        self.storage = dict(storage)
        self.keys = sorted(self.storage)
        self.block_hash = block_hash
        self.keys_paged_calls = []
        self.storage_calls = 0
        self.pairs_calls = []
        self.block_hash_calls = 0

    async def get_block_hash(self):
        self.block_hash_calls += 1
        return self.block_hash

    async def get_keys_paged(self, prefix, count, start_key, at):
        assert at == self.block_hash
        self.keys_paged_calls.append((prefix, count, start_key))
        start = bisect_left(self.keys, prefix)
        if start_key is not None:
            start = max(start, bisect_right(self.keys, start_key))
        result = []
        for key in self.keys[start:]:
            if not key.startswith(prefix):
                break
            result.append(key)
            if len(result) == count:
                break
        return result

    async def get_storage(self, key, at):
        assert at == self.block_hash
        self.storage_calls += 1
        return self.storage.get(key)

    async def get_pairs(self, prefix, at):
        assert at == self.block_hash
        self.pairs_calls.append(prefix)
        return [(key, self.storage[key]) for key in self.keys if key.startswith(prefix)]


@pytest.fixture
def make_service():
    return FakeStateService


@pytest.fixture
def sample_storage():
    """Keys spread over several leading bytes, one bounded-looking pallet."""
    storage = {}
    for i in range(40):
        storage[f"0x10aa{i:04x}"] = f"0x{i:02x}"
    for i in range(5):
        storage[f"0x1000{i:02x}"] = "0x01"
        storage[f"0x10ab{i:02x}"] = "0x02"
    storage["0x20"] = "0x03"
    storage["0xff00"] = "0x04"
    storage["0x00"] = "0x05"
    return storage


@pytest.fixture
def template_spec():
    return {
        "name": "Dev",
        "id": "dev",
        "chainType": "Development",
        "bootNodes": [],
        "protocolId": "dot",
        "properties": {"ss58Format": 42, "tokenDecimals": 18},
        "genesis": {
            "raw": {
                "top": {"0xaa": "0x01", "0x3a636f6465": "0xdead"},
                "childrenDefault": {},
            }
        },
    }
