import json

import httpx
import pytest

from chainfork.blockchain.rpc.client import NodeRpcClient
from chainfork.protocol.types.common import TransportError


def make_client(handler, max_retries=2):
    return NodeRpcClient(
        "http://node:9933", max_retries=max_retries, retry_backoff=0,
        transport=httpx.MockTransport(handler),
    )


def rpc_result(request, result):
    body = json.loads(request.content)
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})


@pytest.mark.asyncio
async def test_request_payloads():
    requests = []

    def handler(request):
        body = json.loads(request.content)
        requests.append(body)
        results = {
            "chain_getBlockHash": "0xb10c",
            "state_getKeysPaged": ["0x01", "0x02"],
            "state_getStorage": "0xaa",
            "state_getPairs": [["0x01", "0xaa"]],
        }
        return rpc_result(request, results[body["method"]])

    async with make_client(handler) as client:
        assert await client.get_block_hash() == "0xb10c"
        assert await client.get_keys_paged("0x", 2, None, "0xb10c") == ["0x01", "0x02"]
        assert await client.get_storage("0x01", "0xb10c") == "0xaa"
        assert await client.get_pairs("0x", "0xb10c") == [("0x01", "0xaa")]

    assert [r["method"] for r in requests] == [
        "chain_getBlockHash", "state_getKeysPaged", "state_getStorage", "state_getPairs",
    ]
    assert requests[1]["params"] == ["0x", 2, None, "0xb10c"]
    assert requests[3]["params"] == ["0x", "0xb10c"]
    assert len({r["id"] for r in requests}) == 4
    assert all(r["jsonrpc"] == "2.0" for r in requests)


@pytest.mark.asyncio
async def test_null_results():
    async with make_client(lambda request: rpc_result(request, None)) as client:
        assert await client.get_storage("0x01", "0xb10c") is None
        assert await client.get_keys_paged("0x", 10, "0x01", "0xb10c") == []
        with pytest.raises(TransportError):
            await client.get_block_hash()


@pytest.mark.asyncio
async def test_node_error_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32602, "message": "bad"}})

    async with make_client(handler) as client:
        with pytest.raises(TransportError, match="node error"):
            await client.get_storage("0x01", "0xb10c")

    assert len(calls) == 1


@pytest.mark.asyncio
async def test_transient_failures_retried():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            raise httpx.ConnectError("refused")
        if len(calls) == 2:
            return httpx.Response(503)
        return rpc_result(request, "0xaa")

    async with make_client(handler) as client:
        assert await client.get_storage("0x01", "0xb10c") == "0xaa"

    assert len(calls) == 3


@pytest.mark.asyncio
async def test_retries_exhausted():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, content=b"not json")

    async with make_client(handler, max_retries=1) as client:
        with pytest.raises(TransportError, match="2 attempt"):
            await client.get_storage("0x01", "0xb10c")

    assert len(calls) == 2


@pytest.mark.asyncio
async def test_unexpected_body():
    async with make_client(lambda request: httpx.Response(200, json=["0x01"])) as client:
        with pytest.raises(TransportError, match="unexpected response"):
            await client.get_storage("0x01", "0xb10c")
