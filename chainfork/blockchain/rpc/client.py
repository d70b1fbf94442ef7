# MIT License
# Copyright (c) 2025 Hashborn

"""
Node JSON-RPC Client

Read-only state queries against a Substrate node over HTTP.
"""

import asyncio
import logging
from typing import Any, List, Optional, Protocol

import httpx

from ...protocol.config.params import DEFAULT_MAX_RETRIES, DEFAULT_REQUEST_TIMEOUT, DEFAULT_RETRY_BACKOFF
from ...protocol.types.common import StorageKey, StoragePair, StorageValue, TransportError

logger = logging.getLogger(__name__)


class StateQueryService(Protocol):
    """Key/value query service the snapshot fetcher depends on."""

    async def get_block_hash(self) -> str: ...

    async def get_keys_paged(self, prefix: str, count: int, start_key: Optional[str], at: str) -> List[StorageKey]: ...

    async def get_storage(self, key: StorageKey, at: str) -> StorageValue: ...

    async def get_pairs(self, prefix: str, at: str) -> List[StoragePair]: ...


class NodeRpcClient:
    """
    HTTP JSON-RPC client implementing StateQueryService.

    Failed requests (connection errors, HTTP errors, undecodable bodies) are
    retried with exponential backoff; JSON-RPC error responses are not.
    """

    def __init__(
        self,
        endpoint: str,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_backoff: float = DEFAULT_RETRY_BACKOFF,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            endpoint: Node HTTP RPC URL (e.g. http://localhost:9933)
            timeout: Per request timeout in seconds
            max_retries: Retries after the first failed attempt
            retry_backoff: Delay before the first retry, doubled per retry
            transport: Optional httpx transport (used by tests)
        """
        self.endpoint = endpoint
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(timeout), transport=transport)
        self._next_id = 0

    async def __aenter__(self) -> "NodeRpcClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def aclose(self):
        await self._client.aclose()

    async def call(self, method: str, params: List[Any]) -> Any:
        """
        Send a JSON-RPC request and return its result.

        Raises:
            TransportError: If the request keeps failing or the node returns an error
        """
        self._next_id += 1
        payload = {"jsonrpc": "2.0", "id": self._next_id, "method": method, "params": params}

        attempt = 0
        while True:
            try:
                resp = await self._client.post(self.endpoint, json=payload)
                resp.raise_for_status()
                body = resp.json()
                break
            except (httpx.HTTPError, ValueError) as e:
                if attempt >= self.max_retries:
                    raise TransportError(f"{method} failed after {attempt + 1} attempt(s): {e}") from e
                delay = self.retry_backoff * (2 ** attempt)
                attempt += 1
                logger.warning(f"{method} failed ({e}), retry {attempt}/{self.max_retries} in {delay:.1f}s")
                await asyncio.sleep(delay)

        if not isinstance(body, dict):
            raise TransportError(f"{method}: unexpected response {body!r}")
        if body.get("error") is not None:
            raise TransportError(f"{method}: node error {body['error']}")
        return body.get("result")

    async def get_block_hash(self) -> str:
        result = await self.call("chain_getBlockHash", [])
        if not isinstance(result, str):
            raise TransportError(f"chain_getBlockHash returned {result!r}")
        return result

    async def get_keys_paged(self, prefix: str, count: int, start_key: Optional[str], at: str) -> List[StorageKey]:
        return await self.call("state_getKeysPaged", [prefix, count, start_key, at]) or []

    async def get_storage(self, key: StorageKey, at: str) -> StorageValue:
        return await self.call("state_getStorage", [key, at])

    async def get_pairs(self, prefix: str, at: str) -> List[StoragePair]:
        pairs = await self.call("state_getPairs", [prefix, at]) or []
        return [(key, value) for key, value in pairs]
