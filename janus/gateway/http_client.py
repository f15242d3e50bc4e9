"""HTTP JSON-RPC client for the oracle.

Retries transport failures with exponential backoff. Error responses
are raised as RpcError carrying the JSON-RPC code and data.
"""

from __future__ import annotations

import asyncio
import itertools
from typing import Any

import bittensor as bt
import httpx


class RpcError(Exception):
    """JSON-RPC error returned by the oracle."""

    def __init__(self, code: int, message: str, data: Any = None, status: int | None = None):
        self.code = code
        self.message = message
        self.data = data
        self.status = status
        super().__init__(f"{code}: {message}")

    @property
    def retryable(self) -> bool:
        return bool(isinstance(self.data, dict) and self.data.get("retryable"))


class JanusClient:
    """Caller-side client for the oracle's RPC methods."""

    def __init__(
        self,
        url: str,
        user_address: str | None = None,
        timeout: float = 60.0,
        max_retries: int = 3,
    ):
        self.url = url.rstrip("/") + "/"
        self.user_address = user_address
        self._client = httpx.AsyncClient(timeout=timeout)
        self._max_retries = max_retries
        self._ids = itertools.count(1)

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> JanusClient:
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def _post(self, payload: dict[str, Any]) -> httpx.Response:
        """POST with retry on transport errors."""
        for attempt in range(self._max_retries):
            try:
                return await self._client.post(self.url, json=payload)
            except httpx.TransportError as e:
                if attempt == self._max_retries - 1:
                    raise
                wait = 2 ** attempt
                bt.logging.warning({"janus_client": {"retry": attempt, "wait": wait, "error": str(e)}})
                await asyncio.sleep(wait)
        raise ConnectionError("Max retries exceeded")

    async def call(self, method: str, *params: Any) -> Any:
        """Invoke an RPC method with positional params and return its result."""
        payload = {"jsonrpc": "2.0", "method": method, "params": list(params), "id": next(self._ids)}
        resp = await self._post(payload)
        try:
            body = resp.json()
        except ValueError:
            resp.raise_for_status()
            raise RpcError(-32700, f"unparseable response: {resp.text[:200]}", status=resp.status_code)

        if "error" in body:
            err = body["error"]
            raise RpcError(err.get("code", 0), err.get("message", ""), err.get("data"), status=resp.status_code)
        return body.get("result")

    def _identity(self, user_address: str | None) -> str:
        identity = user_address or self.user_address
        if not identity:
            raise ValueError("user_address is required")
        return identity

    # -- Oracle methods --

    async def forward(self, input_data: dict[str, Any]) -> Any:
        if self.user_address:
            return await self.call("forward", input_data, self.user_address)
        return await self.call("forward", input_data)

    async def mock(self, input_data: dict[str, Any], target_output_data: Any, user_address: str | None = None) -> bool:
        return await self.call("mock", input_data, target_output_data, self._identity(user_address))

    async def submit_proof(
        self, input_data: dict[str, Any], target_output_data: Any, user_address: str | None = None,
    ) -> bool:
        return await self.call("submit_proof", input_data, target_output_data, self._identity(user_address))

    async def verify_aggr_proof(
        self, input_data: dict[str, Any], target_output_data: Any, user_address: str | None = None,
    ) -> bool:
        return await self.call("verify_aggr_proof", input_data, target_output_data, self._identity(user_address))

    async def verify_solidity(
        self, input_data: dict[str, Any], target_output_data: Any, user_address: str | None = None,
    ) -> bool:
        return await self.call("verify_solidity", input_data, target_output_data, self._identity(user_address))


__all__ = ["JanusClient", "RpcError"]
