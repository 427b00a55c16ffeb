"""
Minimal Solana JSON-RPC client over httpx with fallback endpoint rotation.
"""

import itertools
from typing import Any, List, Optional

import httpx

from fairplay.core.exceptions import LedgerUnavailable
from fairplay.core.logger import get_logger

logger = get_logger("rpc")


class RpcError(Exception):
    """The endpoint answered with a JSON-RPC error object."""

    def __init__(self, code: int, message: str):
        super().__init__(f"RPC error {code}: {message}")
        self.code = code


class SolanaRpcClient:
    """
    Calls go to the current endpoint; on a transport error or an HTTP 5xx/429
    the next endpoint is tried. A JSON-RPC error object is an answer, not an
    outage, and is raised as RpcError without rotating.
    """

    def __init__(self, urls: List[str], timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        if not urls:
            raise ValueError("at least one RPC url is required")
        self.urls = list(urls)
        self._current = 0
        self._ids = itertools.count(1)
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    @property
    def url(self) -> str:
        return self.urls[self._current]

    async def call(self, method: str, params: list = None) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }

        last_error = None
        for _ in range(len(self.urls)):
            url = self.url
            try:
                response = await self._client.post(url, json=payload)
                if response.status_code == 429 or response.status_code >= 500:
                    raise httpx.HTTPStatusError(
                        f"{response.status_code} from {url}",
                        request=response.request,
                        response=response,
                    )
                response.raise_for_status()
                body = response.json()
            except (httpx.HTTPError, ValueError) as e:
                last_error = e
                logger.warning(f"RPC {method} failed on {url}: {e}")
                self._current = (self._current + 1) % len(self.urls)
                continue

            if body.get("error"):
                error = body["error"]
                raise RpcError(error.get("code", 0), error.get("message", "unknown"))
            return body.get("result")

        raise LedgerUnavailable(f"All RPC endpoints failed for {method}: {last_error}")

    async def close(self):
        await self._client.aclose()
