"""
HTTP client for provider task APIs.
"""

import asyncio
from typing import Any

import aiohttp

from shared.errors import ProviderError


class ProviderHTTPClient:
    """Async JSON client bound to one provider's base URL and bearer token.

    Non-2xx responses become ProviderError. A request that may have reached
    the provider before the connection failed is flagged as possibly charged
    when the caller says the call is billable.
    """

    def __init__(self, base_url: str, api_key: str | None = None, timeout: int = 30) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> "ProviderHTTPClient":
        self.session = aiohttp.ClientSession(timeout=self.timeout, headers=self.headers)
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self.session:
            await self.session.close()

    @property
    def headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    @staticmethod
    async def _prepare_request(coro_or_ctx: Any) -> Any:
        """Normalize aiohttp request result to an async context manager."""
        if asyncio.iscoroutine(coro_or_ctx):
            return await coro_or_ctx
        return coro_or_ctx

    async def _request(self, method: str, path: str, billable: bool, **kwargs: Any) -> dict[str, Any]:
        if not self.session:
            raise RuntimeError("HTTP client not initialized. Use async context manager.")

        try:
            request_ctx = await self._prepare_request(self.session.request(method, self.url(path), **kwargs))
            async with request_ctx as response:
                if response.status >= 400:
                    body = await response.text()
                    raise ProviderError(
                        f"{method} {path} failed: {response.status} {body[:200]}",
                        details={"status": response.status},
                    )
                return await response.json()
        except asyncio.TimeoutError as e:
            raise ProviderError(f"{method} {path} timed out", provider_may_have_charged=billable) from e
        except aiohttp.ClientError as e:
            raise ProviderError(f"{method} {path} network error: {e}", provider_may_have_charged=billable) from e

    async def get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """GET a JSON resource. Reads never charge."""
        return await self._request("GET", path, billable=False, params=params)

    async def post(self, path: str, data: dict[str, Any] | None = None, billable: bool = False) -> dict[str, Any]:
        """POST a JSON body."""
        return await self._request("POST", path, billable=billable, json=data)
