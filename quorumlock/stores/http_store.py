"""Lock stores speaking a small HTTP lock-store API.

The server is expected to expose::

    POST /locks/{name}/acquire  {"token": ..., "ttl_ms": ...}  200 {"fencing_token": n} | 409
    POST /locks/{name}/release  {"token": ...}                 200 | 409
    POST /locks/{name}/renew    {"token": ..., "ttl_ms": ...}  200 | 409
    GET  /health
"""

import re
from typing import Optional

import httpx

from ..exceptions import AuthenticationError, StoreUnavailable, ValidationError
from ..models import AcquireReply
from .base import AsyncStore, Store

_LOCK_NAME = re.compile(r'^[a-zA-Z0-9._:-]+$')


def _validate_lock_name(name: str) -> None:
    """Validate lock name format."""
    if not name or len(name) > 128:
        raise ValidationError("Lock name must be 1-128 characters")
    if not _LOCK_NAME.match(name):
        raise ValidationError(
            "Lock name can only contain alphanumeric characters, dots, colons, underscores and hyphens"
        )


def _validate_ttl(ttl_ms: int) -> None:
    if ttl_ms <= 0:
        raise ValidationError("TTL must be a positive number of milliseconds")


def _headers(token: Optional[str]) -> dict:
    return {"Authorization": f"Bearer {token}"} if token else {}


def _handle_response(store_name: str, response: httpx.Response) -> Optional[dict]:
    """Map an HTTP response onto a payload, ``None`` for a refused write, or an error."""
    if response.status_code == 401:
        raise AuthenticationError(f"{store_name}: invalid or missing authentication token")
    if response.status_code == 409:
        return None
    if response.status_code >= 400:
        try:
            message = response.json().get("error", f"HTTP {response.status_code}")
        except ValueError:
            message = f"HTTP {response.status_code}: {response.text}"
        raise StoreUnavailable(f"{store_name}: {message}")

    try:
        return response.json() if response.content else {}
    except ValueError as e:
        raise StoreUnavailable(f"{store_name}: failed to parse response: {e}") from e


def _acquire_reply(data: Optional[dict]) -> AcquireReply:
    if data is None:
        return AcquireReply(False)
    fence = data.get("fencing_token")
    return AcquireReply(True, int(fence) if fence is not None else None)


class HttpStore(Store):
    """Blocking client for one HTTP lock store."""

    def __init__(
        self,
        base_url: str,
        token: str = None,
        timeout: float = 1.0,
        transport: httpx.BaseTransport = None,
    ):
        """Initialize the store client.

        Args:
            base_url: The base URL of the lock-store API
            token: Bearer token for authentication
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport, mostly for tests
        """
        self.base_url = base_url.rstrip("/")
        self.name = self.base_url
        self.client = httpx.Client(
            base_url=self.base_url,
            headers=_headers(token),
            timeout=timeout,
            transport=transport,
        )

    def _post(self, path: str, payload: dict) -> Optional[dict]:
        try:
            response = self.client.post(path, json=payload)
        except httpx.RequestError as e:
            raise StoreUnavailable(f"{self.name}: network error: {e}") from e
        return _handle_response(self.name, response)

    def validate_key(self, key: str) -> None:
        _validate_lock_name(key)

    def health(self) -> str:
        """Check API health status."""
        try:
            response = self.client.get("/health")
        except httpx.RequestError as e:
            raise StoreUnavailable(f"{self.name}: network error during health check: {e}") from e
        if response.status_code != 200:
            raise StoreUnavailable(f"{self.name}: health check failed: HTTP {response.status_code}")
        return response.text.strip('"')

    def acquire_if_absent(self, key: str, token: str, ttl_ms: int) -> AcquireReply:
        _validate_lock_name(key)
        _validate_ttl(ttl_ms)
        data = self._post(f"/locks/{key}/acquire", {"token": token, "ttl_ms": int(ttl_ms)})
        return _acquire_reply(data)

    def release_if_matches(self, key: str, token: str) -> bool:
        _validate_lock_name(key)
        return self._post(f"/locks/{key}/release", {"token": token}) is not None

    def extend_if_matches(self, key: str, token: str, ttl_ms: int) -> bool:
        _validate_lock_name(key)
        _validate_ttl(ttl_ms)
        data = self._post(f"/locks/{key}/renew", {"token": token, "ttl_ms": int(ttl_ms)})
        return data is not None

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class AsyncHttpStore(AsyncStore):
    """Async client for one HTTP lock store."""

    def __init__(
        self,
        base_url: str,
        token: str = None,
        timeout: float = 1.0,
        transport: httpx.AsyncBaseTransport = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.name = self.base_url
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=_headers(token),
            timeout=timeout,
            transport=transport,
        )

    async def _post(self, path: str, payload: dict) -> Optional[dict]:
        try:
            response = await self.client.post(path, json=payload)
        except httpx.RequestError as e:
            raise StoreUnavailable(f"{self.name}: network error: {e}") from e
        return _handle_response(self.name, response)

    def validate_key(self, key: str) -> None:
        _validate_lock_name(key)

    async def health(self) -> str:
        """Check API health status."""
        try:
            response = await self.client.get("/health")
        except httpx.RequestError as e:
            raise StoreUnavailable(f"{self.name}: network error during health check: {e}") from e
        if response.status_code != 200:
            raise StoreUnavailable(f"{self.name}: health check failed: HTTP {response.status_code}")
        return response.text.strip('"')

    async def acquire_if_absent(self, key: str, token: str, ttl_ms: int) -> AcquireReply:
        _validate_lock_name(key)
        _validate_ttl(ttl_ms)
        data = await self._post(f"/locks/{key}/acquire", {"token": token, "ttl_ms": int(ttl_ms)})
        return _acquire_reply(data)

    async def release_if_matches(self, key: str, token: str) -> bool:
        _validate_lock_name(key)
        return await self._post(f"/locks/{key}/release", {"token": token}) is not None

    async def extend_if_matches(self, key: str, token: str, ttl_ms: int) -> bool:
        _validate_lock_name(key)
        _validate_ttl(ttl_ms)
        data = await self._post(f"/locks/{key}/renew", {"token": token, "ttl_ms": int(ttl_ms)})
        return data is not None

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
