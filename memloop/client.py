"""Outbound HTTP clients for the memory, echo and REST backends.

Every outbound request goes through BackendClient.request, which handles
authentication headers, body decoding and error mapping. No retries are
performed; callers decide whether to fall back to another backend.
"""

from typing import Any
from urllib.parse import urlsplit

import httpx

from memloop.log_config import get_logger

log = get_logger("client")

ERROR_EXCERPT_CHARS = 200
UNKNOWN_NETWORK_ERROR = "Unknown network error"


class BackendError(Exception):
    """Base class for failed outbound calls."""


class RemoteError(BackendError):
    """The backend answered with a non-2xx status."""

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.excerpt = body[:ERROR_EXCERPT_CHARS]
        super().__init__(f"Backend error {status_code}: {self.excerpt}")


class NetworkError(BackendError):
    """The request never produced a response (DNS, connect, timeout...)."""

    def __init__(self, detail: str | None):
        self.detail = (detail or "").strip() or UNKNOWN_NETWORK_ERROR
        super().__init__(f"Network error: {self.detail}")


class BackendClient:
    """Async HTTP client bound to one backend base URL.

    Handles:
    - Content-Type and bearer authentication on every request
    - Client-level default headers, overridden by per-call headers
    - JSON decoding with raw-text fallback
    - Mapping failures to RemoteError / NetworkError
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        headers: dict[str, str] | None = None,
        timeout: float = 30.0,
        name: str = "memory",
    ):
        """Initialize the backend client.

        Args:
            base_url: Backend base URL, http or https
            token: Bearer credential, omitted from requests when None
            headers: Default headers sent with every request
            timeout: Request timeout in seconds
            name: Label used in logs

        Raises:
            ValueError: If base_url is not an http(s) URL
        """
        scheme = urlsplit(base_url).scheme.lower()
        if scheme not in ("http", "https"):
            raise ValueError(f"Unsupported URL scheme for {name} backend: {base_url!r}")
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.default_headers = dict(headers or {})
        self.timeout = timeout
        self.name = name
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the async HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    def build_headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        """Headers for one request; later sources win."""
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        headers.update(self.default_headers)
        if extra:
            headers.update(extra)
        return headers

    async def request(
        self,
        method: str,
        path: str,
        json_data: Any = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Make an HTTP request to the backend.

        Args:
            method: HTTP method (GET, POST, etc.)
            path: Path relative to the base URL (e.g., "/api/v1/memory")
            json_data: Request body, serialized as JSON
            params: Query parameters
            headers: Per-call headers, merged last

        Returns:
            Decoded JSON body, or the raw text when the body is not JSON

        Raises:
            RemoteError: If the backend answers with a non-2xx status
            NetworkError: If the request fails before a response arrives
        """
        client = self._get_client()
        log.debug(f"{self.name}: {method} {path}")

        try:
            response = await client.request(
                method=method,
                url=path,
                json=json_data,
                params=params,
                headers=self.build_headers(headers),
            )
        except httpx.RequestError as e:
            log.warning(f"{self.name}: {method} {path} failed: {e!r}")
            raise NetworkError(str(e)) from e

        if not response.is_success:
            log.warning(f"{self.name}: {method} {path} -> {response.status_code}")
            raise RemoteError(response.status_code, response.text)

        try:
            return response.json()
        except ValueError:
            return response.text

    async def get(self, path: str, params: dict[str, Any] | None = None, **kwargs) -> Any:
        return await self.request("GET", path, params=params, **kwargs)

    async def post(self, path: str, json_data: Any = None, **kwargs) -> Any:
        return await self.request("POST", path, json_data=json_data, **kwargs)

    async def patch(self, path: str, json_data: Any = None, **kwargs) -> Any:
        return await self.request("PATCH", path, json_data=json_data, **kwargs)

    async def delete(self, path: str, **kwargs) -> Any:
        return await self.request("DELETE", path, **kwargs)


# ═══════════════════════════════════════════════════════════════════════════════
# REST DATABASE INTERFACE
# ═══════════════════════════════════════════════════════════════════════════════


def quote_filter_value(value: str) -> str:
    """Quote a value for use inside a PostgREST or=/and= expression.

    Commas, dots and parentheses are reserved in that grammar, so user text
    is wrapped in double quotes with embedded quotes and backslashes escaped.
    """
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def ilike_any(columns: list[str], term: str) -> str:
    """Build an or=(...) expression matching term in any of columns."""
    pattern = quote_filter_value(f"*{term}*")
    return "(" + ",".join(f"{col}.ilike.{pattern}" for col in columns) + ")"


class RestClient(BackendClient):
    """PostgREST-style client for the direct database interface."""

    def __init__(self, base_url: str, token: str, timeout: float = 30.0):
        super().__init__(
            base_url,
            token=token,
            headers={"apikey": token},
            timeout=timeout,
            name="rest",
        )

    async def select(
        self,
        table: str,
        columns: str = "*",
        filters: dict[str, str] | None = None,
        order: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict[str, Any]]:
        """Read rows. Filter values use PostgREST operators, e.g. "eq.active"."""
        params: dict[str, Any] = {"select": columns}
        params.update(filters or {})
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = limit
        if offset:
            params["offset"] = offset
        rows = await self.get(f"/rest/v1/{table}", params=params)
        return rows if isinstance(rows, list) else []

    async def insert(
        self,
        table: str,
        row: dict[str, Any],
        returning: bool = True,
    ) -> dict[str, Any] | None:
        """Insert one row, returning the stored row when requested."""
        prefer = "return=representation" if returning else "return=minimal"
        result = await self.post(f"/rest/v1/{table}", json_data=row, headers={"Prefer": prefer})
        if isinstance(result, list):
            return result[0] if result else None
        return result if isinstance(result, dict) else None

    async def update(
        self,
        table: str,
        filters: dict[str, str],
        values: dict[str, Any],
    ) -> list[dict[str, Any]]:
        """Update matching rows and return them."""
        result = await self.patch(
            f"/rest/v1/{table}",
            json_data=values,
            params=filters,
            headers={"Prefer": "return=representation"},
        )
        return result if isinstance(result, list) else []

    async def rpc(self, function: str, arguments: dict[str, Any]) -> Any:
        """Call a stored procedure."""
        return await self.post(f"/rest/v1/rpc/{function}", json_data=arguments)
