"""Lightweight Supabase REST client used for persistence."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import httpx

from riskintel.utils import setup_logger

logger = setup_logger(__name__)


class SupabaseError(RuntimeError):
    """Raised when Supabase returns an unexpected response."""


def in_filter(values: Iterable[Any]) -> str:
    """Build a PostgREST ``in.(...)`` filter with quoted members."""
    quoted = []
    for value in values:
        text = str(value).replace("\\", "\\\\").replace('"', '\\"')
        quoted.append(f'"{text}"')
    return f"in.({','.join(quoted)})"


@dataclass
class SupabaseClient:
    """Minimal REST client for Supabase tables.

    Filters are passed as PostgREST query parameters. Plain values become
    ``eq.`` filters; values that already carry an operator (``in.``, ``lt.``,
    ``gte.``, ``is.``) are sent unchanged.
    """

    rest_url: str
    service_key: str
    timeout: float = 8.0
    transport: Optional[httpx.AsyncBaseTransport] = field(default=None, repr=False)

    _OPERATORS = ("eq.", "neq.", "in.", "lt.", "lte.", "gt.", "gte.", "is.", "like.", "ilike.", "cs.", "not.")

    def __post_init__(self) -> None:
        self.rest_url = self.rest_url.rstrip("/")
        if not self.rest_url.endswith("/rest/v1"):
            self.rest_url = f"{self.rest_url}/rest/v1"
        if not self.service_key:
            raise SupabaseError("Supabase service key is required")

    @property
    def base_url(self) -> str:
        return self.rest_url[: -len("/rest/v1")]

    async def insert(self, table: str, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        records = await self.insert_many(table, [payload])
        return records[0] if records else None

    async def insert_many(
        self,
        table: str,
        payloads: List[Dict[str, Any]],
        *,
        on_conflict: Optional[str] = None,
        ignore_duplicates: bool = False,
    ) -> List[Dict[str, Any]]:
        if not payloads:
            return []
        prefer = "return=representation"
        if ignore_duplicates:
            prefer += ",resolution=ignore-duplicates"
        params = {"on_conflict": on_conflict} if on_conflict else None
        logger.debug("🔍 Supabase insert - table=%s, rows=%d", table, len(payloads))
        response = await self._request(
            "POST",
            table,
            json=payloads,
            headers={"Prefer": prefer},
            params=params,
        )
        if isinstance(response, list):
            return response
        if isinstance(response, dict):
            return [response]
        return []

    async def upsert(self, table: str, payload: Dict[str, Any], *, on_conflict: str) -> Optional[Dict[str, Any]]:
        response = await self._request(
            "POST",
            table,
            json=[payload],
            headers={
                "Prefer": "return=representation,resolution=merge-duplicates",
            },
            params={"on_conflict": on_conflict},
        )
        if isinstance(response, list) and response:
            return response[0]
        if isinstance(response, dict):
            return response
        return None

    async def select(
        self,
        table: str,
        *,
        filters: Optional[Dict[str, Any]] = None,
        columns: str = "*",
        order: Optional[str] = None,
        limit: Optional[int] = None,
        extra_params: Optional[Dict[str, str]] = None,
    ) -> List[Dict[str, Any]]:
        params = self._filter_params(filters)
        params["select"] = columns
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = str(limit)
        if extra_params:
            params.update(extra_params)
        response = await self._request("GET", table, params=params)
        if isinstance(response, list):
            return response
        if isinstance(response, dict):
            return [response]
        return []

    async def select_one(
        self,
        table: str,
        *,
        filters: Dict[str, Any],
        columns: str = "*",
        order: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        rows = await self.select(table, filters=filters, columns=columns, order=order, limit=1)
        return rows[0] if rows else None

    async def update(
        self,
        table: str,
        values: Dict[str, Any],
        *,
        filters: Dict[str, Any],
    ) -> List[Dict[str, Any]]:
        if not filters:
            raise SupabaseError("Refusing to update without filters")
        response = await self._request(
            "PATCH",
            table,
            json=values,
            headers={"Prefer": "return=representation"},
            params=self._filter_params(filters),
        )
        return response if isinstance(response, list) else []

    async def get_auth_user(self, access_token: str) -> Optional[Dict[str, Any]]:
        """Resolve a user JWT through the Supabase auth endpoint."""
        if not access_token:
            return None
        url = f"{self.base_url}/auth/v1/user"
        headers = {"apikey": self.service_key, "Authorization": f"Bearer {access_token}"}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.get(url, headers=headers)
            except httpx.HTTPError as exc:  # pragma: no cover - network
                raise SupabaseError(f"Supabase auth request failed: {exc}") from exc
        if response.status_code == 401:
            return None
        if response.status_code >= 400:
            raise SupabaseError(f"Supabase auth error {response.status_code}: {response.text.strip()}")
        return response.json()

    def _filter_params(self, filters: Optional[Dict[str, Any]]) -> Dict[str, str]:
        params: Dict[str, str] = {}
        for key, value in (filters or {}).items():
            if value is None:
                continue
            if isinstance(value, bool):
                params[key] = f"eq.{str(value).lower()}"
            elif isinstance(value, str) and value.startswith(self._OPERATORS):
                params[key] = value
            else:
                params[key] = f"eq.{value}"
        return params

    async def _request(
        self,
        method: str,
        path: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        **kwargs: Any,
    ) -> Any:
        url = f"{self.rest_url}/{path.lstrip('/')}"
        request_headers = {
            "apikey": self.service_key,
            "Authorization": f"Bearer {self.service_key}",
            "Content-Type": "application/json",
        }
        if headers:
            request_headers.update(headers)

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.request(method, url, headers=request_headers, **kwargs)
            except httpx.TimeoutException as exc:
                raise SupabaseError(f"Supabase request timed out: {method} {path}") from exc
            except httpx.HTTPError as exc:  # pragma: no cover - network
                raise SupabaseError(f"Supabase request failed: {exc}") from exc

        if response.status_code >= 400:
            error_text = response.text.strip()
            logger.error(
                "❌ Supabase HTTP error - method=%s, path=%s, status=%d, error=%s",
                method,
                path,
                response.status_code,
                error_text[:500] if error_text else "empty response",
            )
            raise SupabaseError(f"Supabase error {response.status_code}: {error_text}")

        if response.headers.get("Content-Type", "").startswith("application/json") and response.content:
            return response.json()
        return None


_CLIENT_CACHE: dict[tuple[str, str], SupabaseClient] = {}


def get_supabase_client(
    url: str,
    service_key: str,
    *,
    timeout: float = 8.0,
) -> SupabaseClient:
    """Return a cached Supabase client instance for the given credentials."""

    identifier = (url.strip(), service_key.strip())

    if not identifier[0] or not identifier[1]:
        raise SupabaseError("Supabase URL and service key are required")

    client = _CLIENT_CACHE.get(identifier)
    if client is None:
        client = SupabaseClient(rest_url=identifier[0], service_key=identifier[1], timeout=timeout)
        _CLIENT_CACHE[identifier] = client

    return client
