"""
Lightweight Supabase PostgREST wrapper.
Same chainable interface as supabase-py, plus exact row counts for usage reads.
"""
import httpx
from dataclasses import dataclass
from typing import Any


@dataclass
class QueryResult:
    data: list[dict[str, Any]]
    count: int | None = None


def _parse_content_range(value: str | None) -> int | None:
    # "0-24/573" or "*/0"
    if not value or "/" not in value:
        return None
    total = value.rsplit("/", 1)[1]
    return int(total) if total.isdigit() else None


class QueryBuilder:
    """Chainable PostgREST query builder mimicking supabase-py API."""

    def __init__(self, client: httpx.Client, table: str, base_url: str, headers: dict):
        self._client = client
        self._table = table
        self._base_url = f"{base_url}/rest/v1/{table}"
        self._headers = headers
        self._params: dict[str, str] = {}
        self._method = "GET"
        self._body: Any = None

    def select(self, columns: str = "*", *, count: str | None = None, head: bool = False) -> "QueryBuilder":
        self._method = "HEAD" if head else "GET"
        self._params["select"] = columns
        if count:
            self._headers["Prefer"] = f"count={count}"
        return self

    def insert(self, data: dict | list) -> "QueryBuilder":
        self._method = "POST"
        self._body = data
        self._headers["Prefer"] = "return=representation"
        return self

    def update(self, data: dict) -> "QueryBuilder":
        self._method = "PATCH"
        self._body = data
        self._headers["Prefer"] = "return=representation"
        return self

    def eq(self, column: str, value: Any) -> "QueryBuilder":
        if isinstance(value, bool):
            value = str(value).lower()
        self._params[column] = f"eq.{value}"
        return self

    def neq(self, column: str, value: Any) -> "QueryBuilder":
        self._params[column] = f"neq.{value}"
        return self

    def in_(self, column: str, values: list[Any]) -> "QueryBuilder":
        joined = ",".join(str(v) for v in values)
        self._params[column] = f"in.({joined})"
        return self

    def order(self, column: str, *, desc: bool = False) -> "QueryBuilder":
        direction = "desc" if desc else "asc"
        self._params["order"] = f"{column}.{direction}"
        return self

    def limit(self, count: int) -> "QueryBuilder":
        self._params["limit"] = str(count)
        return self

    def execute(self) -> QueryResult:
        if self._method == "GET":
            resp = self._client.get(self._base_url, params=self._params, headers=self._headers)
        elif self._method == "HEAD":
            resp = self._client.head(self._base_url, params=self._params, headers=self._headers)
        elif self._method == "POST":
            resp = self._client.post(self._base_url, json=self._body, params=self._params, headers=self._headers)
        elif self._method == "PATCH":
            resp = self._client.patch(self._base_url, json=self._body, params=self._params, headers=self._headers)
        else:
            raise ValueError(f"Unknown method: {self._method}")

        resp.raise_for_status()
        count = _parse_content_range(resp.headers.get("Content-Range"))

        if self._method == "HEAD":
            return QueryResult(data=[], count=count)

        try:
            data = resp.json()
        except ValueError:
            data = []

        if isinstance(data, dict):
            data = [data]

        return QueryResult(data=data if isinstance(data, list) else [], count=count)


class SupabaseClient:
    """Minimal Supabase client using PostgREST."""

    def __init__(self, url: str, key: str, timeout: float = 30.0):
        self._url = url.rstrip("/")
        self._key = key
        self._client = httpx.Client(timeout=timeout)

    def _headers(self) -> dict:
        return {
            "apikey": self._key,
            "Authorization": f"Bearer {self._key}",
            "Content-Type": "application/json",
        }

    def table(self, name: str) -> QueryBuilder:
        return QueryBuilder(self._client, name, self._url, self._headers())

    def close(self) -> None:
        self._client.close()


def create_client(url: str, key: str) -> SupabaseClient:
    return SupabaseClient(url, key)
