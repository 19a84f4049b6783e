"""
Remote data gateway for the hosted backend (PostgREST + auth).

Table reads/writes go to the PostgREST endpoint:
  GET    /rest/v1/{table}?select=...&col=eq.value&order=col.desc&limit=N
  POST   /rest/v1/{table}                    (insert / upsert)
  PATCH  /rest/v1/{table}?col=eq.value       (update)
  DELETE /rest/v1/{table}?col=eq.value
  POST   /rest/v1/rpc/{function}             (server-side functions)

The signed-in user is resolved with GET /auth/v1/user.

Nothing is swallowed here: a non-2xx response or a transport failure raises
GatewayError and the caller decides what the user sees. No retries.
"""
import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, Optional

import httpx

from numnum.config import settings
from numnum.telemetry import GATEWAY_ERRORS_TOTAL

logger = logging.getLogger(__name__)

# "0-24/3573" or "*/3573"
_CONTENT_RANGE = re.compile(r"^(?:\d+-\d+|\*)/(\d+)$")


class GatewayError(Exception):
    """A remote query failed (network, auth, constraint violation, ...)."""

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Optional[str] = None,
        hint: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details
        self.hint = hint
        self.status_code = status_code

    @classmethod
    def from_response(cls, response: httpx.Response) -> "GatewayError":
        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            body = {}
        message = (
            body.get("message")
            or body.get("msg")
            or body.get("error_description")
            or f"HTTP {response.status_code} from backend"
        )
        return cls(
            message,
            code=body.get("code") or body.get("error"),
            details=body.get("details"),
            hint=body.get("hint"),
            status_code=response.status_code,
        )


@dataclass
class QueryResult:
    data: Any
    count: Optional[int] = None


def _format_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _quote(value: Any) -> str:
    text = _format_value(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{text}"'


def _json_or_none(response: httpx.Response) -> Any:
    if not response.content:
        return None
    return response.json()


def _parse_count(content_range: Optional[str]) -> Optional[int]:
    if not content_range:
        return None
    match = _CONTENT_RANGE.match(content_range.strip())
    return int(match.group(1)) if match else None


class TableQuery:
    """
    Chainable query against one table. Nothing is sent until execute().

    Mutations return no rows unless followed by .select(), the same way the
    JS client behaves.
    """

    def __init__(self, gateway: "SupabaseClient", table: str) -> None:
        self._gateway = gateway
        self._table = table
        self._method: Optional[str] = None
        self._operation = "select"
        self._params: list[tuple[str, str]] = []
        self._order: list[str] = []
        self._prefer: list[str] = []
        self._body: Any = None
        self._limit: Optional[int] = None
        self._offset: Optional[int] = None
        self._cardinality: Optional[str] = None

    # ── Operations ─────────────────────────────────────────────────────────

    def select(
        self, columns: str = "*", *, count: Optional[str] = None, head: bool = False
    ) -> "TableQuery":
        self._params.append(("select", columns))
        if self._method is None:
            self._method = "HEAD" if head else "GET"
        else:
            self._prefer.append("return=representation")
        if count:
            self._prefer.append(f"count={count}")
        return self

    def insert(self, rows: dict | list[dict]) -> "TableQuery":
        return self._mutation("POST", "insert", rows)

    def upsert(
        self,
        rows: dict | list[dict],
        *,
        on_conflict: str,
        ignore_duplicates: bool = False,
    ) -> "TableQuery":
        self._mutation("POST", "upsert", rows)
        self._params.append(("on_conflict", on_conflict))
        self._prefer.append(
            "resolution=ignore-duplicates" if ignore_duplicates else "resolution=merge-duplicates"
        )
        return self

    def update(self, values: dict) -> "TableQuery":
        return self._mutation("PATCH", "update", values)

    def delete(self) -> "TableQuery":
        return self._mutation("DELETE", "delete")

    def _mutation(self, method: str, operation: str, body: Any = None) -> "TableQuery":
        if self._method is not None:
            raise ValueError(f"Query on '{self._table}' already has an operation")
        self._method = method
        self._operation = operation
        self._body = body
        return self

    # ── Filters ────────────────────────────────────────────────────────────

    def _filter(self, column: str, operator: str, operand: str) -> "TableQuery":
        self._params.append((column, f"{operator}.{operand}"))
        return self

    def eq(self, column: str, value: Any) -> "TableQuery":
        return self._filter(column, "eq", _format_value(value))

    def neq(self, column: str, value: Any) -> "TableQuery":
        return self._filter(column, "neq", _format_value(value))

    def gt(self, column: str, value: Any) -> "TableQuery":
        return self._filter(column, "gt", _format_value(value))

    def gte(self, column: str, value: Any) -> "TableQuery":
        return self._filter(column, "gte", _format_value(value))

    def lt(self, column: str, value: Any) -> "TableQuery":
        return self._filter(column, "lt", _format_value(value))

    def lte(self, column: str, value: Any) -> "TableQuery":
        return self._filter(column, "lte", _format_value(value))

    def ilike(self, column: str, pattern: str) -> "TableQuery":
        return self._filter(column, "ilike", pattern)

    def is_(self, column: str, value: Optional[bool]) -> "TableQuery":
        return self._filter(column, "is", _format_value(value))

    def in_(self, column: str, values: Iterable[Any]) -> "TableQuery":
        inner = ",".join(_quote(v) for v in values)
        return self._filter(column, "in", f"({inner})")

    # ── Shaping ────────────────────────────────────────────────────────────

    def order(self, column: str, *, desc: bool = False) -> "TableQuery":
        self._order.append(f"{column}.{'desc' if desc else 'asc'}")
        return self

    def limit(self, count: int) -> "TableQuery":
        self._limit = count
        return self

    def range(self, start: int, end: int) -> "TableQuery":
        """Inclusive row range, e.g. range(0, 19) for the first page of 20."""
        self._offset = start
        self._limit = end - start + 1
        return self

    def single(self) -> "TableQuery":
        self._cardinality = "single"
        return self

    def maybe_single(self) -> "TableQuery":
        self._cardinality = "maybe"
        return self

    # ── Execution ──────────────────────────────────────────────────────────

    async def execute(self) -> QueryResult:
        method = self._method or "GET"
        params = list(self._params)
        if self._order:
            params.append(("order", ",".join(self._order)))
        if self._limit is not None:
            params.append(("limit", str(self._limit)))
        if self._offset:
            params.append(("offset", str(self._offset)))

        headers = {}
        if self._prefer:
            headers["Prefer"] = ",".join(self._prefer)

        response = await self._gateway.request(
            method,
            f"/rest/v1/{self._table}",
            operation=self._operation,
            params=params,
            json=self._body,
            headers=headers,
        )
        data = None if method == "HEAD" else _json_or_none(response)
        count = _parse_count(response.headers.get("content-range"))

        if self._cardinality is not None:
            data = self._one(data)
        return QueryResult(data=data, count=count)

    def _one(self, data: Any) -> Optional[dict]:
        rows = data if isinstance(data, list) else ([data] if data else [])
        if len(rows) > 1:
            raise GatewayError(
                f"Expected at most one row from '{self._table}', got {len(rows)}",
                code="PGRST116",
            )
        if not rows:
            if self._cardinality == "single":
                raise GatewayError(
                    f"Expected one row from '{self._table}', got none",
                    code="PGRST116",
                )
            return None
        return rows[0]


class SupabaseClient:
    """
    Thin async wrapper over the backend's REST and auth endpoints.

    The process-wide instance acts with the anon key; with_session() returns
    a view that acts as a signed-in user (row level security applies) and
    shares the same connection pool.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        *,
        access_token: Optional[str] = None,
        timeout: Optional[float] = None,
        http: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = (url or settings.supabase_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.supabase_anon_key
        self.access_token = access_token
        self.timeout = timeout or settings.gateway_timeout
        self._http = http

    async def start(self) -> None:
        if self._http is None:
            self._http = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)
        logger.info("Gateway client ready → %s", self.base_url)

    async def stop(self) -> None:
        if self._http:
            await self._http.aclose()
            self._http = None

    def with_session(self, access_token: Optional[str]) -> "SupabaseClient":
        return SupabaseClient(
            self.base_url,
            self.api_key,
            access_token=access_token,
            timeout=self.timeout,
            http=self._http,
        )

    def table(self, name: str) -> TableQuery:
        return TableQuery(self, name)

    async def rpc(self, function: str, params: Optional[dict] = None) -> Any:
        response = await self.request(
            "POST", f"/rest/v1/rpc/{function}", operation="rpc", json=params or {}
        )
        return _json_or_none(response)

    async def get_user(self, access_token: str) -> Optional[dict]:
        """Resolve an access token to the auth user, or None if it is not valid."""
        try:
            response = await self._client().get(
                "/auth/v1/user", headers=self._auth_headers(access_token)
            )
        except httpx.HTTPError as exc:
            GATEWAY_ERRORS_TOTAL.labels(operation="auth").inc()
            raise GatewayError(f"Auth lookup failed: {exc}") from exc

        if response.status_code in (401, 403):
            return None
        if response.is_error:
            GATEWAY_ERRORS_TOTAL.labels(operation="auth").inc()
            raise GatewayError.from_response(response)
        return response.json()

    async def request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        params: Optional[list[tuple[str, str]]] = None,
        json: Any = None,
        headers: Optional[dict] = None,
    ) -> httpx.Response:
        merged = self._auth_headers()
        merged.update(headers or {})
        try:
            response = await self._client().request(
                method, path, params=params, json=json, headers=merged
            )
        except httpx.HTTPError as exc:
            GATEWAY_ERRORS_TOTAL.labels(operation=operation).inc()
            logger.warning("Gateway %s %s failed: %s", method, path, exc)
            raise GatewayError(f"Gateway request failed: {exc}") from exc

        if response.is_error:
            GATEWAY_ERRORS_TOTAL.labels(operation=operation).inc()
            error = GatewayError.from_response(response)
            logger.warning(
                "Gateway %s %s → %s: %s", method, path, response.status_code, error.message
            )
            raise error
        return response

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            raise RuntimeError("Gateway not started — call start() at startup")
        return self._http

    def _auth_headers(self, access_token: Optional[str] = None) -> dict[str, str]:
        bearer = access_token or self.access_token or self.api_key
        return {"apikey": self.api_key, "Authorization": f"Bearer {bearer}"}


# Singleton instance shared across requests
supabase_client = SupabaseClient()
