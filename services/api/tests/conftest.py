"""
Shared fixtures: an in-memory stand-in for the hosted backend's REST and auth
endpoints, wired into the real gateway through httpx.MockTransport.
"""
import itertools
import json
import os
import re
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

os.environ.setdefault("TRACING_ENABLED", "false")

import httpx
import pytest

from numnum.clients.supabase_client import SupabaseClient

BACKEND_URL = "http://backend.test"
BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

_QUOTED = re.compile(r'"((?:[^"\\]|\\.)*)"')
_EMBED = re.compile(r"^(?:(\w+):)?(\w+)(?:!\w+)?\((.*)\)$")
_RESERVED = {"select", "order", "limit", "offset", "on_conflict"}


def ts(minutes: int = 0) -> str:
    """ISO timestamp `minutes` after a fixed base time."""
    return (BASE_TIME + timedelta(minutes=minutes)).isoformat()


def _text(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _split_top_level(select: str) -> list[str]:
    parts, depth, current = [], 0, ""
    for ch in select:
        if ch == "," and depth == 0:
            parts.append(current)
            current = ""
            continue
        depth += ch == "("
        depth -= ch == ")"
        current += ch
    if current:
        parts.append(current)
    return [p.strip() for p in parts if p.strip()]


class FakeBackend:
    """Just enough PostgREST + auth behaviour for the gateway and services."""

    # (table, embedded table) → (local column, remote column)
    EMBEDS = {
        ("posts", "restaurants"): ("restaurant_id", "id"),
        ("posts", "profiles"): ("user_id", "id"),
        ("comments", "profiles"): ("user_id", "id"),
        ("saved_restaurants", "restaurants"): ("restaurant_id", "id"),
    }
    UNIQUE = {
        "profiles": ("id",),
        "restaurants": ("id",),
        "posts": ("id",),
        "comments": ("id",),
        "followers": ("follower_id", "following_id"),
        "likes": ("user_id", "post_id"),
        "saved_restaurants": ("user_id", "restaurant_id"),
    }

    def __init__(self) -> None:
        self.tables: dict[str, list[dict]] = defaultdict(list)
        self.tokens: dict[str, str] = {}
        self.requests: list[httpx.Request] = []
        self.rpc_calls: list[tuple[str, dict]] = []
        self.failing_tables: set[str] = set()
        self.offline = False
        self._ids = itertools.count(1)

    # ── Test helpers ──────────────────────────────────────────────────────

    def seed(self, table: str, *rows: dict) -> None:
        self.tables[table].extend(dict(r) for r in rows)

    def rows(self, table: str, **match: Any) -> list[dict]:
        return [r for r in self.tables[table] if all(r.get(k) == v for k, v in match.items())]

    def sign_in(self, user_id: str) -> str:
        token = f"token-{user_id}"
        self.tokens[token] = user_id
        return token

    # ── Transport ─────────────────────────────────────────────────────────

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.offline:
            raise httpx.ConnectError("backend unreachable", request=request)

        path = request.url.path
        if path == "/auth/v1/user":
            return self._auth(request)
        if path.startswith("/rest/v1/rpc/"):
            return self._rpc(path.rsplit("/", 1)[-1], self._body(request) or {})

        table = path.removeprefix("/rest/v1/")
        if table in self.failing_tables:
            return httpx.Response(500, json={"message": f"{table} is down", "code": "XX000"})

        params = request.url.params
        filters = [(k, v) for k, v in params.multi_items() if k not in _RESERVED]
        prefer = request.headers.get("prefer", "")
        handler = {
            "GET": self._select,
            "HEAD": self._select,
            "POST": self._insert,
            "PATCH": self._update,
            "DELETE": self._delete,
        }[request.method]
        return handler(table, request, filters, prefer)

    def _auth(self, request: httpx.Request) -> httpx.Response:
        token = request.headers.get("authorization", "").removeprefix("Bearer ").strip()
        user_id = self.tokens.get(token)
        if user_id is None:
            return httpx.Response(401, json={"msg": "invalid JWT"})
        return httpx.Response(200, json={"id": user_id, "aud": "authenticated"})

    def _rpc(self, name: str, params: dict) -> httpx.Response:
        self.rpc_calls.append((name, params))
        if name != "adjust_post_counter":
            return httpx.Response(404, json={"message": f"function {name} not found", "code": "PGRST202"})
        for post in self.tables["posts"]:
            if post["id"] == params["p_post_id"]:
                column = params["p_column"]
                post[column] = max(0, (post.get(column) or 0) + params["p_delta"])
                return httpx.Response(200, json=post[column])
        return httpx.Response(400, json={"message": "post not found", "code": "P0002"})

    # ── Table operations ──────────────────────────────────────────────────

    def _select(self, table, request, filters, prefer) -> httpx.Response:
        matched = self._filtered(table, filters)
        matched = self._ordered(matched, request.url.params.get("order"))
        total = len(matched)

        offset = int(request.url.params.get("offset", 0))
        limit = request.url.params.get("limit")
        window = matched[offset: offset + int(limit) if limit else None]

        headers = {}
        if "count=exact" in prefer:
            headers["content-range"] = (
                f"{offset}-{offset + len(window) - 1}/{total}" if window else f"*/{total}"
            )
        if request.method == "HEAD":
            return httpx.Response(200, headers=headers)
        body = [self._project(table, r, request.url.params.get("select", "*")) for r in window]
        return httpx.Response(200, json=body, headers=headers)

    def _insert(self, table, request, filters, prefer) -> httpx.Response:
        payload = self._body(request)
        rows = payload if isinstance(payload, list) else [payload]
        on_conflict = request.url.params.get("on_conflict")
        written = []

        for raw in rows:
            row = dict(raw)
            if table in ("posts", "comments") and "id" not in row:
                row["id"] = f"{table}-{next(self._ids)}"
            if table in ("posts", "comments", "followers", "likes"):
                row.setdefault("created_at", ts(1000 + next(self._ids)))

            keys = tuple(on_conflict.split(",")) if on_conflict else self.UNIQUE.get(table, ())
            existing = next(
                (r for r in self.tables[table] if keys and all(r.get(k) == row.get(k) for k in keys)),
                None,
            )
            if existing is not None:
                if not on_conflict:
                    return httpx.Response(
                        409, json={"message": "duplicate key value", "code": "23505"}
                    )
                if "resolution=ignore-duplicates" in prefer:
                    continue
                existing.update(row)
                written.append(existing)
            else:
                self.tables[table].append(row)
                written.append(row)

        return self._mutation_response(table, request, prefer, written, 201)

    def _update(self, table, request, filters, prefer) -> httpx.Response:
        changes = self._body(request) or {}
        matched = self._filtered(table, filters)
        for row in matched:
            row.update(changes)
        return self._mutation_response(table, request, prefer, matched, 200)

    def _delete(self, table, request, filters, prefer) -> httpx.Response:
        matched = self._filtered(table, filters)
        self.tables[table] = [r for r in self.tables[table] if r not in matched]
        return self._mutation_response(table, request, prefer, matched, 200)

    def _mutation_response(self, table, request, prefer, rows, code) -> httpx.Response:
        if "return=representation" in prefer:
            select = request.url.params.get("select", "*")
            return httpx.Response(code, json=[self._project(table, r, select) for r in rows])
        return httpx.Response(201 if code == 201 else 204)

    # ── Query helpers ─────────────────────────────────────────────────────

    @staticmethod
    def _body(request: httpx.Request) -> Any:
        return json.loads(request.content) if request.content else None

    def _filtered(self, table: str, filters: list[tuple[str, str]]) -> list[dict]:
        return [r for r in self.tables[table] if all(self._matches(r, c, e) for c, e in filters)]

    @staticmethod
    def _matches(row: dict, column: str, expression: str) -> bool:
        operator, _, operand = expression.partition(".")
        value = _text(row.get(column))
        if operator == "eq":
            return value == operand
        if operator == "neq":
            return value != operand
        if operator == "is":
            return value == operand
        if operator == "in":
            wanted = [m.replace('\\"', '"').replace("\\\\", "\\") for m in _QUOTED.findall(operand)]
            return value in wanted
        raise NotImplementedError(operator)

    @staticmethod
    def _ordered(rows: list[dict], order: Optional[str]) -> list[dict]:
        result = list(rows)
        for term in reversed((order or "").split(",")):
            if not term:
                continue
            column, _, direction = term.partition(".")
            present = [r for r in result if r.get(column) is not None]
            missing = [r for r in result if r.get(column) is None]
            present.sort(key=lambda r: r[column], reverse=direction.startswith("desc"))
            result = present + missing
        return result

    def _project(self, table: str, row: dict, select: str) -> dict:
        out: dict = {}
        for part in _split_top_level(select):
            embed = _EMBED.match(part)
            if embed:
                alias, target, _ = embed.groups()
                local, remote = self.EMBEDS[(table, target)]
                related = next(
                    (r for r in self.tables[target] if r.get(remote) == row.get(local)), None
                )
                out[alias or target] = dict(related) if related else None
            elif part == "*":
                out.update(row)
            elif part in row:
                out[part] = row[part]
        return out


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
async def gateway(backend):
    http = httpx.AsyncClient(transport=httpx.MockTransport(backend.handle), base_url=BACKEND_URL)
    client = SupabaseClient(BACKEND_URL, "anon-key", http=http)
    yield client
    await http.aclose()


@pytest.fixture
def profiles(backend):
    """A small cast: two public accounts, one private, one deleted-ish id."""
    backend.seed(
        "profiles",
        {"id": "alice", "username": "alice", "display_name": "Alice Chen", "is_public": True},
        {"id": "bob", "username": "bob_eats", "display_name": "Bob", "is_public": True},
        {"id": "carol", "username": "carol", "display_name": None, "is_public": False},
        {"id": "dave", "username": "dave", "display_name": "Dave Kim", "is_public": None},
    )
    return backend
