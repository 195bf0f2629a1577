"""Key-value backends for the dedup cache.

Every backend offers the same small async surface: ``put`` with a TTL and key
metadata, ``get``, ``delete`` and a paginated ``list_page`` that returns at most
one page of key names plus a continuation cursor.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Protocol
from urllib.parse import quote

import aiosqlite
import httpx

from hnwatch.config import APP_USER_AGENT, CLOUDFLARE_API_BASE_URL
from hnwatch.errors import DecodeError, TransportError

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 1000


@dataclass(frozen=True)
class KeyInfo:
    name: str
    metadata: dict[str, Any] | None = None
    expiration: float | None = None


@dataclass(frozen=True)
class KeyPage:
    keys: list[KeyInfo] = field(default_factory=list)
    cursor: str | None = None
    complete: bool = True


@dataclass(frozen=True)
class StoredValue:
    value: str
    metadata: dict[str, Any] | None = None


class KVBackend(Protocol):
    """Storage operations required by :class:`hnwatch.cache.DedupCache`."""

    async def put(
        self,
        key: str,
        value: str,
        *,
        ttl: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        ...

    async def get(self, key: str) -> StoredValue | None:
        ...

    async def delete(self, key: str) -> None:
        ...

    async def list_page(
        self, *, prefix: str = "", cursor: str | None = None, limit: int = MAX_PAGE_SIZE
    ) -> KeyPage:
        ...


# ── SQLite ─────────────────────────────────────────────────────────────────

_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
    name       TEXT PRIMARY KEY,
    value      TEXT NOT NULL,
    metadata   TEXT,
    expires_at REAL,
    updated_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS kv_expires_at ON kv (expires_at);
"""


class SqliteKVBackend:
    """Local KV store backed by SQLite through ``aiosqlite``.

    Expired rows are never returned and are purged on the next write. The
    cursor is the last key name of the previous page. The schema is created
    on first use. Writes from one backend instance are serialised.
    """

    def __init__(
        self,
        db_path: Path,
        clock: Callable[[], float] = time.time,
        page_size: int = MAX_PAGE_SIZE,
    ) -> None:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db_path = db_path
        self._clock = clock
        self._page_size = page_size
        self._schema_ready = False
        self._schema_lock = asyncio.Lock()
        # One writer at a time; concurrent SQLite writers can fail with "database is locked".
        self._write_lock = asyncio.Lock()

    # ── public ──────────────────────────────────────────────────────────

    async def put(
        self,
        key: str,
        value: str,
        *,
        ttl: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        now = self._clock()
        expires_at = now + ttl if ttl else None
        meta = json.dumps(metadata) if metadata is not None else None
        async with self._write_lock, self._session() as db:
            await db.execute(
                "DELETE FROM kv WHERE expires_at IS NOT NULL AND expires_at <= ?", (now,)
            )
            await db.execute(
                """
                INSERT OR REPLACE INTO kv (name, value, metadata, expires_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (key, value, meta, expires_at, now),
            )

    async def get(self, key: str) -> StoredValue | None:
        async with self._session() as db:
            cursor = await db.execute(
                """
                SELECT value, metadata FROM kv
                WHERE name = ? AND (expires_at IS NULL OR expires_at > ?)
                """,
                (key, self._clock()),
            )
            row = await cursor.fetchone()
        if row is None:
            return None
        return StoredValue(value=row[0], metadata=self._load_meta(key, row[1]))

    async def delete(self, key: str) -> None:
        async with self._write_lock, self._session() as db:
            await db.execute("DELETE FROM kv WHERE name = ?", (key,))

    async def list_page(
        self, *, prefix: str = "", cursor: str | None = None, limit: int = MAX_PAGE_SIZE
    ) -> KeyPage:
        limit = max(1, min(limit, self._page_size))
        async with self._session() as db:
            result = await db.execute(
                """
                SELECT name, metadata, expires_at FROM kv
                WHERE substr(name, 1, ?) = ? AND name > ?
                  AND (expires_at IS NULL OR expires_at > ?)
                ORDER BY name
                LIMIT ?
                """,
                (len(prefix), prefix, cursor or "", self._clock(), limit + 1),
            )
            rows = list(await result.fetchall())

        complete = len(rows) <= limit
        rows = rows[:limit]
        keys = [
            KeyInfo(name=name, metadata=self._load_meta(name, meta), expiration=expires_at)
            for name, meta, expires_at in rows
        ]
        return KeyPage(
            keys=keys,
            cursor=None if complete else keys[-1].name,
            complete=complete,
        )

    # ── private ─────────────────────────────────────────────────────────

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[aiosqlite.Connection]:
        try:
            async with aiosqlite.connect(self._db_path) as db:
                await self._ensure_schema(db)
                yield db
                await db.commit()
        except sqlite3.Error as exc:
            raise TransportError(f"SQLite error on {self._db_path}: {exc}") from exc

    async def _ensure_schema(self, db: aiosqlite.Connection) -> None:
        if self._schema_ready:
            return
        async with self._schema_lock:
            if not self._schema_ready:
                await db.executescript(_SCHEMA)
                self._schema_ready = True

    @staticmethod
    def _load_meta(key: str, raw: str | None) -> dict[str, Any] | None:
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise DecodeError(f"Corrupt metadata for {key}") from exc


# ── Cloudflare Workers KV ──────────────────────────────────────────────────


class CloudflareKVBackend:
    """Workers KV namespace accessed through the Cloudflare REST API."""

    def __init__(
        self,
        account_id: str,
        namespace_id: str,
        api_token: str,
        base_url: str = CLOUDFLARE_API_BASE_URL,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not (account_id and namespace_id and api_token):
            raise ValueError("CF_ACCOUNT_ID, CF_KV_NAMESPACE_ID and CF_API_TOKEN are required.")
        self._root = (
            f"{base_url.rstrip('/')}/accounts/{account_id}/storage/kv/namespaces/{namespace_id}"
        )
        self._headers = {"Authorization": f"Bearer {api_token}", "User-Agent": APP_USER_AGENT}
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ── public ──────────────────────────────────────────────────────────

    async def put(
        self,
        key: str,
        value: str,
        *,
        ttl: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        # The bulk endpoint takes JSON, including metadata, in one request.
        entry: dict[str, Any] = {"key": key, "value": value}
        if ttl:
            entry["expiration_ttl"] = ttl
        if metadata is not None:
            entry["metadata"] = metadata
        await self._request("PUT", "/bulk", json=[entry])

    async def get(self, key: str) -> StoredValue | None:
        resp = await self._request("GET", f"/values/{quote(key, safe='')}", allow_404=True)
        if resp is None:
            return None
        meta_resp = await self._request("GET", f"/metadata/{quote(key, safe='')}", allow_404=True)
        metadata = self._json(meta_resp).get("result") if meta_resp is not None else None
        return StoredValue(value=resp.text, metadata=metadata)

    async def delete(self, key: str) -> None:
        await self._request("DELETE", f"/values/{quote(key, safe='')}", allow_404=True)

    async def list_page(
        self, *, prefix: str = "", cursor: str | None = None, limit: int = MAX_PAGE_SIZE
    ) -> KeyPage:
        params: dict[str, Any] = {"limit": max(10, min(limit, MAX_PAGE_SIZE))}
        if prefix:
            params["prefix"] = prefix
        if cursor:
            params["cursor"] = cursor
        resp = await self._request("GET", "/keys", params=params)
        body = self._json(resp)

        raw_keys = body.get("result")
        if not isinstance(raw_keys, list):
            raise DecodeError("Cloudflare list response has no result array")
        keys = [
            KeyInfo(name=k["name"], metadata=k.get("metadata"), expiration=k.get("expiration"))
            for k in raw_keys
            if isinstance(k, dict) and isinstance(k.get("name"), str)
        ]
        next_cursor = (body.get("result_info") or {}).get("cursor") or None
        return KeyPage(keys=keys, cursor=next_cursor, complete=next_cursor is None)

    # ── private ─────────────────────────────────────────────────────────

    async def _request(
        self, method: str, path: str, allow_404: bool = False, **kwargs: Any
    ) -> httpx.Response | None:
        url = f"{self._root}{path}"
        try:
            resp = await self._client.request(method, url, headers=self._headers, **kwargs)
        except httpx.HTTPError as exc:
            raise TransportError(f"{method} {url} failed: {exc}") from exc
        if resp.status_code == 404 and allow_404:
            return None
        if resp.status_code >= 400:
            raise TransportError(
                f"Cloudflare KV {method} {path} returned {resp.status_code}",
                resp.status_code,
                resp.text[:500],
            )
        return resp

    @staticmethod
    def _json(resp: httpx.Response) -> dict[str, Any]:
        try:
            body = resp.json()
        except ValueError as exc:
            raise DecodeError("Cloudflare KV returned invalid JSON") from exc
        if not isinstance(body, dict):
            raise DecodeError("Cloudflare KV returned a non-object body")
        if body.get("success") is False:
            raise TransportError(f"Cloudflare KV error: {body.get('errors')}", resp.status_code)
        return body
