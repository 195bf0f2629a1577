"""Shared fakes: a controllable clock, a fake HN API and scripted KV backends."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Callable

import httpx
import pytest

from hnwatch.errors import TransportError
from hnwatch.kv import KeyPage, SqliteKVBackend, StoredValue
from hnwatch.notifier import DeliveryResult, Message

HN_TEST_URL = "https://hn.test/v0/"


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def hn_api(
    items: dict[int, Any],
    top: list[int],
    failing: set[int] | None = None,
) -> httpx.MockTransport:
    """Serve ``topstories.json`` and ``item/<id>.json`` from memory.

    Ids in *failing* raise a connection error; unknown ids return 404.
    """
    failing = failing or set()

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/topstories.json"):
            return httpx.Response(200, json=top)
        match = re.search(r"/item/(\d+)\.json$", path)
        if match:
            item_id = int(match.group(1))
            if item_id in failing:
                raise httpx.ConnectError("connection refused", request=request)
            if item_id not in items:
                return httpx.Response(404, text="not found")
            return httpx.Response(200, json=items[item_id])
        return httpx.Response(404)

    return httpx.MockTransport(handler)


class ScriptedBackend:
    """In-memory backend whose list pages are scripted per cursor."""

    def __init__(self, pages: dict[str | None, KeyPage] | None = None) -> None:
        self.pages = pages or {}
        self.values: dict[str, StoredValue] = {}
        self.list_calls: list[str | None] = []

    async def put(
        self,
        key: str,
        value: str,
        *,
        ttl: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.values[key] = StoredValue(value, metadata)

    async def get(self, key: str) -> StoredValue | None:
        return self.values.get(key)

    async def delete(self, key: str) -> None:
        self.values.pop(key, None)

    async def list_page(
        self, *, prefix: str = "", cursor: str | None = None, limit: int = 1000
    ) -> KeyPage:
        self.list_calls.append(cursor)
        return self.pages[cursor]


class FlakyBackend(SqliteKVBackend):
    """SQLite backend with switchable failures per operation."""

    def __init__(self, db_path: Path, clock: Callable[[], float]) -> None:
        super().__init__(db_path, clock=clock)
        self.fail_get = False
        self.fail_list = False
        self.fail_item_puts = False

    async def put(self, key: str, value: str, **kwargs: Any) -> None:
        if self.fail_item_puts and not key.endswith("TTL"):
            raise TransportError(f"put {key} refused", 503)
        await super().put(key, value, **kwargs)

    async def get(self, key: str) -> StoredValue | None:
        if self.fail_get:
            raise TransportError("get refused", 503)
        return await super().get(key)

    async def list_page(self, **kwargs: Any) -> KeyPage:
        if self.fail_list:
            raise TransportError("list refused", 503)
        return await super().list_page(**kwargs)


class RecordingTransport:
    """Notification transport that keeps every message it is given."""

    def __init__(self, name: str = "rec", result: DeliveryResult | None = None) -> None:
        self.name = name
        self.result = result or DeliveryResult(ok=True)
        self.sent: list[Message] = []

    async def send(self, message: Message) -> DeliveryResult:
        self.sent.append(message)
        return self.result


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sqlite_backend(tmp_path: Path, clock: FakeClock) -> SqliteKVBackend:
    return SqliteKVBackend(tmp_path / "kv.sqlite3", clock=clock)


@pytest.fixture
def flaky_backend(tmp_path: Path, clock: FakeClock) -> FlakyBackend:
    return FlakyBackend(tmp_path / "kv.sqlite3", clock)
