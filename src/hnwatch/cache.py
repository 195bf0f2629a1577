"""TTL-bounded dedup cache on top of a KV backend.

Keys are ``<PREFIX>-<item id>``. On first use the cache looks for a
``<PREFIX>-TTL`` marker holding the default TTL and writes it when absent.
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from typing import Any, Iterable

from pydantic import ValidationError as PydanticValidationError

from hnwatch.config import KV_TTL_DEFAULT
from hnwatch.errors import DecodeError, InitializationError, MetadataTooLargeError, TransportError
from hnwatch.kv import KeyPage, KVBackend
from hnwatch.models import CacheEntry, Item

logger = logging.getLogger(__name__)

METADATA_LIMIT_BYTES = 1024
PREFIX_DEFAULT = "DEFAULT"
PREFIX_SEPARATOR = "-"
TTL_MARKER = "TTL"


def utf8_length(text: str) -> int:
    return len(text.encode("utf-8"))


def check_metadata(metadata: dict[str, Any]) -> int:
    """Return the encoded size of *metadata*, raising if it is over the limit."""
    size = utf8_length(json.dumps(metadata, ensure_ascii=False, separators=(",", ":")))
    if size > METADATA_LIMIT_BYTES:
        raise MetadataTooLargeError(size, METADATA_LIMIT_BYTES)
    return size


def prefix_factory(raw: str | None = None) -> str:
    """Normalise a key prefix: upper-case letters, one trailing separator.

    >>> prefix_factory("hn--")
    'HN-'
    """
    if raw is None or not raw.strip():
        return f"{PREFIX_DEFAULT}{PREFIX_SEPARATOR}"
    cleaned = re.sub(r"[^A-Za-z]+$", "", raw.strip()).upper()
    return f"{cleaned or PREFIX_DEFAULT}{PREFIX_SEPARATOR}"


def key_with_prefix(raw_key: str | int, raw_prefix: str | None = None) -> str:
    return f"{prefix_factory(raw_prefix)}{raw_key}"


def parse_item_ids(keys: Iterable[str], prefix: str) -> set[int]:
    """Map cached key names back to item ids.

    Keys outside *prefix* or with a non-numeric suffix (the TTL marker, other
    tenants of the namespace) are logged and skipped.
    """
    ids: set[int] = set()
    for key in keys:
        suffix = key[len(prefix):] if key.startswith(prefix) else ""
        if not (suffix.isascii() and suffix.isdigit()):
            logger.debug("Ignoring foreign cache key %r", key)
            continue
        ids.add(int(suffix))
    return ids


class DedupCache:
    """Remembers which items were already passed on, for ``default_ttl`` seconds."""

    def __init__(
        self,
        backend: KVBackend,
        prefix: str | None = None,
        default_ttl: int = KV_TTL_DEFAULT,
        ttl_key: str = TTL_MARKER,
    ) -> None:
        self._backend = backend
        self._prefix = prefix_factory(prefix)
        self._default_ttl = default_ttl
        self._ttl_key = ttl_key
        self._ready = False

    @classmethod
    async def init(
        cls,
        backend: KVBackend,
        prefix: str | None = None,
        default_ttl: int = KV_TTL_DEFAULT,
        ttl_key: str = TTL_MARKER,
    ) -> DedupCache:
        """Alternative constructor that bootstraps eagerly."""
        cache = cls(backend, prefix, default_ttl, ttl_key)
        await cache.bootstrap()
        return cache

    @property
    def prefix(self) -> str:
        return self._prefix

    @property
    def default_ttl(self) -> int:
        return self._default_ttl

    @property
    def marker_key(self) -> str:
        return f"{self._prefix}{self._ttl_key}"

    async def bootstrap(self) -> None:
        """Read the TTL marker, writing it first if it does not exist.

        Concurrent bootstraps may both write; the values are equivalent.
        """
        marker = self.marker_key
        try:
            stored = await self._backend.get(marker)
            if stored is None:
                await self._backend.put(marker, str(self._default_ttl))
                logger.info("Wrote TTL marker %s=%d", marker, self._default_ttl)
            else:
                try:
                    ttl = int(stored.value)
                except ValueError:
                    ttl = 0
                if ttl <= 0:
                    raise InitializationError(f"TTL marker {marker} holds {stored.value!r}")
                if ttl != self._default_ttl:
                    logger.warning(
                        "TTL marker %s=%d overrides configured TTL %d", marker, ttl, self._default_ttl
                    )
                self._default_ttl = ttl
        except (TransportError, DecodeError) as exc:
            raise InitializationError(f"Cannot bootstrap cache at {marker}: {exc}") from exc
        self._ready = True

    async def ensure_ready(self) -> None:
        if not self._ready:
            await self.bootstrap()

    # ── CRUD ────────────────────────────────────────────────────────────

    async def put(
        self,
        key: str,
        value: str,
        metadata: dict[str, Any] | None = None,
        ttl: int | None = None,
    ) -> None:
        """Write *value* under *key*. Oversized metadata raises before any write."""
        if metadata is not None:
            check_metadata(metadata)
        await self.ensure_ready()
        await self._backend.put(key, value, ttl=ttl or self._default_ttl, metadata=metadata)

    async def get(self, key: str) -> CacheEntry | None:
        await self.ensure_ready()
        stored = await self._backend.get(key)
        if stored is None:
            return None
        try:
            entry = CacheEntry.model_validate_json(stored.value)
        except PydanticValidationError as exc:
            raise DecodeError(f"{key} does not hold a cache entry") from exc
        return entry.model_copy(update={"metadata": stored.metadata or {}})

    async def delete(self, key: str) -> None:
        await self.ensure_ready()
        await self._backend.delete(key)

    async def create_item_entry(
        self,
        item: Item,
        metadata: dict[str, Any] | None = None,
        ttl: int | None = None,
    ) -> CacheEntry:
        entry = CacheEntry(uuid=str(uuid.uuid4()), item=item, metadata=metadata or {})
        await self.put(self.item_key(item.id), entry.value_json(), metadata=entry.metadata, ttl=ttl)
        return entry

    def item_key(self, item_id: int) -> str:
        return f"{self._prefix}{item_id}"

    # ── listing ─────────────────────────────────────────────────────────

    async def list_page(self, prefix: str | None = None, cursor: str | None = None) -> KeyPage:
        await self.ensure_ready()
        return await self._backend.list_page(
            prefix=self._prefix if prefix is None else prefix, cursor=cursor
        )

    async def list_keys(self, prefix: str | None = None, exhaustive: bool = False) -> list[str]:
        """List key names under *prefix* (the cache prefix by default).

        With ``exhaustive=False`` only the first page is read and a warning is
        logged when the backend reports more. With ``exhaustive=True`` cursors
        are followed until the backend reports completion; a cursor seen twice
        ends the walk.
        """
        page = await self.list_page(prefix)
        keys = [k.name for k in page.keys]
        if page.complete:
            return keys
        if not exhaustive:
            logger.warning(
                "Listed %d keys under %r but more pages exist; result is incomplete",
                len(keys), self._prefix if prefix is None else prefix,
            )
            return keys

        seen: set[str] = set()
        while not page.complete:
            cursor = page.cursor
            if not cursor:
                logger.warning("Backend reported more keys without a cursor; stopping")
                break
            if cursor in seen:
                logger.error("Backend repeated cursor %r; stopping pagination", cursor)
                break
            seen.add(cursor)
            page = await self.list_page(prefix, cursor)
            keys.extend(k.name for k in page.keys)
        logger.debug("Exhaustive listing returned %d keys over %d pages", len(keys), len(seen) + 1)
        return keys
