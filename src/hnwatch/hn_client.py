"""Async read-only client for the Hacker News Firebase API."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from hnwatch.config import APP_USER_AGENT, HN_BASE_URL, LIMIT_DEFAULT, SHARD_DEFAULT
from hnwatch.errors import DecodeError, TransportError
from hnwatch.models import Item, LiveData, LiveDataKind, MaxItem, StoryIds, Updates
from hnwatch.shards import ShardStrategy, shard

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LiveDataConfig:
    endpoint: str
    label: str
    description: str = ""
    default_limit: int | None = None


LIVE_DATA_CONFIGS: dict[LiveDataKind, LiveDataConfig] = {
    LiveDataKind.MAX_ITEM: LiveDataConfig(
        "maxitem.json", "Max Item Id", "The largest item id currently."
    ),
    LiveDataKind.TOP: LiveDataConfig(
        "topstories.json", "Top Stories", "Up to 500 top stories.", 500
    ),
    LiveDataKind.NEW: LiveDataConfig(
        "newstories.json", "New Stories", "Up to 500 new stories.", 500
    ),
    LiveDataKind.BEST: LiveDataConfig(
        "beststories.json", "Best Stories", "Up to 100 best stories.", 100
    ),
    LiveDataKind.ASK: LiveDataConfig(
        "askstories.json", "Ask HN Stories", "Up to 200 Ask HN stories.", 200
    ),
    LiveDataKind.SHOW: LiveDataConfig(
        "showstories.json", "Show HN Stories", "Up to 200 Show HN stories.", 200
    ),
    LiveDataKind.JOB: LiveDataConfig(
        "jobstories.json", "Job Stories", "Up to 200 job stories.", 200
    ),
    LiveDataKind.UPDATES: LiveDataConfig(
        "updates.json", "Updates", "Recently changed items and profiles."
    ),
}


def _int_list(data: Any) -> list[int]:
    if not isinstance(data, list):
        raise DecodeError(f"Expected a JSON array, got {type(data).__name__}")
    return [v for v in data if isinstance(v, int) and not isinstance(v, bool)]


class HNClient:
    """Thin wrapper around the ``v0`` item and live-data endpoints.

    Single-item failures never raise; they are logged and dropped so that one
    bad id cannot sink a batch.
    """

    def __init__(
        self,
        base_url: str = HN_BASE_URL,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url if base_url.endswith("/") else f"{base_url}/"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": APP_USER_AGENT, "Accept": "application/json"},
            limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
        )

    async def __aenter__(self) -> HNClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ── live data ───────────────────────────────────────────────────────
    async def fetch_live_data(self, kind: LiveDataKind, limit: int | None = None) -> LiveData:
        """Fetch one live-data endpoint and return its typed variant.

        Failures degrade to the empty variant for *kind*.
        """
        kind = LiveDataKind(kind)
        config = LIVE_DATA_CONFIGS[kind]
        try:
            data = await self._get_json(config.endpoint)
            if kind is LiveDataKind.MAX_ITEM:
                return MaxItem(value=data if isinstance(data, int) else None)
            if kind is LiveDataKind.UPDATES:
                if not isinstance(data, dict):
                    raise DecodeError("updates.json is not an object")
                profiles = data.get("profiles")
                return Updates(
                    items=_int_list(data.get("items", [])),
                    profiles=[p for p in profiles if isinstance(p, str)] if isinstance(profiles, list) else [],
                )
            ids = _int_list(data)
        except (TransportError, DecodeError) as exc:
            logger.error("Failed to fetch live data %s: %s", kind.value, exc)
            if kind is LiveDataKind.MAX_ITEM:
                return MaxItem()
            if kind is LiveDataKind.UPDATES:
                return Updates()
            return StoryIds(kind=kind)

        cap = limit if limit is not None else config.default_limit
        if cap is not None:
            ids = ids[:cap]
        return StoryIds(kind=kind, ids=ids)

    async def fetch_story_ids(
        self, kind: LiveDataKind = LiveDataKind.TOP, limit: int | None = None
    ) -> list[int]:
        result = await self.fetch_live_data(kind, limit)
        if not isinstance(result, StoryIds):
            raise ValueError(f"{kind} is not a story list")
        return result.ids

    async def fetch_top_ids(self, limit: int | None = None) -> list[int]:
        return await self.fetch_story_ids(LiveDataKind.TOP, limit)

    # ── items ───────────────────────────────────────────────────────────
    async def fetch_item(self, item_id: int) -> Item | None:
        """Resolve one id. Returns None on any failure or for a null payload."""
        try:
            data = await self._get_json(f"item/{item_id}.json")
            if data is None:
                logger.warning("Item %s does not exist", item_id)
                return None
            if not isinstance(data, dict):
                raise DecodeError(f"item payload is {type(data).__name__}")
            item = Item.model_validate(data)
        except (TransportError, DecodeError) as exc:
            logger.warning("Dropping item %s: %s", item_id, exc)
            return None
        except PydanticValidationError as exc:
            logger.warning("Dropping item %s: malformed payload (%d errors)", item_id, exc.error_count())
            return None
        logger.debug("Fetched item %s score=%s", item.id, item.score)
        return item

    async def fetch_items(self, ids: list[int]) -> list[Item]:
        """Resolve all *ids* concurrently, silently dropping the ones that fail."""
        try:
            results = await asyncio.gather(*(self.fetch_item(i) for i in ids))
        except Exception:
            logger.exception("Concurrent item fetch failed; treating as zero items")
            return []
        return [item for item in results if item is not None]

    async def fetch_top(
        self,
        limit: int | None = LIMIT_DEFAULT,
        kind: LiveDataKind = LiveDataKind.TOP,
    ) -> list[Item]:
        return await self.fetch_items(await self.fetch_story_ids(kind, limit))

    async def fetch_top_with_shards(
        self,
        limit: int | None = LIMIT_DEFAULT,
        shards: int = SHARD_DEFAULT,
        strategy: ShardStrategy | str = ShardStrategy.INTERLEAVED,
        kind: LiveDataKind = LiveDataKind.TOP,
    ) -> list[Item]:
        """Like :meth:`fetch_top`, resolving each shard as an independent batch.

        Results are concatenated in shard order.
        """
        ids = await self.fetch_story_ids(kind, limit)
        batches = shard(ids, shards, strategy)
        try:
            results = await asyncio.gather(*(self.fetch_items(batch) for batch in batches))
        except Exception:
            logger.exception("Sharded fetch failed; treating as zero items")
            return []
        logger.info(
            "Fetched %d/%d items across %d %s shards",
            sum(len(r) for r in results), len(ids), shards, ShardStrategy(strategy).value,
        )
        return [item for batch in results for item in batch]

    # ── private ─────────────────────────────────────────────────────────
    async def _get_json(self, path: str) -> Any:
        url = f"{self._base_url}{path}"
        try:
            resp = await self._client.get(url)
        except httpx.HTTPError as exc:
            raise TransportError(f"GET {url} failed: {exc}") from exc
        if resp.status_code != 200:
            raise TransportError(
                f"GET {url} returned {resp.status_code}", resp.status_code, resp.text[:500]
            )
        try:
            return resp.json()
        except ValueError as exc:
            raise DecodeError(f"GET {url} returned invalid JSON") from exc
