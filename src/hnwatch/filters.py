"""Item filters applied between fetching and notifying.

Each filter keeps order and has no side effects, so the chain gives the same
survivors in any order.
"""

from __future__ import annotations

import logging
from typing import AbstractSet, Iterable

from hnwatch.models import Item

logger = logging.getLogger(__name__)


def by_min_score(items: Iterable[Item], threshold: int) -> list[Item]:
    """Keep items whose score (0 when absent) is at least *threshold*."""
    return [item for item in items if (item.score or 0) >= threshold]


def by_min_time(items: Iterable[Item], threshold: int) -> list[Item]:
    """Keep items created at or after *threshold* (epoch seconds)."""
    return [item for item in items if (item.time or 0) >= threshold]


def by_not_cached(items: Iterable[Item], cached_ids: AbstractSet[int]) -> list[Item]:
    """Drop items whose id is already in the dedup cache."""
    return [item for item in items if item.id not in cached_ids]


def apply_filters(
    items: list[Item],
    *,
    min_score: int,
    min_time: int,
    cached_ids: AbstractSet[int],
) -> list[Item]:
    survivors = by_not_cached(by_min_time(by_min_score(items, min_score), min_time), cached_ids)
    logger.info(
        "Filter: %d fetched → %d new (score>=%d, time>=%d, %d cached ids)",
        len(items), len(survivors), min_score, min_time, len(cached_ids),
    )
    return survivors
