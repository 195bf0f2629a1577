"""Split item ids into shards to bound per-request fan-out."""

from __future__ import annotations

import math
from enum import Enum
from typing import Sequence

from hnwatch.errors import InvalidArgumentError


class ShardStrategy(str, Enum):
    INTERLEAVED = "interleaved"
    SEQUENTIAL = "sequential"


def _check_shards(shards: int) -> None:
    if shards <= 0:
        raise InvalidArgumentError(f"Number of shards must be positive, got {shards}")


def shards_interleaved(ids: Sequence[int], shards: int) -> list[list[int]]:
    """Round-robin split: the id at position ``i`` lands in shard ``i % shards``.

    Same as ``[ids[i::shards] for i in range(shards)]``.
    """
    _check_shards(shards)
    return [list(ids[i::shards]) for i in range(shards)]


def shards_sequential(ids: Sequence[int], shards: int) -> list[list[int]]:
    """Contiguous blocks of ``ceil(len / shards)`` ids.

    Always returns exactly ``shards`` lists; trailing shards are shorter or
    empty when the input does not divide evenly.
    """
    _check_shards(shards)
    size = math.ceil(len(ids) / shards)
    return [list(ids[i * size:(i + 1) * size]) for i in range(shards)]


def shard(
    ids: Sequence[int],
    shards: int,
    strategy: ShardStrategy | str = ShardStrategy.INTERLEAVED,
) -> list[list[int]]:
    """Dispatch to the splitter named by *strategy*."""
    try:
        strategy = ShardStrategy(strategy)
    except ValueError as exc:
        raise InvalidArgumentError(f"Unknown shard strategy: {strategy}") from exc
    if strategy is ShardStrategy.SEQUENTIAL:
        return shards_sequential(ids, shards)
    return shards_interleaved(ids, shards)
