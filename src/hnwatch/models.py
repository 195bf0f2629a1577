"""Domain models used across the pipeline."""

from __future__ import annotations

import time
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class LiveDataKind(str, Enum):
    """Live data endpoints published by the Hacker News API."""

    MAX_ITEM = "max_item"
    TOP = "top"
    NEW = "new"
    BEST = "best"
    ASK = "ask"
    SHOW = "show"
    JOB = "job"
    UPDATES = "updates"

    @property
    def is_story_list(self) -> bool:
        return self not in (LiveDataKind.MAX_ITEM, LiveDataKind.UPDATES)


class Item(BaseModel):
    """One item from ``item/<id>.json``.

    Only ``id`` is mandatory. Fields with the wrong JSON type are treated as
    absent instead of rejecting the whole item.
    """

    model_config = ConfigDict(frozen=True)

    id: int = Field(ge=0)
    type: str | None = None
    by: str = ""
    time: int = 0
    score: int | None = None
    title: str | None = None
    url: str | None = None
    text: str | None = None
    descendants: int | None = None
    deleted: bool = False
    dead: bool = False

    @field_validator("score", "descendants", mode="before")
    @classmethod
    def _count_or_none(cls, value: Any) -> int | None:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return int(value)

    @field_validator("time", mode="before")
    @classmethod
    def _time_or_zero(cls, value: Any) -> int:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return 0
        return int(value)

    @field_validator("type", "title", "url", "text", mode="before")
    @classmethod
    def _text_or_none(cls, value: Any) -> str | None:
        return value if isinstance(value, str) else None

    @field_validator("by", mode="before")
    @classmethod
    def _author_or_blank(cls, value: Any) -> str:
        return value if isinstance(value, str) else ""

    @field_validator("deleted", "dead", mode="before")
    @classmethod
    def _flag(cls, value: Any) -> bool:
        return bool(value)


class CacheEntry(BaseModel):
    """A dedup record: the value stored under ``<prefix><item id>``.

    ``metadata`` travels with the key, not inside the stored value.
    """

    uuid: str
    item: Item
    created_at: float = Field(default_factory=time.time)
    metadata: dict[str, Any] = Field(default_factory=dict)

    def value_json(self) -> str:
        return self.model_dump_json(exclude={"metadata"})


class NotificationItem(BaseModel):
    """The subset of an item a notification message needs."""

    model_config = ConfigDict(frozen=True)

    id: int
    title: str
    author: str
    score: int | None = None
    time: int = 0
    url: str | None = None
    descendants: int | None = None

    @classmethod
    def from_item(cls, item: Item) -> NotificationItem:
        return cls(
            id=item.id,
            title=item.title or f"Item {item.id}",
            author=item.by,
            score=item.score,
            time=item.time,
            url=item.url,
            descendants=item.descendants,
        )


# ── Live data (one variant per endpoint shape) ────────────────────────────


class StoryIds(BaseModel):
    kind: LiveDataKind
    ids: list[int] = Field(default_factory=list)


class MaxItem(BaseModel):
    kind: Literal[LiveDataKind.MAX_ITEM] = LiveDataKind.MAX_ITEM
    value: int | None = None


class Updates(BaseModel):
    kind: Literal[LiveDataKind.UPDATES] = LiveDataKind.UPDATES
    items: list[int] = Field(default_factory=list)
    profiles: list[str] = Field(default_factory=list)


LiveData = StoryIds | MaxItem | Updates
