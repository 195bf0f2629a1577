"""Build one message per item and hand it to every configured transport."""

from __future__ import annotations

import asyncio
import html
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Protocol

from hnwatch import base62
from hnwatch.config import HN_WEB_URL, SHORT_LINK_BASE_URL
from hnwatch.models import Item, NotificationItem

logger = logging.getLogger(__name__)

HOUR_SECS = 60 * 60
FOUR_HOURS = 4 * HOUR_SECS
TWO_DAYS = 48 * HOUR_SECS


@dataclass(frozen=True)
class LinkButton:
    text: str
    url: str


@dataclass(frozen=True)
class Message:
    item_id: int
    subject: str
    html: str
    markdown: str
    buttons: list[LinkButton] = field(default_factory=list)


@dataclass(frozen=True)
class DeliveryResult:
    ok: bool
    status: int | None = None
    body: str = ""


class Transport(Protocol):
    """Delivery channel. Raises TransportError when it cannot reach the service."""

    name: str

    async def send(self, message: Message) -> DeliveryResult:
        ...


def age_indicator(created: int, now: float) -> str:
    """🔥 for fresh items, ❄️ for stale ones, nothing in between."""
    if not created:
        return ""
    delta = now - created
    if delta <= FOUR_HOURS:
        return "🔥"
    if delta >= TWO_DAYS:
        return "❄️"
    return ""


def build_message(item: NotificationItem, now: float) -> Message:
    short_id = base62.encode(item.id)
    hn_url = f"{HN_WEB_URL}item?id={item.id}"
    short_comments_url = f"{SHORT_LINK_BASE_URL}c/{short_id}"
    story_url = item.url or hn_url
    short_story_url = f"{SHORT_LINK_BASE_URL}s/{short_id}" if item.url else short_comments_url

    age = age_indicator(item.time, now)
    score_part = f"Score: {item.score}+" if item.score is not None else ""
    author_part = f"by {item.author}" if item.author else ""
    header = " · ".join(p for p in (score_part, author_part) if p)

    lines = [f"<b>{html.escape(item.title, quote=False)}</b> {age}".rstrip()]
    if header:
        lines.append(f"({html.escape(header, quote=False)})")
    lines += ["", f"<b>Link:</b> {short_story_url}", f"<b>Comments:</b> {short_comments_url}"]

    md_lines = [f"## {item.title} {age}".rstrip()]
    if header:
        md_lines.append(f"_{header}_")
    md_lines += ["", f"- [Read]({story_url})", f"- [Comments]({hn_url})"]

    comments = f"Comments ({item.descendants}+)" if item.descendants else "Comments"
    return Message(
        item_id=item.id,
        subject=item.title,
        html="\n".join(lines),
        markdown="\n".join(md_lines),
        buttons=[
            LinkButton("Read" if item.url else "Read HN", story_url),
            LinkButton(comments, hn_url),
        ],
    )


class LogTransport:
    """Transport that only writes the message to the log."""

    name = "log"

    async def send(self, message: Message) -> DeliveryResult:
        links = " | ".join(f"{b.text}: {b.url}" for b in message.buttons)
        logger.info("[%d] %s (%s)", message.item_id, message.subject, links)
        return DeliveryResult(ok=True)


class Notifier:
    """Fan out one message per item; a failed item never blocks the others."""

    def __init__(
        self,
        transports: list[Transport],
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._transports = list(transports)
        self._clock = clock
        if not self._transports:
            logger.warning("No notification transports configured; items will be dropped.")

    async def notify_all(self, items: list[Item]) -> int:
        """Send every item; return how many reached at least one transport."""
        if not items:
            return 0
        results = await asyncio.gather(*(self._notify_one(item) for item in items))
        delivered = sum(results)
        logger.info("Notified %d/%d items", delivered, len(items))
        return delivered

    async def _notify_one(self, item: Item) -> bool:
        view = NotificationItem.from_item(item)
        message = build_message(view, self._clock())
        logger.info('Notify "%s" by %s: %s', view.title, view.author, view.url or "(no url)")

        delivered = False
        for transport in self._transports:
            try:
                result = await transport.send(message)
            except Exception:
                logger.exception("%s delivery of item %d failed", transport.name, item.id)
                continue
            if result.ok:
                delivered = True
            else:
                logger.error(
                    "%s delivery of item %d failed: status=%s body=%s",
                    transport.name, item.id, result.status, result.body,
                )
        return delivered
