"""Tests for message building, the notifier fan-out and the transports."""

from __future__ import annotations

import json
import smtplib
from typing import Any

import httpx
import pytest

from conftest import RecordingTransport
from hnwatch import base62, emailer
from hnwatch.emailer import EmailTransport, _md_to_html
from hnwatch.errors import TransportError
from hnwatch.models import Item, NotificationItem
from hnwatch.notifier import (
    FOUR_HOURS,
    TWO_DAYS,
    DeliveryResult,
    LogTransport,
    Message,
    Notifier,
    age_indicator,
    build_message,
)
from hnwatch.telegram import TelegramTransport

NOW = 1_700_000_000


def _view(**overrides: Any) -> NotificationItem:
    fields: dict[str, Any] = {
        "id": 8863,
        "title": "My YC app: Dropbox",
        "author": "dhouston",
        "score": 111,
        "time": NOW - 3600,
        "url": "http://www.getdropbox.com/u/2/screencast.html",
        "descendants": 71,
    }
    fields.update(overrides)
    return NotificationItem(**fields)


class ExplodingTransport:
    name = "boom"

    async def send(self, message: Message) -> DeliveryResult:
        raise TransportError("unreachable")


class TestAgeIndicator:
    def test_fresh(self) -> None:
        assert age_indicator(NOW - FOUR_HOURS, NOW) == "🔥"

    def test_stale(self) -> None:
        assert age_indicator(NOW - TWO_DAYS, NOW) == "❄️"

    def test_in_between(self) -> None:
        assert age_indicator(NOW - FOUR_HOURS - 1, NOW) == ""

    def test_unknown_time(self) -> None:
        assert age_indicator(0, NOW) == ""


class TestBuildMessage:
    def test_story_with_url(self) -> None:
        message = build_message(_view(), NOW)
        short = base62.encode(8863)

        assert message.item_id == 8863
        assert message.subject == "My YC app: Dropbox"
        assert message.html.splitlines()[0] == "<b>My YC app: Dropbox</b> 🔥"
        assert "(Score: 111+ · by dhouston)" in message.html
        assert f"<b>Link:</b> https://readhacker.news/s/{short}" in message.html
        assert f"<b>Comments:</b> https://readhacker.news/c/{short}" in message.html
        assert [(b.text, b.url) for b in message.buttons] == [
            ("Read", "http://www.getdropbox.com/u/2/screencast.html"),
            ("Comments (71+)", "https://news.ycombinator.com/item?id=8863"),
        ]

    def test_text_post_links_to_hn(self) -> None:
        message = build_message(_view(url=None, descendants=0), NOW)
        short = base62.encode(8863)
        assert f"<b>Link:</b> https://readhacker.news/c/{short}" in message.html
        assert [(b.text, b.url) for b in message.buttons] == [
            ("Read HN", "https://news.ycombinator.com/item?id=8863"),
            ("Comments", "https://news.ycombinator.com/item?id=8863"),
        ]

    def test_title_is_escaped(self) -> None:
        message = build_message(_view(title="Use <b> & <i> tags"), NOW)
        assert "<b>Use &lt;b&gt; &amp; &lt;i&gt; tags</b>" in message.html

    def test_missing_score_and_author(self) -> None:
        message = build_message(_view(score=None, author=""), NOW)
        assert "Score" not in message.html
        assert "by " not in message.markdown

    def test_markdown_body(self) -> None:
        message = build_message(_view(time=NOW - TWO_DAYS - 1), NOW)
        assert message.markdown.splitlines() == [
            "## My YC app: Dropbox ❄️",
            "_Score: 111+ · by dhouston_",
            "",
            "- [Read](http://www.getdropbox.com/u/2/screencast.html)",
            "- [Comments](https://news.ycombinator.com/item?id=8863)",
        ]

    def test_untitled_item(self) -> None:
        view = NotificationItem.from_item(Item(id=5, by="pg"))
        assert build_message(view, NOW).subject == "Item 5"


class TestNotifier:
    @staticmethod
    def _items(*ids: int) -> list[Item]:
        return [Item(id=i, by="pg", time=NOW, score=200, title=f"Story {i}") for i in ids]

    @pytest.mark.asyncio
    async def test_one_message_per_item(self) -> None:
        transport = RecordingTransport()
        notifier = Notifier([transport], clock=lambda: NOW)
        assert await notifier.notify_all(self._items(1, 2, 3)) == 3
        assert sorted(m.item_id for m in transport.sent) == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_empty_input(self) -> None:
        transport = RecordingTransport()
        assert await Notifier([transport]).notify_all([]) == 0
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_failing_transport_does_not_block_others(self) -> None:
        good = RecordingTransport()
        notifier = Notifier([ExplodingTransport(), good], clock=lambda: NOW)
        assert await notifier.notify_all(self._items(1, 2)) == 2
        assert len(good.sent) == 2

    @pytest.mark.asyncio
    async def test_rejected_delivery_is_not_counted(self, caplog: pytest.LogCaptureFixture) -> None:
        rejecting = RecordingTransport(result=DeliveryResult(ok=False, status=400, body="bad"))
        notifier = Notifier([rejecting], clock=lambda: NOW)
        assert await notifier.notify_all(self._items(1)) == 0
        assert "status=400" in caplog.text

    @pytest.mark.asyncio
    async def test_log_transport(self, caplog: pytest.LogCaptureFixture) -> None:
        caplog.set_level("INFO", logger="hnwatch.notifier")
        assert await Notifier([LogTransport()], clock=lambda: NOW).notify_all(self._items(7)) == 1
        assert "[7] Story 7" in caplog.text


class TestTelegramTransport:
    def test_requires_credentials(self) -> None:
        with pytest.raises(ValueError):
            TelegramTransport("", "42")
        with pytest.raises(ValueError):
            TelegramTransport("123:abc", "")

    @pytest.mark.asyncio
    async def test_payload_and_endpoint(self) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"ok": True})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            transport = TelegramTransport("123:abc", "-100", client=http)
            result = await transport.send(build_message(_view(), NOW))

        assert result.ok
        assert str(requests[0].url) == "https://api.telegram.org/bot123:abc/sendMessage"
        payload = json.loads(requests[0].content)
        assert payload["chat_id"] == "-100"
        assert payload["parse_mode"] == "HTML"
        assert payload["disable_web_page_preview"] is False
        assert [b["text"] for b in payload["reply_markup"]["inline_keyboard"][0]] == [
            "Read",
            "Comments (71+)",
        ]

    @pytest.mark.asyncio
    async def test_non_200_is_a_failed_delivery(self) -> None:
        transport_ = httpx.MockTransport(lambda request: httpx.Response(403, text="Forbidden"))
        async with httpx.AsyncClient(transport=transport_) as http:
            result = await TelegramTransport("t", "c", client=http).send(build_message(_view(), NOW))
        assert result == DeliveryResult(ok=False, status=403, body="Forbidden")

    @pytest.mark.asyncio
    async def test_network_error_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            with pytest.raises(TransportError):
                await TelegramTransport("t", "c", client=http).send(build_message(_view(), NOW))


class TestEmailTransport:
    def _transport(self) -> EmailTransport:
        return EmailTransport("smtp.test", 587, "me@test", "pw", ["you@test"])

    @pytest.mark.asyncio
    async def test_sends_markdown_body(self, monkeypatch: pytest.MonkeyPatch) -> None:
        calls: list[dict[str, Any]] = []
        monkeypatch.setattr(emailer, "send_email", lambda **kwargs: calls.append(kwargs))

        result = await self._transport().send(build_message(_view(), NOW))

        assert result.ok
        assert calls[0]["subject"] == "[HN] My YC app: Dropbox"
        assert calls[0]["to_addrs"] == ("you@test",)
        assert calls[0]["body_text"].startswith("## My YC app: Dropbox")

    @pytest.mark.asyncio
    async def test_smtp_failure_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def fail(**kwargs: Any) -> None:
            raise smtplib.SMTPAuthenticationError(535, b"bad credentials")

        monkeypatch.setattr(emailer, "send_email", fail)
        with pytest.raises(TransportError):
            await self._transport().send(build_message(_view(), NOW))

    def test_requires_recipients(self) -> None:
        with pytest.raises(ValueError):
            EmailTransport("smtp.test", 587, "me@test", "pw", [])

    def test_markdown_rendered_with_inline_styles(self) -> None:
        rendered = _md_to_html(build_message(_view(), NOW).markdown)
        assert '<h2 style="' in rendered
        assert '<a style="color:#ff6600; text-decoration:none;" href="' in rendered
        assert rendered.startswith("<!DOCTYPE html>")
