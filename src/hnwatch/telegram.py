"""Telegram Bot API transport."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from hnwatch.config import APP_USER_AGENT, TELEGRAM_BASE_URL
from hnwatch.errors import TransportError
from hnwatch.notifier import DeliveryResult, Message

logger = logging.getLogger(__name__)


class TelegramTransport:
    """Posts HTML messages with inline link buttons to one chat."""

    name = "telegram"

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        base_url: str = TELEGRAM_BASE_URL,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not bot_token:
            raise ValueError("TELEGRAM_BOT_TOKEN is required but was empty.")
        if not chat_id:
            raise ValueError("TELEGRAM_CHAT_ID is required but was empty.")
        self._bot_token = bot_token
        self._chat_id = chat_id
        self._base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _endpoint(self) -> str:
        # Built by hand: a token such as "bot123:ABC" confuses URL joining.
        return f"{self._base_url}/bot{self._bot_token}/sendMessage"

    def _payload(self, message: Message) -> dict[str, Any]:
        return {
            "chat_id": self._chat_id,
            "text": message.html,
            "parse_mode": "HTML",
            "reply_markup": {
                "inline_keyboard": [[{"text": b.text, "url": b.url} for b in message.buttons]],
            },
            "disable_web_page_preview": False,
        }

    async def send(self, message: Message) -> DeliveryResult:
        try:
            resp = await self._client.post(
                self._endpoint(),
                json=self._payload(message),
                headers={"User-Agent": APP_USER_AGENT},
            )
        except httpx.HTTPError as exc:
            raise TransportError(f"Telegram sendMessage failed: {type(exc).__name__}") from exc

        if resp.status_code != 200:
            return DeliveryResult(ok=False, status=resp.status_code, body=resp.text[:500])
        logger.debug("Telegram accepted item %d", message.item_id)
        return DeliveryResult(ok=True, status=resp.status_code)
