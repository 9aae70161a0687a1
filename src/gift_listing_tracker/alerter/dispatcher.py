"""Telegram alert delivery with a photo-to-text fallback."""

from __future__ import annotations

import logging
from typing import Any

from telegram import (
    Bot,
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    LinkPreviewOptions,
    WebAppInfo,
)
from telegram.constants import ParseMode
from telegram.error import TelegramError

from gift_listing_tracker.alerter.models import FormattedAlert

logger = logging.getLogger(__name__)

MINIAPP_BUTTON_TEXT = "App"


class AlertDispatchError(Exception):
    """Raised when an alert could not be delivered at all."""


class AlertDispatcher:
    """Send formatted alerts to one Telegram chat.

    Alerts with a photo go out via ``send_photo``; if that fails for any reason
    the same caption is sent as a text message. A failed text message raises
    ``AlertDispatchError`` for that alert only.

    Example:
        ```python
        async with AlertDispatcher(Bot(token), chat_id="-100123", miniapp_url=url) as d:
            await d.send(alert)
        ```
    """

    def __init__(self, bot: Bot, chat_id: str, miniapp_url: str) -> None:
        self._bot = bot
        self._chat_id = chat_id
        self._miniapp_url = miniapp_url
        self._initialized = False

    async def __aenter__(self) -> AlertDispatcher:
        await self.initialize()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.shutdown()

    async def initialize(self) -> None:
        if not self._initialized:
            await self._bot.initialize()
            self._initialized = True

    async def shutdown(self) -> None:
        if self._initialized:
            await self._bot.shutdown()
            self._initialized = False

    def _miniapp_button(self) -> InlineKeyboardButton:
        # Telegram only accepts https URLs for web apps.
        if self._miniapp_url.lower().startswith("https://"):
            return InlineKeyboardButton(MINIAPP_BUTTON_TEXT, web_app=WebAppInfo(url=self._miniapp_url))
        return InlineKeyboardButton(MINIAPP_BUTTON_TEXT, url=self._miniapp_url)

    def build_keyboard(self, alert: FormattedAlert) -> InlineKeyboardMarkup:
        return InlineKeyboardMarkup(
            [[self._miniapp_button(), InlineKeyboardButton(alert.buy_button_text, url=alert.buy_url)]]
        )

    async def send(self, alert: FormattedAlert) -> None:
        """Deliver ``alert``.

        Raises:
            AlertDispatchError: If the text message (or fallback) failed.
        """
        keyboard = self.build_keyboard(alert)

        if alert.photo_url:
            try:
                await self._bot.send_photo(
                    chat_id=self._chat_id,
                    photo=alert.photo_url,
                    caption=alert.caption,
                    parse_mode=ParseMode.MARKDOWN_V2,
                    reply_markup=keyboard,
                )
                logger.info("Alert sent with photo for %s", alert.nft_address)
                return
            except Exception as e:
                logger.warning(
                    "send_photo failed for %s, falling back to text: %s", alert.nft_address, e
                )

        try:
            await self._bot.send_message(
                chat_id=self._chat_id,
                text=alert.caption,
                parse_mode=ParseMode.MARKDOWN_V2,
                link_preview_options=LinkPreviewOptions(is_disabled=True),
                reply_markup=keyboard,
            )
        except TelegramError as e:
            raise AlertDispatchError(f"send_message failed for {alert.nft_address}: {e}") from e
        logger.info("Alert sent for %s", alert.nft_address)
