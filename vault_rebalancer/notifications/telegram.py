"""Telegram delivery for rebalance alerts and run summaries."""
from __future__ import annotations

import html
import logging
import ssl

import aiohttp
import certifi

from ..config import TelegramConfig

logger = logging.getLogger(__name__)

API_URL = "https://api.telegram.org/bot{token}/sendMessage"
MAX_MESSAGE_LENGTH = 4096
REQUEST_TIMEOUT_SECONDS = 10


def _render(message: str, subject: str = "") -> str:
    """Escape for HTML parse mode and fit Telegram's message size limit."""
    body = html.escape(message)
    if subject:
        body = f"<b>{html.escape(subject)}</b>\n\n{body}"
    if len(body) > MAX_MESSAGE_LENGTH:
        body = body[: MAX_MESSAGE_LENGTH - 1] + "…"
    return body


class TelegramNotifier:
    """Alerts go to the unmuted bot, run summaries to the log bot."""

    def __init__(self, config: TelegramConfig) -> None:
        self.alert_bot_token = config.alert_bot_token
        self.log_bot_token = config.log_bot_token
        self.chat_id = config.chat_id

    async def _post(self, bot_token: str, text: str, silent: bool) -> bool:
        if not bot_token or not self.chat_id:
            logger.warning("Telegram credentials not configured")
            return False

        payload = {
            "chat_id": self.chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_notification": silent,
        }
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)
        timeout = aiohttp.ClientTimeout(total=REQUEST_TIMEOUT_SECONDS)

        async with aiohttp.ClientSession(connector=connector, timeout=timeout) as session:
            async with session.post(API_URL.format(token=bot_token), json=payload) as response:
                if response.status != 200:
                    logger.error("Telegram sendMessage returned HTTP %s", response.status)
                    return False
                return True

    async def send_alert(self, message: str, subject: str = "") -> bool:
        """Deliver a rebalance alert with sound."""
        sent = await self._post(self.alert_bot_token, _render(message, subject), silent=False)
        if sent:
            logger.info("Telegram rebalance alert delivered")
        return sent

    async def send_log(self, message: str, silent: bool = True) -> bool:
        sent = await self._post(self.log_bot_token, _render(message), silent=silent)
        if sent:
            logger.debug("Telegram run summary delivered")
        return sent
