"""Telegram delivery for keeper alerts and pass summaries."""
import html
import logging
import ssl

import aiohttp
import certifi

from ..config import TelegramConfig

logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"


class TelegramNotifier:
    """Posts keeper output to a chat through two bots.

    Alerts go through the alert bot with sound on; pass summaries go through
    the log bot, muted by default.
    """

    def __init__(self, config: TelegramConfig) -> None:
        self.alert_bot_token = config.alert_bot_token
        self.log_bot_token = config.log_bot_token
        self.chat_id = config.chat_id

    async def _post(self, text: str, bot_token: str, silent: bool) -> bool:
        if not bot_token or not self.chat_id:
            logger.warning("Telegram credentials not configured")
            return False

        url = f"{TELEGRAM_API}/bot{bot_token}/sendMessage"
        payload = {
            "chat_id": self.chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_notification": silent,
        }

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.post(url, json=payload) as response:
                    if response.status != 200:
                        logger.error("Telegram rejected message: HTTP %s", response.status)
                        return False
                    return True
        except aiohttp.ClientError as e:
            logger.error("Telegram request failed: %s", e)
            return False

    async def send_alert(self, message: str, subject: str = "") -> bool:
        text = html.escape(message)
        if subject:
            text = f"<b>{html.escape(subject)}</b>\n\n{text}"
        if await self._post(text, self.alert_bot_token, silent=False):
            logger.info("Telegram alert sent%s", f": {subject}" if subject else "")
            return True
        return False

    async def send_log(self, message: str, silent: bool = True) -> bool:
        if await self._post(html.escape(message), self.log_bot_token, silent=silent):
            logger.debug("Telegram log sent")
            return True
        return False
