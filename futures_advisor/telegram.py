"""Notification delivery, Telegram bot API."""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import List

import requests

logger = logging.getLogger(__name__)


def send_telegram_message(token: str, chat_id: str, text: str) -> bool:
    """Post text to a chat through the Bot API; False on any delivery failure

    Blocking, callers on the event loop go through TelegramNotifier.
    """
    url = f"https://api.telegram.org/bot{token}/sendMessage"
    payload = {"chat_id": chat_id, "text": text, "disable_web_page_preview": True}
    try:
        resp = requests.post(url, json=payload, timeout=10)
    except requests.RequestException as e:
        logger.error("Telegram request error: %s", e)
        return False

    if resp.ok:
        return True
    try:
        desc = resp.json().get('description')
    except ValueError:
        desc = resp.text[:200]
    logger.warning("Telegram send failed: status=%s, detail=%s", resp.status_code, desc)
    return False


class NotificationSink(ABC):
    """Best-effort text delivery"""

    @property
    def enabled(self) -> bool:
        return True

    @abstractmethod
    async def send(self, text: str) -> bool:
        pass


class TelegramNotifier(NotificationSink):
    def __init__(self, token: str, chat_id: str):
        self.token = token
        self.chat_id = chat_id

    @property
    def enabled(self) -> bool:
        return bool(self.token and self.chat_id)

    async def send(self, text: str) -> bool:
        if not self.enabled:
            return False
        return await asyncio.to_thread(send_telegram_message, self.token, self.chat_id, text)


class NullNotifier(NotificationSink):
    """Used when no channel is configured"""

    @property
    def enabled(self) -> bool:
        return False

    async def send(self, text: str) -> bool:
        return False


class MemoryNotifier(NotificationSink):
    """Keeps sent texts, for dry runs"""

    def __init__(self):
        self.sent: List[str] = []

    async def send(self, text: str) -> bool:
        self.sent.append(text)
        return True
