"""Telegram notifications. Never log token or chat_id."""

from __future__ import annotations
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import requests

logger = logging.getLogger("signal_engine.utils.telegram")

TITLES = {
    "signal_approved": "Signal approved",
    "signal_rejected": "Signal rejected",
    "position_opened": "Position opened",
    "position_closed": "Position closed",
    "partial_tp": "Partial take profit",
    "dca": "DCA order filled",
    "close_failed": "Close failed, position still open",
    "order_failed": "Order failed",
    "error": "Error",
    "daily_report": "Daily report",
}


def send_telegram(text: str, bot_token: str = "", chat_id: str = "") -> bool:
    """Send message to Telegram. Returns True on success. Uses empty strings if not configured."""
    if not bot_token or not chat_id:
        logger.debug("Telegram not configured, skipping message (len=%d)", len(text))
        return False
    try:
        url = f"https://api.telegram.org/bot{bot_token}/sendMessage"
        payload = {"chat_id": chat_id, "text": text}
        r = requests.post(url, json=payload, timeout=10)
        if r.status_code != 200:
            logger.warning("Telegram send failed: %s %s", r.status_code, r.text[:200])
            return False
        return True
    except Exception as e:
        logger.exception("Telegram error: %s", e)
        return False


def format_event(event: str, fields: dict) -> str:
    lines = [TITLES.get(event, event.replace("_", " ").capitalize())]
    for key, value in fields.items():
        if isinstance(value, float):
            value = f"{value:.6g}"
        lines.append(f"{key}: {value}")
    return "\n".join(lines)


class TelegramNotifier:
    """
    Fire-and-forget sink. notify() formats the message and hands the HTTP send to a
    single background worker, so a caller holding a position lock never waits on
    Telegram. It never raises, so it cannot abort a trading decision.
    """

    def __init__(self, bot_token: str = "", chat_id: str = ""):
        self._bot_token = bot_token
        self._chat_id = chat_id
        self._sender = ThreadPoolExecutor(max_workers=1, thread_name_prefix="telegram")

    @property
    def enabled(self) -> bool:
        return bool(self._bot_token and self._chat_id)

    def notify(self, event: str, **fields: Any) -> bool:
        """Queue a message. False when unconfigured or it could not be queued."""
        if not self.enabled:
            logger.debug("Telegram not configured, skipping %s", event)
            return False
        try:
            text = format_event(event, fields)
            self._sender.submit(send_telegram, text, self._bot_token, self._chat_id)
        except Exception as e:
            logger.exception("Could not queue notification %s: %s", event, e)
            return False
        return True

    def close(self) -> None:
        """Wait for queued messages to go out."""
        self._sender.shutdown(wait=True)
