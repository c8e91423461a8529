"""Notification sink and price source collaborators used by the traders."""

from __future__ import annotations

import logging
import threading
from typing import Any, Optional, Protocol, Tuple

import requests

import config

LOGGER = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify(self, text: str) -> None: ...


class PriceSource(Protocol):
    def get_current_price(self, symbol: str) -> Tuple[float, bool]: ...


class NullNotifier:
    """Drops notifications after logging them."""

    def notify(self, text: str) -> None:
        LOGGER.info("notify text=%s", text)


class TelegramNotifier:
    """Fire-and-forget Telegram ``sendMessage``; delivery failures are only logged."""

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        *,
        api_base_url: str = "https://api.telegram.org",
        session: Optional[requests.Session] = None,
        timeout: float = 10,
        background: bool = True,
    ) -> None:
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.api_base_url = api_base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.background = background

    @classmethod
    def from_config(cls) -> Optional["TelegramNotifier"]:
        if not config.TELEGRAM_BOT_TOKEN or not config.TELEGRAM_CHAT_ID:
            return None
        return cls(
            config.TELEGRAM_BOT_TOKEN,
            config.TELEGRAM_CHAT_ID,
            api_base_url=config.TELEGRAM_API_BASE_URL,
            timeout=config.REST_CONNECTION_CONFIG["timeout"],
        )

    def notify(self, text: str) -> None:
        if not self.background:
            self._send(text)
            return
        threading.Thread(target=self._send, args=(text,), name="telegram-notify", daemon=True).start()

    def _send(self, text: str) -> None:
        url = f"{self.api_base_url}/bot{self.bot_token}/sendMessage"
        payload = {
            "chat_id": self.chat_id,
            "text": text,
            "disable_web_page_preview": True,
        }
        try:
            response = self.session.post(url, json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            LOGGER.warning("telegram_send_failed error=%s", exc)
            return
        if response.status_code != 200:
            LOGGER.warning("telegram_send_http_error status=%s body=%s", response.status_code, response.text[:200])


class TraderPriceSource:
    """Adapts ``trader.get_market_price`` to the ``(price, ok)`` price-source shape."""

    def __init__(self, trader: Any) -> None:
        self.trader = trader

    def get_current_price(self, symbol: str) -> Tuple[float, bool]:
        try:
            price = float(self.trader.get_market_price(symbol))
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("price_lookup_failed symbol=%s error=%s", symbol, exc)
            return 0.0, False
        if price <= 0:
            return 0.0, False
        return price, True
