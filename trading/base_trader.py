"""Exchange-agnostic trader contract shared by the Binance and Gate.io adapters."""

from __future__ import annotations

import logging
import secrets
import time
from abc import ABC, abstractmethod
from typing import Any, List, Optional

from trading.errors import TradeExecutionError
from trading.models import LONG, SHORT, OrderResult, Position, TradeRecord

LOGGER = logging.getLogger(__name__)

DEFAULT_TRADE_HISTORY_LIMIT = 500


def generate_client_order_id(prefix: str, tag: str, max_len: int) -> str:
    """``prefix + tag + (ns timestamp mod 10**13) + 8 random hex chars``.

    Truncated to ``max_len`` only when it would exceed the exchange limit.
    """
    stamp = time.time_ns() % 10**13
    order_id = f"{prefix}{tag}{stamp}{secrets.token_hex(4)}"
    if len(order_id) > max_len:
        order_id = order_id[:max_len]
    return order_id


class BaseFuturesTrader(ABC):
    """One trader handle per (account, exchange) pairing."""

    exchange = ""

    def __init__(self, *, notifier: Any = None, price_source: Any = None) -> None:
        self.notifier = notifier
        self.price_source = price_source

    # ------------------------------------------------------------------ #
    # account
    # ------------------------------------------------------------------ #
    @abstractmethod
    def get_balance(self):
        """Return a :class:`trading.models.Balance`."""

    @abstractmethod
    def get_positions(self) -> List[Position]:
        """Non-zero positions only."""

    @abstractmethod
    def set_leverage(self, symbol: str, leverage: int) -> None: ...

    @abstractmethod
    def set_margin_mode(self, symbol: str, cross: bool) -> None: ...

    # ------------------------------------------------------------------ #
    # orders
    # ------------------------------------------------------------------ #
    @abstractmethod
    def open_long(self, symbol: str, quantity: float, leverage: int) -> OrderResult: ...

    @abstractmethod
    def open_short(self, symbol: str, quantity: float, leverage: int) -> OrderResult: ...

    @abstractmethod
    def close_long(self, symbol: str, quantity: float = 0) -> OrderResult: ...

    @abstractmethod
    def close_short(self, symbol: str, quantity: float = 0) -> OrderResult: ...

    @abstractmethod
    def set_stop_loss(self, symbol: str, position_side: str, quantity: float, stop_price: float) -> None: ...

    @abstractmethod
    def set_take_profit(self, symbol: str, position_side: str, quantity: float, take_profit_price: float) -> None: ...

    @abstractmethod
    def cancel_stop_loss_orders(self, symbol: str) -> None: ...

    @abstractmethod
    def cancel_take_profit_orders(self, symbol: str) -> None: ...

    @abstractmethod
    def cancel_all_orders(self, symbol: str) -> None: ...

    @abstractmethod
    def cancel_stop_orders(self, symbol: str) -> None: ...

    # ------------------------------------------------------------------ #
    # market data
    # ------------------------------------------------------------------ #
    @abstractmethod
    def get_market_price(self, symbol: str) -> float: ...

    @abstractmethod
    def format_quantity(self, symbol: str, quantity: float) -> str: ...

    @abstractmethod
    def get_trade_history(self, symbol: str, limit: int = DEFAULT_TRADE_HISTORY_LIMIT) -> List[TradeRecord]: ...

    def close(self) -> None:
        """Release background resources; default is a no-op."""

    # ------------------------------------------------------------------ #
    # shared helpers
    # ------------------------------------------------------------------ #
    def find_position(self, symbol: str, position_side: str) -> Optional[Position]:
        for position in self.get_positions():
            if position.symbol == symbol and position.position_side == position_side:
                return position
        return None

    def best_price(self, symbol: str, avg_price: Any = None) -> Optional[float]:
        """Exchange average fill price, else the price source, else the ticker."""
        try:
            avg = float(avg_price) if avg_price not in (None, "") else 0.0
        except (TypeError, ValueError):
            avg = 0.0
        if avg > 0:
            return avg

        if self.price_source is not None:
            try:
                price, ok = self.price_source.get_current_price(symbol)
            except Exception as exc:  # noqa: BLE001
                LOGGER.warning("price_source_failed exchange=%s symbol=%s error=%s", self.exchange, symbol, exc)
            else:
                if ok and price and price > 0:
                    return float(price)

        try:
            return self.get_market_price(symbol)
        except TradeExecutionError as exc:
            LOGGER.warning("market_price_failed exchange=%s symbol=%s error=%s", self.exchange, symbol, exc)
            return None

    def _notify_closed(self, symbol: str, position_side: str, result: OrderResult) -> None:
        if self.notifier is None:
            return
        price = f"{result.price:.6g}" if result.price else "n/a"
        text = (
            f"[{self.exchange}] closed {position_side} {symbol} "
            f"qty={result.quantity:g} price={price} order={result.order_id}"
        )
        try:
            self.notifier.notify(text)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("notify_failed exchange=%s symbol=%s error=%s", self.exchange, symbol, exc)

    @staticmethod
    def _check_position_side(position_side: str) -> str:
        side = str(position_side or "").upper()
        if side not in (LONG, SHORT):
            raise TradeExecutionError(f"position_side must be LONG or SHORT, got {position_side!r}")
        return side
