"""Exception taxonomy shared by both exchange adapters and the dispatcher."""

from __future__ import annotations

from typing import Any, Optional


class TradeExecutionError(Exception):
    """Raised when an exchange rejects a trading request."""


class InvalidSize(TradeExecutionError):
    """USD notional cannot be converted into at least one contract."""


class InvalidPercent(TradeExecutionError):
    """Close percentage outside ``(0, 100]``."""


class NoPosition(TradeExecutionError):
    """No open position exists for the requested symbol/direction."""


class OrderTooSmall(TradeExecutionError):
    """Quantised order size is zero or below the exchange minimum."""


class UnsupportedAction(TradeExecutionError):
    """Order intent carries an action the dispatcher does not know."""


class PermissionDenied(TradeExecutionError):
    """API key has the wrong access tier; trading cannot proceed."""


class TransportError(TradeExecutionError):
    """Network, HTTP or payload parsing failure talking to an exchange."""


class BinanceAPIError(TransportError):
    def __init__(self, status: int, code: Optional[int], msg: str, payload: Any = None):
        self.status = status
        self.code = code
        self.msg = msg
        self.payload = payload
        super().__init__(f"Binance error {status} code={code}: {msg}")


class GateAPIError(TransportError):
    def __init__(self, status: int, label: str, message: str, payload: Any = None):
        self.status = status
        self.label = label
        self.message = message
        self.payload = payload
        super().__init__(f"Gate error {status} label={label}: {message}")
