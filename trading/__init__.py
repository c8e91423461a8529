"""Perpetual futures position management for Binance USDT-M and Gate.io USDT futures."""

from trading.base_trader import BaseFuturesTrader, generate_client_order_id
from trading.dispatcher import place_futures_order
from trading.errors import (
    InvalidPercent,
    InvalidSize,
    NoPosition,
    OrderTooSmall,
    PermissionDenied,
    TradeExecutionError,
    TransportError,
    UnsupportedAction,
)
from trading.models import FuturesAction, OrderIntent, OrderResult
from trading.sizing import calc_contracts, calc_partial_contracts

__all__ = [
    "BaseFuturesTrader",
    "FuturesAction",
    "InvalidPercent",
    "InvalidSize",
    "NoPosition",
    "OrderIntent",
    "OrderResult",
    "OrderTooSmall",
    "PermissionDenied",
    "TradeExecutionError",
    "TransportError",
    "UnsupportedAction",
    "calc_contracts",
    "calc_partial_contracts",
    "generate_client_order_id",
    "place_futures_order",
]
