"""Single entry point turning an :class:`OrderIntent` into trader calls.

Strategy code calls :func:`place_futures_order` and never talks to an exchange
adapter directly, so the same intent works against Binance and Gate.io.
"""

from __future__ import annotations

import logging

from trading.base_trader import BaseFuturesTrader
from trading.errors import TradeExecutionError, UnsupportedAction
from trading.models import LONG, SHORT, FuturesAction, OrderIntent, OrderResult
from trading.sizing import calc_contracts, calc_partial_contracts

LOGGER = logging.getLogger(__name__)


def _coerce_action(action) -> FuturesAction:
    if isinstance(action, FuturesAction):
        return action
    try:
        return FuturesAction(str(action))
    except ValueError as exc:
        raise UnsupportedAction(f"unsupported futures action: {action!r}") from exc


def place_futures_order(
    trader: BaseFuturesTrader,
    intent: OrderIntent,
    current_position_contracts: int = 0,
) -> OrderResult:
    """
    Execute ``intent`` on ``trader``.

    ``current_position_contracts`` is the caller's signed view of the open
    position (positive long, negative short); it sizes close and partial-close
    intents. Stop-loss / take-profit are attached after the order; failing to
    attach them is logged and never unwinds the order.
    """
    action = _coerce_action(intent.action)
    symbol = intent.symbol

    if action in (FuturesAction.OPEN_LONG, FuturesAction.OPEN_SHORT):
        contracts = calc_contracts(intent.position_size_usd)
        if action is FuturesAction.OPEN_LONG:
            size, position_side = contracts, LONG
        else:
            size, position_side = -contracts, SHORT
        trader.set_leverage(symbol, intent.leverage)
        if position_side == LONG:
            result = trader.open_long(symbol, float(contracts), intent.leverage)
        else:
            result = trader.open_short(symbol, float(contracts), intent.leverage)

    elif action is FuturesAction.CLOSE_LONG:
        size, position_side = -abs(current_position_contracts), LONG
        result = trader.close_long(symbol, float(abs(size)))

    elif action is FuturesAction.CLOSE_SHORT:
        size, position_side = abs(current_position_contracts), SHORT
        result = trader.close_short(symbol, float(abs(size)))

    elif action is FuturesAction.PARTIAL_CLOSE:
        close_contracts = calc_partial_contracts(abs(current_position_contracts), intent.close_percentage)
        if current_position_contracts > 0:
            size, position_side = -close_contracts, LONG
            result = trader.close_long(symbol, float(close_contracts))
        else:
            size, position_side = close_contracts, SHORT
            result = trader.close_short(symbol, float(close_contracts))

    else:  # pragma: no cover - FuturesAction is closed
        raise UnsupportedAction(f"unsupported futures action: {action!r}")

    LOGGER.info(
        "futures_order_placed symbol=%s action=%s size=%s sl=%s tp=%s order_id=%s",
        symbol,
        action.value,
        size,
        intent.stop_loss,
        intent.take_profit,
        result.order_id,
    )

    sltp_quantity = float(abs(size))
    if intent.stop_loss > 0:
        try:
            trader.set_stop_loss(symbol, position_side, sltp_quantity, intent.stop_loss)
        except TradeExecutionError as exc:
            LOGGER.warning("futures_stop_loss_failed symbol=%s side=%s error=%s", symbol, position_side, exc)
    if intent.take_profit > 0:
        try:
            trader.set_take_profit(symbol, position_side, sltp_quantity, intent.take_profit)
        except TradeExecutionError as exc:
            LOGGER.warning("futures_take_profit_failed symbol=%s side=%s error=%s", symbol, position_side, exc)

    return result
