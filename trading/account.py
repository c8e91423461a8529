"""Account-level summary (equity, P&L against a starting balance, margin usage)."""

from __future__ import annotations

import logging

from precision_utils import finite_or_zero
from trading.base_trader import BaseFuturesTrader
from trading.models import AccountSummary

LOGGER = logging.getLogger(__name__)


def _pct(numerator: float, denominator: float) -> float:
    if denominator <= 0:
        return 0.0
    return finite_or_zero(numerator / denominator * 100)


def account_summary(trader: BaseFuturesTrader, initial_balance: float) -> AccountSummary:
    balance = trader.get_balance()
    positions = trader.get_positions()

    wallet = finite_or_zero(balance.wallet_balance)
    unrealized = finite_or_zero(balance.unrealized_pnl)
    total_equity = wallet + unrealized
    initial = finite_or_zero(initial_balance)
    total_pnl = total_equity - initial

    margin_used = 0.0
    for position in positions:
        if position.leverage <= 0:
            continue
        margin_used += position.abs_amount * position.mark_price / position.leverage
    margin_used = finite_or_zero(margin_used)

    summary = AccountSummary(
        total_equity=total_equity,
        wallet_balance=wallet,
        unrealized_pnl=unrealized,
        available_balance=finite_or_zero(balance.available_balance),
        total_pnl=total_pnl,
        total_pnl_pct=_pct(total_pnl, initial),
        initial_balance=initial,
        position_count=len(positions),
        margin_used=margin_used,
        margin_used_pct=_pct(margin_used, total_equity),
    )
    LOGGER.debug("account_summary exchange=%s summary=%s", trader.exchange, summary)
    return summary
