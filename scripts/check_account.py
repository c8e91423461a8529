#!/usr/bin/env python3
"""
Print balance, open positions and an account summary for one exchange.

Read-only: no orders are placed, the SL/TP monitor is not started and the
Binance position mode is left as is.

Usage:
  python scripts/check_account.py --exchange gate --initial-balance 1000
  python scripts/check_account.py --exchange binance --json
"""

from __future__ import annotations

import argparse
import json
import logging

from trading.account import account_summary
from trading.errors import TradeExecutionError
from trading.factory import SUPPORTED_EXCHANGES, create_trader
from trading.notifier import NullNotifier


def main() -> int:
    parser = argparse.ArgumentParser(description="Show futures account state")
    parser.add_argument("--exchange", choices=SUPPORTED_EXCHANGES, required=True)
    parser.add_argument("--initial-balance", type=float, default=0.0, help="baseline for P&L %%")
    parser.add_argument("--json", action="store_true", help="emit one JSON document")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    logger = logging.getLogger("check_account")

    try:
        trader = create_trader(
            args.exchange, notifier=NullNotifier(), start_monitor=False, enable_hedge_mode=False
        )
    except TradeExecutionError as exc:
        logger.error("trader init failed: %s", exc)
        return 1

    try:
        balance = trader.get_balance()
        positions = trader.get_positions()
        summary = account_summary(trader, args.initial_balance)
    except TradeExecutionError as exc:
        logger.error("account query failed exchange=%s error=%s", args.exchange, exc)
        return 1
    finally:
        trader.close()

    if args.json:
        doc = {
            "exchange": args.exchange,
            "balance": balance.as_dict(),
            "positions": [p.as_dict() for p in positions],
            "summary": summary.as_dict(),
        }
        print(json.dumps(doc, indent=2))
        return 0

    logger.info(
        "balance wallet=%.4f available=%.4f upnl=%.4f",
        balance.wallet_balance,
        balance.available_balance,
        balance.unrealized_pnl,
    )
    for p in positions:
        logger.info(
            "position symbol=%s side=%s amt=%s entry=%s mark=%s upnl=%.4f lev=%s liq=%s",
            p.symbol,
            p.side,
            p.position_amt,
            p.entry_price,
            p.mark_price,
            p.unrealized_pnl,
            p.leverage,
            p.liquidation_price,
        )
    logger.info(
        "summary equity=%.4f pnl=%.4f pnl_pct=%.2f positions=%s margin_used=%.4f margin_pct=%.2f",
        summary.total_equity,
        summary.total_pnl,
        summary.total_pnl_pct,
        summary.position_count,
        summary.margin_used,
        summary.margin_used_pct,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
