"""Client-side stop-loss / take-profit enforcement by polling.

Used by exchanges without native conditional orders on the chosen path
(Binance here). Conditions live in a :class:`StopLossTakeProfitBook`; an
:class:`SLTPMonitor` thread checks them every ``interval`` seconds and closes the
matching position through the trader when a trigger price is crossed.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from typing import Any, Dict, List, Optional, Tuple

from trading.models import LONG, SHORT, Position, SLTPCondition

LOGGER = logging.getLogger(__name__)

DEFAULT_LEVERAGE = 10
HIGH_LEVERAGE_THRESHOLD = 50
# (low, high) P&L% band inside which triggers are suppressed
DEAD_ZONE_NORMAL = (-10.0, 15.0)
DEAD_ZONE_HIGH_LEVERAGE = (-20.0, 30.0)


def calculate_pnl_percentage(unrealized_pnl: float, margin_used: float) -> float:
    if margin_used <= 0:
        return 0.0
    pct = unrealized_pnl / margin_used * 100
    if math.isnan(pct) or math.isinf(pct):
        return 0.0
    return pct


def calculate_margin_used(quantity: float, mark_price: float, leverage: float) -> float:
    quantity = abs(quantity)
    if leverage <= 0 or quantity <= 0:
        return 0.0
    return quantity * mark_price / leverage


def in_dead_zone(leverage: float, pnl_pct: float) -> bool:
    low, high = DEAD_ZONE_HIGH_LEVERAGE if leverage >= HIGH_LEVERAGE_THRESHOLD else DEAD_ZONE_NORMAL
    return low <= pnl_pct <= high


def stop_loss_hit(position_side: str, price: float, stop_price: float) -> bool:
    if stop_price <= 0:
        return False
    if position_side == LONG:
        return price <= stop_price
    return price >= stop_price


def take_profit_hit(position_side: str, price: float, take_profit_price: float) -> bool:
    if take_profit_price <= 0:
        return False
    if position_side == LONG:
        return price >= take_profit_price
    return price <= take_profit_price


class StopLossTakeProfitBook:
    """Lock-guarded map of ``(symbol, LONG|SHORT) -> SLTPCondition``."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._conditions: Dict[Tuple[str, str], SLTPCondition] = {}

    def _upsert(self, symbol: str, position_side: str, quantity: float) -> SLTPCondition:
        key = (symbol, position_side)
        cond = self._conditions.get(key)
        if cond is None:
            cond = SLTPCondition(symbol=symbol, position_side=position_side, quantity=quantity)
            self._conditions[key] = cond
        else:
            cond.quantity = quantity
            cond.active = True
        return cond

    def set_stop_loss(self, symbol: str, position_side: str, quantity: float, price: float) -> SLTPCondition:
        with self._lock:
            cond = self._upsert(symbol, position_side, quantity)
            cond.stop_loss_price = float(price)
            return SLTPCondition(**cond.to_dict())

    def set_take_profit(self, symbol: str, position_side: str, quantity: float, price: float) -> SLTPCondition:
        with self._lock:
            cond = self._upsert(symbol, position_side, quantity)
            cond.take_profit_price = float(price)
            return SLTPCondition(**cond.to_dict())

    def cancel_symbol(self, symbol: str) -> int:
        """Clear both prices and deactivate every condition for ``symbol``."""
        count = 0
        with self._lock:
            for (sym, _side), cond in self._conditions.items():
                if sym != symbol:
                    continue
                cond.stop_loss_price = 0.0
                cond.take_profit_price = 0.0
                cond.active = False
                count += 1
        return count

    def cancel_stop_loss(self, symbol: str) -> int:
        return self._clear_field(symbol, "stop_loss_price")

    def cancel_take_profit(self, symbol: str) -> int:
        return self._clear_field(symbol, "take_profit_price")

    def _clear_field(self, symbol: str, field: str) -> int:
        count = 0
        with self._lock:
            for (sym, _side), cond in self._conditions.items():
                if sym != symbol:
                    continue
                setattr(cond, field, 0.0)
                # nothing left to watch
                if cond.stop_loss_price <= 0 and cond.take_profit_price <= 0:
                    cond.active = False
                count += 1
        return count

    def deactivate(self, symbol: str, position_side: str) -> None:
        with self._lock:
            cond = self._conditions.get((symbol, position_side))
            if cond is not None:
                cond.active = False

    def restore(self, snapshot: SLTPCondition) -> None:
        """Put back a previously snapshotted condition, re-armed."""
        with self._lock:
            self._conditions[snapshot.key] = SLTPCondition(**{**snapshot.to_dict(), "active": True})

    def get(self, symbol: str, position_side: str) -> Optional[SLTPCondition]:
        with self._lock:
            cond = self._conditions.get((symbol, position_side))
            return SLTPCondition(**cond.to_dict()) if cond is not None else None

    def active_snapshot(self) -> List[SLTPCondition]:
        """Copies of the active conditions, safe to read without the lock."""
        with self._lock:
            return [SLTPCondition(**c.to_dict()) for c in self._conditions.values() if c.active]


class SLTPMonitor:
    def __init__(
        self,
        trader: Any,
        book: StopLossTakeProfitBook,
        *,
        interval: float = 2.0,
        rearm_on_failure: bool = False,
        price_source: Any = None,
    ) -> None:
        self.trader = trader
        self.book = book
        self.interval = float(interval)
        self.rearm_on_failure = rearm_on_failure
        self.price_source = price_source
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            LOGGER.warning("sltp_monitor_already_running stopping=%s", self._stop.is_set())
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run_loop, name="sltp-monitor", daemon=True)
        self._thread.start()
        LOGGER.info("sltp_monitor_started interval=%.1fs", self.interval)

    def stop(self, timeout: float = 5.0) -> None:
        if self._thread is None:
            return
        self._stop.set()
        self._thread.join(timeout=timeout)
        if self._thread.is_alive():
            LOGGER.warning("sltp_monitor_stop_timeout timeout=%.1fs", timeout)
            return
        self._thread = None
        LOGGER.info("sltp_monitor_stopped")

    def _run_loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.check_once()
            except Exception as exc:  # pragma: no cover - safety net
                LOGGER.exception("sltp_monitor_error error=%s", exc)
            # Sleep in small chunks so stop() is responsive.
            slept = 0.0
            while slept < self.interval and not self._stop.is_set():
                chunk = min(0.5, self.interval - slept)
                time.sleep(chunk)
                slept += chunk

    def _current_price(self, symbol: str) -> Optional[float]:
        if self.price_source is not None:
            price, ok = self.price_source.get_current_price(symbol)
            return float(price) if ok else None
        return self.trader.get_market_price(symbol)

    def check_once(self) -> int:
        """Evaluate every active condition once; returns how many were triggered."""
        conditions = self.book.active_snapshot()
        if not conditions:
            return 0

        try:
            positions = self.trader.get_positions()
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("sltp_positions_failed error=%s", exc)
            return 0

        by_key: Dict[Tuple[str, str], Position] = {
            (p.symbol, p.position_side): p for p in positions
        }

        triggered = 0
        for cond in conditions:
            position = by_key.get(cond.key)
            if position is None:
                continue
            try:
                price = self._current_price(cond.symbol)
            except Exception as exc:  # noqa: BLE001
                LOGGER.warning("sltp_price_failed symbol=%s error=%s", cond.symbol, exc)
                continue
            if price is None or price <= 0:
                LOGGER.warning("sltp_price_unavailable symbol=%s", cond.symbol)
                continue

            if self._evaluate(cond, position, price):
                triggered += 1
        return triggered

    def _evaluate(self, cond: SLTPCondition, position: Position, price: float) -> bool:
        leverage = position.leverage if position.leverage > 0 else DEFAULT_LEVERAGE
        mark_price = position.mark_price if position.mark_price > 0 else price
        margin = calculate_margin_used(position.position_amt, mark_price, leverage)
        pnl_pct = calculate_pnl_percentage(position.unrealized_pnl, margin)

        if in_dead_zone(leverage, pnl_pct):
            LOGGER.debug(
                "sltp_dead_zone symbol=%s side=%s leverage=%s pnl_pct=%.2f",
                cond.symbol,
                cond.position_side,
                leverage,
                pnl_pct,
            )
            return False

        kind = None
        if stop_loss_hit(cond.position_side, price, cond.stop_loss_price):
            kind = "stop_loss"
            trigger_price = cond.stop_loss_price
        elif take_profit_hit(cond.position_side, price, cond.take_profit_price):
            kind = "take_profit"
            trigger_price = cond.take_profit_price
        if kind is None:
            return False

        LOGGER.info(
            "sltp_triggered kind=%s symbol=%s side=%s price=%s trigger=%s leverage=%s pnl_pct=%.2f",
            kind,
            cond.symbol,
            cond.position_side,
            price,
            trigger_price,
            leverage,
            pnl_pct,
        )
        self.book.deactivate(cond.symbol, cond.position_side)
        try:
            if cond.position_side == LONG:
                self.trader.close_long(cond.symbol, cond.quantity)
            elif cond.position_side == SHORT:
                self.trader.close_short(cond.symbol, cond.quantity)
        except Exception as exc:  # noqa: BLE001
            LOGGER.error(
                "sltp_close_failed kind=%s symbol=%s side=%s error=%s",
                kind,
                cond.symbol,
                cond.position_side,
                exc,
            )
            if self.rearm_on_failure:
                self.book.restore(cond)
            return True

        LOGGER.info(
            "sltp_close_done kind=%s symbol=%s side=%s quantity=%s",
            kind,
            cond.symbol,
            cond.position_side,
            cond.quantity,
        )
        return True
