"""Gate.io USDT-settled futures trader over raw signed HTTP.

Contracts are integer counts; ``size`` is signed on the wire (positive buys,
negative sells) and closes are flagged ``reduce_only``. Stop-loss / take-profit
are native price-triggered orders (``/price_orders``), one per
``(contract, side, kind)``; re-setting one cancels the previous order first.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import requests

import config
from precision_utils import format_decimal_for_step, snap_down, to_float
from trading.base_trader import DEFAULT_TRADE_HISTORY_LIMIT, BaseFuturesTrader, generate_client_order_id
from trading.cache import TTLCache
from trading.errors import (
    GateAPIError,
    NoPosition,
    OrderTooSmall,
    PermissionDenied,
    TradeExecutionError,
    TransportError,
)
from trading.gate_signer import READ_METHODS, GateSigner, canonical_query, compact_json
from trading.models import (
    LONG,
    SHORT,
    Balance,
    BalanceFields,
    OrderResult,
    Position,
    PositionFields,
    TradeRecord,
    normalize_balance,
    normalize_position,
)

LOGGER = logging.getLogger(__name__)

GATE_CLIENT_ORDER_PREFIX = "t-"
GATE_CLIENT_ORDER_TAG = "pg"
GATE_CLIENT_ORDER_ID_MAX_LEN = 28
GATE_TRADE_HISTORY_MAX = 1000
CONTRACT_STEP = Decimal(1)

STOP_LOSS = "stop_loss"
TAKE_PROFIT = "take_profit"

# price_orders trigger rule
RULE_GTE = 1
RULE_LTE = 2

_PERMISSION_LABELS = {"FORBIDDEN", "INVALID_KEY", "READ_ONLY", "IP_FORBIDDEN"}

GATE_BALANCE_FIELDS = BalanceFields(
    wallet_balance="cross_margin_balance",
    available_balance="available",
    unrealized_pnl="cross_unrealised_pnl",
)
GATE_POSITION_FIELDS = PositionFields(
    symbol="contract",
    position_amt="size",
    entry_price="entry_price",
    mark_price="mark_price",
    unrealized_pnl="unrealised_pnl",
    leverage="leverage",
    liquidation_price="liq_price",
)


def to_gate_contract(symbol: str, settle: str = "usdt") -> str:
    """``BTCUSDT`` -> ``BTC_USDT``; already underscored names pass through."""
    text = symbol.strip().upper()
    if "_" in text:
        return text
    quote = settle.upper()
    if text.endswith(quote) and len(text) > len(quote):
        return f"{text[:-len(quote)]}_{quote}"
    return text


def trigger_rule(position_side: str, kind: str) -> int:
    """Long SL fires when price <= trigger, long TP when >=; shorts mirror."""
    if position_side == LONG:
        return RULE_LTE if kind == STOP_LOSS else RULE_GTE
    return RULE_GTE if kind == STOP_LOSS else RULE_LTE


def _is_not_found(exc: GateAPIError) -> bool:
    return "NOT_FOUND" in (exc.label or "").upper()


@dataclass
class _GateContractInfo:
    order_size_min: int
    quanto_multiplier: float
    fetched_at: float


class GateFuturesTrader(BaseFuturesTrader):
    exchange = "gate"

    def __init__(
        self,
        api_key: str,
        secret_key: str,
        *,
        base_url: str = "https://api.gateio.ws",
        api_prefix: str = "/api/v4",
        settle: str = "usdt",
        timeout: float = 10,
        session: Optional[requests.Session] = None,
        notifier: Any = None,
        price_source: Any = None,
        cache_ttl: float = 5.0,
        leverage_cooldown: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(notifier=notifier, price_source=price_source)
        self.settle = settle.lower()
        path_prefix = f"{api_prefix.rstrip('/')}/futures/{self.settle}"
        self.base_url = f"{base_url.rstrip('/')}{path_prefix}"
        self.signer = GateSigner(api_key, secret_key, path_prefix=path_prefix, clock=clock)
        self.timeout = timeout
        self.session = session or requests.Session()
        self.leverage_cooldown = leverage_cooldown
        self._sleep = sleep
        self._balance_cache: TTLCache[Balance] = TTLCache(cache_ttl, name="gate_balance")
        self._positions_cache: TTLCache[List[Position]] = TTLCache(cache_ttl, name="gate_positions")
        self._contracts: Dict[str, _GateContractInfo] = {}
        self._contracts_lock = threading.Lock()
        # (contract, LONG|SHORT, kind) -> price order id
        self._price_orders: Dict[Tuple[str, str, str], str] = {}
        self._price_orders_lock = threading.Lock()

    # ------------------------------------------------------------------ #
    # transport
    # ------------------------------------------------------------------ #
    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        body: Any = None,
    ) -> Any:
        method = method.upper()
        if method in READ_METHODS:
            query = canonical_query(params)
            payload = ""
        else:
            query = ""
            payload = compact_json(body) if body is not None else ""
        headers = self.signer.sign(method, path, params if method in READ_METHODS else None, payload)
        headers["User-Agent"] = config.REST_CONNECTION_CONFIG["user_agent"]

        url = f"{self.base_url}{path}"
        if query:
            url = f"{url}?{query}"
        try:
            response = self.session.request(
                method,
                url,
                data=payload.encode("utf-8") if payload else None,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise TransportError(f"{method} {url} failed: {exc}") from exc

        text = response.text or ""
        if not text.strip():
            data: Any = None
        else:
            try:
                data = response.json()
            except ValueError as exc:
                raise TransportError(f"Non-JSON response ({response.status_code}): {text}") from exc

        if response.status_code >= 400:
            label = str(data.get("label", "")) if isinstance(data, dict) else ""
            message = str(data.get("message", "")) if isinstance(data, dict) else text
            LOGGER.warning("gate_http_error method=%s path=%s status=%s payload=%s", method, path, response.status_code, data)
            if label.upper() in _PERMISSION_LABELS:
                raise PermissionDenied(f"Gate rejected the API key scope ({label}): {message}")
            raise GateAPIError(response.status_code, label, message, data)
        return data

    def contract(self, symbol: str) -> str:
        return to_gate_contract(symbol, self.settle)

    def close(self) -> None:
        self.session.close()

    # ------------------------------------------------------------------ #
    # account
    # ------------------------------------------------------------------ #
    def get_balance(self) -> Balance:
        return self._balance_cache.get_or_fetch(self._fetch_balance)

    def _fetch_balance(self) -> Balance:
        data = self._request("GET", "/accounts")
        if not isinstance(data, dict):
            raise TransportError(f"Gate accounts payload is not an object: {data!r}")
        balance = normalize_balance(data, GATE_BALANCE_FIELDS)
        LOGGER.debug("gate_balance payload=%s", balance)
        return balance

    def get_positions(self) -> List[Position]:
        return self._positions_cache.get_or_fetch(self._fetch_positions)

    def _fetch_positions(self) -> List[Position]:
        rows = self._request("GET", "/positions") or []
        positions = []
        for row in rows:
            position = normalize_position(row, GATE_POSITION_FIELDS)
            if position is not None:
                positions.append(position)
        return positions

    def _invalidate(self) -> None:
        self._balance_cache.invalidate()
        self._positions_cache.invalidate()

    def set_leverage(self, symbol: str, leverage: int) -> None:
        contract = self.contract(symbol)
        current = 0
        try:
            positions = self.get_positions()
        except TransportError as exc:
            LOGGER.warning("gate_leverage_probe_failed contract=%s error=%s", contract, exc)
            positions = []
        for position in positions:
            if position.symbol == contract and position.leverage > 0:
                current = int(position.leverage)
                break
        if current == leverage:
            LOGGER.info("gate_leverage_unchanged contract=%s leverage=%s", contract, leverage)
            return

        try:
            self._request("POST", f"/positions/{contract}/leverage", body={"leverage": str(leverage)})
        except TransportError as exc:
            # leverage only affects margin efficiency; keep trading
            LOGGER.warning("gate_leverage_failed contract=%s leverage=%s error=%s", contract, leverage, exc)
            return

        LOGGER.info("gate_leverage_set contract=%s leverage=%s cooldown=%ss", contract, leverage, self.leverage_cooldown)
        self._positions_cache.invalidate()
        if self.leverage_cooldown > 0:
            self._sleep(self.leverage_cooldown)

    def set_margin_mode(self, symbol: str, cross: bool) -> None:
        contract = self.contract(symbol)
        mode = "CROSS" if cross else "ISOLATED"
        try:
            self._request("POST", "/positions/cross_mode", body={"contract": contract, "mode": mode})
        except TransportError as exc:
            LOGGER.warning("gate_margin_failed contract=%s mode=%s error=%s", contract, mode, exc)
            return
        LOGGER.info("gate_margin_set contract=%s mode=%s", contract, mode)

    # ------------------------------------------------------------------ #
    # instrument metadata
    # ------------------------------------------------------------------ #
    def _get_contract_info(self, contract: str) -> _GateContractInfo:
        now = time.time()
        with self._contracts_lock:
            cached = self._contracts.get(contract)
        if cached and now - cached.fetched_at < config.INSTRUMENT_CACHE_TTL_SECONDS:
            return cached

        data = self._request("GET", f"/contracts/{contract}") or {}
        info = _GateContractInfo(
            order_size_min=max(1, int(to_float(data.get("order_size_min"), "order_size_min") or 1)),
            quanto_multiplier=to_float(data.get("quanto_multiplier"), "quanto_multiplier"),
            fetched_at=now,
        )
        with self._contracts_lock:
            self._contracts[contract] = info
        LOGGER.info(
            "gate_contract_cache contract=%s order_size_min=%s multiplier=%s",
            contract,
            info.order_size_min,
            info.quanto_multiplier,
        )
        return info

    def format_quantity(self, symbol: str, quantity: float) -> str:
        value = snap_down(abs(Decimal(str(quantity))), CONTRACT_STEP)
        return format_decimal_for_step(value, CONTRACT_STEP)

    def get_market_price(self, symbol: str) -> float:
        contract = self.contract(symbol)
        rows = self._request("GET", "/tickers", {"contract": contract}) or []
        ticker = next((row for row in rows if row.get("contract") == contract), rows[0] if rows else None)
        if not ticker:
            raise TradeExecutionError(f"Gate returned no ticker for {contract}")
        price = to_float(ticker.get("last"), "last") or to_float(ticker.get("mark_price"), "mark_price")
        if price <= 0:
            raise TradeExecutionError(f"Gate returned no price for {contract}: {ticker}")
        return price

    # ------------------------------------------------------------------ #
    # orders
    # ------------------------------------------------------------------ #
    def open_long(self, symbol: str, quantity: float, leverage: int) -> OrderResult:
        return self._open(symbol, LONG, quantity, leverage)

    def open_short(self, symbol: str, quantity: float, leverage: int) -> OrderResult:
        return self._open(symbol, SHORT, quantity, leverage)

    def close_long(self, symbol: str, quantity: float = 0) -> OrderResult:
        return self._close(symbol, LONG, quantity)

    def close_short(self, symbol: str, quantity: float = 0) -> OrderResult:
        return self._close(symbol, SHORT, quantity)

    def _open(self, symbol: str, position_side: str, quantity: float, leverage: int) -> OrderResult:
        contract = self.contract(symbol)
        try:
            self.cancel_all_orders(contract)
        except TradeExecutionError as exc:
            LOGGER.warning("gate_cancel_before_open_failed contract=%s error=%s", contract, exc)
        try:
            self.cancel_stop_orders(contract)
        except TradeExecutionError as exc:
            LOGGER.warning("gate_cancel_sltp_before_open_failed contract=%s error=%s", contract, exc)
        self.set_leverage(contract, leverage)

        size = int(self.format_quantity(contract, quantity))
        min_size = self._get_contract_info(contract).order_size_min
        if size <= 0 or size < min_size:
            raise OrderTooSmall(
                f"{contract} size {size} (from {quantity!r}) below minimum order size {min_size}"
            )

        signed_size = size if position_side == LONG else -size
        data = self._submit(contract, signed_size, reduce_only=False, action=f"open_{position_side.lower()}")
        self._invalidate()
        return self._order_result(contract, size, data)

    def _close(self, symbol: str, position_side: str, quantity: float) -> OrderResult:
        contract = self.contract(symbol)
        if not quantity:
            position = self.find_position(contract, position_side)
            if position is None:
                raise NoPosition(f"no {position_side} position for {contract}")
            quantity = position.abs_amount

        size = int(self.format_quantity(contract, quantity))
        if size <= 0:
            raise OrderTooSmall(f"{contract} close size rounds to 0 (from {quantity!r})")

        try:
            self.cancel_stop_orders(contract)
        except TradeExecutionError as exc:
            LOGGER.warning("gate_cancel_sltp_before_close_failed contract=%s error=%s", contract, exc)

        signed_size = -size if position_side == LONG else size
        data = self._submit(contract, signed_size, reduce_only=True, action=f"close_{position_side.lower()}")
        self._invalidate()
        try:
            self.cancel_all_orders(contract)
        except TradeExecutionError as exc:
            LOGGER.warning("gate_cancel_after_close_failed contract=%s error=%s", contract, exc)

        result = self._order_result(contract, size, data)
        self._notify_closed(contract, position_side, result)
        return result

    def _submit(self, contract: str, size: int, *, reduce_only: bool, action: str) -> Dict[str, Any]:
        client_order_id = generate_client_order_id(
            GATE_CLIENT_ORDER_PREFIX, GATE_CLIENT_ORDER_TAG, GATE_CLIENT_ORDER_ID_MAX_LEN
        )
        body = {
            "contract": contract,
            "size": size,
            "price": "0",
            "tif": "ioc",
            "text": client_order_id,
            "reduce_only": reduce_only,
        }
        LOGGER.info("gate_order_submit action=%s contract=%s size=%s reduce_only=%s text=%s", action, contract, size, reduce_only, client_order_id)
        try:
            data = self._request("POST", "/orders", body=body) or {}
        except TransportError as exc:
            raise TradeExecutionError(f"Gate {action} {contract} failed: {exc}") from exc
        LOGGER.info(
            "gate_order_done action=%s contract=%s order_id=%s status=%s finish_as=%s",
            action,
            contract,
            data.get("id"),
            data.get("status"),
            data.get("finish_as"),
        )
        return data

    def _order_result(self, contract: str, size: int, data: Dict[str, Any]) -> OrderResult:
        return OrderResult(
            order_id=str(data.get("id", "")),
            symbol=contract,
            status=str(data.get("finish_as") or data.get("status") or ""),
            quantity=float(size),
            price=self.best_price(contract, data.get("fill_price")),
            client_order_id=data.get("text"),
            raw=data,
        )

    # ------------------------------------------------------------------ #
    # SL / TP (native price-triggered orders)
    # ------------------------------------------------------------------ #
    def set_stop_loss(self, symbol: str, position_side: str, quantity: float, stop_price: float) -> None:
        self._set_price_order(symbol, position_side, quantity, stop_price, STOP_LOSS)

    def set_take_profit(self, symbol: str, position_side: str, quantity: float, take_profit_price: float) -> None:
        self._set_price_order(symbol, position_side, quantity, take_profit_price, TAKE_PROFIT)

    def _set_price_order(self, symbol: str, position_side: str, quantity: float, price: float, kind: str) -> str:
        contract = self.contract(symbol)
        side = self._check_position_side(position_side)
        size = int(self.format_quantity(contract, quantity))
        if size <= 0:
            raise OrderTooSmall(f"{contract} {kind} size rounds to 0 (from {quantity!r})")

        key = (contract, side, kind)
        with self._price_orders_lock:
            previous = self._price_orders.get(key)
        if previous:
            # stays tracked if the cancel fails so the next set retries it
            self._cancel_price_order(previous)
            with self._price_orders_lock:
                if self._price_orders.get(key) == previous:
                    del self._price_orders[key]

        body = {
            "initial": {
                "contract": contract,
                "size": -size if side == LONG else size,
                "price": "0",
                "tif": "ioc",
                "reduce_only": True,
            },
            "trigger": {
                "strategy_type": 0,
                "price_type": 0,
                "price": str(price),
                "rule": trigger_rule(side, kind),
                "expiration": 0,
            },
        }
        data = self._request("POST", "/price_orders", body=body) or {}
        order_id = str(data.get("id", ""))
        with self._price_orders_lock:
            self._price_orders[key] = order_id
        LOGGER.info(
            "gate_price_order_set kind=%s contract=%s side=%s size=%s price=%s order_id=%s replaced=%s",
            kind,
            contract,
            side,
            size,
            price,
            order_id,
            previous,
        )
        return order_id

    def _cancel_price_order(self, order_id: str) -> None:
        try:
            self._request("DELETE", f"/price_orders/{order_id}")
        except GateAPIError as exc:
            if not _is_not_found(exc):
                raise
            LOGGER.info("gate_price_order_gone order_id=%s", order_id)

    def _cancel_kind(self, symbol: str, kind: str) -> None:
        contract = self.contract(symbol)
        with self._price_orders_lock:
            keys = [k for k in self._price_orders if k[0] == contract and k[2] == kind]
            order_ids = [self._price_orders.pop(k) for k in keys]
        for order_id in order_ids:
            self._cancel_price_order(order_id)
        LOGGER.info("gate_price_orders_cancelled kind=%s contract=%s count=%s", kind, contract, len(order_ids))

    def cancel_stop_loss_orders(self, symbol: str) -> None:
        self._cancel_kind(symbol, STOP_LOSS)

    def cancel_take_profit_orders(self, symbol: str) -> None:
        self._cancel_kind(symbol, TAKE_PROFIT)

    def cancel_stop_orders(self, symbol: str) -> None:
        contract = self.contract(symbol)
        with self._price_orders_lock:
            for key in [k for k in self._price_orders if k[0] == contract]:
                del self._price_orders[key]
        try:
            self._request("DELETE", "/price_orders", {"contract": contract})
        except GateAPIError as exc:
            if not _is_not_found(exc):
                raise
        LOGGER.info("gate_price_orders_cancelled kind=all contract=%s", contract)

    def cancel_all_orders(self, symbol: str) -> None:
        contract = self.contract(symbol)
        try:
            self._request("DELETE", "/orders", {"contract": contract})
        except GateAPIError as exc:
            if not _is_not_found(exc):
                raise
        LOGGER.info("gate_open_orders_cancelled contract=%s", contract)

    # ------------------------------------------------------------------ #
    # history
    # ------------------------------------------------------------------ #
    def get_trade_history(self, symbol: str, limit: int = DEFAULT_TRADE_HISTORY_LIMIT) -> List[TradeRecord]:
        contract = self.contract(symbol)
        if limit <= 0:
            limit = DEFAULT_TRADE_HISTORY_LIMIT
        limit = min(limit, GATE_TRADE_HISTORY_MAX)
        rows = self._request("GET", "/my_trades", {"contract": contract, "limit": limit}) or []
        records = []
        for row in rows:
            size = to_float(row.get("size"), "size")
            records.append(
                TradeRecord(
                    symbol=str(row.get("contract") or contract),
                    side="buy" if size > 0 else "sell",
                    price=to_float(row.get("price"), "price"),
                    quantity=abs(size),
                    realized_pnl=0.0,
                    fee=to_float(row.get("fee"), "fee"),
                    timestamp_ms=int(to_float(row.get("create_time"), "create_time") * 1000),
                    order_id=str(row.get("order_id", "")),
                )
            )
        return records
