"""Binance USDT-M futures trader.

``BinanceFuturesClient`` is a thin RPC-style wrapper over the signed ``/fapi``
REST endpoints; ``BinanceFuturesTrader`` implements the trader contract on top
of it. Binance has no native SL/TP on this path, so stop-loss / take-profit are
tracked locally and enforced by a polling :class:`SLTPMonitor`.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import threading
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlencode

import requests

import config
from precision_utils import format_decimal_for_step, snap_down, to_float
from trading.base_trader import DEFAULT_TRADE_HISTORY_LIMIT, BaseFuturesTrader, generate_client_order_id
from trading.cache import TTLCache
from trading.errors import (
    BinanceAPIError,
    NoPosition,
    OrderTooSmall,
    PermissionDenied,
    TradeExecutionError,
    TransportError,
)
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
from trading.sltp_monitor import SLTPMonitor, StopLossTakeProfitBook

LOGGER = logging.getLogger(__name__)

BINANCE_CLIENT_ORDER_PREFIX = "x-"
BINANCE_BROKER_TAG = "KzrpZaP9"
BINANCE_CLIENT_ORDER_ID_MAX_LEN = 32
BINANCE_TRADE_HISTORY_MAX = 1000
FALLBACK_QUANTITY_STEP = Decimal("0.001")

# Binance error codes
_PERMISSION_CODES = {-2014, -2015}
_MULTI_ASSETS_CODE = -4168

BINANCE_BALANCE_FIELDS = BalanceFields(
    wallet_balance="totalWalletBalance",
    available_balance="availableBalance",
    unrealized_pnl="totalUnrealizedProfit",
)
BINANCE_POSITION_FIELDS = PositionFields(
    symbol="symbol",
    position_amt="positionAmt",
    entry_price="entryPrice",
    mark_price="markPrice",
    unrealized_pnl="unRealizedProfit",
    leverage="leverage",
    liquidation_price="liquidationPrice",
)


def _hmac_sha256_hexdigest(secret: str, message: str) -> str:
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def _is_permission_error(code: Optional[int], msg: str) -> bool:
    text = (msg or "").lower()
    return code in _PERMISSION_CODES or "unified" in text or "portfolio" in text


@dataclass
class _BinanceSymbolFilters:
    step_size: Decimal
    min_qty: Decimal
    min_notional: Optional[Decimal]
    quantity_precision: Optional[int]
    fetched_at: float

    @property
    def effective_step(self) -> Decimal:
        step = self.step_size
        if self.quantity_precision is not None:
            precision_step = Decimal(1).scaleb(-self.quantity_precision) if self.quantity_precision > 0 else Decimal(1)
            if precision_step > step:
                step = precision_step
        return step


class BinanceFuturesClient:
    """Signed ``/fapi`` calls. Every method returns the decoded JSON payload."""

    def __init__(
        self,
        api_key: str,
        secret_key: str,
        *,
        base_url: str = "https://fapi.binance.com",
        recv_window: int = 5000,
        timeout: float = 10,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_key = api_key
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.recv_window = recv_window
        self.timeout = timeout
        self.session = session or requests.Session()
        self.time_offset_ms = 0

    def _timestamp(self) -> str:
        return str(int(time.time() * 1000) - self.time_offset_ms)

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        *,
        signed: bool = True,
    ) -> Any:
        items = [(k, str(v)) for k, v in (params or {}).items() if v is not None]
        headers = {"User-Agent": config.REST_CONNECTION_CONFIG["user_agent"]}
        if signed:
            items.append(("timestamp", self._timestamp()))
            items.append(("recvWindow", str(self.recv_window)))
            items.append(("signature", _hmac_sha256_hexdigest(self.secret_key, urlencode(items))))
            headers["X-MBX-APIKEY"] = self.api_key

        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, params=items, headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            raise TransportError(f"{method} {url} failed: {exc}") from exc
        try:
            data = response.json()
        except ValueError as exc:
            raise TransportError(f"Non-JSON response ({response.status_code}): {response.text}") from exc

        code = data.get("code") if isinstance(data, dict) else None
        failed = response.status_code >= 400 or (isinstance(code, int) and code < 0)
        if failed:
            msg = str(data.get("msg", "")) if isinstance(data, dict) else str(data)
            LOGGER.warning("binance_http_error path=%s status=%s payload=%s", path, response.status_code, data)
            if _is_permission_error(code, msg):
                raise PermissionDenied(f"Binance rejected the API key scope ({code}): {msg}")
            raise BinanceAPIError(response.status_code, code, msg, data)
        return data

    # public
    def server_time(self) -> Dict[str, Any]:
        return self._request("GET", "/fapi/v1/time", signed=False)

    def exchange_info(self, symbol: str) -> Dict[str, Any]:
        return self._request("GET", "/fapi/v1/exchangeInfo", {"symbol": symbol}, signed=False)

    def ticker_price(self, symbol: str) -> Dict[str, Any]:
        return self._request("GET", "/fapi/v1/ticker/price", {"symbol": symbol}, signed=False)

    # signed
    def account(self) -> Dict[str, Any]:
        return self._request("GET", "/fapi/v2/account")

    def position_risk(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/fapi/v2/positionRisk")

    def change_leverage(self, symbol: str, leverage: int) -> Dict[str, Any]:
        return self._request("POST", "/fapi/v1/leverage", {"symbol": symbol, "leverage": leverage})

    def change_margin_type(self, symbol: str, margin_type: str) -> Dict[str, Any]:
        return self._request("POST", "/fapi/v1/marginType", {"symbol": symbol, "marginType": margin_type})

    def change_position_mode(self, dual_side: bool) -> Dict[str, Any]:
        return self._request(
            "POST", "/fapi/v1/positionSide/dual", {"dualSidePosition": "true" if dual_side else "false"}
        )

    def new_order(
        self,
        symbol: str,
        side: str,
        position_side: str,
        quantity: str,
        client_order_id: str,
    ) -> Dict[str, Any]:
        params = {
            "symbol": symbol,
            "side": side,
            "positionSide": position_side,
            "type": "MARKET",
            "quantity": quantity,
            "newClientOrderId": client_order_id,
            "newOrderRespType": "RESULT",
        }
        return self._request("POST", "/fapi/v1/order", params)

    def cancel_all_open_orders(self, symbol: str) -> Dict[str, Any]:
        return self._request("DELETE", "/fapi/v1/allOpenOrders", {"symbol": symbol})

    def user_trades(self, symbol: str, limit: int) -> List[Dict[str, Any]]:
        return self._request("GET", "/fapi/v1/userTrades", {"symbol": symbol, "limit": limit})


class BinanceFuturesTrader(BaseFuturesTrader):
    exchange = "binance"

    def __init__(
        self,
        client: BinanceFuturesClient,
        *,
        notifier: Any = None,
        price_source: Any = None,
        cache_ttl: float = 5.0,
        leverage_cooldown: float = 5.0,
        default_min_notional: float = 10.0,
        poll_interval: float = 2.0,
        rearm_on_failed_close: bool = False,
        enable_hedge_mode: bool = True,
        sync_time: bool = True,
        start_monitor: bool = True,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        super().__init__(notifier=notifier, price_source=price_source)
        self.client = client
        self.leverage_cooldown = leverage_cooldown
        self.default_min_notional = Decimal(str(default_min_notional))
        self._sleep = sleep
        self._balance_cache: TTLCache[Balance] = TTLCache(cache_ttl, name="binance_balance")
        self._positions_cache: TTLCache[List[Position]] = TTLCache(cache_ttl, name="binance_positions")
        self._filters: Dict[str, _BinanceSymbolFilters] = {}
        self._filters_lock = threading.Lock()

        self.sltp_book = StopLossTakeProfitBook()
        self.monitor = SLTPMonitor(
            self,
            self.sltp_book,
            interval=poll_interval,
            rearm_on_failure=rearm_on_failed_close,
        )

        if sync_time:
            self.sync_server_time()
        if enable_hedge_mode:
            self.enable_hedge_mode()
        if start_monitor:
            self.monitor.start()

    # ------------------------------------------------------------------ #
    # start-up
    # ------------------------------------------------------------------ #
    def sync_server_time(self) -> None:
        try:
            server_ms = int(self.client.server_time()["serverTime"])
        except (TradeExecutionError, KeyError, TypeError, ValueError) as exc:
            LOGGER.warning("binance_time_sync_failed error=%s", exc)
            return
        offset = int(time.time() * 1000) - server_ms
        self.client.time_offset_ms = offset
        LOGGER.info("binance_time_sync offset_ms=%s", offset)

    def enable_hedge_mode(self) -> None:
        try:
            self.client.change_position_mode(True)
        except BinanceAPIError as exc:
            if "No need to change position side" in exc.msg:
                LOGGER.info("binance_hedge_mode already_enabled=1")
                return
            LOGGER.warning("binance_hedge_mode_failed error=%s", exc)
        except TradeExecutionError as exc:
            LOGGER.warning("binance_hedge_mode_failed error=%s", exc)
        else:
            LOGGER.info("binance_hedge_mode enabled=1")

    def close(self) -> None:
        self.monitor.stop()
        self.client.session.close()

    # ------------------------------------------------------------------ #
    # account
    # ------------------------------------------------------------------ #
    def get_balance(self) -> Balance:
        return self._balance_cache.get_or_fetch(self._fetch_balance)

    def _fetch_balance(self) -> Balance:
        data = self.client.account()
        balance = normalize_balance(data, BINANCE_BALANCE_FIELDS)
        LOGGER.debug("binance_balance payload=%s", balance)
        return balance

    def get_positions(self) -> List[Position]:
        return self._positions_cache.get_or_fetch(self._fetch_positions)

    def _fetch_positions(self) -> List[Position]:
        rows = self.client.position_risk()
        positions = []
        for row in rows or []:
            position = normalize_position(row, BINANCE_POSITION_FIELDS)
            if position is not None:
                positions.append(position)
        return positions

    def _invalidate(self) -> None:
        self._balance_cache.invalidate()
        self._positions_cache.invalidate()

    def set_leverage(self, symbol: str, leverage: int) -> None:
        current = 0
        try:
            positions = self.get_positions()
        except TransportError as exc:
            LOGGER.warning("binance_leverage_probe_failed symbol=%s error=%s", symbol, exc)
            positions = []
        for position in positions:
            if position.symbol == symbol and position.leverage > 0:
                current = int(position.leverage)
                break
        if current == leverage:
            LOGGER.info("binance_leverage_unchanged symbol=%s leverage=%s", symbol, leverage)
            return

        try:
            self.client.change_leverage(symbol, leverage)
        except BinanceAPIError as exc:
            if "No need to change" in exc.msg:
                LOGGER.info("binance_leverage_unchanged symbol=%s leverage=%s", symbol, leverage)
                return
            LOGGER.warning("binance_leverage_failed symbol=%s leverage=%s error=%s", symbol, leverage, exc)
            return
        except TransportError as exc:
            LOGGER.warning("binance_leverage_failed symbol=%s leverage=%s error=%s", symbol, leverage, exc)
            return

        LOGGER.info("binance_leverage_set symbol=%s leverage=%s cooldown=%ss", symbol, leverage, self.leverage_cooldown)
        self._positions_cache.invalidate()
        if self.leverage_cooldown > 0:
            self._sleep(self.leverage_cooldown)

    def set_margin_mode(self, symbol: str, cross: bool) -> None:
        margin_type = "CROSSED" if cross else "ISOLATED"
        try:
            self.client.change_margin_type(symbol, margin_type)
        except BinanceAPIError as exc:
            msg = exc.msg
            if "No need to change margin type" in msg:
                LOGGER.info("binance_margin_unchanged symbol=%s margin=%s", symbol, margin_type)
            elif "Margin type cannot be changed if there exists position" in msg:
                LOGGER.warning("binance_margin_locked_by_position symbol=%s margin=%s", symbol, margin_type)
            elif "Multi-Assets mode" in msg or exc.code == _MULTI_ASSETS_CODE:
                LOGGER.warning("binance_margin_multi_assets symbol=%s forced=CROSSED", symbol)
            else:
                LOGGER.warning("binance_margin_failed symbol=%s margin=%s error=%s", symbol, margin_type, exc)
            return
        except TransportError as exc:
            LOGGER.warning("binance_margin_failed symbol=%s margin=%s error=%s", symbol, margin_type, exc)
            return
        LOGGER.info("binance_margin_set symbol=%s margin=%s", symbol, margin_type)

    # ------------------------------------------------------------------ #
    # instrument metadata
    # ------------------------------------------------------------------ #
    def _get_symbol_filters(self, symbol: str) -> _BinanceSymbolFilters:
        now = time.time()
        with self._filters_lock:
            cached = self._filters.get(symbol)
        if cached and now - cached.fetched_at < config.INSTRUMENT_CACHE_TTL_SECONDS:
            return cached

        data = self.client.exchange_info(symbol)
        symbols = data.get("symbols") or []
        symbol_info = next((item for item in symbols if item.get("symbol") == symbol), None)
        if symbol_info is None:
            raise TradeExecutionError(f"Binance exchange info did not include requested symbol {symbol}")

        filters = symbol_info.get("filters", [])
        lot_filter = next((f for f in filters if f.get("filterType") == "LOT_SIZE"), None)
        if lot_filter is None:
            raise TradeExecutionError(f"Binance exchange info missing LOT_SIZE filter for {symbol}")
        notional_filter = next((f for f in filters if f.get("filterType") == "MIN_NOTIONAL"), None)
        min_notional: Optional[Decimal] = None
        if notional_filter is not None:
            raw_min_notional = notional_filter.get("notional") or notional_filter.get("minNotional")
            if raw_min_notional is not None:
                min_notional = Decimal(str(raw_min_notional))

        precision_raw = symbol_info.get("quantityPrecision")
        try:
            quantity_precision = int(precision_raw) if precision_raw is not None else None
        except (TypeError, ValueError):
            quantity_precision = None

        result = _BinanceSymbolFilters(
            step_size=Decimal(str(lot_filter["stepSize"])),
            min_qty=Decimal(str(lot_filter["minQty"])),
            min_notional=min_notional,
            quantity_precision=quantity_precision,
            fetched_at=now,
        )
        with self._filters_lock:
            self._filters[symbol] = result
        LOGGER.info(
            "binance_filter_cache symbol=%s step=%s min_qty=%s min_notional=%s precision=%s",
            symbol,
            result.step_size,
            result.min_qty,
            result.min_notional,
            result.quantity_precision,
        )
        return result

    def format_quantity(self, symbol: str, quantity: float) -> str:
        try:
            step = self._get_symbol_filters(symbol).effective_step
        except TradeExecutionError as exc:
            LOGGER.warning("binance_filters_unavailable symbol=%s error=%s fallback_step=%s", symbol, exc, FALLBACK_QUANTITY_STEP)
            step = FALLBACK_QUANTITY_STEP
        value = snap_down(Decimal(str(quantity)), step)
        return format_decimal_for_step(value, step)

    def _min_qty(self, symbol: str) -> Decimal:
        try:
            return self._get_symbol_filters(symbol).min_qty
        except TradeExecutionError:
            return Decimal(0)

    def _min_notional(self, symbol: str) -> Decimal:
        try:
            filters = self._get_symbol_filters(symbol)
        except TradeExecutionError:
            return self.default_min_notional
        return filters.min_notional if filters.min_notional is not None else self.default_min_notional

    def get_market_price(self, symbol: str) -> float:
        data = self.client.ticker_price(symbol)
        price = to_float(data.get("price"), "price")
        if price <= 0:
            raise TradeExecutionError(f"Binance returned no price for {symbol}: {data}")
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
        try:
            self.cancel_all_orders(symbol)
        except TradeExecutionError as exc:
            LOGGER.warning("binance_cancel_before_open_failed symbol=%s error=%s", symbol, exc)
        self.cancel_stop_orders(symbol)
        self.set_leverage(symbol, leverage)

        quantity_str = self.format_quantity(symbol, quantity)
        quantity_val = float(quantity_str)
        if quantity_val <= 0:
            raise OrderTooSmall(
                f"{symbol} quantity {quantity!r} rounds to {quantity_str}; increase the position size"
            )
        min_qty = self._min_qty(symbol)
        if Decimal(quantity_str) < min_qty:
            raise OrderTooSmall(f"{symbol} quantity {quantity_str} below minimum quantity {min_qty}")
        price = self.get_market_price(symbol)
        notional = Decimal(quantity_str) * Decimal(str(price))
        min_notional = self._min_notional(symbol)
        if notional < min_notional:
            raise OrderTooSmall(
                f"{symbol} order notional {notional:.2f} USDT below minimum {min_notional} USDT "
                f"(quantity={quantity_str}, price={price})"
            )

        side = "BUY" if position_side == LONG else "SELL"
        data = self._submit(symbol, side, position_side, quantity_str, action=f"open_{position_side.lower()}")
        self._invalidate()
        return self._order_result(symbol, quantity_val, data)

    def _close(self, symbol: str, position_side: str, quantity: float) -> OrderResult:
        if not quantity:
            position = self.find_position(symbol, position_side)
            if position is None:
                raise NoPosition(f"no {position_side} position for {symbol}")
            quantity = position.abs_amount

        quantity_str = self.format_quantity(symbol, quantity)
        quantity_val = float(quantity_str)
        if quantity_val <= 0:
            raise OrderTooSmall(f"{symbol} close quantity {quantity!r} rounds to {quantity_str}")

        self.cancel_stop_orders(symbol)
        side = "SELL" if position_side == LONG else "BUY"
        data = self._submit(symbol, side, position_side, quantity_str, action=f"close_{position_side.lower()}")
        self._invalidate()
        try:
            self.cancel_all_orders(symbol)
        except TradeExecutionError as exc:
            LOGGER.warning("binance_cancel_after_close_failed symbol=%s error=%s", symbol, exc)

        result = self._order_result(symbol, quantity_val, data)
        self._notify_closed(symbol, position_side, result)
        return result

    def _submit(self, symbol: str, side: str, position_side: str, quantity: str, *, action: str) -> Dict[str, Any]:
        client_order_id = generate_client_order_id(
            BINANCE_CLIENT_ORDER_PREFIX, BINANCE_BROKER_TAG, BINANCE_CLIENT_ORDER_ID_MAX_LEN
        )
        LOGGER.info(
            "binance_order_submit action=%s symbol=%s side=%s position_side=%s quantity=%s client_order_id=%s",
            action,
            symbol,
            side,
            position_side,
            quantity,
            client_order_id,
        )
        try:
            data = self.client.new_order(symbol, side, position_side, quantity, client_order_id)
        except TransportError as exc:
            raise TradeExecutionError(f"Binance {action} {symbol} failed: {exc}") from exc
        LOGGER.info(
            "binance_order_done action=%s symbol=%s order_id=%s status=%s",
            action,
            symbol,
            data.get("orderId"),
            data.get("status"),
        )
        return data

    def _order_result(self, symbol: str, quantity: float, data: Dict[str, Any]) -> OrderResult:
        return OrderResult(
            order_id=str(data.get("orderId", "")),
            symbol=str(data.get("symbol") or symbol),
            status=str(data.get("status", "")),
            quantity=quantity,
            price=self.best_price(symbol, data.get("avgPrice")),
            client_order_id=data.get("clientOrderId"),
            raw=data,
        )

    # ------------------------------------------------------------------ #
    # SL / TP (local conditions)
    # ------------------------------------------------------------------ #
    def set_stop_loss(self, symbol: str, position_side: str, quantity: float, stop_price: float) -> None:
        side = self._check_position_side(position_side)
        self.sltp_book.set_stop_loss(symbol, side, quantity, stop_price)
        LOGGER.info("binance_stop_loss_set symbol=%s side=%s quantity=%s price=%s", symbol, side, quantity, stop_price)

    def set_take_profit(self, symbol: str, position_side: str, quantity: float, take_profit_price: float) -> None:
        side = self._check_position_side(position_side)
        self.sltp_book.set_take_profit(symbol, side, quantity, take_profit_price)
        LOGGER.info(
            "binance_take_profit_set symbol=%s side=%s quantity=%s price=%s", symbol, side, quantity, take_profit_price
        )

    def cancel_stop_loss_orders(self, symbol: str) -> None:
        count = self.sltp_book.cancel_stop_loss(symbol)
        LOGGER.info("binance_stop_loss_cancelled symbol=%s count=%s", symbol, count)

    def cancel_take_profit_orders(self, symbol: str) -> None:
        count = self.sltp_book.cancel_take_profit(symbol)
        LOGGER.info("binance_take_profit_cancelled symbol=%s count=%s", symbol, count)

    def cancel_stop_orders(self, symbol: str) -> None:
        count = self.sltp_book.cancel_symbol(symbol)
        LOGGER.info("binance_sltp_cancelled symbol=%s count=%s", symbol, count)

    def cancel_all_orders(self, symbol: str) -> None:
        self.client.cancel_all_open_orders(symbol)
        LOGGER.info("binance_open_orders_cancelled symbol=%s", symbol)

    # ------------------------------------------------------------------ #
    # history
    # ------------------------------------------------------------------ #
    def get_trade_history(self, symbol: str, limit: int = DEFAULT_TRADE_HISTORY_LIMIT) -> List[TradeRecord]:
        if limit <= 0:
            limit = DEFAULT_TRADE_HISTORY_LIMIT
        limit = min(limit, BINANCE_TRADE_HISTORY_MAX)
        rows = self.client.user_trades(symbol, limit)
        return [
            TradeRecord(
                symbol=str(row.get("symbol") or symbol),
                side=str(row.get("side", "")),
                price=to_float(row.get("price"), "price"),
                quantity=to_float(row.get("qty"), "qty"),
                realized_pnl=to_float(row.get("realizedPnl"), "realizedPnl"),
                fee=to_float(row.get("commission"), "commission"),
                timestamp_ms=int(to_float(row.get("time"), "time")),
                order_id=str(row.get("orderId", "")),
            )
            for row in rows or []
        ]
