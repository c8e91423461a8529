"""Credential resolution and trader construction from ``config``."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Type

import config
from trading.base_trader import BaseFuturesTrader
from trading.binance_futures import BinanceFuturesClient, BinanceFuturesTrader
from trading.errors import TradeExecutionError
from trading.gate_futures import GateFuturesTrader
from trading.notifier import NullNotifier, TelegramNotifier

LOGGER = logging.getLogger(__name__)

SUPPORTED_EXCHANGES = ("binance", "gate")


@dataclass
class BinanceCredentials:
    api_key: str
    secret_key: str


@dataclass
class GateCredentials:
    api_key: str
    secret_key: str


def _require_credentials(name: str) -> Any:
    value = config._get_private(name)
    if not value:
        raise TradeExecutionError(f"Missing credential `{name}` in config_private.py or environment")
    return value


def _resolve_with_mapping(
    credential_cls: Type[Any],
    mapping: Dict[str, str],
    overrides: Dict[str, Optional[str]],
) -> Any:
    resolved = {}
    for field, config_attr in mapping.items():
        value = overrides.get(field)
        if value is None:
            resolved[field] = _require_credentials(config_attr)
        else:
            resolved[field] = value
    return credential_cls(**resolved)


def resolve_binance_credentials(api_key: Optional[str] = None, secret_key: Optional[str] = None) -> BinanceCredentials:
    return _resolve_with_mapping(
        BinanceCredentials,
        {"api_key": config.BINANCE_API_KEY_ATTR, "secret_key": config.BINANCE_SECRET_KEY_ATTR},
        {"api_key": api_key, "secret_key": secret_key},
    )


def resolve_gate_credentials(api_key: Optional[str] = None, secret_key: Optional[str] = None) -> GateCredentials:
    return _resolve_with_mapping(
        GateCredentials,
        {"api_key": config.GATE_API_KEY_ATTR, "secret_key": config.GATE_SECRET_KEY_ATTR},
        {"api_key": api_key, "secret_key": secret_key},
    )


def default_notifier() -> Any:
    return TelegramNotifier.from_config() or NullNotifier()


def create_trader(
    exchange: str,
    *,
    api_key: Optional[str] = None,
    secret_key: Optional[str] = None,
    notifier: Any = None,
    price_source: Any = None,
    start_monitor: bool = True,
    enable_hedge_mode: Optional[bool] = None,
) -> BaseFuturesTrader:
    """Build a trader handle for ``exchange`` with settings from ``config``.

    ``enable_hedge_mode`` overrides ``config.BINANCE_ENABLE_HEDGE_MODE``; pass ``False``
    for read-only callers so the account position mode is left untouched.
    """
    name = (exchange or "").strip().lower()
    if notifier is None:
        notifier = default_notifier()
    timeout = config.REST_CONNECTION_CONFIG["timeout"]

    if name == "binance":
        creds = resolve_binance_credentials(api_key, secret_key)
        client = BinanceFuturesClient(
            creds.api_key,
            creds.secret_key,
            base_url=config.BINANCE_FAPI_BASE_URL,
            recv_window=config.BINANCE_RECV_WINDOW_MS,
            timeout=timeout,
        )
        trader: BaseFuturesTrader = BinanceFuturesTrader(
            client,
            notifier=notifier,
            price_source=price_source,
            cache_ttl=config.ACCOUNT_CACHE_TTL_SECONDS,
            leverage_cooldown=config.LEVERAGE_COOLDOWN_SECONDS,
            default_min_notional=config.BINANCE_DEFAULT_MIN_NOTIONAL,
            poll_interval=config.SLTP_POLL_INTERVAL_SECONDS,
            rearm_on_failed_close=config.SLTP_REARM_ON_FAILED_CLOSE,
            enable_hedge_mode=config.BINANCE_ENABLE_HEDGE_MODE if enable_hedge_mode is None else enable_hedge_mode,
            start_monitor=start_monitor,
        )
    elif name == "gate":
        creds = resolve_gate_credentials(api_key, secret_key)
        trader = GateFuturesTrader(
            creds.api_key,
            creds.secret_key,
            base_url=config.GATE_API_BASE_URL,
            api_prefix=config.GATE_API_PREFIX,
            settle=config.GATE_SETTLE,
            timeout=timeout,
            notifier=notifier,
            price_source=price_source,
            cache_ttl=config.ACCOUNT_CACHE_TTL_SECONDS,
            leverage_cooldown=config.LEVERAGE_COOLDOWN_SECONDS,
        )
    else:
        raise TradeExecutionError(
            f"Unsupported exchange {exchange!r}; expected one of {', '.join(SUPPORTED_EXCHANGES)}"
        )

    LOGGER.info("trader_created exchange=%s notifier=%s", name, type(notifier).__name__)
    return trader
