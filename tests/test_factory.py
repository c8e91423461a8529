from unittest import mock

import pytest

import config
from trading import factory
from trading.errors import TradeExecutionError
from trading.gate_futures import GateFuturesTrader
from trading.notifier import NullNotifier


@pytest.fixture(autouse=True)
def no_private_config(monkeypatch):
    monkeypatch.setattr(config, "config_private", None)
    for name in ("BN_API_KEY", "BN_SECRET_KEY", "GATE_API_KEY", "GATE_SECRET_KEY"):
        monkeypatch.delenv(name, raising=False)


def test_missing_credentials_raise():
    with pytest.raises(TradeExecutionError) as excinfo:
        factory.resolve_gate_credentials()
    assert "GATE_API_KEY" in str(excinfo.value)


def test_credentials_from_environment(monkeypatch):
    monkeypatch.setenv("BN_API_KEY", "env-key")
    monkeypatch.setenv("BN_SECRET_KEY", "env-secret")
    creds = factory.resolve_binance_credentials()
    assert creds.api_key == "env-key"
    assert creds.secret_key == "env-secret"


def test_explicit_credentials_override(monkeypatch):
    monkeypatch.setenv("GATE_SECRET_KEY", "env-secret")
    creds = factory.resolve_gate_credentials(api_key="explicit")
    assert creds.api_key == "explicit"
    assert creds.secret_key == "env-secret"


def test_create_gate_trader():
    notifier = NullNotifier()
    trader = factory.create_trader("Gate", api_key="k", secret_key="s", notifier=notifier)
    try:
        assert isinstance(trader, GateFuturesTrader)
        assert trader.notifier is notifier
        assert trader.base_url.endswith("/api/v4/futures/usdt")
    finally:
        trader.close()


def test_create_binance_trader_passes_config(monkeypatch):
    built = mock.Mock()
    monkeypatch.setattr(factory, "BinanceFuturesTrader", built)

    factory.create_trader("binance", api_key="k", secret_key="s", notifier=NullNotifier(), start_monitor=False)

    kwargs = built.call_args[1]
    assert kwargs["start_monitor"] is False
    assert kwargs["poll_interval"] == config.SLTP_POLL_INTERVAL_SECONDS
    assert kwargs["default_min_notional"] == config.BINANCE_DEFAULT_MIN_NOTIONAL
    assert built.call_args[0][0].api_key == "k"


def test_unknown_exchange():
    with pytest.raises(TradeExecutionError):
        factory.create_trader("kraken", api_key="k", secret_key="s", notifier=NullNotifier())


def test_hedge_mode_override(monkeypatch):
    built = mock.Mock()
    monkeypatch.setattr(factory, "BinanceFuturesTrader", built)
    monkeypatch.setattr(config, "BINANCE_ENABLE_HEDGE_MODE", True)

    factory.create_trader("binance", api_key="k", secret_key="s", notifier=NullNotifier(), start_monitor=False)
    assert built.call_args[1]["enable_hedge_mode"] is True

    factory.create_trader(
        "binance", api_key="k", secret_key="s", notifier=NullNotifier(), start_monitor=False, enable_hedge_mode=False
    )
    assert built.call_args[1]["enable_hedge_mode"] is False
