import hashlib
import hmac
from unittest import mock
from urllib.parse import urlencode

import pytest
import requests

from tests.conftest import FakeResponse, FakeSession
from trading.binance_futures import BinanceFuturesClient, BinanceFuturesTrader
from trading.errors import BinanceAPIError, NoPosition, OrderTooSmall, PermissionDenied, TransportError
from trading.models import LONG, SHORT

EXCHANGE_INFO = {
    "symbols": [
        {
            "symbol": "BTCUSDT",
            "quantityPrecision": 3,
            "filters": [
                {"filterType": "LOT_SIZE", "stepSize": "0.001", "minQty": "0.001"},
                {"filterType": "MIN_NOTIONAL", "notional": "100"},
            ],
        }
    ]
}


@pytest.fixture
def client():
    c = mock.MagicMock(spec=BinanceFuturesClient)
    c.session = mock.MagicMock()
    c.account.return_value = {
        "totalWalletBalance": "1000.50",
        "availableBalance": "800",
        "totalUnrealizedProfit": "-12.25",
    }
    c.position_risk.return_value = [
        {
            "symbol": "BTCUSDT",
            "positionAmt": "0.010",
            "entryPrice": "50000",
            "markPrice": "50500",
            "unRealizedProfit": "5",
            "leverage": "20",
            "liquidationPrice": "40000",
            "positionSide": "LONG",
        },
        {"symbol": "ETHUSDT", "positionAmt": "0", "leverage": "10"},
    ]
    c.exchange_info.return_value = EXCHANGE_INFO
    c.ticker_price.return_value = {"symbol": "BTCUSDT", "price": "50000"}
    c.new_order.return_value = {
        "orderId": 42,
        "symbol": "BTCUSDT",
        "status": "FILLED",
        "avgPrice": "50010.5",
        "clientOrderId": "x-abc",
    }
    c.cancel_all_open_orders.return_value = {"code": 200, "msg": "The operation of cancel all open order is done."}
    return c


@pytest.fixture
def notifier():
    return mock.Mock()


def make_trader(client, **kwargs):
    defaults = dict(
        sync_time=False,
        enable_hedge_mode=False,
        start_monitor=False,
        leverage_cooldown=0,
    )
    defaults.update(kwargs)
    return BinanceFuturesTrader(client, **defaults)


class TestAccount:
    def test_balance_normalised_and_cached(self, client):
        trader = make_trader(client)
        balance = trader.get_balance()
        trader.get_balance()

        assert balance.wallet_balance == 1000.5
        assert balance.available_balance == 800.0
        assert balance.unrealized_pnl == -12.25
        assert client.account.call_count == 1

    def test_positions_drop_flat_entries(self, client):
        positions = make_trader(client).get_positions()
        assert len(positions) == 1
        assert positions[0].symbol == "BTCUSDT"
        assert positions[0].position_side == LONG
        assert positions[0].leverage == 20.0


class TestLeverage:
    def test_noop_when_position_already_at_target(self, client):
        make_trader(client).set_leverage("BTCUSDT", 20)
        client.change_leverage.assert_not_called()

    def test_change_sleeps_cooldown(self, client):
        sleep = mock.Mock()
        make_trader(client, leverage_cooldown=5, sleep=sleep).set_leverage("BTCUSDT", 50)
        client.change_leverage.assert_called_once_with("BTCUSDT", 50)
        sleep.assert_called_once_with(5)

    def test_benign_error_swallowed(self, client):
        sleep = mock.Mock()
        client.change_leverage.side_effect = BinanceAPIError(400, -4028, "No need to change leverage.")
        make_trader(client, leverage_cooldown=5, sleep=sleep).set_leverage("BTCUSDT", 50)
        sleep.assert_not_called()

    def test_permission_error_propagates(self, client):
        client.change_leverage.side_effect = PermissionDenied("unified account")
        with pytest.raises(PermissionDenied):
            make_trader(client).set_leverage("BTCUSDT", 50)


class TestLeverageCache:
    def test_change_invalidates_position_cache(self, client):
        trader = make_trader(client, cache_ttl=60)
        trader.set_leverage("BTCUSDT", 50)
        trader.get_positions()
        assert client.position_risk.call_count == 2


class TestMarginMode:
    @pytest.mark.parametrize(
        "code,msg",
        [
            (-4046, "No need to change margin type."),
            (-4048, "Margin type cannot be changed if there exists position."),
            (-4168, "Unable to adjust to isolated-margin mode under the Multi-Assets mode."),
            (-1000, "something else"),
        ],
    )
    def test_benign_errors_absorbed(self, client, code, msg):
        client.change_margin_type.side_effect = BinanceAPIError(400, code, msg)
        make_trader(client).set_margin_mode("BTCUSDT", cross=False)
        client.change_margin_type.assert_called_once_with("BTCUSDT", "ISOLATED")

    def test_permission_error_surfaces(self, client):
        client.change_margin_type.side_effect = PermissionDenied("portfolio margin key")
        with pytest.raises(PermissionDenied):
            make_trader(client).set_margin_mode("BTCUSDT", cross=True)


class TestOrders:
    def test_open_long_submits_market_order(self, client):
        trader = make_trader(client)
        trader.set_stop_loss("BTCUSDT", LONG, 0.01, 45000)

        result = trader.open_long("BTCUSDT", 0.0109, 20)

        args = client.new_order.call_args[0]
        assert args[:4] == ("BTCUSDT", "BUY", "LONG", "0.010")
        assert args[4].startswith("x-KzrpZaP9")
        assert len(args[4]) <= 32
        assert result.order_id == "42"
        assert result.quantity == 0.01
        assert result.price == 50010.5
        client.cancel_all_open_orders.assert_called_with("BTCUSDT")
        # stale local SL/TP cleared before opening
        assert trader.sltp_book.get("BTCUSDT", LONG).active is False

    def test_open_short_uses_sell_short(self, client):
        make_trader(client).open_short("BTCUSDT", 0.01, 20)
        assert client.new_order.call_args[0][1:3] == ("SELL", "SHORT")

    def test_quantity_rounding_to_zero_rejected(self, client):
        with pytest.raises(OrderTooSmall):
            make_trader(client).open_long("BTCUSDT", 0.0004, 20)
        client.new_order.assert_not_called()

    def test_below_min_qty_rejected(self, client):
        client.exchange_info.return_value = {
            "symbols": [
                {
                    "symbol": "BTCUSDT",
                    "filters": [{"filterType": "LOT_SIZE", "stepSize": "0.001", "minQty": "0.005"}],
                }
            ]
        }
        # 0.003 * 50000 = 150 clears the notional floor
        with pytest.raises(OrderTooSmall):
            make_trader(client).open_long("BTCUSDT", 0.003, 20)
        client.new_order.assert_not_called()

    def test_below_min_notional_rejected(self, client):
        # 0.001 * 50000 = 50 < 100
        with pytest.raises(OrderTooSmall):
            make_trader(client).open_long("BTCUSDT", 0.001, 20)
        client.new_order.assert_not_called()

    def test_default_min_notional_when_filter_missing(self, client):
        client.exchange_info.return_value = {
            "symbols": [
                {"symbol": "BTCUSDT", "filters": [{"filterType": "LOT_SIZE", "stepSize": "0.001", "minQty": "0.001"}]}
            ]
        }
        # 0.001 * 50000 = 50 >= 10
        make_trader(client).open_long("BTCUSDT", 0.001, 20)
        client.new_order.assert_called_once()

    def test_transport_failure_wrapped(self, client):
        client.new_order.side_effect = BinanceAPIError(400, -2019, "Margin is insufficient.")
        with pytest.raises(Exception) as excinfo:
            make_trader(client).open_long("BTCUSDT", 0.01, 20)
        assert "open_long" in str(excinfo.value)
        assert isinstance(excinfo.value.__cause__, BinanceAPIError)

    def test_close_whole_long_position(self, client, notifier):
        trader = make_trader(client, notifier=notifier)
        result = trader.close_long("BTCUSDT")

        assert client.new_order.call_args[0][:4] == ("BTCUSDT", "SELL", "LONG", "0.010")
        client.cancel_all_open_orders.assert_called_once_with("BTCUSDT")
        notifier.notify.assert_called_once()
        assert "BTCUSDT" in notifier.notify.call_args[0][0]
        assert result.status == "FILLED"

    def test_close_without_position(self, client):
        with pytest.raises(NoPosition):
            make_trader(client).close_short("BTCUSDT")
        client.new_order.assert_not_called()

    def test_price_falls_back_to_ticker(self, client):
        client.new_order.return_value = {"orderId": 1, "symbol": "BTCUSDT", "status": "NEW", "avgPrice": "0.00"}
        result = make_trader(client).open_long("BTCUSDT", 0.01, 20)
        assert result.price == 50000.0


class TestLocalSLTP:
    def test_sl_and_tp_register_single_condition(self, client):
        trader = make_trader(client)
        trader.set_stop_loss("BTCUSDT", "long", 0.01, 45000)
        trader.set_take_profit("BTCUSDT", "LONG", 0.01, 60000)

        snapshot = trader.sltp_book.active_snapshot()
        assert len(snapshot) == 1
        assert snapshot[0].stop_loss_price == 45000
        assert snapshot[0].take_profit_price == 60000

    def test_cancel_take_profit_only(self, client):
        trader = make_trader(client)
        trader.set_stop_loss("BTCUSDT", SHORT, 0.01, 55000)
        trader.set_take_profit("BTCUSDT", SHORT, 0.01, 40000)
        trader.cancel_take_profit_orders("BTCUSDT")

        cond = trader.sltp_book.get("BTCUSDT", SHORT)
        assert cond.take_profit_price == 0.0
        assert cond.stop_loss_price == 55000

    def test_close_stops_monitor_and_session(self, client):
        trader = make_trader(client, start_monitor=True, poll_interval=0.05)
        assert trader.monitor.running
        trader.close()
        assert not trader.monitor.running
        client.session.close.assert_called_once()


class TestStartup:
    def test_time_offset_synced(self, client):
        client.server_time.return_value = {"serverTime": 0}
        make_trader(client, sync_time=True)
        assert client.time_offset_ms > 0

    def test_hedge_mode_already_enabled_is_fine(self, client):
        client.change_position_mode.side_effect = BinanceAPIError(400, -4059, "No need to change position side.")
        make_trader(client, enable_hedge_mode=True)
        client.change_position_mode.assert_called_once_with(True)


class TestClient:
    def make_client(self, session):
        return BinanceFuturesClient("key", "secret", base_url="https://fapi.test", session=session)

    def test_signed_request_carries_signature_and_key(self):
        session = FakeSession({("GET", "/fapi/v2/account"): FakeResponse(200, {"totalWalletBalance": "1"})})
        self.make_client(session).account()

        call = session.calls[0]
        assert call.headers["X-MBX-APIKEY"] == "key"
        name, signature = call.params[-1]
        assert name == "signature"
        expected = hmac.new(b"secret", urlencode(call.params[:-1]).encode(), hashlib.sha256).hexdigest()
        assert signature == expected
        assert dict(call.params)["recvWindow"] == "5000"

    def test_public_request_is_unsigned(self):
        session = FakeSession({("GET", "/fapi/v1/ticker/price"): FakeResponse(200, {"price": "1"})})
        self.make_client(session).ticker_price("BTCUSDT")
        call = session.calls[0]
        assert "X-MBX-APIKEY" not in call.headers
        assert call.params == [("symbol", "BTCUSDT")]

    def test_negative_code_raises_api_error(self):
        session = FakeSession(
            {("POST", "/fapi/v1/order"): FakeResponse(400, {"code": -2019, "msg": "Margin is insufficient."})}
        )
        with pytest.raises(BinanceAPIError) as excinfo:
            self.make_client(session).new_order("BTCUSDT", "BUY", "LONG", "0.01", "x-1")
        assert excinfo.value.code == -2019

    def test_invalid_key_scope_is_permission_denied(self):
        session = FakeSession(
            {("GET", "/fapi/v2/account"): FakeResponse(401, {"code": -2015, "msg": "Invalid API-key, IP, or permissions"})}
        )
        with pytest.raises(PermissionDenied):
            self.make_client(session).account()

    def test_non_json_body(self):
        session = FakeSession({("GET", "/fapi/v2/account"): FakeResponse(502, text="<html>bad gateway</html>")})
        with pytest.raises(TransportError):
            self.make_client(session).account()

    def test_network_error(self):
        session = mock.Mock()
        session.request.side_effect = requests.ConnectionError("refused")
        with pytest.raises(TransportError):
            self.make_client(session).account()
