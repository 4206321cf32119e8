from __future__ import annotations

import json
import unittest

from exchanges import AsterClient, BinanceFuturesClient, HyperliquidClient, create_client
from exchanges.aster import ASTER_ROUTES
from exchanges.binance import BINANCE_ROUTES, map_order, order_params, parse_exchange_info
from exchanges.hyperliquid import HYPERLIQUID_ROUTES, from_coin, parse_meta, statuses, to_coin
from execution import TradingOrchestrator
from execution.errors import ConfigurationError, DomainValidationError, ExchangeRejection
from execution.orders import OrderRequest
from project_settings import ExchangeSettings

from tests.fakes import (
    TEST_ADDRESS,
    TEST_PRIVATE_KEY,
    USER_ADDRESS,
    RecordingTransport,
    credentials,
    dispatcher,
    form,
    json_body,
)

EXCHANGE_INFO = {
    "symbols": [
        {"symbol": "BTCUSDT", "pricePrecision": 1, "quantityPrecision": 3},
        {
            "symbol": "ETHUSDT",
            "filters": [
                {"filterType": "PRICE_FILTER", "tickSize": "0.01"},
                {"filterType": "LOT_SIZE", "stepSize": "0.001"},
            ],
        },
    ]
}


def _echo_order(request):
    fields = form(request)
    return {
        "orderId": 42,
        "symbol": fields["symbol"],
        "side": fields["side"],
        "type": fields["type"],
        "status": "NEW",
        "origQty": fields.get("quantity", "0"),
        "price": "0",
        "stopPrice": fields.get("stopPrice", "0"),
        "clientOrderId": fields.get("newClientOrderId", "auto"),
        "updateTime": 1,
    }


class BinanceMappingTestCase(unittest.TestCase):
    def test_executed_quantity_falls_back_only_when_absent(self) -> None:
        order = map_order({"orderId": 1, "symbol": "BTCUSDT", "origQty": "0.5", "status": "NEW", "time": 5})
        self.assertEqual(order.executed_quantity, 0.5)
        order = map_order({"orderId": 1, "origQty": "0.5", "executedQty": "0", "time": 5})
        self.assertEqual(order.executed_quantity, 0.0)
        self.assertEqual(order.timestamp, 5)

    def test_average_price_preferred(self) -> None:
        order = map_order({"orderId": 1, "avgPrice": "50010.5", "price": "0", "origQty": "1"})
        self.assertEqual(order.price, 50010.5)

    def test_exchange_info_precision_and_filter_fallback(self) -> None:
        table = {entry.symbol: entry for entry in parse_exchange_info(EXCHANGE_INFO)}
        self.assertEqual(table["BTCUSDT"].quantity_precision, 3)
        self.assertEqual(table["ETHUSDT"].price_precision, 2)
        self.assertEqual(table["ETHUSDT"].quantity_precision, 3)

    def test_close_position_leg_omits_quantity_and_reduce_only(self) -> None:
        params = order_params(
            OrderRequest(
                symbol="BTCUSDT",
                side="SELL",
                quantity="0.02",
                order_type="STOP_MARKET",
                stop_price="49000",
                reduce_only=True,
                close_position=True,
            )
        )
        self.assertNotIn("quantity", params)
        self.assertNotIn("reduceOnly", params)
        self.assertIs(params["closePosition"], True)
        self.assertEqual(params["workingType"], "CONTRACT_PRICE")

    def test_limit_defaults_to_gtc_and_hedge_drops_reduce_only(self) -> None:
        params = order_params(
            OrderRequest(
                symbol="BTCUSDT",
                side="SELL",
                quantity="1",
                order_type="LIMIT",
                price="50000",
                reduce_only=True,
                position_side="LONG",
            )
        )
        self.assertEqual(params["timeInForce"], "GTC")
        self.assertNotIn("reduceOnly", params)
        self.assertEqual(params["positionSide"], "LONG")

    def test_one_way_reduce_only_is_kept(self) -> None:
        params = order_params(
            OrderRequest(
                symbol="BTCUSDT",
                side="SELL",
                quantity="0.01",
                reduce_only=True,
                position_side="BOTH",
            )
        )
        self.assertIs(params["reduceOnly"], True)
        self.assertEqual(params["positionSide"], "BOTH")


class BinanceClientTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.transport = RecordingTransport()
        self.transport.route("GET", "/fapi/v1/exchangeInfo", EXCHANGE_INFO)
        self.transport.route("POST", "/fapi/v1/order", _echo_order)
        creds = credentials("binance", api_key="key", api_secret="secret")
        self.client = BinanceFuturesClient(dispatcher("binance", BINANCE_ROUTES, creds, self.transport))

    async def test_place_order_formats_quantity(self) -> None:
        order = await self.client.place_order(
            OrderRequest(symbol="BTCUSDT", side="BUY", quantity="0.0204999")
        )
        sent = form(self.transport.sent("POST", "/fapi/v1/order")[0])
        self.assertEqual(sent["quantity"], "0.02")
        self.assertEqual(sent["type"], "MARKET")
        self.assertEqual(order.order_id, "42")
        self.assertEqual(order.quantity, 0.02)

    async def test_positions_skip_flat_symbols(self) -> None:
        self.transport.route(
            "GET",
            "/fapi/v2/positionRisk",
            [
                {"symbol": "BTCUSDT", "positionAmt": "-0.02", "entryPrice": "50000", "unRealizedProfit": "3", "leverage": "10"},
                {"symbol": "ETHUSDT", "positionAmt": "0", "entryPrice": "0", "leverage": "20"},
            ],
        )
        positions = await self.client.get_positions()
        self.assertEqual(len(positions), 1)
        self.assertEqual(positions[0].side, "SHORT")
        self.assertEqual(await self.client.get_leverage("ETHUSDT"), 20)

    async def test_position_mode(self) -> None:
        self.transport.route("GET", "/fapi/v1/positionSide/dual", {"dualSidePosition": True})
        self.assertTrue(await self.client.get_position_mode())

    async def test_set_position_mode(self) -> None:
        self.transport.route("POST", "/fapi/v1/positionSide/dual", {"code": 200, "msg": "success"})
        self.assertEqual(await self.client.set_position_mode(True), {"dualSidePosition": True})
        self.assertEqual(form(self.transport.sent("POST", "/fapi/v1/positionSide/dual")[0])["dualSidePosition"], "true")

    async def test_set_position_mode_tolerates_no_change(self) -> None:
        self.transport.route(
            "POST",
            "/fapi/v1/positionSide/dual",
            ExchangeRejection("No need to change position side.", code=-4059),
        )
        self.assertEqual(await self.client.set_position_mode(False), {"dualSidePosition": False})
        self.transport.route(
            "POST",
            "/fapi/v1/positionSide/dual",
            ExchangeRejection("Position side cannot be changed if there exists position.", code=-4068),
        )
        with self.assertRaises(ExchangeRejection):
            await self.client.set_position_mode(True)

    async def test_cancel_conditional_orders_only(self) -> None:
        self.transport.route(
            "GET",
            "/fapi/v1/openOrders",
            [
                {"orderId": 1, "symbol": "BTCUSDT", "type": "STOP_MARKET", "origQty": "0"},
                {"orderId": 2, "symbol": "BTCUSDT", "type": "LIMIT", "origQty": "1"},
                {"orderId": 3, "symbol": "BTCUSDT", "type": "TAKE_PROFIT_MARKET", "origQty": "0"},
            ],
        )
        self.transport.route("DELETE", "/fapi/v1/order", lambda req: {"orderId": form(req)["orderId"]})
        self.assertEqual(await self.client.cancel_conditional_orders("BTCUSDT"), 2)
        cancelled = [form(req)["orderId"] for req in self.transport.sent("DELETE", "/fapi/v1/order")]
        self.assertEqual(cancelled, ["1", "3"])

    async def test_protective_legs_are_independent(self) -> None:
        def reject_take_profit(request):
            if form(request)["type"] == "TAKE_PROFIT_MARKET":
                return ExchangeRejection("Order would immediately trigger.", code=-2021)
            return _echo_order(request)

        self.transport.route("POST", "/fapi/v1/order", reject_take_profit)
        result = await self.client.place_protective_orders(
            "BTCUSDT", close_side="SELL", stop_loss_price="49000", take_profit_price="52500"
        )
        self.assertIsNotNone(result.stop_loss)
        self.assertIsNone(result.take_profit)
        self.assertIn("immediately", result.errors["take_profit"])


class AsterClientTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.transport = RecordingTransport()
        self.transport.route("GET", "/fapi/v1/exchangeInfo", EXCHANGE_INFO)
        self.transport.route("POST", "/fapi/v3/order", _echo_order)
        creds = credentials(
            "aster",
            api_key="key",
            api_secret="secret",
            wallet_address=USER_ADDRESS,
            signer_address=TEST_ADDRESS,
            private_key=TEST_PRIVATE_KEY,
        )
        self.client = AsterClient(dispatcher("aster", ASTER_ROUTES, creds, self.transport))

    async def test_orders_use_the_wallet_scheme(self) -> None:
        await self.client.place_order(OrderRequest(symbol="BTCUSDT", side="BUY", quantity="0.02"))
        sent = self.transport.sent("POST", "/fapi/v3/order")[0]
        self.assertEqual(sent.scheme, "wallet")
        fields = form(sent)
        self.assertEqual(fields["signer"], TEST_ADDRESS)
        self.assertTrue(fields["signature"].startswith("0x"))

    async def test_batch_protective_orders_map_each_leg(self) -> None:
        self.transport.route(
            "POST",
            "/fapi/v1/batchOrders",
            [
                {"orderId": 7, "symbol": "BTCUSDT", "side": "SELL", "type": "STOP_MARKET", "status": "NEW", "stopPrice": "49000"},
                {"code": -2021, "msg": "Order would immediately trigger."},
            ],
        )
        result = await self.client.place_protective_orders(
            "BTCUSDT", close_side="SELL", stop_loss_price="49000.04", take_profit_price="52500"
        )
        self.assertEqual(result.stop_loss.order_id, "7")
        self.assertIsNone(result.take_profit)
        self.assertEqual(result.errors, {"take_profit": "Order would immediately trigger."})

        sent = self.transport.sent("POST", "/fapi/v1/batchOrders")[0]
        self.assertEqual(sent.scheme, "hmac")
        batch = json.loads(form(sent)["batchOrders"])
        self.assertEqual([item["type"] for item in batch], ["STOP_MARKET", "TAKE_PROFIT_MARKET"])
        self.assertEqual(batch[0]["stopPrice"], "49000")
        self.assertEqual(batch[0]["closePosition"], "true")
        self.assertNotIn("quantity", batch[0])

    async def test_batch_rejection_fails_both_legs(self) -> None:
        self.transport.route("POST", "/fapi/v1/batchOrders", ExchangeRejection("Invalid batch", code=-1102))
        result = await self.client.place_protective_orders(
            "BTCUSDT", close_side="BUY", stop_loss_price="51000", take_profit_price="47500"
        )
        self.assertEqual(set(result.errors), {"stop_loss", "take_profit"})
        self.assertIsNone(result.stop_loss)

    def test_debug_credentials_reports_presence_only(self) -> None:
        info = self.client.debug_credentials()
        self.assertTrue(all(isinstance(value, bool) for value in info["credentials"].values()))
        self.assertNotIn(TEST_PRIVATE_KEY, json.dumps(info))
        self.assertEqual(info["schemes"], {"v1": "hmac", "v3": "wallet"})


def hyperliquid_info(request):
    body = json_body(request)
    kind = body.get("type")
    if kind == "meta":
        return {"universe": [{"name": "BTC", "szDecimals": 5}, {"name": "ETH", "szDecimals": 4}]}
    if kind == "allMids":
        return {"BTC": "50000", "ETH": "3000"}
    if kind == "frontendOpenOrders":
        return [
            {"coin": "BTC", "oid": 1, "side": "A", "sz": "0.02", "limitPx": "52500", "orderType": "Take Profit Market", "triggerPx": "52500", "cloid": "tp_1"},
            {"coin": "ETH", "oid": 2, "side": "B", "sz": "1", "limitPx": "2900", "orderType": "Limit"},
            {"coin": "BTC", "oid": 3, "side": "A", "sz": "0.02", "limitPx": "49000", "orderType": "Stop Market", "triggerPx": "49000"},
        ]
    if kind == "clearinghouseState":
        return {
            "assetPositions": [
                {"position": {"coin": "BTC", "szi": "-0.5", "entryPx": "50000", "positionValue": "25000", "unrealizedPnl": "10", "leverage": {"type": "isolated", "value": 10}}},
                {"position": {"coin": "ETH", "szi": "0"}},
            ],
            "marginSummary": {"accountValue": "1234.5"},
            "withdrawable": "1000",
        }
    return {}


def filled(oid: int = 77, size: str = "0.02", price: str = "50010"):
    return {"status": "ok", "response": {"type": "order", "data": {"statuses": [{"filled": {"totalSz": size, "avgPx": price, "oid": oid}}]}}}


class HyperliquidClientTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.transport = RecordingTransport()
        self.transport.route("POST", "/info", hyperliquid_info)
        self.transport.route("POST", "/exchange", filled())
        creds = credentials("hyperliquid", wallet_address=USER_ADDRESS, private_key=TEST_PRIVATE_KEY)
        self.client = HyperliquidClient(dispatcher("hyperliquid", HYPERLIQUID_ROUTES, creds, self.transport))

    def _actions(self):
        return [json_body(req)["action"] for req in self.transport.sent("POST", "/exchange")]

    def test_symbol_mapping(self) -> None:
        self.assertEqual(to_coin("BTCUSDT"), "BTC")
        self.assertEqual(to_coin("btc-perp"), "BTC")
        self.assertEqual(to_coin("ETHUSDC"), "ETH")
        self.assertEqual(to_coin("SOL"), "SOL")
        self.assertEqual(from_coin("btc"), "BTCUSDT")

    def test_meta_uses_universe_index_as_asset_id(self) -> None:
        table = parse_meta({"universe": [{"name": "BTC", "szDecimals": 5}, {"name": "ETH", "szDecimals": 4}]})
        self.assertEqual([(m.symbol, m.asset_id) for m in table], [("BTCUSDT", 0), ("ETHUSDT", 1)])
        self.assertEqual(table[0].price_precision, 1)
        self.assertEqual(table[1].quantity_precision, 4)

    def test_top_level_error_raises(self) -> None:
        with self.assertRaises(ExchangeRejection):
            statuses({"status": "err", "response": "Insufficient margin"})

    async def test_market_buy_is_an_ioc_limit_through_the_mid(self) -> None:
        order = await self.client.place_order(OrderRequest(symbol="BTC-PERP", side="BUY", quantity="0.02"))
        action = self._actions()[0]
        self.assertEqual(action["grouping"], "na")
        self.assertEqual(
            action["orders"][0],
            {"a": 0, "b": True, "p": "50250", "s": "0.02", "r": False, "t": {"limit": {"tif": "Ioc"}}},
        )
        self.assertEqual(order.order_id, "77")
        self.assertEqual(order.status, "FILLED")
        self.assertEqual(order.executed_quantity, 0.02)
        self.assertEqual(order.symbol, "BTCUSDT")

    async def test_market_sell_price(self) -> None:
        await self.client.place_order(OrderRequest(symbol="ETHUSDT", side="SELL", quantity="1", reduce_only=True))
        wire = self._actions()[0]["orders"][0]
        self.assertEqual(wire["a"], 1)
        self.assertEqual(wire["p"], "2985")
        self.assertIs(wire["r"], True)

    async def test_protective_orders_use_position_tpsl_grouping(self) -> None:
        self.transport.route(
            "POST",
            "/exchange",
            {"status": "ok", "response": {"type": "order", "data": {"statuses": [{"resting": {"oid": 5}}, {"error": "Invalid TP price"}]}}},
        )
        result = await self.client.place_protective_orders(
            "BTCUSDT", close_side="SELL", stop_loss_price="49000", take_profit_price="52500", quantity="0.02"
        )
        action = self._actions()[0]
        self.assertEqual(action["grouping"], "positionTpsl")
        stop, take = action["orders"]
        self.assertEqual(stop["t"], {"trigger": {"isMarket": True, "triggerPx": "49000", "tpsl": "sl"}})
        self.assertEqual(take["t"]["trigger"]["tpsl"], "tp")
        self.assertIs(stop["r"], True)
        self.assertEqual(result.stop_loss.order_id, "5")
        self.assertEqual(result.errors, {"take_profit": "Invalid TP price"})

    async def test_protective_orders_size_from_position(self) -> None:
        await self.client.place_protective_orders(
            "BTCUSDT", close_side="BUY", stop_loss_price="51000", take_profit_price=None
        )
        self.assertEqual(self._actions()[0]["orders"][0]["s"], "0.5")

    async def test_cancel_wire_format(self) -> None:
        self.transport.route("POST", "/exchange", {"status": "ok", "response": {"type": "cancel", "data": {"statuses": ["success"]}}})
        await self.client.cancel_order("BTCUSDT", order_id="123")
        await self.client.cancel_order("BTCUSDT", client_order_id="tp_1")
        first, second = self._actions()
        self.assertEqual(first, {"type": "cancel", "cancels": [{"a": 0, "o": 123}]})
        self.assertEqual(second["cancels"], [{"a": 0, "o": 1}])

    async def test_cancel_all_targets_only_the_coin(self) -> None:
        self.transport.route(
            "POST", "/exchange", {"status": "ok", "response": {"type": "cancel", "data": {"statuses": ["success", "success"]}}}
        )
        result = await self.client.cancel_all_orders("BTCUSDT")
        self.assertEqual(self._actions()[0]["cancels"], [{"a": 0, "o": 1}, {"a": 0, "o": 3}])
        self.assertEqual(result["cancelled"], 2)

    async def test_open_orders_are_canonical(self) -> None:
        orders = await self.client.get_open_orders("BTCUSDT")
        self.assertEqual([order.type for order in orders], ["TAKE_PROFIT_MARKET", "STOP_MARKET"])
        self.assertEqual(orders[0].side, "SELL")

    async def test_positions_and_balances(self) -> None:
        positions = await self.client.get_positions()
        self.assertEqual(len(positions), 1)
        self.assertEqual(positions[0].symbol, "BTCUSDT")
        self.assertEqual(positions[0].side, "SHORT")
        self.assertEqual(positions[0].mark_price, 50000)
        self.assertEqual(positions[0].leverage, 10)
        balances = await self.client.get_balances()
        self.assertEqual(balances[0].balance, 1234.5)
        self.assertEqual(balances[0].unrealized_pnl, 10)

    async def test_set_leverage_action(self) -> None:
        self.transport.route("POST", "/exchange", {"status": "ok", "response": {"type": "default"}})
        result = await self.client.set_leverage("ETHUSDT", 5)
        self.assertEqual(self._actions()[0], {"type": "updateLeverage", "asset": 1, "isCross": False, "leverage": 5})
        self.assertEqual(result, {"symbol": "ETHUSDT", "leverage": 5})

    async def test_account_queries_need_an_address(self) -> None:
        bare = HyperliquidClient(
            dispatcher("hyperliquid", HYPERLIQUID_ROUTES, credentials("hyperliquid"), self.transport)
        )
        with self.assertRaises(ConfigurationError):
            await bare.get_positions()

    def test_canonical_symbol(self) -> None:
        for symbol in ("BTC", "btc-perp", "BTCUSDC", "BTCUSDT"):
            self.assertEqual(self.client.canonical_symbol(symbol), "BTCUSDT")

    async def test_bare_coin_quick_long_sizes_from_metadata(self) -> None:
        response = await TradingOrchestrator(self.client).quick_long("BTC", 100, 0, 0, 10)
        self.assertTrue(response.success, response.error)
        self.assertEqual(response.data.quantity, "0.02")
        orders = [action for action in self._actions() if action["type"] == "order"]
        self.assertEqual(len(orders), 1)
        self.assertEqual((orders[0]["orders"][0]["a"], orders[0]["orders"][0]["s"]), (0, "0.02"))

    async def test_bare_coin_quick_long_below_size_step_sends_no_order(self) -> None:
        response = await TradingOrchestrator(self.client).quick_long("BTC", 0.1, 0, 0, 1)
        self.assertFalse(response.success)
        self.assertEqual(response.error_type, "domain_validation_error")
        self.assertFalse([action for action in self._actions() if action["type"] == "order"])
        meta_loads = [
            body for body in (json_body(req) for req in self.transport.sent("POST", "/info"))
            if body["type"] == "meta"
        ]
        self.assertEqual(len(meta_loads), 1)

    async def test_size_rounding_to_zero_is_rejected_before_signing(self) -> None:
        with self.assertRaises(DomainValidationError):
            await self.client.place_order(OrderRequest(symbol="BTCUSDT", side="BUY", quantity="0.000001"))
        self.assertEqual(self.transport.sent("POST", "/exchange"), [])

    async def test_hedge_mode_is_not_available(self) -> None:
        self.assertEqual(await self.client.set_position_mode(False), {"dualSidePosition": False})
        with self.assertRaises(DomainValidationError):
            await self.client.set_position_mode(True)
        self.assertEqual(self.transport.sent("POST", "/exchange"), [])


class RegistryTestCase(unittest.IsolatedAsyncioTestCase):
    async def test_create_client_by_alias(self) -> None:
        settings = ExchangeSettings(name="hyperliquid", rest_url="https://api.test", ws_url="wss://api.test/ws", testnet=True)
        client = create_client("HL", settings, credentials("hyperliquid"), transport=RecordingTransport())
        self.assertIsInstance(client, HyperliquidClient)
        self.assertFalse(client.dispatcher.is_mainnet)
        self.assertEqual(client.debug_credentials()["network"], "testnet")
        await client.close()

    def test_unknown_exchange(self) -> None:
        settings = ExchangeSettings(name="x", rest_url="https://x", ws_url="wss://x")
        with self.assertRaises(KeyError):
            create_client("ftx", settings, credentials("ftx"))


if __name__ == "__main__":
    unittest.main()
