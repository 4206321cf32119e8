from __future__ import annotations

import contextlib
import io
import json
import unittest

from exchanges import MarketStream
from execution import CredentialStore, TradingOrchestrator
from execution.errors import DomainValidationError
from execution.orders import Position
from main import _operation, build_parser, watch_stream
from project_settings import GatewaySettings
from webapp.services import GatewayService

from tests.fakes import ScriptedClient
from tests.test_stream import FakeSocket


class ParserTestCase(unittest.TestCase):
    def test_quick_trade_arguments(self) -> None:
        args = build_parser().parse_args(
            ["quick-long", "binance", "BTCUSDT", "100", "--stop-loss", "1.5", "--leverage", "5"]
        )
        self.assertEqual(args.command, "quick-long")
        self.assertEqual(args.exchange, "binance")
        self.assertEqual(args.usd_value, 100.0)
        self.assertEqual(args.stop_loss_pct, 1.5)
        self.assertIsNone(args.take_profit_pct)
        self.assertEqual(args.leverage, 5)

    def test_serve_defaults(self) -> None:
        args = build_parser().parse_args(["serve"])
        self.assertEqual((args.host, args.port), ("127.0.0.1", 8000))

    def test_command_required(self) -> None:
        with self.assertRaises(SystemExit):
            build_parser().parse_args([])

    def test_trigger_and_mode_arguments(self) -> None:
        args = build_parser().parse_args(["stop-loss", "aster", "BTCUSDT", "48000", "--quantity", "0.1"])
        self.assertEqual((args.symbol, args.price, args.quantity), ("BTCUSDT", "48000", "0.1"))
        args = build_parser().parse_args(["position-mode", "binance", "hedge"])
        self.assertEqual(args.mode, "hedge")
        with self.assertRaises(SystemExit):
            build_parser().parse_args(["position-mode", "binance", "both"])
        args = build_parser().parse_args(["watch", "binance", "BTCUSDT"])
        self.assertEqual((args.stream, args.count), ("ticker", 10))


class OperationTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.client = ScriptedClient()
        self.orchestrator = TradingOrchestrator(self.client)

    async def test_leverage_command(self) -> None:
        args = build_parser().parse_args(["leverage", "binance", "btcusdt", "7"])
        response = await _operation(args)(self.orchestrator)
        self.assertTrue(response.success)
        self.assertIn(("set_leverage", "BTCUSDT", 7), self.client.calls)

    async def test_quick_short_command(self) -> None:
        args = build_parser().parse_args(["quick-short", "binance", "BTCUSDT", "100", "--leverage", "10"])
        response = await _operation(args)(self.orchestrator)
        self.assertTrue(response.success, response.error)
        self.assertEqual(response.data.side, "SHORT")
        self.assertEqual(response.data.main_order.side, "SELL")

    async def test_close_without_position_fails(self) -> None:
        args = build_parser().parse_args(["close", "binance", "BTCUSDT"])
        response = await _operation(args)(self.orchestrator)
        self.assertFalse(response.success)
        self.assertEqual(response.error_type, "domain_validation_error")

    async def test_stop_loss_command(self) -> None:
        self.client.positions = [
            Position(symbol="BTCUSDT", side="SHORT", size=-0.3, entry_price=50_000.0, unrealized_pnl=0.0)
        ]
        args = build_parser().parse_args(["stop-loss", "binance", "btcusdt", "52000"])
        response = await _operation(args)(self.orchestrator)
        self.assertTrue(response.success, response.error)
        request = self.client.placed[0]
        self.assertEqual((request.order_type, request.side, request.stop_price), ("STOP_MARKET", "BUY", "52000"))

    async def test_position_mode_command(self) -> None:
        args = build_parser().parse_args(["position-mode", "binance", "one-way"])
        response = await _operation(args)(self.orchestrator)
        self.assertEqual(response.data, {"dualSidePosition": False})
        self.assertIn(("set_position_mode", False), self.client.calls)


class WatchTestCase(unittest.IsolatedAsyncioTestCase):
    async def test_prints_requested_number_of_messages(self) -> None:
        sockets: list[FakeSocket] = []

        async def connect(url: str) -> FakeSocket:
            socket = FakeSocket()
            for price in ("50000", "50001", "50002"):
                socket.feed({"e": "24hrTicker", "s": "BTCUSDT", "c": price})
            sockets.append(socket)
            return socket

        stream = MarketStream("wss://stream.test/ws", name="binance", connect=connect)
        args = build_parser().parse_args(["watch", "binance", "BTCUSDT", "--count", "2"])
        output = io.StringIO()
        with contextlib.redirect_stdout(output):
            response = await watch_stream(stream, args)
        self.assertEqual(response.data["received"], 2)
        self.assertEqual(response.data["stream"], "btcusdt@ticker")
        self.assertEqual([json.loads(line)["c"] for line in output.getvalue().splitlines()], ["50000", "50001"])
        self.assertEqual(sockets[0].sent[0]["params"], ["btcusdt@ticker"])
        self.assertTrue(sockets[0].closed)

    def test_service_builds_streams_for_binance_style_venues(self) -> None:
        settings = GatewaySettings.from_env(env={})
        service = GatewayService(settings, CredentialStore({}))
        stream = service.market_stream("binance")
        self.assertEqual(stream.url, settings.exchange("binance").ws_url)
        self.assertEqual(stream.name, "binance")
        with self.assertRaises(DomainValidationError):
            service.market_stream("hl")


if __name__ == "__main__":
    unittest.main()
