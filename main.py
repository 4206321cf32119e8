from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Awaitable, Callable, Sequence

from exchanges.stream import STREAM_KINDS, MarketStream
from execution import ApiResponse, TradingOrchestrator
from execution.errors import DomainValidationError
from utils import setup_logging

logger = logging.getLogger("gateway.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Unified perp-futures trading gateway")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    commands = parser.add_subparsers(dest="command", required=True)

    def with_exchange(name: str, help_text: str) -> argparse.ArgumentParser:
        sub = commands.add_parser(name, help=help_text)
        sub.add_argument("exchange", help="aster, hyperliquid or binance")
        return sub

    with_exchange("credentials", "Show which credentials are configured (never their values)")

    positions = with_exchange("positions", "List open positions")
    positions.add_argument("--symbol")

    leverage = with_exchange("leverage", "Set leverage for a symbol")
    leverage.add_argument("symbol")
    leverage.add_argument("leverage", type=int)

    for name, side in (("quick-long", "long"), ("quick-short", "short")):
        quick = with_exchange(name, f"Open a {side} market position with stop-loss and take-profit")
        quick.add_argument("symbol")
        quick.add_argument("usd_value", type=float, help="Margin in USD; notional is usd_value * leverage")
        quick.add_argument("--stop-loss", type=float, dest="stop_loss_pct")
        quick.add_argument("--take-profit", type=float, dest="take_profit_pct")
        quick.add_argument("--leverage", type=int)

    close = with_exchange("close", "Cancel orders and close the position for a symbol")
    close.add_argument("symbol")
    close.add_argument("--quantity")

    with_exchange("close-all", "Close every open position")

    mode = with_exchange("position-mode", "Switch between hedge and one-way position mode")
    mode.add_argument("mode", choices=("hedge", "one-way"))

    for name in ("stop-loss", "take-profit"):
        trigger = with_exchange(name, f"Attach a {name} trigger to the open position")
        trigger.add_argument("symbol")
        trigger.add_argument("price")
        trigger.add_argument("--quantity", help="Reduce-only size; omit to close the whole position")

    conditional = with_exchange("cancel-conditional", "Cancel stop-loss and take-profit orders for a symbol")
    conditional.add_argument("symbol")

    watch = with_exchange("watch", "Print market data messages from the exchange WebSocket")
    watch.add_argument("symbol")
    watch.add_argument("--stream", choices=sorted(STREAM_KINDS), default="ticker")
    watch.add_argument("--count", type=int, default=10, help="Stop after this many messages")
    watch.add_argument("--timeout", type=float, default=30.0, help="Seconds to wait for each message")

    serve = commands.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    return parser


def _operation(args: argparse.Namespace) -> Callable[[TradingOrchestrator], Awaitable[ApiResponse]]:
    command = args.command
    if command == "credentials":
        return lambda orch: orch.debug_credentials()
    if command == "positions":
        return lambda orch: orch.get_positions(args.symbol)
    if command == "leverage":
        return lambda orch: orch.set_leverage(args.symbol, args.leverage)
    if command in ("quick-long", "quick-short"):
        def quick(orch: TradingOrchestrator) -> Awaitable[ApiResponse]:
            call = orch.quick_long if command == "quick-long" else orch.quick_short
            return call(args.symbol, args.usd_value, args.stop_loss_pct, args.take_profit_pct, args.leverage)

        return quick
    if command == "close":
        return lambda orch: orch.close_position(args.symbol, args.quantity)
    if command == "close-all":
        return lambda orch: orch.close_all_positions()
    if command == "position-mode":
        return lambda orch: orch.set_position_mode(args.mode == "hedge")
    if command == "stop-loss":
        return lambda orch: orch.set_stop_loss(args.symbol, args.price, args.quantity)
    if command == "take-profit":
        return lambda orch: orch.set_take_profit(args.symbol, args.price, args.quantity)
    if command == "cancel-conditional":
        return lambda orch: orch.cancel_conditional_orders(args.symbol)
    raise ValueError(f"Unknown command {command!r}")


async def watch_stream(stream: MarketStream, args: argparse.Namespace) -> ApiResponse:
    """Print up to `args.count` messages as JSON lines, then disconnect."""
    channel = STREAM_KINDS[args.stream](args.symbol)
    await stream.subscribe([channel])
    await stream.start()
    received = 0
    try:
        while received < args.count:
            try:
                message = await stream.get(timeout=args.timeout)
            except asyncio.TimeoutError:
                logger.warning("%s: no message on %s for %.0fs", stream.name, channel, args.timeout)
                break
            print(json.dumps(message, default=str), flush=True)
            received += 1
    finally:
        await stream.stop()
    return ApiResponse.ok(stream.name, {"stream": channel, "received": received, "dropped": stream.dropped})


async def run_command(args: argparse.Namespace) -> ApiResponse:
    # Imported here so `serve` and `--help` do not build clients.
    from webapp.services import GatewayService, UnknownExchangeError

    service = GatewayService()
    await service.startup()
    try:
        try:
            if args.command == "watch":
                return await watch_stream(service.market_stream(args.exchange), args)
            orchestrator = service.orchestrator(args.exchange)
        except UnknownExchangeError:
            return ApiResponse.fail(args.exchange, f"Unknown exchange '{args.exchange}'", "domain_validation_error")
        except DomainValidationError as exc:
            return ApiResponse.fail(args.exchange, str(exc), exc.kind)
        return await _operation(args)(orchestrator)
    finally:
        await service.shutdown()


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(level=args.log_level.upper() if args.log_level else None)

    if args.command == "serve":
        import uvicorn

        uvicorn.run("webapp.app:create_app", factory=True, host=args.host, port=args.port)
        return 0

    response = asyncio.run(run_command(args))
    print(json.dumps(response.to_dict(), indent=2, default=str))
    if not response.success:
        logger.error("%s %s failed: %s", args.command, args.exchange, response.error)
    return 0 if response.success else 1


if __name__ == "__main__":
    sys.exit(main())
