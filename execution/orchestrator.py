"""Compound trading workflows on top of a single exchange OrderClient.

Every public coroutine returns an ApiResponse and never raises: gateway errors
become `success=False` with the error kind, anything unexpected is logged with
its traceback and reported as `internal`.

Quick trade stages, in order:

    leverage -> price -> quantity -> main_order -> protection -> done

A failure before `protection` ends the workflow. A failed protective leg does
not: the result stays successful, the leg is left out and its error recorded.
"""

from __future__ import annotations

import logging
import math
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List

from project_settings import TradingDefaults
from utils.numbers import strip_trailing_zeros, to_decimal

from .errors import DomainValidationError, ExchangeRejection, GatewayError
from .orders import (
    ORDER_SIDES,
    ORDER_TYPES,
    TIME_IN_FORCE,
    ApiResponse,
    Order,
    OrderRequest,
    Position,
    ProtectionResult,
    QuickTradeResult,
)
from .telemetry import TelemetryClient

if TYPE_CHECKING:
    from exchanges.base import OrderClient

logger = logging.getLogger(__name__)

MAX_LEVERAGE = 125


def _symbol(value: str | None) -> str:
    symbol = (value or "").strip().upper()
    if not symbol:
        raise DomainValidationError("symbol is required")
    return symbol


def _positive(name: str, value: Any) -> Decimal:
    number = to_decimal(value)
    if number is None or number <= 0:
        raise DomainValidationError(f"{name} must be a positive number, got {value!r}")
    return number


def _percentage(name: str, value: Any) -> Decimal:
    number = to_decimal(value)
    if number is None or number < 0 or number >= 100:
        raise DomainValidationError(f"{name} must be between 0 and 100, got {value!r}")
    return number


def _leverage(value: Any) -> int:
    try:
        leverage = int(value)
    except (TypeError, ValueError) as exc:
        raise DomainValidationError(f"leverage must be an integer, got {value!r}") from exc
    if leverage != value and not isinstance(value, str):
        raise DomainValidationError(f"leverage must be an integer, got {value!r}")
    if not 1 <= leverage <= MAX_LEVERAGE:
        raise DomainValidationError(f"leverage must be between 1 and {MAX_LEVERAGE}, got {leverage}")
    return leverage


def protective_prices(
    side: str, price: Decimal, stop_loss_pct: Decimal, take_profit_pct: Decimal
) -> tuple[Decimal | None, Decimal | None]:
    """Raw SL/TP trigger prices; a zero percentage means no leg."""
    hundred = Decimal(100)
    stop_loss = take_profit = None
    if side == "LONG":
        if stop_loss_pct > 0:
            stop_loss = price * (1 - stop_loss_pct / hundred)
        if take_profit_pct > 0:
            take_profit = price * (1 + take_profit_pct / hundred)
    else:
        if stop_loss_pct > 0:
            stop_loss = price * (1 + stop_loss_pct / hundred)
        if take_profit_pct > 0:
            take_profit = price * (1 - take_profit_pct / hundred)
    return stop_loss, take_profit


class TradingOrchestrator:
    def __init__(
        self,
        client: "OrderClient",
        *,
        defaults: TradingDefaults | None = None,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._client = client
        self._defaults = defaults or TradingDefaults()
        self._telemetry = telemetry

    @property
    def exchange(self) -> str:
        return self._client.name

    @property
    def client(self) -> "OrderClient":
        return self._client

    # ------------------------------------------------------------------ #
    # Envelope handling
    # ------------------------------------------------------------------ #

    def _canonical(self, symbol: str | None) -> str:
        return self._client.canonical_symbol(_symbol(symbol))

    def _emit(self, event: str, payload: Dict[str, object]) -> None:
        if self._telemetry:
            self._telemetry.emit(event, {"exchange": self.exchange, **payload})

    async def _run(self, operation: str, call: Callable[[], Awaitable[Any]]) -> ApiResponse:
        trading_type = self._client.trading_type
        try:
            data = await call()
        except DomainValidationError as exc:
            logger.info("%s %s rejected: %s", self.exchange, operation, exc)
            return ApiResponse.fail(self.exchange, str(exc), exc.kind, trading_type=trading_type)
        except ExchangeRejection as exc:
            logger.warning("%s %s rejected by exchange: %s", self.exchange, operation, exc)
            detail = {"code": exc.code} if exc.code is not None else None
            return ApiResponse.fail(
                self.exchange, str(exc), exc.kind, data=detail, trading_type=trading_type
            )
        except GatewayError as exc:
            logger.warning("%s %s failed: %s", self.exchange, operation, exc)
            return ApiResponse.fail(self.exchange, str(exc), exc.kind, trading_type=trading_type)
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("%s %s crashed", self.exchange, operation)
            return ApiResponse.fail(self.exchange, str(exc) or type(exc).__name__, "internal", trading_type=trading_type)
        return ApiResponse.ok(self.exchange, data, trading_type=trading_type)

    # ------------------------------------------------------------------ #
    # Single calls
    # ------------------------------------------------------------------ #

    def _validate_order(self, request: OrderRequest) -> OrderRequest:
        request.symbol = self._canonical(request.symbol)
        request.side = str(request.side or "").upper()  # type: ignore[assignment]
        request.order_type = str(request.order_type or "").upper()  # type: ignore[assignment]
        if request.side not in ORDER_SIDES:
            raise DomainValidationError(f"side must be BUY or SELL, got {request.side!r}")
        if request.order_type not in ORDER_TYPES:
            raise DomainValidationError(f"unsupported order type {request.order_type!r}")
        if request.quantity is not None:
            request.quantity = strip_trailing_zeros(_positive("quantity", request.quantity))
        elif not request.close_position:
            raise DomainValidationError("quantity is required")
        if request.order_type == "LIMIT":
            if request.price is None:
                raise DomainValidationError("price is required for LIMIT orders")
            request.price = strip_trailing_zeros(_positive("price", request.price))
            if request.time_in_force and request.time_in_force.upper() not in TIME_IN_FORCE:
                raise DomainValidationError(f"unsupported timeInForce {request.time_in_force!r}")
        if request.order_type in ("STOP_MARKET", "TAKE_PROFIT_MARKET"):
            if request.stop_price is None:
                raise DomainValidationError(f"stopPrice is required for {request.order_type}")
            request.stop_price = strip_trailing_zeros(_positive("stopPrice", request.stop_price))
        return request

    async def place_order(self, request: OrderRequest) -> ApiResponse:
        async def call():
            order = await self._client.place_order(self._validate_order(request))
            return order

        return await self._run("place_order", call)

    async def cancel_order(
        self, symbol: str, order_id: str | None = None, client_order_id: str | None = None
    ) -> ApiResponse:
        async def call():
            if not order_id and not client_order_id:
                raise DomainValidationError("orderId or clientOrderId is required")
            return await self._client.cancel_order(self._canonical(symbol), order_id, client_order_id)

        return await self._run("cancel_order", call)

    async def cancel_all_orders(self, symbol: str) -> ApiResponse:
        return await self._run("cancel_all_orders", lambda: self._client.cancel_all_orders(self._canonical(symbol)))

    async def get_open_orders(self, symbol: str | None = None) -> ApiResponse:
        return await self._run(
            "get_open_orders", lambda: self._client.get_open_orders(self._canonical(symbol) if symbol else None)
        )

    async def get_order(self, symbol: str, order_id: str) -> ApiResponse:
        async def call():
            if not order_id:
                raise DomainValidationError("orderId is required")
            return await self._client.get_order(self._canonical(symbol), str(order_id))

        return await self._run("get_order", call)

    async def get_positions(self, symbol: str | None = None) -> ApiResponse:
        return await self._run(
            "get_positions", lambda: self._client.get_positions(self._canonical(symbol) if symbol else None)
        )

    async def get_balances(self) -> ApiResponse:
        return await self._run("get_balances", self._client.get_balances)

    async def set_leverage(self, symbol: str, leverage: int) -> ApiResponse:
        async def call():
            result = await self._client.set_leverage(self._canonical(symbol), _leverage(leverage))
            self._emit("leverage_set", dict(result))
            return result

        return await self._run("set_leverage", call)

    async def get_leverage(self, symbol: str) -> ApiResponse:
        async def call():
            key = self._canonical(symbol)
            return {"symbol": key, "leverage": await self._client.get_leverage(key)}

        return await self._run("get_leverage", call)

    async def get_position_mode(self) -> ApiResponse:
        async def call():
            return {"dualSidePosition": await self._client.get_position_mode()}

        return await self._run("get_position_mode", call)

    async def set_position_mode(self, dual_side: bool) -> ApiResponse:
        async def call():
            result = await self._client.set_position_mode(bool(dual_side))
            logger.info("%s: position mode set to %s", self.exchange, "hedge" if dual_side else "one-way")
            self._emit("position_mode_set", dict(result))
            return result

        return await self._run("set_position_mode", call)

    async def cancel_conditional_orders(self, symbol: str) -> ApiResponse:
        """Cancel resting stop-loss / take-profit orders, leaving plain limits alone."""

        async def call():
            key = self._canonical(symbol)
            return {"symbol": key, "cancelled": await self._client.cancel_conditional_orders(key)}

        return await self._run("cancel_conditional_orders", call)

    async def set_stop_loss(self, symbol: str, stop_price: Any, quantity: Any = None) -> ApiResponse:
        return await self._run(
            "set_stop_loss", lambda: self._set_trigger("stop_loss", symbol, stop_price, quantity)
        )

    async def set_take_profit(self, symbol: str, take_profit_price: Any, quantity: Any = None) -> ApiResponse:
        return await self._run(
            "set_take_profit", lambda: self._set_trigger("take_profit", symbol, take_profit_price, quantity)
        )

    async def _set_trigger(self, leg: str, symbol: str, trigger_price: Any, quantity: Any) -> Order:
        """Attach one protective trigger to the open position.

        Without a quantity the trigger closes the whole position whatever its
        size at trigger time; with one it is a reduce-only order for that amount.
        """
        symbol = self._canonical(symbol)
        price = await self._format_price(symbol, _positive("trigger price", trigger_price))
        position = await self._open_position(symbol)
        size = abs(Decimal(str(position.size)))
        close_side = "SELL" if position.size > 0 else "BUY"
        position_side = position.position_side if position.position_side in ("LONG", "SHORT") else None
        order_type = "STOP_MARKET" if leg == "stop_loss" else "TAKE_PROFIT_MARKET"

        if quantity is None:
            protection = await self._client.place_protective_orders(
                symbol,
                close_side=close_side,
                stop_loss_price=price if leg == "stop_loss" else None,
                take_profit_price=price if leg == "take_profit" else None,
                position_side=position_side,
                quantity=strip_trailing_zeros(size),
            )
            order = getattr(protection, leg)
            if order is None:
                raise ExchangeRejection(protection.errors.get(leg) or f"{leg} was not placed")
        else:
            amount = _positive("quantity", quantity)
            if amount > size:
                raise DomainValidationError(f"quantity {amount} exceeds open position {size} on {symbol}")
            request = OrderRequest(
                symbol=symbol,
                side=close_side,  # type: ignore[arg-type]
                quantity=strip_trailing_zeros(amount),
                order_type=order_type,  # type: ignore[arg-type]
                stop_price=price,
                reduce_only=True,
                position_side=position_side,  # type: ignore[arg-type]
            )
            order = await self._client.place_order(self._validate_order(request))
        logger.info("%s: %s set at %s on %s %s", self.exchange, leg, price, position.side, symbol)
        self._emit("protection_placed", {"symbol": symbol, "side": position.side, leg: price})
        return order

    async def debug_credentials(self) -> ApiResponse:
        async def call():
            return self._client.debug_credentials()

        return await self._run("debug_credentials", call)

    # ------------------------------------------------------------------ #
    # Quick trade
    # ------------------------------------------------------------------ #

    async def quick_long(
        self,
        symbol: str,
        usd_value: float,
        stop_loss_pct: float | None = None,
        take_profit_pct: float | None = None,
        leverage: int | None = None,
    ) -> ApiResponse:
        return await self._run(
            "quick_long",
            lambda: self._quick_trade("LONG", symbol, usd_value, stop_loss_pct, take_profit_pct, leverage),
        )

    async def quick_short(
        self,
        symbol: str,
        usd_value: float,
        stop_loss_pct: float | None = None,
        take_profit_pct: float | None = None,
        leverage: int | None = None,
    ) -> ApiResponse:
        return await self._run(
            "quick_short",
            lambda: self._quick_trade("SHORT", symbol, usd_value, stop_loss_pct, take_profit_pct, leverage),
        )

    async def compute_quantity(self, symbol: str, usd_value: Any, leverage: int, price: Any) -> str:
        """(usd * leverage) / price rounded to the symbol's quantity precision."""
        price_dec = to_decimal(price)
        if price_dec is None or price_dec <= 0:
            raise DomainValidationError(f"invalid price {price!r} for {symbol}")
        raw = _positive("usd_value", usd_value) * Decimal(leverage) / price_dec
        formatted = await self._client.metadata.format_quantity(symbol, raw)
        quantity = strip_trailing_zeros(formatted)
        if Decimal(quantity) <= 0:
            raise DomainValidationError(
                f"{symbol}: quantity rounds to zero for ${usd_value} at {price}; below minimum notional"
            )
        return quantity

    async def _quick_trade(
        self,
        side: str,
        symbol: str,
        usd_value: Any,
        stop_loss_pct: Any,
        take_profit_pct: Any,
        leverage: Any,
    ) -> QuickTradeResult:
        symbol = self._canonical(symbol)
        usd = _positive("usd_value", usd_value)
        if usd > Decimal(str(self._defaults.max_position_size_usd)):
            raise DomainValidationError(
                f"usd_value {usd} exceeds the maximum position size {self._defaults.max_position_size_usd}"
            )
        lev = _leverage(self._defaults.leverage if leverage is None else leverage)
        sl_pct = _percentage(
            "stop_loss_pct", self._defaults.stop_loss_pct if stop_loss_pct is None else stop_loss_pct
        )
        tp_pct = _percentage(
            "take_profit_pct", self._defaults.take_profit_pct if take_profit_pct is None else take_profit_pct
        )
        client = self._client
        stage = "leverage"
        try:
            await client.set_leverage(symbol, lev)
            self._emit("leverage_set", {"symbol": symbol, "leverage": lev})

            hedge = False
            try:
                hedge = await client.get_position_mode()
            except GatewayError as exc:
                logger.debug("%s: position mode unavailable, assuming one-way: %s", self.exchange, exc)
            position_side = side if hedge else None

            stage = "price"
            price = await client.get_price(symbol)
            if price is None or not math.isfinite(price) or price <= 0:
                raise DomainValidationError(f"invalid price {price!r} for {symbol}")

            stage = "quantity"
            quantity = await self.compute_quantity(symbol, usd, lev, price)

            stage = "main_order"
            main_order = await client.place_order(
                OrderRequest(
                    symbol=symbol,
                    side="BUY" if side == "LONG" else "SELL",
                    quantity=quantity,
                    order_type="MARKET",
                    position_side=position_side,  # type: ignore[arg-type]
                )
            )
        except GatewayError as exc:
            self._emit("workflow_failed", {"symbol": symbol, "side": side, "stage": stage, "error": str(exc)})
            raise
        logger.info("%s: %s %s qty=%s placed (order %s)", self.exchange, side, symbol, quantity, main_order.order_id)
        self._emit(
            "main_order_placed",
            {"symbol": symbol, "side": side, "quantity": quantity, "orderId": main_order.order_id},
        )

        raw_sl, raw_tp = protective_prices(side, Decimal(str(price)), sl_pct, tp_pct)
        sl_price = await self._format_price(symbol, raw_sl)
        tp_price = await self._format_price(symbol, raw_tp)
        protection = await self._protect(
            symbol,
            close_side="SELL" if side == "LONG" else "BUY",
            stop_loss_price=sl_price,
            take_profit_price=tp_price,
            position_side=position_side,
            quantity=quantity,
        )

        result = QuickTradeResult(
            main_order=main_order,
            side=side,  # type: ignore[arg-type]
            quantity=quantity,
            entry_price=price,
            leverage=lev,
            stop_loss_price=sl_price,
            take_profit_price=tp_price,
            stop_loss=protection.stop_loss,
            take_profit=protection.take_profit,
            leg_errors=dict(protection.errors),
        )
        if result.leg_errors:
            logger.warning(
                "%s: %s %s is UNPROTECTED (%s)",
                self.exchange,
                side,
                symbol,
                "; ".join(f"{leg}: {error}" for leg, error in sorted(result.leg_errors.items())),
            )
            self._emit("protection_missing", {"symbol": symbol, "side": side, "legs": dict(result.leg_errors)})
        else:
            self._emit(
                "protection_placed",
                {"symbol": symbol, "side": side, "stopLoss": sl_price, "takeProfit": tp_price},
            )
        return result

    async def _format_price(self, symbol: str, value: Decimal | None) -> str | None:
        if value is None:
            return None
        if value <= 0:
            raise DomainValidationError(f"{symbol}: protective price {value} is not positive")
        return strip_trailing_zeros(await self._client.metadata.format_price(symbol, value))

    async def _protect(self, symbol: str, **kwargs: Any) -> ProtectionResult:
        """Best-effort SL/TP placement; never raises GatewayError."""
        requested = [
            leg
            for leg, key in (("stop_loss", "stop_loss_price"), ("take_profit", "take_profit_price"))
            if kwargs.get(key) is not None
        ]
        if not requested:
            return ProtectionResult()
        try:
            cancelled = await self._client.cancel_conditional_orders(symbol)
            if cancelled:
                logger.info("%s: cancelled %d stale conditional orders on %s", self.exchange, cancelled, symbol)
        except GatewayError as exc:
            logger.debug("%s: conditional order cleanup failed on %s: %s", self.exchange, symbol, exc)
        try:
            return await self._client.place_protective_orders(symbol, **kwargs)
        except GatewayError as exc:
            return ProtectionResult(errors={leg: str(exc) for leg in requested})

    # ------------------------------------------------------------------ #
    # Close
    # ------------------------------------------------------------------ #

    async def _open_position(self, symbol: str) -> Position:
        position = next((p for p in await self._client.get_positions(symbol) if p.size != 0), None)
        if position is None:
            raise DomainValidationError(f"no open position for {symbol}")
        return position

    async def close_position(self, symbol: str, quantity: Any = None) -> ApiResponse:
        return await self._run("close_position", lambda: self._close(symbol, quantity))

    async def _close(self, symbol: str, quantity: Any = None) -> Dict[str, Any]:
        symbol = self._canonical(symbol)
        client = self._client
        try:
            await client.cancel_all_orders(symbol)
        except GatewayError as exc:
            logger.warning("%s: cancel orders before close failed on %s: %s", self.exchange, symbol, exc)

        position = await self._open_position(symbol)
        size = abs(Decimal(str(position.size)))
        amount = size if quantity is None else _positive("quantity", quantity)
        if amount > size:
            raise DomainValidationError(f"quantity {amount} exceeds open position {size} on {symbol}")
        close_side = "SELL" if position.size > 0 else "BUY"
        position_side = position.position_side if position.position_side in ("LONG", "SHORT") else None
        order = await client.place_order(
            OrderRequest(
                symbol=symbol,
                side=close_side,  # type: ignore[arg-type]
                quantity=strip_trailing_zeros(amount),
                order_type="MARKET",
                reduce_only=True,
                position_side=position_side,  # type: ignore[arg-type]
            )
        )
        logger.info("%s: closed %s %s on %s (order %s)", self.exchange, amount, position.side, symbol, order.order_id)
        self._emit(
            "position_closed",
            {"symbol": symbol, "side": position.side, "quantity": str(amount), "orderId": order.order_id},
        )
        return {
            "symbol": symbol,
            "side": close_side,
            "closedQuantity": strip_trailing_zeros(amount),
            "positionSide": position.side,
            "order": order,
        }

    async def close_all_positions(self) -> ApiResponse:
        async def call():
            results: Dict[str, Dict[str, Any]] = {}
            failed: List[str] = []
            for position in await self._client.get_positions():
                response = await self.close_position(position.symbol)
                results[position.symbol] = response.to_dict()
                if not response.success:
                    failed.append(position.symbol)
            return {"closed": len(results) - len(failed), "failed": failed, "results": results}

        return await self._run("close_all_positions", call)
