"""Hyperliquid perpetuals over the `/info` and `/exchange` endpoints.

Reads are unsigned JSON posts to `/info`; every state change is an L1 action
posted to `/exchange`. Orders reference assets by their index in the `meta`
universe, and there is no native market order: market orders are sent as IOC
limits priced slightly through the mid.
"""

from __future__ import annotations

import logging
import math
from decimal import Decimal
from typing import Any, Dict, List, Mapping

from execution.errors import DomainValidationError, ExchangeRejection
from execution.orders import Balance, Order, OrderRequest, Position, ProtectionResult, now_ms
from utils.numbers import round_significant, strip_trailing_zeros, to_decimal, to_float

from .base import OrderClient
from .dispatcher import SCHEME_L1, RequestDispatcher
from .metadata import AssetMetadata

logger = logging.getLogger(__name__)

HYPERLIQUID_ROUTES: Dict[str, str] = {
    "/exchange": SCHEME_L1,
}

MARKET_SLIPPAGE = Decimal("0.005")
PRICE_SIGNIFICANT_FIGURES = 5
MAX_PRICE_DECIMALS = 6

TIF_MAP = {"GTC": "Gtc", "IOC": "Ioc", "FOK": "Ioc", "GTX": "Alo"}


def to_coin(symbol: str) -> str:
    """`BTCUSDT`, `BTC-PERP`, `BTCUSDC` and `BTC` all name coin `BTC`."""
    coin = symbol.upper().strip()
    if coin.endswith("-PERP"):
        coin = coin[: -len("-PERP")]
    for suffix in ("USDT", "USDC"):
        if coin.endswith(suffix) and len(coin) > len(suffix):
            coin = coin[: -len(suffix)]
            break
    return coin


def from_coin(coin: str) -> str:
    return f"{coin.upper()}USDT"


def parse_meta(payload: Mapping[str, Any]) -> List[AssetMetadata]:
    entries = []
    for index, item in enumerate(payload.get("universe", []) or []):
        name = item.get("name")
        if not name:
            continue
        sz_decimals = int(item.get("szDecimals", 0) or 0)
        entries.append(
            AssetMetadata(
                symbol=from_coin(name),
                asset_id=index,
                price_precision=max(0, MAX_PRICE_DECIMALS - sz_decimals),
                quantity_precision=sz_decimals,
            )
        )
    return entries


def _trigger_type(raw: Mapping[str, Any]) -> str:
    label = str(raw.get("orderType") or "").lower()
    if "take profit" in label:
        return "TAKE_PROFIT_MARKET"
    if "stop" in label:
        return "STOP_MARKET"
    if raw.get("isTrigger"):
        return "STOP_MARKET"
    return "MARKET" if label == "market" else "LIMIT"


def map_order(raw: Mapping[str, Any]) -> Order:
    """`openOrders` / `frontendOpenOrders` / `orderStatus` entry to Order."""
    remaining = to_float(raw.get("sz")) or 0.0
    original = to_float(raw.get("origSz"))
    quantity = original if original is not None else remaining
    trigger_px = to_float(raw.get("triggerPx"))
    return Order(
        order_id=str(raw.get("oid", "")),
        client_order_id=raw.get("cloid"),
        symbol=from_coin(str(raw.get("coin", ""))),
        side="BUY" if raw.get("side") == "B" else "SELL",
        type=_trigger_type(raw),
        status="NEW",
        price=to_float(raw.get("limitPx")) or 0.0,
        quantity=quantity,
        executed_quantity=max(0.0, quantity - remaining),
        timestamp=int(raw.get("timestamp") or now_ms()),
        stop_price=trigger_px or None,
        reduce_only=raw.get("reduceOnly"),
    )


def map_position(raw: Mapping[str, Any]) -> Position | None:
    data = raw.get("position", raw)
    size = to_float(data.get("szi")) or 0.0
    side = Position.side_for(size)
    if side is None:
        return None
    leverage = data.get("leverage")
    if isinstance(leverage, dict):
        leverage = leverage.get("value")
    value = to_float(data.get("positionValue"))
    return Position(
        symbol=from_coin(str(data.get("coin", ""))),
        side=side,
        size=size,
        entry_price=to_float(data.get("entryPx")) or 0.0,
        mark_price=abs(value / size) if value is not None else None,
        liquidation_price=to_float(data.get("liquidationPx")),
        unrealized_pnl=to_float(data.get("unrealizedPnl")) or 0.0,
        leverage=to_float(leverage),
    )


def statuses(raw: Any) -> List[Any]:
    """Per-order statuses of an `/exchange` response; raises on a top-level error."""
    if not isinstance(raw, dict):
        raise ExchangeRejection("unexpected /exchange response", payload=raw)
    if raw.get("status") != "ok":
        raise ExchangeRejection(str(raw.get("response") or "action rejected"), payload=raw)
    response = raw.get("response")
    if not isinstance(response, dict):
        return []
    data = response.get("data") or {}
    return list(data.get("statuses") or [])


class HyperliquidClient(OrderClient):
    name = "hyperliquid"
    routes: Mapping[str, str] = HYPERLIQUID_ROUTES

    def __init__(self, dispatcher: RequestDispatcher, *, expires_after_ms: int | None = None, **kwargs: Any) -> None:
        super().__init__(dispatcher, **kwargs)
        self.expires_after_ms = expires_after_ms

    # ------------------------------------------------------------------ #
    # Plumbing
    # ------------------------------------------------------------------ #

    def _user(self) -> str:
        creds = self.dispatcher.credentials
        if creds.vault_address:
            return creds.vault_address
        creds.require("wallet_address", scheme="account queries")
        return creds.wallet_address

    async def _info(self, payload: Mapping[str, Any]) -> Any:
        return await self.dispatcher.post_json("/info", payload)

    async def _action(self, action: Mapping[str, Any]) -> Any:
        expires_after = None
        if self.expires_after_ms:
            expires_after = now_ms() + int(self.expires_after_ms)
        return await self.dispatcher.post_action("/exchange", action, expires_after=expires_after)

    async def _asset(self, symbol: str) -> AssetMetadata:
        meta = await self.metadata.require(self.canonical_symbol(symbol))
        if meta.asset_id is None:
            raise DomainValidationError(f"no asset id for {symbol}")
        return meta

    async def _mids(self) -> Dict[str, Any]:
        raw = await self._info({"type": "allMids"})
        if not isinstance(raw, dict):
            raise ExchangeRejection("allMids: unexpected payload", payload=raw)
        return raw

    def _wire_price(self, meta: AssetMetadata, value: Any) -> str:
        number = to_decimal(value)
        if number is None or number <= 0:
            raise DomainValidationError(f"invalid price {value!r} for {meta.symbol}")
        rounded = round_significant(number, PRICE_SIGNIFICANT_FIGURES)
        step = Decimal(1).scaleb(-meta.price_precision)
        wire = rounded.quantize(step)
        if wire <= 0:
            raise DomainValidationError(f"price {value!r} rounds to zero for {meta.symbol}")
        return strip_trailing_zeros(wire)

    def _wire_size(self, meta: AssetMetadata, value: Any) -> str:
        number = to_decimal(value)
        if number is None or number <= 0:
            raise DomainValidationError(f"invalid quantity {value!r} for {meta.symbol}")
        wire = number.quantize(Decimal(1).scaleb(-meta.quantity_precision))
        if wire <= 0:
            raise DomainValidationError(
                f"quantity {value!r} rounds to zero at {meta.quantity_precision} decimals for {meta.symbol}"
            )
        return strip_trailing_zeros(wire)

    # ------------------------------------------------------------------ #
    # OrderClient
    # ------------------------------------------------------------------ #

    def canonical_symbol(self, symbol: str) -> str:
        return from_coin(to_coin(symbol))

    async def load_asset_table(self) -> List[AssetMetadata]:
        raw = await self._info({"type": "meta"})
        if not isinstance(raw, dict):
            raise ExchangeRejection("meta: unexpected payload", payload=raw)
        return parse_meta(raw)

    async def get_price(self, symbol: str) -> float:
        mids = await self._mids()
        price = to_float(mids.get(to_coin(symbol)))
        return math.nan if price is None else price

    async def _order_wire(self, request: OrderRequest, meta: AssetMetadata) -> Dict[str, Any]:
        is_buy = request.side == "BUY"
        if request.order_type == "MARKET":
            mid = to_decimal((await self._mids()).get(to_coin(request.symbol)))
            if mid is None or mid <= 0:
                raise DomainValidationError(f"no mid price for {request.symbol}")
            factor = Decimal(1) + MARKET_SLIPPAGE if is_buy else Decimal(1) - MARKET_SLIPPAGE
            price = self._wire_price(meta, mid * factor)
            order_type: Dict[str, Any] = {"limit": {"tif": "Ioc"}}
        elif request.order_type == "LIMIT":
            if request.price is None:
                raise DomainValidationError("price is required for limit orders")
            price = self._wire_price(meta, request.price)
            order_type = {"limit": {"tif": TIF_MAP.get(request.time_in_force or "GTC", "Gtc")}}
        elif request.order_type in ("STOP_MARKET", "TAKE_PROFIT_MARKET"):
            if request.stop_price is None:
                raise DomainValidationError("stop price is required for trigger orders")
            price = self._wire_price(meta, request.stop_price)
            order_type = {
                "trigger": {
                    "isMarket": True,
                    "triggerPx": price,
                    "tpsl": "tp" if request.order_type == "TAKE_PROFIT_MARKET" else "sl",
                }
            }
        else:
            raise DomainValidationError(f"unsupported order type {request.order_type}")
        if request.quantity is None:
            raise DomainValidationError("quantity is required")
        return {
            "a": meta.asset_id,
            "b": is_buy,
            "p": price,
            "s": self._wire_size(meta, request.quantity),
            "r": bool(request.reduce_only or request.close_position),
            "t": order_type,
        }

    def _order_from_status(self, status: Any, request: OrderRequest, wire: Mapping[str, Any]) -> Order:
        if isinstance(status, dict) and "error" in status:
            raise ExchangeRejection(str(status["error"]), payload=status)
        order_id, state = "", "NEW"
        price = to_float(wire.get("p")) or 0.0
        executed = 0.0
        if isinstance(status, dict) and "filled" in status:
            filled = status["filled"]
            order_id = str(filled.get("oid", ""))
            state = "FILLED"
            executed = to_float(filled.get("totalSz")) or 0.0
            price = to_float(filled.get("avgPx")) or price
        elif isinstance(status, dict) and "resting" in status:
            order_id = str(status["resting"].get("oid", ""))
        return Order(
            order_id=order_id,
            client_order_id=request.client_order_id,
            symbol=from_coin(to_coin(request.symbol)),
            side=request.side,
            type=request.order_type,
            status=state,
            price=price,
            quantity=to_float(wire.get("s")) or 0.0,
            executed_quantity=executed,
            timestamp=now_ms(),
            stop_price=to_float(request.stop_price) if request.stop_price is not None else None,
            reduce_only=bool(wire.get("r")),
        )

    async def place_order(self, request: OrderRequest) -> Order:
        meta = await self._asset(request.symbol)
        wire = await self._order_wire(request, meta)
        action = {"type": "order", "orders": [wire], "grouping": "na"}
        logger.debug("%s: placing %s %s %s", self.name, request.order_type, request.side, request.symbol)
        results = statuses(await self._action(action))
        return self._order_from_status(results[0] if results else None, request, wire)

    async def place_protective_orders(
        self,
        symbol: str,
        *,
        close_side: str,
        stop_loss_price: str | None,
        take_profit_price: str | None,
        position_side: str | None = None,
        quantity: str | None = None,
    ) -> ProtectionResult:
        """Both legs in one `positionTpsl` action so they follow the position."""
        result = ProtectionResult()
        if quantity is None:
            for position in await self.get_positions(symbol):
                quantity = str(abs(position.size))
                break
        legs = self.protective_requests(
            symbol,
            close_side=close_side,
            stop_loss_price=stop_loss_price,
            take_profit_price=take_profit_price,
            position_side=position_side,
            quantity=quantity,
        )
        if not legs:
            return result
        if quantity is None:
            for name in legs:
                result.errors[name] = f"no open position for {symbol}"
            return result

        meta = await self._asset(symbol)
        names = list(legs)
        wires = [await self._order_wire(legs[name], meta) for name in names]
        action = {"type": "order", "orders": wires, "grouping": "positionTpsl"}
        try:
            results = statuses(await self._action(action))
        except ExchangeRejection as exc:
            for name in names:
                result.errors[name] = str(exc)
            return result
        for index, name in enumerate(names):
            status = results[index] if index < len(results) else None
            try:
                setattr(result, name, self._order_from_status(status, legs[name], wires[index]))
            except ExchangeRejection as exc:
                result.errors[name] = str(exc)
        return result

    async def _frontend_open_orders(self) -> List[Mapping[str, Any]]:
        raw = await self._info({"type": "frontendOpenOrders", "user": self._user()})
        return [item for item in raw or [] if isinstance(item, dict)]

    async def cancel_order(
        self, symbol: str, order_id: str | None = None, client_order_id: str | None = None
    ) -> Dict[str, Any]:
        meta = await self._asset(symbol)
        if not order_id and client_order_id:
            coin = to_coin(symbol)
            for item in await self._frontend_open_orders():
                if item.get("coin") == coin and item.get("cloid") == client_order_id:
                    order_id = str(item.get("oid"))
                    break
        if not order_id:
            raise DomainValidationError(f"no open order to cancel on {symbol}")
        action = {"type": "cancel", "cancels": [{"a": meta.asset_id, "o": int(order_id)}]}
        results = statuses(await self._action(action))
        status = results[0] if results else "success"
        if isinstance(status, dict) and "error" in status:
            raise ExchangeRejection(str(status["error"]), payload=status)
        return {"symbol": from_coin(to_coin(symbol)), "orderId": str(order_id), "status": "CANCELED"}

    async def cancel_all_orders(self, symbol: str) -> Dict[str, Any]:
        meta = await self._asset(symbol)
        coin = to_coin(symbol)
        oids = [int(item["oid"]) for item in await self._frontend_open_orders() if item.get("coin") == coin and "oid" in item]
        if not oids:
            return {"symbol": from_coin(coin), "cancelled": 0}
        action = {"type": "cancel", "cancels": [{"a": meta.asset_id, "o": oid} for oid in oids]}
        results = statuses(await self._action(action))
        errors = [str(item["error"]) for item in results if isinstance(item, dict) and "error" in item]
        return {"symbol": from_coin(coin), "cancelled": len(oids) - len(errors), "errors": errors}

    async def get_open_orders(self, symbol: str | None = None) -> List[Order]:
        coin = to_coin(symbol) if symbol else None
        orders = []
        for item in await self._frontend_open_orders():
            if coin and item.get("coin") != coin:
                continue
            orders.append(map_order(item))
        return orders

    async def get_order(self, symbol: str, order_id: str) -> Order:
        raw = await self._info({"type": "orderStatus", "user": self._user(), "oid": int(order_id)})
        if not isinstance(raw, dict) or raw.get("status") != "order":
            raise DomainValidationError(f"unknown order {order_id}")
        entry = raw.get("order") or {}
        order = map_order(entry.get("order") or {})
        order.status = str(entry.get("status") or order.status).upper()
        return order

    async def _clearinghouse(self) -> Dict[str, Any]:
        raw = await self._info({"type": "clearinghouseState", "user": self._user()})
        if not isinstance(raw, dict):
            raise ExchangeRejection("clearinghouseState: unexpected payload", payload=raw)
        return raw

    async def get_positions(self, symbol: str | None = None) -> List[Position]:
        wanted = from_coin(to_coin(symbol)) if symbol else None
        positions = []
        for item in (await self._clearinghouse()).get("assetPositions", []) or []:
            position = map_position(item)
            if position is None or (wanted and position.symbol != wanted):
                continue
            positions.append(position)
        return positions

    async def get_balances(self) -> List[Balance]:
        state = await self._clearinghouse()
        summary = state.get("marginSummary") or {}
        pnl = sum(
            to_float((item.get("position") or {}).get("unrealizedPnl")) or 0.0
            for item in state.get("assetPositions", []) or []
        )
        return [
            Balance(
                asset="USDC",
                balance=to_float(summary.get("accountValue")) or 0.0,
                available=to_float(state.get("withdrawable")) or 0.0,
                unrealized_pnl=pnl,
            )
        ]

    async def set_leverage(self, symbol: str, leverage: int) -> Dict[str, Any]:
        meta = await self._asset(symbol)
        action = {
            "type": "updateLeverage",
            "asset": meta.asset_id,
            "isCross": False,
            "leverage": int(leverage),
        }
        statuses(await self._action(action))
        return {"symbol": meta.symbol, "leverage": int(leverage)}

    def debug_credentials(self) -> Dict[str, Any]:
        info = super().debug_credentials()
        info["network"] = "mainnet" if self.dispatcher.is_mainnet else "testnet"
        return info
