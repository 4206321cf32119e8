from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Mapping

from execution.errors import ExchangeRejection
from execution.orders import Balance, Order, OrderRequest, Position, now_ms
from utils.numbers import to_decimal, to_float

from .base import OrderClient
from .dispatcher import SCHEME_HMAC
from .metadata import AssetMetadata

logger = logging.getLogger(__name__)

BINANCE_ROUTES: Dict[str, str] = {
    "/fapi/v1/order": SCHEME_HMAC,
    "/fapi/v1/openOrders": SCHEME_HMAC,
    "/fapi/v1/allOpenOrders": SCHEME_HMAC,
    "/fapi/v1/batchOrders": SCHEME_HMAC,
    "/fapi/v1/leverage": SCHEME_HMAC,
    "/fapi/v1/positionSide/dual": SCHEME_HMAC,
    "/fapi/v2/positionRisk": SCHEME_HMAC,
    "/fapi/v2/balance": SCHEME_HMAC,
    "/fapi/v2/account": SCHEME_HMAC,
}


def _num(value: Any, default: float = 0.0) -> float:
    number = to_float(value)
    return default if number is None else number


def _decimals_from_step(step: Any) -> int | None:
    number = to_decimal(step)
    if number is None or number <= 0:
        return None
    exponent = number.normalize().as_tuple().exponent
    return max(0, -int(exponent))


def map_order(raw: Mapping[str, Any], request: OrderRequest | None = None) -> Order:
    """Binance-style order payload to the canonical Order."""
    quantity = raw.get("origQty")
    if quantity in (None, ""):
        quantity = raw.get("quantity")
    if quantity in (None, "") and request is not None:
        quantity = request.quantity
    executed = raw.get("executedQty")
    if executed in (None, ""):
        # Some acknowledgements omit executedQty right after placement.
        executed = raw.get("origQty", quantity)
    timestamp = raw.get("time") or raw.get("transactTime") or raw.get("updateTime") or now_ms()
    reduce_only = raw.get("reduceOnly")
    return Order(
        order_id=str(raw.get("orderId", "") or ""),
        client_order_id=raw.get("clientOrderId") or (request.client_order_id if request else None),
        symbol=str(raw.get("symbol") or (request.symbol if request else "")),
        side=str(raw.get("side") or (request.side if request else "")),
        type=str(raw.get("type") or raw.get("origType") or (request.order_type if request else "")),
        status=str(raw.get("status") or "NEW"),
        price=_num(raw.get("avgPrice")) or _num(raw.get("price")),
        quantity=_num(quantity),
        executed_quantity=_num(executed),
        timestamp=int(timestamp),
        stop_price=to_float(raw.get("stopPrice")) or None,
        reduce_only=bool(reduce_only) if reduce_only is not None else None,
    )


def map_position(raw: Mapping[str, Any]) -> Position | None:
    size = _num(raw.get("positionAmt"))
    side = Position.side_for(size)
    if side is None:
        return None
    position_side = raw.get("positionSide")
    return Position(
        symbol=str(raw.get("symbol", "")),
        side=side,
        size=size,
        entry_price=_num(raw.get("entryPrice")),
        mark_price=to_float(raw.get("markPrice")),
        liquidation_price=to_float(raw.get("liquidationPrice")),
        unrealized_pnl=_num(raw.get("unRealizedProfit", raw.get("unrealizedProfit"))),
        leverage=to_float(raw.get("leverage")),
        position_side=str(position_side) if position_side else None,
    )


def map_balance(raw: Mapping[str, Any]) -> Balance:
    return Balance(
        asset=str(raw.get("asset", "")),
        balance=_num(raw.get("balance", raw.get("walletBalance"))),
        available=_num(raw.get("availableBalance", raw.get("maxWithdrawAmount"))),
        unrealized_pnl=_num(raw.get("crossUnPnl", raw.get("unrealizedProfit"))),
    )


def parse_exchange_info(payload: Mapping[str, Any]) -> List[AssetMetadata]:
    entries: List[AssetMetadata] = []
    for item in payload.get("symbols", []) or []:
        symbol = item.get("symbol")
        if not symbol:
            continue
        filters = {f.get("filterType"): f for f in item.get("filters", []) or []}
        price_precision = item.get("pricePrecision")
        if price_precision is None:
            price_precision = _decimals_from_step(filters.get("PRICE_FILTER", {}).get("tickSize"))
        quantity_precision = item.get("quantityPrecision")
        if quantity_precision is None:
            quantity_precision = _decimals_from_step(filters.get("LOT_SIZE", {}).get("stepSize"))
        if price_precision is None or quantity_precision is None:
            logger.debug("exchangeInfo: %s has no precision, skipped", symbol)
            continue
        entries.append(
            AssetMetadata(
                symbol=str(symbol).upper(),
                asset_id=None,
                price_precision=int(price_precision),
                quantity_precision=int(quantity_precision),
            )
        )
    return entries


def order_params(request: OrderRequest) -> Dict[str, Any]:
    """Binance-compatible order fields, in the order they are signed."""
    params: Dict[str, Any] = {
        "symbol": request.symbol,
        "side": request.side,
        "type": request.order_type,
    }
    if request.quantity is not None and not request.close_position:
        params["quantity"] = request.quantity
    if request.price is not None:
        params["price"] = request.price
    if request.client_order_id:
        params["newClientOrderId"] = request.client_order_id
    if request.stop_price is not None:
        params["stopPrice"] = request.stop_price
    if request.order_type == "LIMIT":
        params["timeInForce"] = request.time_in_force or "GTC"
    if "STOP" in request.order_type or "TAKE_PROFIT" in request.order_type:
        params["workingType"] = "CONTRACT_PRICE"
    # reduceOnly is rejected in hedge mode (LONG/SHORT) and together with closePosition.
    hedged = request.position_side in ("LONG", "SHORT")
    if request.reduce_only and not request.close_position and not hedged:
        params["reduceOnly"] = True
    if request.position_side:
        params["positionSide"] = request.position_side
    if request.close_position:
        params["closePosition"] = True
    return params


class BinanceFuturesClient(OrderClient):
    """USD-M perpetuals; every private endpoint is HMAC signed."""

    name = "binance"
    routes: Mapping[str, str] = BINANCE_ROUTES

    place_order_path = "/fapi/v1/order"
    position_path = "/fapi/v2/positionRisk"
    balance_path = "/fapi/v2/balance"

    async def load_asset_table(self) -> List[AssetMetadata]:
        payload = await self.dispatcher.request("GET", "/fapi/v1/exchangeInfo")
        if not isinstance(payload, dict):
            raise ExchangeRejection("exchangeInfo: unexpected payload", payload=payload)
        return parse_exchange_info(payload)

    async def get_price(self, symbol: str) -> float:
        payload = await self.dispatcher.request("GET", "/fapi/v1/ticker/price", {"symbol": symbol})
        price = to_float(payload.get("price")) if isinstance(payload, dict) else None
        return math.nan if price is None else price

    async def place_order(self, request: OrderRequest) -> Order:
        request = await self.format_order(request)
        params = order_params(request)
        logger.debug("%s: placing %s %s %s", self.name, request.order_type, request.side, request.symbol)
        raw = await self.dispatcher.request("POST", self.place_order_path, params)
        return map_order(raw if isinstance(raw, dict) else {}, request)

    async def cancel_order(
        self, symbol: str, order_id: str | None = None, client_order_id: str | None = None
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {"symbol": symbol}
        if order_id:
            params["orderId"] = order_id
        elif client_order_id:
            params["origClientOrderId"] = client_order_id
        else:
            raise ValueError("order_id or client_order_id is required")
        raw = await self.dispatcher.request("DELETE", "/fapi/v1/order", params)
        return map_order(raw).to_dict() if isinstance(raw, dict) else {"response": raw}

    async def cancel_all_orders(self, symbol: str) -> Dict[str, Any]:
        raw = await self.dispatcher.request("DELETE", "/fapi/v1/allOpenOrders", {"symbol": symbol})
        return {"symbol": symbol, "response": raw}

    async def get_open_orders(self, symbol: str | None = None) -> List[Order]:
        params = {"symbol": symbol} if symbol else None
        raw = await self.dispatcher.request("GET", "/fapi/v1/openOrders", params)
        return [map_order(item) for item in _as_list(raw)]

    async def get_order(self, symbol: str, order_id: str) -> Order:
        raw = await self.dispatcher.request("GET", "/fapi/v1/order", {"symbol": symbol, "orderId": order_id})
        return map_order(raw if isinstance(raw, dict) else {})

    async def _position_risk(self, symbol: str | None = None) -> List[Mapping[str, Any]]:
        params = {"symbol": symbol} if symbol else None
        raw = await self.dispatcher.request("GET", self.position_path, params)
        return _as_list(raw)

    async def get_positions(self, symbol: str | None = None) -> List[Position]:
        positions = []
        for item in await self._position_risk(symbol):
            position = map_position(item)
            if position is None:
                continue
            if symbol and position.symbol != symbol:
                continue
            positions.append(position)
        return positions

    async def get_leverage(self, symbol: str) -> float:
        # positionRisk lists the configured leverage even for flat symbols.
        for item in await self._position_risk(symbol):
            if item.get("symbol") not in (None, symbol):
                continue
            leverage = to_float(item.get("leverage"))
            if leverage:
                return leverage
        return 1

    async def get_balances(self) -> List[Balance]:
        raw = await self.dispatcher.request("GET", self.balance_path)
        return [map_balance(item) for item in _as_list(raw)]

    async def set_leverage(self, symbol: str, leverage: int) -> Dict[str, Any]:
        raw = await self.dispatcher.request(
            "POST", "/fapi/v1/leverage", {"symbol": symbol, "leverage": int(leverage)}
        )
        applied = raw.get("leverage", leverage) if isinstance(raw, dict) else leverage
        return {"symbol": symbol, "leverage": int(applied)}

    async def get_position_mode(self) -> bool:
        raw = await self.dispatcher.request("GET", "/fapi/v1/positionSide/dual")
        if not isinstance(raw, dict):
            return False
        return str(raw.get("dualSidePosition")).lower() == "true"

    async def set_position_mode(self, dual_side: bool) -> Dict[str, Any]:
        try:
            await self.dispatcher.request(
                "POST", "/fapi/v1/positionSide/dual", {"dualSidePosition": bool(dual_side)}
            )
        except ExchangeRejection as exc:
            # -4059: the account already runs the requested mode.
            if exc.code != -4059:
                raise
            logger.debug("%s: position mode already %s", self.name, "hedge" if dual_side else "one-way")
        return {"dualSidePosition": bool(dual_side)}


def _as_list(raw: Any) -> List[Mapping[str, Any]]:
    if isinstance(raw, list):
        return [item for item in raw if isinstance(item, dict)]
    if isinstance(raw, dict):
        return [raw]
    return []
