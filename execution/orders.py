from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal

from .errors import PartialWorkflowFailure

OrderSide = Literal["BUY", "SELL"]
OrderType = Literal["MARKET", "LIMIT", "STOP_MARKET", "TAKE_PROFIT_MARKET"]
PositionSide = Literal["LONG", "SHORT"]
TimeInForce = Literal["GTC", "IOC", "FOK", "GTX"]

ORDER_SIDES = ("BUY", "SELL")
ORDER_TYPES = ("MARKET", "LIMIT", "STOP_MARKET", "TAKE_PROFIT_MARKET")
TIME_IN_FORCE = ("GTC", "IOC", "FOK", "GTX")
CONDITIONAL_TYPES = frozenset(
    {"STOP", "STOP_MARKET", "TAKE_PROFIT", "TAKE_PROFIT_MARKET", "TRAILING_STOP_MARKET"}
)


def now_ms() -> int:
    return int(time.time() * 1000)


def _drop_none(values: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}


@dataclass(slots=True)
class OrderRequest:
    symbol: str
    side: OrderSide
    quantity: str | None = None
    order_type: OrderType = "MARKET"
    price: str | None = None
    stop_price: str | None = None
    time_in_force: TimeInForce | None = None
    reduce_only: bool = False
    close_position: bool = False
    position_side: PositionSide | None = None
    client_order_id: str | None = None


@dataclass(slots=True)
class Order:
    """Canonical order shape shared by every exchange client."""

    order_id: str
    symbol: str
    side: str
    type: str
    status: str
    price: float
    quantity: float
    executed_quantity: float
    timestamp: int
    client_order_id: str | None = None
    stop_price: float | None = None
    reduce_only: bool | None = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none(
            {
                "orderId": self.order_id,
                "clientOrderId": self.client_order_id,
                "symbol": self.symbol,
                "side": self.side,
                "type": self.type,
                "status": self.status,
                "price": self.price,
                "quantity": self.quantity,
                "executedQuantity": self.executed_quantity,
                "stopPrice": self.stop_price,
                "reduceOnly": self.reduce_only,
                "timestamp": self.timestamp,
            }
        )


@dataclass(slots=True)
class Position:
    symbol: str
    side: PositionSide
    size: float
    entry_price: float
    unrealized_pnl: float
    mark_price: float | None = None
    liquidation_price: float | None = None
    leverage: float | None = None
    position_side: str | None = None

    @staticmethod
    def side_for(size: float) -> PositionSide | None:
        if size > 0:
            return "LONG"
        if size < 0:
            return "SHORT"
        return None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none(
            {
                "symbol": self.symbol,
                "side": self.side,
                "size": self.size,
                "entryPrice": self.entry_price,
                "markPrice": self.mark_price,
                "liquidationPrice": self.liquidation_price,
                "unrealizedPnl": self.unrealized_pnl,
                "leverage": self.leverage,
                "positionSide": self.position_side,
            }
        )


@dataclass(slots=True)
class Balance:
    asset: str
    balance: float
    available: float
    unrealized_pnl: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset": self.asset,
            "balance": self.balance,
            "available": self.available,
            "unrealizedPnl": self.unrealized_pnl,
        }


@dataclass(slots=True)
class ProtectionResult:
    """Outcome of the stop-loss / take-profit placement step."""

    stop_loss: Order | None = None
    take_profit: Order | None = None
    errors: Dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class QuickTradeResult:
    """Main order plus independently optional protective legs.

    A missing leg means its placement failed; the reason is in `leg_errors`.
    """

    main_order: Order
    side: PositionSide
    quantity: str
    entry_price: float
    leverage: int
    stop_loss_price: str | None = None
    take_profit_price: str | None = None
    stop_loss: Order | None = None
    take_profit: Order | None = None
    leg_errors: Dict[str, str] = field(default_factory=dict)

    @property
    def protected(self) -> bool:
        return self.stop_loss is not None and self.take_profit is not None

    @property
    def partial_failure(self) -> PartialWorkflowFailure | None:
        if not self.leg_errors:
            return None
        legs = ", ".join(sorted(self.leg_errors))
        return PartialWorkflowFailure(
            f"{self.side} {self.main_order.symbol} opened without {legs}", legs=self.leg_errors
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "mainOrder": self.main_order.to_dict(),
            "side": self.side,
            "quantity": self.quantity,
            "entryPrice": self.entry_price,
            "leverage": self.leverage,
            "stopLossPrice": self.stop_loss_price,
            "takeProfitPrice": self.take_profit_price,
            "protected": self.protected,
        }
        if self.stop_loss is not None:
            data["stopLoss"] = self.stop_loss.to_dict()
        if self.take_profit is not None:
            data["takeProfit"] = self.take_profit.to_dict()
        failure = self.partial_failure
        if failure is not None:
            data["partialFailure"] = failure.to_dict()
        return _drop_none(data)


@dataclass(slots=True)
class ApiResponse:
    """Envelope returned by every orchestrator operation."""

    success: bool
    exchange: str
    trading_type: str = "perpetual"
    data: Any = None
    error: str | None = None
    error_type: str | None = None
    timestamp: int = field(default_factory=now_ms)

    @classmethod
    def ok(cls, exchange: str, data: Any = None, *, trading_type: str = "perpetual") -> "ApiResponse":
        return cls(success=True, exchange=exchange, trading_type=trading_type, data=data)

    @classmethod
    def fail(
        cls,
        exchange: str,
        error: str,
        error_type: str,
        *,
        data: Any = None,
        trading_type: str = "perpetual",
    ) -> "ApiResponse":
        return cls(
            success=False,
            exchange=exchange,
            trading_type=trading_type,
            data=data,
            error=error,
            error_type=error_type,
        )

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none(
            {
                "success": self.success,
                "data": _serialise(self.data),
                "error": self.error,
                "errorType": self.error_type,
                "timestamp": self.timestamp,
                "exchange": self.exchange,
                "tradingType": self.trading_type,
            }
        )


def _serialise(value: Any) -> Any:
    if value is None:
        return None
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if isinstance(value, dict):
        return {key: _serialise(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_serialise(item) for item in value]
    return value


__all__: List[str] = [
    "ApiResponse",
    "Balance",
    "CONDITIONAL_TYPES",
    "ORDER_SIDES",
    "ORDER_TYPES",
    "Order",
    "OrderRequest",
    "Position",
    "ProtectionResult",
    "QuickTradeResult",
    "TIME_IN_FORCE",
    "now_ms",
]

