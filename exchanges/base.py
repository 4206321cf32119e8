from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping

from config import METADATA_TTL_SECONDS
from execution.errors import DomainValidationError, GatewayError
from execution.orders import (
    CONDITIONAL_TYPES,
    Balance,
    Order,
    OrderRequest,
    Position,
    ProtectionResult,
    now_ms,
)
from utils.numbers import strip_trailing_zeros

from .dispatcher import RequestDispatcher
from .metadata import AssetMetadata, AssetMetadataCache

logger = logging.getLogger(__name__)


class OrderClient(ABC):
    """Base interface for exchange order clients.

    Concrete clients raise GatewayError subclasses; turning them into response
    envelopes is the orchestrator's job.
    """

    name: str
    trading_type: str = "perpetual"
    # Signature scheme per endpoint, see RequestDispatcher.
    routes: Mapping[str, str] = {}

    def __init__(self, dispatcher: RequestDispatcher, *, metadata_ttl: float = METADATA_TTL_SECONDS) -> None:
        self.dispatcher = dispatcher
        self._metadata = AssetMetadataCache(
            self.load_asset_table, ttl=metadata_ttl, exchange=self.name
        )

    @property
    def metadata(self) -> AssetMetadataCache:
        return self._metadata

    @property
    def base_url(self) -> str:
        return self.dispatcher.base_url

    # ------------------------------------------------------------------ #
    # Exchange specific
    # ------------------------------------------------------------------ #

    @abstractmethod
    async def load_asset_table(self) -> List[AssetMetadata]:
        """Fetch precision metadata for every listed symbol in one call."""

    @abstractmethod
    async def get_price(self, symbol: str) -> float:
        """Return the last/mid price for the symbol."""

    @abstractmethod
    async def place_order(self, request: OrderRequest) -> Order:
        """Submit an order and return it in canonical form."""

    @abstractmethod
    async def cancel_order(
        self, symbol: str, order_id: str | None = None, client_order_id: str | None = None
    ) -> Dict[str, Any]:
        """Cancel one order by exchange id or client id."""

    @abstractmethod
    async def cancel_all_orders(self, symbol: str) -> Dict[str, Any]:
        """Cancel every resting order for the symbol."""

    @abstractmethod
    async def get_open_orders(self, symbol: str | None = None) -> List[Order]:
        """Resting orders, optionally filtered by symbol."""

    @abstractmethod
    async def get_order(self, symbol: str, order_id: str) -> Order:
        """Single order lookup."""

    @abstractmethod
    async def get_positions(self, symbol: str | None = None) -> List[Position]:
        """Open (non-zero) positions."""

    @abstractmethod
    async def get_balances(self) -> List[Balance]:
        """Margin balances."""

    @abstractmethod
    async def set_leverage(self, symbol: str, leverage: int) -> Dict[str, Any]:
        """Set leverage for the symbol."""

    # ------------------------------------------------------------------ #
    # Shared behaviour (overridable)
    # ------------------------------------------------------------------ #

    def canonical_symbol(self, symbol: str) -> str:
        """The key this exchange's metadata and positions use for `symbol`."""
        return symbol.strip().upper()

    async def get_leverage(self, symbol: str) -> float:
        positions = await self.get_positions(symbol)
        for position in positions:
            if position.leverage:
                return position.leverage
        return 1

    async def get_position_mode(self) -> bool:
        """True when the account runs hedge (dual-side) mode."""
        return False

    async def set_position_mode(self, dual_side: bool) -> Dict[str, Any]:
        """Switch hedge mode on or off; the default only knows one-way mode."""
        if dual_side:
            raise DomainValidationError(f"{self.name} supports one-way position mode only")
        return {"dualSidePosition": False}

    async def format_order(self, request: OrderRequest) -> OrderRequest:
        """Round quantity and prices to the symbol precision, trailing zeros stripped."""
        meta = self.metadata
        if request.quantity is not None:
            request.quantity = strip_trailing_zeros(
                await meta.format_quantity(request.symbol, request.quantity)
            )
        if request.price is not None:
            request.price = strip_trailing_zeros(await meta.format_price(request.symbol, request.price))
        if request.stop_price is not None:
            request.stop_price = strip_trailing_zeros(
                await meta.format_price(request.symbol, request.stop_price)
            )
        return request

    async def cancel_conditional_orders(self, symbol: str) -> int:
        """Cancel resting stop/take-profit orders for the symbol; returns how many went."""
        cancelled = 0
        for order in await self.get_open_orders(symbol):
            if order.symbol != symbol or order.type not in CONDITIONAL_TYPES:
                continue
            try:
                await self.cancel_order(symbol, order_id=order.order_id)
                cancelled += 1
            except GatewayError as exc:
                logger.debug("%s: failed to cancel conditional order %s: %s", self.name, order.order_id, exc)
        return cancelled

    def protective_requests(
        self,
        symbol: str,
        *,
        close_side: str,
        stop_loss_price: str | None,
        take_profit_price: str | None,
        position_side: str | None = None,
        quantity: str | None = None,
    ) -> Dict[str, OrderRequest]:
        stamp = now_ms()
        legs: Dict[str, OrderRequest] = {}
        if stop_loss_price is not None:
            legs["stop_loss"] = OrderRequest(
                symbol=symbol,
                side=close_side,  # type: ignore[arg-type]
                quantity=quantity,
                order_type="STOP_MARKET",
                stop_price=stop_loss_price,
                close_position=True,
                position_side=position_side,  # type: ignore[arg-type]
                client_order_id=f"sl_{stamp}",
            )
        if take_profit_price is not None:
            legs["take_profit"] = OrderRequest(
                symbol=symbol,
                side=close_side,  # type: ignore[arg-type]
                quantity=quantity,
                order_type="TAKE_PROFIT_MARKET",
                stop_price=take_profit_price,
                close_position=True,
                position_side=position_side,  # type: ignore[arg-type]
                client_order_id=f"tp_{stamp}",
            )
        return legs

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
        """Place each leg on its own; a failing leg does not stop the other."""
        result = ProtectionResult()
        legs = self.protective_requests(
            symbol,
            close_side=close_side,
            stop_loss_price=stop_loss_price,
            take_profit_price=take_profit_price,
            position_side=position_side,
            quantity=quantity,
        )
        for leg, request in legs.items():
            try:
                order = await self.place_order(request)
            except GatewayError as exc:
                result.errors[leg] = str(exc)
                continue
            setattr(result, leg, order)
        return result

    def debug_credentials(self) -> Dict[str, Any]:
        """Presence flags only; never secret values."""
        return {
            "exchange": self.name,
            "baseUrl": self.base_url,
            "credentials": self.dispatcher.credentials.presence(),
        }

    async def close(self) -> None:
        await self.dispatcher.close()
