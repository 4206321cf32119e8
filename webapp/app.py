from __future__ import annotations

from decimal import Decimal
from typing import Literal, Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from execution import ApiResponse, OrderRequest, TradingOrchestrator
from execution.orchestrator import MAX_LEVERAGE

from .realtime import TelemetryFeed
from .services import GatewayService, UnknownExchangeError

# Failed envelopes still carry the full body; the status code is a hint for HTTP clients.
ERROR_STATUS = {
    "domain_validation_error": 400,
    "configuration_error": 503,
    "signature_error": 500,
    "exchange_rejection": 502,
    "network_error": 504,
    "internal": 500,
}


class OrderPayload(BaseModel):
    symbol: str
    side: Literal["BUY", "SELL"]
    type: Literal["MARKET", "LIMIT", "STOP_MARKET", "TAKE_PROFIT_MARKET"] = "MARKET"
    quantity: Optional[Decimal] = Field(default=None, gt=0)
    price: Optional[Decimal] = Field(default=None, gt=0)
    stop_price: Optional[Decimal] = Field(default=None, gt=0)
    time_in_force: Optional[Literal["GTC", "IOC", "FOK", "GTX"]] = None
    reduce_only: bool = False
    close_position: bool = False
    position_side: Optional[Literal["BOTH", "LONG", "SHORT"]] = None
    client_order_id: Optional[str] = None

    def to_request(self) -> OrderRequest:
        def text(value: Optional[Decimal]) -> Optional[str]:
            return None if value is None else str(value)

        return OrderRequest(
            symbol=self.symbol,
            side=self.side,
            quantity=text(self.quantity),
            order_type=self.type,
            price=text(self.price),
            stop_price=text(self.stop_price),
            time_in_force=self.time_in_force,
            reduce_only=self.reduce_only,
            close_position=self.close_position,
            position_side=self.position_side,
            client_order_id=self.client_order_id,
        )


class LeveragePayload(BaseModel):
    symbol: str
    leverage: int = Field(..., ge=1, le=MAX_LEVERAGE)


class QuickTradePayload(BaseModel):
    symbol: str
    usd_value: float = Field(..., gt=0)
    stop_loss_pct: Optional[float] = Field(default=None, ge=0, lt=100)
    take_profit_pct: Optional[float] = Field(default=None, ge=0, lt=100)
    leverage: Optional[int] = Field(default=None, ge=1, le=MAX_LEVERAGE)


class ClosePayload(BaseModel):
    symbol: str
    quantity: Optional[Decimal] = Field(default=None, gt=0)


class PositionModePayload(BaseModel):
    dual_side: bool


class TriggerPayload(BaseModel):
    symbol: str
    price: Decimal = Field(..., gt=0)
    quantity: Optional[Decimal] = Field(default=None, gt=0)

    def quantity_text(self) -> Optional[str]:
        return None if self.quantity is None else str(self.quantity)


def create_app(service: GatewayService | None = None) -> FastAPI:
    app = FastAPI(title="Perp Trading Gateway", version="0.1.0")
    gateway = service or GatewayService()
    feed = TelemetryFeed()
    gateway.attach_realtime(feed)
    app.state.gateway = gateway

    def orchestrator_for(exchange: str) -> TradingOrchestrator:
        try:
            return gateway.orchestrator(exchange)
        except UnknownExchangeError as exc:
            raise HTTPException(status_code=404, detail=f"Unknown exchange '{exchange}'") from exc

    def respond(response: ApiResponse) -> JSONResponse:
        status = 200 if response.success else ERROR_STATUS.get(response.error_type or "", 500)
        return JSONResponse(response.to_dict(), status_code=status)

    @app.on_event("startup")
    async def startup_event() -> None:
        await gateway.startup()

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        await gateway.shutdown()

    @app.get("/api/state")
    async def state_api() -> JSONResponse:
        return JSONResponse(gateway.state_payload())

    @app.get("/api/telemetry")
    async def telemetry_api(limit: int = 50) -> JSONResponse:
        return JSONResponse({"events": list(gateway.telemetry_backlog(limit))})

    @app.get("/api/{exchange}/credentials")
    async def credentials_api(exchange: str) -> JSONResponse:
        return respond(await orchestrator_for(exchange).debug_credentials())

    @app.get("/api/{exchange}/positions")
    async def positions_api(exchange: str, symbol: Optional[str] = None) -> JSONResponse:
        return respond(await orchestrator_for(exchange).get_positions(symbol))

    @app.get("/api/{exchange}/balances")
    async def balances_api(exchange: str) -> JSONResponse:
        return respond(await orchestrator_for(exchange).get_balances())

    @app.get("/api/{exchange}/orders")
    async def open_orders_api(exchange: str, symbol: Optional[str] = None) -> JSONResponse:
        return respond(await orchestrator_for(exchange).get_open_orders(symbol))

    @app.post("/api/{exchange}/orders")
    async def place_order_api(exchange: str, payload: OrderPayload) -> JSONResponse:
        return respond(await orchestrator_for(exchange).place_order(payload.to_request()))

    @app.delete("/api/{exchange}/orders/{symbol}")
    async def cancel_orders_api(
        exchange: str,
        symbol: str,
        order_id: Optional[str] = None,
        client_order_id: Optional[str] = None,
    ) -> JSONResponse:
        orchestrator = orchestrator_for(exchange)
        if order_id or client_order_id:
            return respond(await orchestrator.cancel_order(symbol, order_id, client_order_id))
        return respond(await orchestrator.cancel_all_orders(symbol))

    @app.post("/api/{exchange}/leverage")
    async def leverage_api(exchange: str, payload: LeveragePayload) -> JSONResponse:
        return respond(await orchestrator_for(exchange).set_leverage(payload.symbol, payload.leverage))

    @app.get("/api/{exchange}/position-mode")
    async def get_position_mode_api(exchange: str) -> JSONResponse:
        return respond(await orchestrator_for(exchange).get_position_mode())

    @app.post("/api/{exchange}/position-mode")
    async def set_position_mode_api(exchange: str, payload: PositionModePayload) -> JSONResponse:
        return respond(await orchestrator_for(exchange).set_position_mode(payload.dual_side))

    @app.post("/api/{exchange}/stop-loss")
    async def stop_loss_api(exchange: str, payload: TriggerPayload) -> JSONResponse:
        return respond(
            await orchestrator_for(exchange).set_stop_loss(payload.symbol, str(payload.price), payload.quantity_text())
        )

    @app.post("/api/{exchange}/take-profit")
    async def take_profit_api(exchange: str, payload: TriggerPayload) -> JSONResponse:
        return respond(
            await orchestrator_for(exchange).set_take_profit(payload.symbol, str(payload.price), payload.quantity_text())
        )

    @app.delete("/api/{exchange}/conditional-orders/{symbol}")
    async def cancel_conditional_api(exchange: str, symbol: str) -> JSONResponse:
        return respond(await orchestrator_for(exchange).cancel_conditional_orders(symbol))

    @app.post("/api/{exchange}/quick-long")
    async def quick_long_api(exchange: str, payload: QuickTradePayload) -> JSONResponse:
        return respond(
            await orchestrator_for(exchange).quick_long(
                payload.symbol,
                payload.usd_value,
                payload.stop_loss_pct,
                payload.take_profit_pct,
                payload.leverage,
            )
        )

    @app.post("/api/{exchange}/quick-short")
    async def quick_short_api(exchange: str, payload: QuickTradePayload) -> JSONResponse:
        return respond(
            await orchestrator_for(exchange).quick_short(
                payload.symbol,
                payload.usd_value,
                payload.stop_loss_pct,
                payload.take_profit_pct,
                payload.leverage,
            )
        )

    @app.post("/api/{exchange}/close")
    async def close_api(exchange: str, payload: ClosePayload) -> JSONResponse:
        quantity = None if payload.quantity is None else str(payload.quantity)
        return respond(await orchestrator_for(exchange).close_position(payload.symbol, quantity))

    @app.post("/api/{exchange}/close-all")
    async def close_all_api(exchange: str) -> JSONResponse:
        return respond(await orchestrator_for(exchange).close_all_positions())

    @app.websocket("/ws/telemetry")
    async def telemetry_ws(websocket: WebSocket) -> None:
        await feed.connect(websocket)
        try:
            for entry in gateway.telemetry_backlog():
                await websocket.send_json(entry)
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            await feed.disconnect(websocket)

    return app
