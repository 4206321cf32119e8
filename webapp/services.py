from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Optional

from exchanges import CLIENT_FACTORIES, MarketStream, OrderClient, create_client, normalize_exchange_name
from exchanges.stream import ConnectFn
from exchanges.transport import HttpTransport
from execution import CredentialStore, TelemetryClient, TradingOrchestrator
from execution.errors import DomainValidationError
from project_settings import GatewaySettings

from .realtime import TelemetryFeed

logger = logging.getLogger(__name__)

STREAM_EXCHANGES = ("aster", "binance")


class UnknownExchangeError(KeyError):
    """Raised for an exchange name with no registered client."""


class GatewayService:
    """Owns settings, credentials, one client and orchestrator per exchange, and telemetry.

    Clients are created on first use so an exchange without credentials costs
    nothing until something calls it.
    """

    def __init__(
        self,
        settings: GatewaySettings | None = None,
        credentials: CredentialStore | None = None,
        *,
        telemetry: TelemetryClient | None = None,
        transport: HttpTransport | None = None,
    ) -> None:
        self._settings = settings or GatewaySettings.from_env()
        self._credentials = credentials or CredentialStore.from_env(self._settings.exchanges)
        self._telemetry = telemetry or TelemetryClient(self._settings.telemetry)
        self._transport = transport
        self._clients: Dict[str, OrderClient] = {}
        self._orchestrators: Dict[str, TradingOrchestrator] = {}

    @property
    def settings(self) -> GatewaySettings:
        return self._settings

    @property
    def telemetry(self) -> TelemetryClient:
        return self._telemetry

    def exchanges(self) -> list[str]:
        return [name for name in self._settings.exchanges if name in CLIENT_FACTORIES]

    def resolve(self, exchange: str) -> str:
        canonical = normalize_exchange_name(exchange)
        if canonical not in CLIENT_FACTORIES or canonical not in self._settings.exchanges:
            raise UnknownExchangeError(exchange)
        return canonical

    def client(self, exchange: str) -> OrderClient:
        canonical = self.resolve(exchange)
        client = self._clients.get(canonical)
        if client is None:
            client = create_client(
                canonical,
                self._settings.exchange(canonical),
                self._credentials.get(canonical),
                transport=self._transport,
            )
            self._clients[canonical] = client
            logger.info("%s client ready (%s)", canonical, client.base_url)
        return client

    def orchestrator(self, exchange: str) -> TradingOrchestrator:
        canonical = self.resolve(exchange)
        orchestrator = self._orchestrators.get(canonical)
        if orchestrator is None:
            orchestrator = TradingOrchestrator(
                self.client(canonical),
                defaults=self._settings.trading,
                telemetry=self._telemetry,
            )
            self._orchestrators[canonical] = orchestrator
        return orchestrator

    def market_stream(self, exchange: str, *, connect: ConnectFn | None = None) -> MarketStream:
        """Market data stream for a Binance-style venue; Hyperliquid speaks another protocol."""
        canonical = self.resolve(exchange)
        if canonical not in STREAM_EXCHANGES:
            raise DomainValidationError(f"{canonical} has no Binance-style market stream")
        return MarketStream(self._settings.exchange(canonical).ws_url, name=canonical, connect=connect)

    def attach_realtime(self, feed: TelemetryFeed) -> None:
        self._telemetry.register_listener(feed.publish)

    def telemetry_backlog(self, limit: int = 50) -> Iterable[Dict[str, object]]:
        return self._telemetry.tail(limit)

    def state_payload(self) -> Dict[str, Any]:
        return {
            "exchanges": self.exchanges(),
            "active": sorted(self._clients),
            "settings": self._settings.to_dict(),
            "credentials": self._credentials.debug(),
        }

    async def startup(self) -> None:
        await self._telemetry.start()

    async def shutdown(self) -> None:
        for name, client in list(self._clients.items()):
            try:
                await client.close()
            except Exception as exc:  # pylint: disable=broad-except
                logger.warning("Failed to close %s client: %s", name, exc)
        self._clients.clear()
        self._orchestrators.clear()
        await self._telemetry.stop()
