"""Exchange client registry."""

from __future__ import annotations

from typing import Any, Callable, Dict, Type

from execution.credentials import Credentials
from project_settings import ExchangeSettings

from .aster import AsterClient
from .base import OrderClient
from .binance import BinanceFuturesClient
from .dispatcher import RequestDispatcher
from .hyperliquid import HyperliquidClient
from .metadata import AssetMetadata, AssetMetadataCache
from .stream import MarketStream
from .transport import HttpTransport, PreparedRequest

CLIENT_FACTORIES: Dict[str, Type[OrderClient]] = {
    "aster": AsterClient,
    "hyperliquid": HyperliquidClient,
    "binance": BinanceFuturesClient,
}

EXCHANGE_ALIASES: Dict[str, str] = {
    "hl": "hyperliquid",
    "binanceusdm": "binance",
    "binance-futures": "binance",
}


def normalize_exchange_name(name: str) -> str:
    key = name.strip().lower()
    return EXCHANGE_ALIASES.get(key, key)


def create_client(
    name: str,
    settings: ExchangeSettings,
    credentials: Credentials,
    *,
    transport: HttpTransport | None = None,
    clock: Callable[[], float] | None = None,
    **kwargs: Any,
) -> OrderClient:
    canonical = normalize_exchange_name(name)
    cls = CLIENT_FACTORIES.get(canonical)
    if not cls:
        raise KeyError(f"No client registered for exchange '{name}'")
    options: Dict[str, Any] = {
        "transport": transport,
        "recv_window": settings.recv_window,
        "is_mainnet": not settings.testnet,
    }
    if clock is not None:
        options["clock"] = clock
    dispatcher = RequestDispatcher(canonical, settings.rest_url, credentials, cls.routes, **options)
    return cls(dispatcher, metadata_ttl=settings.metadata_ttl, **kwargs)


__all__ = [
    "AssetMetadata",
    "AssetMetadataCache",
    "CLIENT_FACTORIES",
    "HttpTransport",
    "MarketStream",
    "OrderClient",
    "PreparedRequest",
    "RequestDispatcher",
    "create_client",
    "normalize_exchange_name",
]
