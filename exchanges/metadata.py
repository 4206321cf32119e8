from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, Mapping

from config import FALLBACK_DECIMALS, METADATA_MIN_RELOAD_SECONDS, METADATA_TTL_SECONDS
from execution.errors import DomainValidationError, GatewayError
from utils.numbers import format_fixed

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AssetMetadata:
    symbol: str
    asset_id: int | None
    price_precision: int
    quantity_precision: int

    def to_dict(self) -> Dict[str, object]:
        return {
            "symbol": self.symbol,
            "assetId": self.asset_id,
            "pricePrecision": self.price_precision,
            "quantityPrecision": self.quantity_precision,
        }


MetadataLoader = Callable[[], Awaitable[Iterable[AssetMetadata]]]


class AssetMetadataCache:
    """Whole-table cache of symbol precision and asset ids.

    The table is rebuilt in one loader call and swapped in as a new dict, so a
    reader sees either the previous table or the complete new one. Concurrent
    misses share one refresh.
    """

    def __init__(
        self,
        loader: MetadataLoader,
        *,
        ttl: float = METADATA_TTL_SECONDS,
        min_reload: float = METADATA_MIN_RELOAD_SECONDS,
        exchange: str = "",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._loader = loader
        self._ttl = ttl
        self._min_reload = min_reload
        self._exchange = exchange
        self._clock = clock
        self._table: Mapping[str, AssetMetadata] = {}
        self._loaded_at: float | None = None
        self._lock = asyncio.Lock()

    @property
    def loaded_at(self) -> float | None:
        return self._loaded_at

    def is_stale(self) -> bool:
        if self._loaded_at is None:
            return True
        return self._clock() - self._loaded_at >= self._ttl

    def _recently_loaded(self) -> bool:
        return self._loaded_at is not None and self._clock() - self._loaded_at < self._min_reload

    def __len__(self) -> int:
        return len(self._table)

    def symbols(self) -> list[str]:
        return sorted(self._table)

    async def refresh(self, *, force: bool = True) -> None:
        started = self._loaded_at
        async with self._lock:
            # Another caller finished a refresh while we waited.
            if self._loaded_at != started and not self.is_stale():
                return
            if not force and not self.is_stale():
                return
            entries = await self._loader()
            table = {entry.symbol.upper(): entry for entry in entries}
            self._table = table
            self._loaded_at = self._clock()
            logger.info("%s: metadata refreshed (%d symbols)", self._exchange or "exchange", len(table))

    async def get(self, symbol: str) -> AssetMetadata | None:
        key = symbol.upper()
        missing = key not in self._table
        if missing and not self.is_stale() and self._recently_loaded():
            return None
        if self.is_stale() or missing:
            try:
                await self.refresh(force=missing)
            except GatewayError as exc:
                # Stale entries are still better than none.
                logger.warning("%s: metadata refresh failed: %s", self._exchange or "exchange", exc)
        return self._table.get(key)

    async def require(self, symbol: str) -> AssetMetadata:
        meta = await self.get(symbol)
        if meta is None:
            raise DomainValidationError(f"unknown symbol {symbol}")
        return meta

    async def _decimals(self, symbol: str, attr: str) -> int:
        try:
            meta = await self.get(symbol)
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("%s: metadata unavailable for %s: %s", self._exchange or "exchange", symbol, exc)
            meta = None
        if meta is None:
            return FALLBACK_DECIMALS
        return getattr(meta, attr)

    async def format_price(self, symbol: str, value: object) -> str:
        return format_fixed(value, await self._decimals(symbol, "price_precision"))

    async def format_quantity(self, symbol: str, value: object) -> str:
        return format_fixed(value, await self._decimals(symbol, "quantity_precision"))
