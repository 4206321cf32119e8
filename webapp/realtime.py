from __future__ import annotations

import asyncio
import logging
from typing import Dict, List

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class TelemetryFeed:
    """Fans workflow telemetry events out to connected WebSocket clients."""

    def __init__(self) -> None:
        self._connections: set[WebSocket] = set()
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._connections)

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._connections.add(websocket)

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._connections.discard(websocket)
        try:
            await websocket.close()
        except Exception as exc:  # pylint: disable=broad-except
            logger.debug("Telemetry socket already closed: %s", exc)

    async def publish(self, event: Dict[str, object]) -> None:
        async with self._lock:
            targets: List[WebSocket] = list(self._connections)
        for websocket in targets:
            try:
                await websocket.send_json(event)
            except Exception as exc:  # pylint: disable=broad-except
                logger.debug("Dropping telemetry subscriber: %s", exc)
                await self.disconnect(websocket)
