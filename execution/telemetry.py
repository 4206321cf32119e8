from __future__ import annotations

import asyncio
import json
import logging
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, Deque, Dict, Iterable, Optional

from project_settings import TelemetrySettings

logger = logging.getLogger(__name__)

Listener = Callable[[Dict[str, object]], Awaitable[None] | None]


class TelemetryClient:
    """Workflow event journal: in-memory tail plus a JSON-lines file once started."""

    def __init__(self, settings: TelemetrySettings | None = None) -> None:
        settings = settings or TelemetrySettings()
        self._log_path = Path(settings.structured_log_path)
        self._buffer: Deque[Dict[str, object]] = deque(maxlen=settings.max_events_in_memory)
        self._listeners: list[Listener] = []
        self._queue: asyncio.Queue[Dict[str, object]] | None = None
        self._pending: list[Dict[str, object]] = []
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._log_path.parent.mkdir(parents=True, exist_ok=True)
        self._queue = asyncio.Queue()
        self._task = asyncio.get_running_loop().create_task(self._consumer(self._queue))
        # flush pending events
        for entry in self._pending:
            await self._queue.put(entry)
        self._pending.clear()

    async def stop(self) -> None:
        if self._task is None:
            return
        if self._queue is not None:
            await self._queue.join()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    def emit(self, event: str, payload: Optional[Dict[str, object]] = None) -> None:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event": event,
            "payload": payload or {},
        }
        self._buffer.append(entry)
        if self._task is None or self._task.done() or self._queue is None:
            self._pending.append(entry)
            # Without a consumer only the in-memory tail is kept.
            del self._pending[: -self._buffer.maxlen]
        else:
            self._queue.put_nowait(entry)

    def register_listener(self, callback: Listener) -> None:
        self._listeners.append(callback)

    def tail(self, limit: int = 50) -> Iterable[Dict[str, object]]:
        return list(self._buffer)[-limit:]

    @property
    def log_path(self) -> Path:
        return self._log_path

    async def _consumer(self, queue: asyncio.Queue) -> None:
        while True:
            entry = await queue.get()
            try:
                await asyncio.to_thread(self._append_to_file, entry)
                for listener in list(self._listeners):
                    try:
                        result = listener(entry)
                        if asyncio.iscoroutine(result):
                            await result
                    except Exception as exc:  # pylint: disable=broad-except
                        logger.debug("Telemetry listener failed: %s", exc)
            except OSError as exc:
                logger.warning("Unable to write telemetry to %s: %s", self._log_path, exc)
            finally:
                queue.task_done()

    def _append_to_file(self, entry: Dict[str, object]) -> None:
        line = json.dumps(entry, default=str)
        with self._log_path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")
