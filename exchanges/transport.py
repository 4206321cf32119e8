from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import aiohttp
from yarl import URL

from config import HTTP_TIMEOUT_SECONDS, USER_AGENT
from execution.errors import ExchangeRejection, NetworkError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PreparedRequest:
    """Outbound call with its query/body already serialised (and signed)."""

    method: str
    base_url: str
    path: str
    query: str = ""
    body: str | None = None
    headers: Dict[str, str] = field(default_factory=dict)
    scheme: str = "none"

    @property
    def url(self) -> str:
        base = f"{self.base_url.rstrip('/')}{self.path}"
        return f"{base}?{self.query}" if self.query else base


def rejection_from_payload(payload: Any, status: int | None = None) -> ExchangeRejection | None:
    """Binance-style `{code, msg}` errors; positive codes (200) are acknowledgements."""
    if not isinstance(payload, dict):
        return None
    code = payload.get("code")
    message = payload.get("msg") or payload.get("message")
    if isinstance(code, int) and not isinstance(code, bool) and code < 0:
        return ExchangeRejection(str(message or f"exchange error {code}"), code=code, status=status, payload=payload)
    if status is not None and status >= 400:
        text = message or payload.get("error") or f"HTTP {status}"
        return ExchangeRejection(str(text), code=code, status=status, payload=payload)
    return None


class HttpTransport:
    """aiohttp session wrapper; one fixed total timeout per request, no retries."""

    def __init__(
        self,
        *,
        timeout: float = HTTP_TIMEOUT_SECONDS,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout, headers={"User-Agent": USER_AGENT}
            )
            self._owns_session = True
        return self._session

    async def send(self, request: PreparedRequest) -> Any:
        session = await self._ensure_session()
        # The signed query must go out byte-for-byte, so yarl must not re-encode it.
        url = URL(request.url, encoded=True)
        data = request.body.encode("utf-8") if request.body is not None else None
        try:
            async with session.request(
                request.method, url, data=data, headers=request.headers
            ) as resp:
                status = resp.status
                text = await resp.text()
        except asyncio.TimeoutError as exc:
            raise NetworkError(f"{request.method} {request.path} timed out") from exc
        except aiohttp.ClientError as exc:
            raise NetworkError(f"{request.method} {request.path} failed: {exc}") from exc

        logger.debug("%s %s -> %s", request.method, request.path, status)
        try:
            payload = json.loads(text) if text else None
        except ValueError as exc:
            if status >= 400:
                raise ExchangeRejection(
                    f"HTTP {status}: {text[:200]}", status=status, payload=text
                ) from exc
            raise NetworkError(f"{request.method} {request.path}: response is not JSON") from exc

        rejection = rejection_from_payload(payload, status)
        if rejection is not None:
            raise rejection
        if status >= 400:
            raise ExchangeRejection(f"HTTP {status}", status=status, payload=payload)
        return payload

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None
