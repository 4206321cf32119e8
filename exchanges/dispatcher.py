"""Route table driven request signing.

Each exchange client declares which endpoints need which signature scheme.
Routes are keyed either by ``"METHOD /path"`` or by bare ``"/path"``; the
method-specific entry wins. Unlisted endpoints are sent unsigned.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Dict, Mapping, Optional

from config import DEFAULT_RECV_WINDOW_MS
from execution.credentials import Credentials
from execution.errors import ConfigurationError
from signing import HmacSigner, L1ActionSigner, WalletMessageSigner, encode_query

from .transport import HttpTransport, PreparedRequest

logger = logging.getLogger(__name__)

SCHEME_NONE = "none"
SCHEME_HMAC = "hmac"
SCHEME_WALLET = "wallet"
SCHEME_L1 = "l1"

SCHEMES = frozenset({SCHEME_NONE, SCHEME_HMAC, SCHEME_WALLET, SCHEME_L1})

# Keys produced by signers. Callers may not supply them: the transmitted value
# has to be the one that was signed.
AUTH_KEYS = frozenset({"timestamp", "recvWindow", "signature", "nonce", "user", "signer"})

API_KEY_HEADER = "X-MBX-APIKEY"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
JSON_CONTENT_TYPE = "application/json"


def _now_ms() -> float:
    return time.time() * 1000


class RequestDispatcher:
    def __init__(
        self,
        exchange: str,
        base_url: str,
        credentials: Credentials,
        routes: Mapping[str, str],
        *,
        transport: Optional[HttpTransport] = None,
        clock: Callable[[], float] = _now_ms,
        recv_window: int = DEFAULT_RECV_WINDOW_MS,
        is_mainnet: bool = True,
    ) -> None:
        unknown = {scheme for scheme in routes.values() if scheme not in SCHEMES}
        if unknown:
            raise ValueError(f"unknown signature scheme(s): {sorted(unknown)}")
        self.exchange = exchange
        self.base_url = base_url.rstrip("/")
        self.credentials = credentials
        self.routes: Dict[str, str] = dict(routes)
        self.transport = transport or HttpTransport()
        self.clock = clock
        self.recv_window = recv_window
        self.is_mainnet = is_mainnet
        self._hmac: HmacSigner | None = None
        self._wallet: WalletMessageSigner | None = None
        self._l1: L1ActionSigner | None = None

    # ------------------------------------------------------------------ #
    # Signers are built on first use so a missing credential only fails
    # the calls that need it.
    # ------------------------------------------------------------------ #

    def hmac_signer(self) -> HmacSigner:
        if self._hmac is None:
            self._hmac = HmacSigner.from_credentials(self.credentials)
        return self._hmac

    def wallet_signer(self) -> WalletMessageSigner:
        if self._wallet is None:
            self._wallet = WalletMessageSigner.from_credentials(
                self.credentials, recv_window=self.recv_window
            )
        return self._wallet

    def l1_signer(self) -> L1ActionSigner:
        if self._l1 is None:
            self._l1 = L1ActionSigner.from_credentials(self.credentials, is_mainnet=self.is_mainnet)
        return self._l1

    def scheme_for(self, method: str, path: str) -> str:
        method = method.upper()
        return self.routes.get(f"{method} {path}", self.routes.get(path, SCHEME_NONE))

    def _business_params(self, params: Mapping[str, Any] | None) -> Dict[str, Any]:
        business: Dict[str, Any] = {}
        for key, value in (params or {}).items():
            if value is None:
                continue
            if key in AUTH_KEYS:
                logger.debug("%s: dropping caller supplied auth key %s", self.exchange, key)
                continue
            business[key] = value
        return business

    def prepare(
        self,
        method: str,
        path: str,
        params: Mapping[str, Any] | None = None,
        *,
        body_format: str = "form",
    ) -> PreparedRequest:
        method = method.upper()
        scheme = self.scheme_for(method, path)
        business = self._business_params(params)
        headers: Dict[str, str] = {}
        carries_body = method in {"POST", "PUT"}

        if scheme == SCHEME_HMAC:
            signer = self.hmac_signer()
            merged = dict(business)
            merged["timestamp"] = int(self.clock())
            merged["recvWindow"] = self.recv_window
            _, serialized = signer.sign_params(merged)
            headers[API_KEY_HEADER] = signer.api_key
        elif scheme == SCHEME_WALLET:
            signature = self.wallet_signer().sign(business, self.clock())
            merged = dict(business)
            merged.update(signature.auth_params())
            serialized = encode_query(merged)
            if self.credentials.api_key:
                headers[API_KEY_HEADER] = self.credentials.api_key
        elif scheme == SCHEME_L1:
            raise ConfigurationError(f"{path} is an L1 action endpoint; use post_action()")
        else:
            serialized = None
            if not carries_body or body_format != "json":
                serialized = encode_query(business)

        request = PreparedRequest(
            method=method, base_url=self.base_url, path=path, headers=headers, scheme=scheme
        )
        if carries_body:
            if scheme == SCHEME_NONE and body_format == "json":
                request.body = json.dumps(business, separators=(",", ":"))
                headers["Content-Type"] = JSON_CONTENT_TYPE
            else:
                request.body = serialized or ""
                headers["Content-Type"] = FORM_CONTENT_TYPE
        else:
            request.query = serialized or ""
        return request

    async def request(
        self,
        method: str,
        path: str,
        params: Mapping[str, Any] | None = None,
        *,
        body_format: str = "form",
    ) -> Any:
        prepared = self.prepare(method, path, params, body_format=body_format)
        logger.debug("%s: %s %s (%s)", self.exchange, prepared.method, path, prepared.scheme)
        return await self.transport.send(prepared)

    async def post_json(self, path: str, payload: Mapping[str, Any]) -> Any:
        """Unsigned JSON POST, e.g. info/metadata reads."""
        return await self.request("POST", path, payload, body_format="json")

    async def post_action(
        self,
        path: str,
        action: Mapping[str, Any],
        *,
        nonce: int | None = None,
        expires_after: int | None = None,
    ) -> Any:
        signer = self.l1_signer()
        if nonce is None:
            nonce = int(self.clock())
        signed = signer.sign(
            action,
            vault_address=self.credentials.vault_address or None,
            nonce=nonce,
            expires_after=expires_after,
        )
        request = PreparedRequest(
            method="POST",
            base_url=self.base_url,
            path=path,
            body=json.dumps(signed.to_payload(), separators=(",", ":")),
            headers={"Content-Type": JSON_CONTENT_TYPE},
            scheme=SCHEME_L1,
        )
        logger.debug("%s: POST %s action=%s", self.exchange, path, signed.action.get("type"))
        return await self.transport.send(request)

    async def close(self) -> None:
        await self.transport.close()
