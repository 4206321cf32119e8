from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Mapping, Tuple

from execution.credentials import Credentials
from execution.errors import ConfigurationError

from .params import encode_query

logger = logging.getLogger(__name__)


class HmacSigner:
    """HMAC-SHA256 over the URL-encoded query string, hex digest."""

    def __init__(self, api_key: str, api_secret: str) -> None:
        if not api_key or not api_secret:
            raise ConfigurationError("HMAC signing requires api_key and api_secret")
        self.api_key = api_key
        self._secret = api_secret.encode("utf-8")

    @classmethod
    def from_credentials(cls, credentials: Credentials) -> "HmacSigner":
        credentials.require("api_key", "api_secret", scheme="HMAC signing")
        return cls(credentials.api_key, credentials.api_secret)

    def sign(self, payload: str | Mapping[str, object]) -> str:
        if not isinstance(payload, str):
            payload = encode_query(payload)
        return hmac.new(self._secret, payload.encode("utf-8"), hashlib.sha256).hexdigest()

    def sign_params(self, params: Mapping[str, object]) -> Tuple[str, str]:
        """Return (query, signed query). The signature is appended, never re-serialised."""
        query = encode_query(params)
        signature = self.sign(query)
        logger.debug("HMAC signed query with %d params", len(params))
        return query, f"{query}&signature={signature}"
