"""Wallet-signature scheme for `/fapi/v3` endpoints.

The signed message is keccak256(abi.encode(string payload, address user,
address signer, uint256 nonce)) where `payload` is the compact JSON of all
business parameters plus timestamp and recvWindow, every value stringified and
keys sorted. The hash is signed as an Ethereum personal message.

The request itself carries the *numeric* timestamp and recvWindow that went into
the payload; the string copies exist only for hashing.
"""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Dict, Mapping

from eth_abi import encode as abi_encode
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import keccak, to_checksum_address, to_hex

from config import DEFAULT_RECV_WINDOW_MS
from execution.credentials import Credentials
from execution.errors import ConfigurationError, SignatureError

from .params import param_to_str

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s")
_ABI_TYPES = ["string", "address", "address", "uint256"]


def canonical_payload(params: Mapping[str, object]) -> str:
    """Stringify values, sort keys, drop all whitespace."""
    stringified = {key: param_to_str(value) for key, value in params.items()}
    text = json.dumps(stringified, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return _WHITESPACE.sub("", text).replace("'", '"')


@dataclass(slots=True)
class WalletSignature:
    user: str
    signer: str
    nonce: int
    signature: str
    timestamp: int
    recv_window: int
    payload: str

    def auth_params(self) -> Dict[str, object]:
        """Fields merged into the outbound request; numeric values as hashed."""
        return {
            "timestamp": self.timestamp,
            "recvWindow": self.recv_window,
            "user": self.user,
            "signer": self.signer,
            "nonce": self.nonce,
            "signature": self.signature,
        }


class WalletMessageSigner:
    def __init__(
        self,
        user: str,
        signer: str,
        private_key: str,
        *,
        recv_window: int = DEFAULT_RECV_WINDOW_MS,
    ) -> None:
        if not user or not signer or not private_key:
            raise ConfigurationError("wallet signing requires user, signer and private key")
        try:
            self._account = Account.from_key(private_key)
        except (ValueError, TypeError) as exc:
            raise ConfigurationError("wallet private key is not a valid secp256k1 key") from exc
        self.user = user
        self.signer = signer
        self.recv_window = recv_window

    @classmethod
    def from_credentials(
        cls, credentials: Credentials, *, recv_window: int = DEFAULT_RECV_WINDOW_MS
    ) -> "WalletMessageSigner":
        credentials.require(
            "wallet_address", "signer_address", "private_key", scheme="wallet signing"
        )
        return cls(
            credentials.wallet_address,
            credentials.signer_address,
            credentials.private_key,
            recv_window=recv_window,
        )

    @property
    def key_address(self) -> str:
        return self._account.address

    def message_hash(self, payload: str, nonce: int) -> bytes:
        try:
            encoded = abi_encode(
                _ABI_TYPES,
                [payload, to_checksum_address(self.user), to_checksum_address(self.signer), nonce],
            )
        except (ValueError, TypeError, OverflowError) as exc:
            raise SignatureError(f"ABI encoding failed: {exc}") from exc
        return keccak(encoded)

    def sign(
        self,
        business_params: Mapping[str, object],
        now_ms: float | None = None,
        *,
        recv_window: int | None = None,
    ) -> WalletSignature:
        if now_ms is None:
            now_ms = time.time() * 1000
        nonce = int(now_ms * 1000)
        timestamp = int(now_ms)
        window = self.recv_window if recv_window is None else int(recv_window)

        merged = dict(business_params)
        merged["timestamp"] = str(timestamp)
        merged["recvWindow"] = str(window)
        payload = canonical_payload(merged)

        digest = self.message_hash(payload, nonce)
        signed = self._account.sign_message(encode_defunct(primitive=digest))
        logger.debug("wallet signature built for %d params, nonce=%s", len(business_params), nonce)
        return WalletSignature(
            user=self.user,
            signer=self.signer,
            nonce=nonce,
            signature=to_hex(signed.signature),
            timestamp=timestamp,
            recv_window=window,
            payload=payload,
        )
