"""L1 action signing: EIP-712 "phantom agent" over a msgpack-encoded action.

Byte layout hashed with keccak256:

    msgpack(action) | nonce (8 bytes, big endian)
    | 0x00                      when no vault address
    | 0x01 + 20 address bytes   when a vault address is given
    | 0x00 + expiry (8 bytes)   only when an expiry is given
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Mapping

import msgpack
from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_utils import keccak, to_hex

from execution.credentials import Credentials
from execution.errors import ConfigurationError, SignatureError
from utils.numbers import strip_trailing_zeros, to_decimal

logger = logging.getLogger(__name__)

# Keys holding prices or sizes in the action wire format.
NUMBER_KEYS = frozenset({"p", "s", "triggerPx", "limitPx", "px", "sz"})

_WIRE_STEP = Decimal("1e-8")
_WIRE_TOLERANCE = Decimal("1e-12")

AGENT_DOMAIN: Dict[str, object] = {
    "chainId": 1337,
    "name": "Exchange",
    "verifyingContract": "0x0000000000000000000000000000000000000000",
    "version": "1",
}

AGENT_TYPES: Dict[str, list] = {
    "Agent": [
        {"name": "source", "type": "string"},
        {"name": "connectionId", "type": "bytes32"},
    ],
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "chainId", "type": "uint256"},
        {"name": "verifyingContract", "type": "address"},
    ],
}


def float_to_wire(value: object) -> str:
    """8-decimal wire string without trailing zeros; refuses lossy rounding."""
    number = to_decimal(value)
    if number is None:
        raise SignatureError(f"not a finite number: {value!r}")
    rounded = number.quantize(_WIRE_STEP)
    if abs(rounded - number) >= _WIRE_TOLERANCE:
        raise SignatureError(f"{value!r} cannot be represented with 8 decimals")
    return strip_trailing_zeros(rounded)


def normalize_action(node: Any) -> Any:
    """Copy of the action tree with price/size fields in canonical wire form."""
    if isinstance(node, Mapping):
        out: Dict[str, Any] = {}
        for key, value in node.items():
            if key in NUMBER_KEYS and isinstance(value, (str, int, float, Decimal)) and not isinstance(value, bool):
                out[key] = float_to_wire(value)
            else:
                out[key] = normalize_action(value)
        return out
    if isinstance(node, (list, tuple)):
        return [normalize_action(item) for item in node]
    return node


def _address_bytes(address: str) -> bytes:
    text = address[2:] if address.lower().startswith("0x") else address
    try:
        raw = bytes.fromhex(text)
    except ValueError as exc:
        raise SignatureError(f"invalid address {address!r}") from exc
    if len(raw) != 20:
        raise SignatureError(f"address must be 20 bytes, got {len(raw)}")
    return raw


def action_hash(
    action: Mapping[str, Any],
    vault_address: str | None,
    nonce: int,
    expires_after: int | None = None,
) -> bytes:
    try:
        data = msgpack.packb(action)
    except (TypeError, ValueError) as exc:
        raise SignatureError(f"action cannot be msgpack-encoded: {exc}") from exc
    try:
        data += int(nonce).to_bytes(8, "big")
        if vault_address:
            data += b"\x01" + _address_bytes(vault_address)
        else:
            data += b"\x00"
        if expires_after is not None:
            data += b"\x00" + int(expires_after).to_bytes(8, "big")
    except OverflowError as exc:
        raise SignatureError("nonce or expiry does not fit in 8 bytes") from exc
    return keccak(data)


def agent_payload(connection_id: bytes, *, is_mainnet: bool) -> Dict[str, object]:
    return {
        "domain": dict(AGENT_DOMAIN),
        "types": AGENT_TYPES,
        "primaryType": "Agent",
        "message": {"source": "a" if is_mainnet else "b", "connectionId": connection_id},
    }


@dataclass(slots=True)
class SignedAction:
    action: Dict[str, Any]
    nonce: int
    signature: Dict[str, object]
    vault_address: str | None = None
    expires_after: int | None = None

    def to_payload(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "action": self.action,
            "nonce": self.nonce,
            "signature": dict(self.signature),
        }
        if self.vault_address:
            payload["vaultAddress"] = self.vault_address
        if self.expires_after is not None:
            payload["expiresAfter"] = self.expires_after
        return payload


class L1ActionSigner:
    def __init__(self, private_key: str, *, is_mainnet: bool = True) -> None:
        if not private_key:
            raise ConfigurationError("L1 action signing requires a private key")
        try:
            self._account = Account.from_key(private_key)
        except (ValueError, TypeError) as exc:
            raise ConfigurationError("L1 private key is not a valid secp256k1 key") from exc
        self.is_mainnet = is_mainnet

    @classmethod
    def from_credentials(cls, credentials: Credentials, *, is_mainnet: bool = True) -> "L1ActionSigner":
        credentials.require("private_key", scheme="L1 action signing")
        return cls(credentials.private_key, is_mainnet=is_mainnet)

    @property
    def address(self) -> str:
        return self._account.address

    def sign(
        self,
        action: Mapping[str, Any],
        vault_address: str | None = None,
        nonce: int | None = None,
        expires_after: int | None = None,
    ) -> SignedAction:
        if nonce is None:
            nonce = int(time.time() * 1000)
        wire_action = normalize_action(action)
        connection_id = action_hash(wire_action, vault_address, nonce, expires_after)
        try:
            structured = encode_typed_data(
                full_message=agent_payload(connection_id, is_mainnet=self.is_mainnet)
            )
        except (ValueError, TypeError) as exc:
            raise SignatureError(f"EIP-712 encoding failed: {exc}") from exc
        signed = self._account.sign_message(structured)
        logger.debug("L1 action %s signed, nonce=%s", wire_action.get("type"), nonce)
        return SignedAction(
            action=wire_action,
            nonce=nonce,
            signature={"r": to_hex(signed.r), "s": to_hex(signed.s), "v": signed.v},
            vault_address=vault_address or None,
            expires_after=expires_after,
        )
