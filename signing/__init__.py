"""Request signing schemes: HMAC query signing, wallet personal-message and L1 actions."""

from .hmac_signer import HmacSigner
from .l1 import L1ActionSigner, SignedAction, action_hash, float_to_wire, normalize_action
from .params import encode_query, param_to_str
from .wallet import WalletMessageSigner, WalletSignature, canonical_payload

__all__ = [
    "HmacSigner",
    "L1ActionSigner",
    "SignedAction",
    "WalletMessageSigner",
    "WalletSignature",
    "action_hash",
    "canonical_payload",
    "encode_query",
    "float_to_wire",
    "normalize_action",
    "param_to_str",
]
