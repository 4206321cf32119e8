"""Error taxonomy shared by signers, clients and the orchestrator."""

from __future__ import annotations

from typing import Any, Dict, Mapping


class GatewayError(Exception):
    """Base class; `kind` is the machine-readable error type in responses."""

    kind = "gateway_error"


class ConfigurationError(GatewayError):
    """A credential or setting required by the signing scheme is missing."""

    kind = "configuration_error"


class SignatureError(GatewayError):
    """Hashing or encoding failed while building a signature."""

    kind = "signature_error"


class NetworkError(GatewayError):
    """Transport failure, timeout or an unreadable response body."""

    kind = "network_error"


class ExchangeRejection(GatewayError):
    """Well-formed response that carries an exchange-side error."""

    kind = "exchange_rejection"

    def __init__(
        self,
        message: str,
        *,
        code: int | str | None = None,
        status: int | None = None,
        payload: Any = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status = status
        self.payload = payload


class DomainValidationError(GatewayError):
    """Request is invalid for the trading domain (bad quantity, no position...)."""

    kind = "domain_validation_error"


class PartialWorkflowFailure(GatewayError):
    """Main action succeeded but one or more dependent actions did not."""

    kind = "partial_workflow_failure"

    def __init__(self, message: str, *, legs: Mapping[str, str] | None = None) -> None:
        super().__init__(message)
        self.legs: Dict[str, str] = dict(legs or {})

    def to_dict(self) -> Dict[str, object]:
        return {"type": self.kind, "message": str(self), "legs": dict(self.legs)}


__all__ = [
    "GatewayError",
    "ConfigurationError",
    "SignatureError",
    "NetworkError",
    "ExchangeRejection",
    "DomainValidationError",
    "PartialWorkflowFailure",
]
