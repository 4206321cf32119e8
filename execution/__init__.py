"""Canonical trading types, errors and compound workflows."""

from .credentials import CredentialStore, Credentials
from .errors import (
    ConfigurationError,
    DomainValidationError,
    ExchangeRejection,
    GatewayError,
    NetworkError,
    PartialWorkflowFailure,
    SignatureError,
)
from .orchestrator import TradingOrchestrator
from .orders import (
    ApiResponse,
    Balance,
    Order,
    OrderRequest,
    Position,
    ProtectionResult,
    QuickTradeResult,
)
from .telemetry import TelemetryClient

__all__ = [
    "ApiResponse",
    "Balance",
    "ConfigurationError",
    "CredentialStore",
    "Credentials",
    "DomainValidationError",
    "ExchangeRejection",
    "GatewayError",
    "NetworkError",
    "Order",
    "OrderRequest",
    "PartialWorkflowFailure",
    "Position",
    "ProtectionResult",
    "QuickTradeResult",
    "SignatureError",
    "TelemetryClient",
    "TradingOrchestrator",
]
