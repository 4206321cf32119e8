"""
Project-wide configuration.

Static defaults for the trading gateway: endpoint URLs, environment variable
names and protocol constants. API credentials and anything secret should remain
in `.env` or environment variables - keep this file for non-sensitive defaults
only.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, Final, List

logger = logging.getLogger(__name__)

# Root directory of the project (useful for resolving relative paths).
BASE_DIR: Final[Path] = Path(__file__).resolve().parent

ENV_PATH: Final[Path] = BASE_DIR / ".env"

# Workflow event journal (JSON lines) and in-memory tail size.
STATE_DIR: Final[Path] = BASE_DIR / "data"
TELEMETRY_LOG_PATH: Final[Path] = STATE_DIR / "gateway_events.jsonl"
TELEMETRY_MAX_EVENTS: Final[int] = 1_000

# Exchanges with a concrete order client.
SUPPORTED_EXCHANGES: Final[List[str]] = [
    "aster",
    "hyperliquid",
    "binance",
]

# Every outbound HTTP call carries this total timeout.
HTTP_TIMEOUT_SECONDS: Final[float] = 30.0

# recvWindow sent with signed Binance-style requests (milliseconds).
DEFAULT_RECV_WINDOW_MS: Final[int] = 50_000

# Asset metadata (precision, asset ids) is reloaded after this many seconds.
METADATA_TTL_SECONDS: Final[int] = 60 * 60

# An unknown symbol forces at most one reload per interval.
METADATA_MIN_RELOAD_SECONDS: Final[float] = 30.0

# Precision used when metadata for a symbol is unavailable.
FALLBACK_DECIMALS: Final[int] = 8

# Market data websocket.
WS_RECONNECT_DELAY_SECONDS: Final[float] = 5.0
WS_PING_INTERVAL_SECONDS: Final[float] = 5 * 60.0
WS_QUEUE_SIZE: Final[int] = 1_000

USER_AGENT: Final[str] = "perp-gateway/0.1"

DEFAULT_URLS: Final[Dict[str, Dict[str, str]]] = {
    "aster": {
        "rest": "https://fapi.asterdex.com",
        "ws": "wss://fstream.asterdex.com/ws",
    },
    "hyperliquid": {
        "rest": "https://api.hyperliquid.xyz",
        "ws": "wss://api.hyperliquid.xyz/ws",
        "testnet_rest": "https://api.hyperliquid-testnet.xyz",
        "testnet_ws": "wss://api.hyperliquid-testnet.xyz/ws",
    },
    "binance": {
        "rest": "https://fapi.binance.com",
        "ws": "wss://fstream.binance.com/ws",
        "testnet_rest": "https://testnet.binancefuture.com",
        "testnet_ws": "wss://stream.binancefuture.com/ws",
    },
}

# Credential field -> environment variable, per exchange.
CREDENTIAL_ENV_VARS: Final[Dict[str, Dict[str, str]]] = {
    "aster": {
        "api_key": "ASTER_API_KEY",
        "api_secret": "ASTER_API_SECRET",
        "wallet_address": "ASTER_USER_ADDRESS",
        "signer_address": "ASTER_SIGNER_ADDRESS",
        "private_key": "ASTER_PRIVATE_KEY",
    },
    "hyperliquid": {
        "wallet_address": "HYPERLIQUID_USER_ADDRESS",
        "signer_address": "HYPERLIQUID_API_WALLET",
        "private_key": "HYPERLIQUID_API_PRIVATE_KEY",
        "vault_address": "HYPERLIQUID_VAULT_ADDRESS",
    },
    "binance": {
        "api_key": "BINANCE_API_KEY",
        "api_secret": "BINANCE_API_SECRET",
    },
}

# Fields an exchange needs before any trading call can be signed.
REQUIRED_CREDENTIALS: Final[Dict[str, List[str]]] = {
    "aster": ["api_key", "api_secret", "wallet_address", "signer_address", "private_key"],
    "hyperliquid": ["wallet_address", "private_key"],
    "binance": ["api_key", "api_secret"],
}

# Trading defaults applied when a request leaves them out.
DEFAULT_LEVERAGE: Final[int] = 10
MAX_POSITION_SIZE_USD: Final[float] = 1_000.0
DEFAULT_STOP_LOSS_PCT: Final[float] = 2.0
DEFAULT_TAKE_PROFIT_PCT: Final[float] = 5.0

_ENV_BOOTSTRAPPED = False


def load_env_file(path: Path | None = None, *, force: bool = False) -> None:
    """Apply `.env` values to os.environ without overriding real variables."""
    global _ENV_BOOTSTRAPPED  # pylint: disable=global-statement
    if _ENV_BOOTSTRAPPED and not force:
        return
    env_path = path or ENV_PATH
    _ENV_BOOTSTRAPPED = True
    if not env_path.exists():
        return
    try:
        with env_path.open("r", encoding="utf-8") as handle:
            for raw_line in handle:
                line = raw_line.strip()
                if not line or line.startswith("#") or "=" not in line:
                    continue
                key, value = line.split("=", 1)
                key = key.strip()
                if not key:
                    continue
                value = value.strip().strip('"').strip("'")
                os.environ.setdefault(key, value)
    except OSError:
        logger.debug("Unable to read %s", env_path)

