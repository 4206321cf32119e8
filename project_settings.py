"""Runtime configuration for the trading gateway.

Settings are read from the process environment (after `.env` has been applied)
once at startup. Only non-sensitive values live here; credentials are handled
by `execution.credentials` and never appear in `to_dict()`.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping

from config import (
    DEFAULT_LEVERAGE,
    DEFAULT_RECV_WINDOW_MS,
    DEFAULT_STOP_LOSS_PCT,
    DEFAULT_TAKE_PROFIT_PCT,
    DEFAULT_URLS,
    MAX_POSITION_SIZE_USD,
    METADATA_TTL_SECONDS,
    SUPPORTED_EXCHANGES,
    TELEMETRY_LOG_PATH,
    TELEMETRY_MAX_EVENTS,
    load_env_file,
)

_TRUE = {"1", "true", "yes", "on"}

# Either variable selects the Hyperliquid testnet.
_TESTNET_VARS: Dict[str, tuple[str, ...]] = {
    "hyperliquid": ("HYPERLIQUID_IS_TESTNET", "HYPERLIQUID_TESTNET"),
    "binance": ("BINANCE_USE_TESTNET",),
    "aster": (),
}


def _flag(env: Mapping[str, str], *names: str) -> bool:
    return any((env.get(name) or "").strip().lower() in _TRUE for name in names)


def _number(env: Mapping[str, str], name: str, default: float) -> float:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


@dataclass(slots=True)
class ExchangeSettings:
    name: str
    rest_url: str
    ws_url: str
    testnet: bool = False
    recv_window: int = DEFAULT_RECV_WINDOW_MS
    metadata_ttl: float = METADATA_TTL_SECONDS

    @classmethod
    def from_env(cls, name: str, env: Mapping[str, str]) -> "ExchangeSettings":
        defaults = DEFAULT_URLS[name]
        prefix = name.upper()
        testnet = _flag(env, *_TESTNET_VARS.get(name, ()))
        if testnet:
            rest_url = env.get(f"{prefix}_TESTNET_REST_URL") or defaults.get("testnet_rest", defaults["rest"])
            ws_url = env.get(f"{prefix}_TESTNET_WS_URL") or defaults.get("testnet_ws", defaults["ws"])
        else:
            rest_url = env.get(f"{prefix}_REST_URL") or defaults["rest"]
            ws_url = env.get(f"{prefix}_WS_URL") or defaults["ws"]
        return cls(
            name=name,
            rest_url=rest_url.rstrip("/"),
            ws_url=ws_url,
            testnet=testnet,
            recv_window=int(_number(env, f"{prefix}_RECV_WINDOW", DEFAULT_RECV_WINDOW_MS)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "rest_url": self.rest_url,
            "ws_url": self.ws_url,
            "testnet": self.testnet,
            "recv_window": self.recv_window,
            "metadata_ttl": self.metadata_ttl,
        }


@dataclass(slots=True)
class TradingDefaults:
    leverage: int = DEFAULT_LEVERAGE
    max_position_size_usd: float = MAX_POSITION_SIZE_USD
    stop_loss_pct: float = DEFAULT_STOP_LOSS_PCT
    take_profit_pct: float = DEFAULT_TAKE_PROFIT_PCT

    @classmethod
    def from_env(cls, env: Mapping[str, str]) -> "TradingDefaults":
        return cls(
            leverage=int(_number(env, "DEFAULT_LEVERAGE", DEFAULT_LEVERAGE)),
            max_position_size_usd=_number(env, "MAX_POSITION_SIZE", MAX_POSITION_SIZE_USD),
            stop_loss_pct=_number(env, "STOP_LOSS_PERCENTAGE", DEFAULT_STOP_LOSS_PCT),
            take_profit_pct=_number(env, "TAKE_PROFIT_PERCENTAGE", DEFAULT_TAKE_PROFIT_PCT),
        )

    def validate(self) -> None:
        if self.leverage < 1:
            raise ValueError("DEFAULT_LEVERAGE must be >= 1.")
        if self.max_position_size_usd <= 0:
            raise ValueError("MAX_POSITION_SIZE must be > 0.")
        if self.stop_loss_pct < 0 or self.take_profit_pct < 0:
            raise ValueError("Stop-loss and take-profit percentages must be >= 0.")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "leverage": self.leverage,
            "max_position_size_usd": self.max_position_size_usd,
            "stop_loss_pct": self.stop_loss_pct,
            "take_profit_pct": self.take_profit_pct,
        }


@dataclass(slots=True)
class TelemetrySettings:
    structured_log_path: Path = TELEMETRY_LOG_PATH
    max_events_in_memory: int = TELEMETRY_MAX_EVENTS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "structured_log_path": str(self.structured_log_path),
            "max_events_in_memory": self.max_events_in_memory,
        }


@dataclass(slots=True)
class GatewaySettings:
    exchanges: Dict[str, ExchangeSettings] = field(default_factory=dict)
    trading: TradingDefaults = field(default_factory=TradingDefaults)
    telemetry: TelemetrySettings = field(default_factory=TelemetrySettings)

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "GatewaySettings":
        if env is None:
            load_env_file()
            env = os.environ
        settings = cls(
            exchanges={name: ExchangeSettings.from_env(name, env) for name in SUPPORTED_EXCHANGES},
            trading=TradingDefaults.from_env(env),
            telemetry=TelemetrySettings(
                structured_log_path=Path(env.get("TELEMETRY_LOG_PATH") or TELEMETRY_LOG_PATH),
            ),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        """Validate invariants, raising ValueError if anything is invalid."""
        self.trading.validate()
        for name, exchange in self.exchanges.items():
            if not exchange.rest_url.startswith(("http://", "https://")):
                raise ValueError(f"{name}: REST URL must be http(s), got {exchange.rest_url!r}")
            if not exchange.ws_url.startswith(("ws://", "wss://")):
                raise ValueError(f"{name}: WebSocket URL must be ws(s), got {exchange.ws_url!r}")

    def exchange(self, name: str) -> ExchangeSettings:
        try:
            return self.exchanges[name]
        except KeyError as exc:
            raise KeyError(f"No settings for exchange '{name}'") from exc

    def to_dict(self) -> Dict[str, object]:
        return {
            "exchanges": {name: item.to_dict() for name, item in self.exchanges.items()},
            "trading": self.trading.to_dict(),
            "telemetry": self.telemetry.to_dict(),
        }
