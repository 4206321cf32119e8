from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from typing import Dict, Iterable, Mapping, Tuple

from config import CREDENTIAL_ENV_VARS, REQUIRED_CREDENTIALS, load_env_file

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Credentials:
    """Per-exchange secrets. Each scheme reads only the subset it needs."""

    exchange: str = ""
    api_key: str = ""
    api_secret: str = ""
    wallet_address: str = ""
    signer_address: str = ""
    private_key: str = ""
    vault_address: str = ""

    def __repr__(self) -> str:
        present = ", ".join(name for name, ok in self.presence().items() if ok)
        return f"Credentials(exchange={self.exchange!r}, present=[{present}])"

    def presence(self) -> Dict[str, bool]:
        return {
            item.name: bool(getattr(self, item.name))
            for item in fields(self)
            if item.name != "exchange"
        }

    def missing(self, names: Iterable[str]) -> list[str]:
        return [name for name in names if not getattr(self, name, "")]

    def require(self, *names: str, scheme: str = "") -> None:
        """Raise ConfigurationError naming every absent field."""
        missing = self.missing(names)
        if missing:
            label = f" for {scheme}" if scheme else ""
            raise ConfigurationError(
                f"{self.exchange or 'exchange'}: missing credentials{label}: {', '.join(missing)}"
            )

    @classmethod
    def from_env(cls, exchange: str, env: Mapping[str, str] | None = None) -> "Credentials":
        source = os.environ if env is None else env
        mapping = CREDENTIAL_ENV_VARS.get(exchange, {})
        values = {field_name: (source.get(var) or "").strip() for field_name, var in mapping.items()}
        return cls(exchange=exchange, **values)


class CredentialStore:
    """Read-only registry of credentials loaded once at startup."""

    def __init__(self, credentials: Mapping[str, Credentials]) -> None:
        self._credentials: Dict[str, Credentials] = dict(credentials)

    @classmethod
    def from_env(
        cls,
        exchanges: Iterable[str] | None = None,
        *,
        env: Mapping[str, str] | None = None,
    ) -> "CredentialStore":
        if env is None:
            load_env_file()
        names = list(exchanges) if exchanges is not None else list(CREDENTIAL_ENV_VARS)
        store = cls({name: Credentials.from_env(name, env) for name in names})
        store.warn_missing()
        return store

    def get(self, exchange: str) -> Credentials:
        creds = self._credentials.get(exchange)
        if creds is None:
            return Credentials(exchange=exchange)
        return creds

    def exchanges(self) -> Tuple[str, ...]:
        return tuple(self._credentials)

    def warn_missing(self) -> None:
        for name, creds in self._credentials.items():
            missing = creds.missing(REQUIRED_CREDENTIALS.get(name, []))
            if missing:
                logger.warning(
                    "%s: missing credentials (%s); signed endpoints will fail until set",
                    name,
                    ", ".join(missing),
                )

    def debug(self) -> Dict[str, Dict[str, bool]]:
        """Presence flags per exchange. Never includes secret values."""
        return {name: creds.presence() for name, creds in self._credentials.items()}
