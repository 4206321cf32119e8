from __future__ import annotations

from decimal import Decimal
from typing import Mapping
from urllib.parse import urlencode


def param_to_str(value: object) -> str:
    """Render a parameter the way exchange APIs read it (true/false, 5 not 5.0)."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    if isinstance(value, float):
        value = Decimal(repr(value)).normalize()
    if isinstance(value, Decimal):
        return f"{value:f}"
    return str(value)


def encode_query(params: Mapping[str, object]) -> str:
    """URL-encode in insertion order. Never sorts."""
    return urlencode([(key, param_to_str(value)) for key, value in params.items()])
