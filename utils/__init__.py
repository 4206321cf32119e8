"""Utility helpers packaged for convenient imports."""

from .logging import setup_logging  # noqa: F401
from .numbers import format_fixed, strip_trailing_zeros, to_decimal, to_float  # noqa: F401

__all__ = [
    "setup_logging",
    "format_fixed",
    "strip_trailing_zeros",
    "to_decimal",
    "to_float",
]
