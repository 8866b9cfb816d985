from __future__ import annotations

import re

from .errors import ValidationError

NATIVE_SYMBOL = "eth"

_ZERO_ADDRESS = re.compile(r"(0x)?0+")


def is_zero_address(value: str) -> bool:
    return _ZERO_ADDRESS.fullmatch(value.strip().lower()) is not None


def is_address(value: str) -> bool:
    return value.strip().lower().startswith("0x")


def normalize_currency(value: str | None, native_symbol: str = NATIVE_SYMBOL) -> str:
    """Canonical form of a currency symbol or contract address.

    Symbols and addresses are trimmed and lower-cased; any all-zero address stands
    for the chain's native asset and is replaced by ``native_symbol``.
    """
    cleaned = (value or "").strip().lower()
    if not cleaned:
        raise ValidationError("Currency must be provided")
    if is_zero_address(cleaned):
        return native_symbol
    return cleaned


def cache_key(base: str, quote: str) -> str:
    return f"{base}-{quote}"


__all__ = ["NATIVE_SYMBOL", "cache_key", "is_address", "is_zero_address", "normalize_currency"]
