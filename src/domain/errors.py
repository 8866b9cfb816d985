from __future__ import annotations

from typing import Any


class RateServiceError(Exception):
    """Base class for errors raised by the conversion service."""


class ValidationError(RateServiceError):
    """Caller supplied a missing or blank parameter."""


class UsernameTakenError(ValidationError):
    pass


class ProviderError(RateServiceError):
    """Upstream price lookup failed or returned no usable data."""

    def __init__(self, message: str, *, status_code: int | None = None, payload: Any | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


__all__ = ["ProviderError", "RateServiceError", "UsernameTakenError", "ValidationError"]
