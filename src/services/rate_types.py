from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

# Returned when a rate cannot be derived; never a genuine zero price.
UNKNOWN_RATE = 0.0


class RateState(str, Enum):
    EMPTY = "empty"
    FRESH = "fresh"
    STALE = "stale"
    REFRESHING = "refreshing"


@dataclass
class CacheEntry:
    """Cached rate for one ordered pair, mutated in place on refresh."""

    value: float
    timestamp: float
    refreshing: bool = False

    def is_fresh(self, now: float, window: float) -> bool:
        return now - self.timestamp < window

    def state(self, now: float, window: float) -> RateState:
        if self.is_fresh(now, window):
            return RateState.FRESH
        if self.refreshing:
            return RateState.REFRESHING
        return RateState.STALE


__all__ = ["UNKNOWN_RATE", "CacheEntry", "RateState"]
