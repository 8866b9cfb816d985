from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import replace
from typing import Callable, Iterable

from config import USDC_ADDRESS, AppSettings
from domain.currency import NATIVE_SYMBOL, cache_key, is_address, normalize_currency
from domain.errors import ProviderError, RateServiceError
from domain.pricing import PriceProvider

from .coingecko_source import CoinGeckoSource, _CoinGeckoClient
from .rate_types import UNKNOWN_RATE, CacheEntry, RateState

logger = logging.getLogger(__name__)


class RateCache:
    """In-memory exchange-rate table with stale-while-revalidate refreshes.

    ``get_rate`` answers "how many units of ``quote`` equal one unit of ``base``" from the
    cheapest mix of cached, derived and fetched data:

    * direct hit on ``(base, quote)`` or a reciprocal of a fresh ``(quote, base)``;
    * two contract addresses are triangulated through the native asset;
    * a symbol priced in an address is the reciprocal of the reverse lookup;
    * two symbols are triangulated through the anchor stablecoin;
    * an address priced in a symbol is fetched from the provider.

    Only one computation per exact pair is in flight at a time. Callers hitting a stale
    pair that is already being refreshed get the stale value; callers hitting a pair
    that has never been cached wait for the in-flight computation. A returned rate of
    ``UNKNOWN_RATE`` (0) means the rate could not be determined.
    """

    def __init__(
        self,
        provider: PriceProvider,
        *,
        freshness_seconds: float = 900.0,
        native_symbol: str = NATIVE_SYMBOL,
        anchor: str = USDC_ADDRESS,
        clock: Callable[[], float] = time.time,
        wait_timeout: float = 30.0,
    ) -> None:
        if freshness_seconds <= 0:
            raise ValueError("freshness_seconds must be greater than 0")
        anchor = anchor.strip().lower()
        if not is_address(anchor):
            raise ValueError("anchor must be a contract address")

        self.provider = provider
        self.freshness_seconds = freshness_seconds
        self.native_symbol = native_symbol
        self.anchor = anchor
        self.wait_timeout = wait_timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, CacheEntry] = {}
        self._pending: dict[str, Future[float]] = {}

    def get_rate(self, base: str, quote: str) -> float:
        base = normalize_currency(base, self.native_symbol)
        quote = normalize_currency(quote, self.native_symbol)
        if base == quote:
            return 1.0

        key = cache_key(base, quote)
        now = self._clock()
        claimed: CacheEntry | None = None
        pending: Future[float] | None = None
        in_flight: Future[float] | None = None

        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                state = entry.state(now, self.freshness_seconds)
                if state is RateState.FRESH:
                    logger.debug("Using cached rate for %s to %s", base, quote)
                    return entry.value
                if state is RateState.REFRESHING:
                    logger.debug("Cache for %s is being refreshed, returning old value", key)
                    return entry.value
                entry.refreshing = True
                claimed = entry
                logger.debug("Refreshing cache for %s", key)

            reverse = self._entries.get(cache_key(quote, base))
            if reverse is not None and reverse.is_fresh(now, self.freshness_seconds):
                if claimed is not None:
                    claimed.refreshing = False
                logger.debug("Using reverse cached rate for %s to %s", quote, base)
                return 1 / reverse.value

            if claimed is None:
                in_flight = self._pending.get(key)
                if in_flight is None:
                    pending = Future()
                    self._pending[key] = pending

        if in_flight is not None:
            return self._await_in_flight(key, in_flight)

        try:
            rate = self._derive(base, quote)
        except BaseException as exc:
            if pending is not None:
                pending.set_exception(exc)
            raise
        else:
            if pending is not None:
                pending.set_result(rate)
            return rate
        finally:
            with self._lock:
                if claimed is not None:
                    claimed.refreshing = False
                if pending is not None:
                    self._pending.pop(key, None)

    def convert(self, amount: float, base: str, quote: str) -> float:
        return amount * self.get_rate(base, quote)

    def rate_state(self, base: str, quote: str) -> RateState:
        key = cache_key(
            normalize_currency(base, self.native_symbol),
            normalize_currency(quote, self.native_symbol),
        )
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return RateState.EMPTY
            return entry.state(self._clock(), self.freshness_seconds)

    def snapshot(self) -> dict[str, CacheEntry]:
        with self._lock:
            return {key: replace(entry) for key, entry in self._entries.items()}

    def warm_up(self, pairs: Iterable[tuple[str, str]]) -> int:
        """Populate the cache for ``pairs``; failures are logged and skipped."""
        logger.info("Initializing rate cache...")
        populated = 0
        for base, quote in pairs:
            try:
                self.get_rate(base, quote)
            except RateServiceError as exc:
                logger.error("Failed to populate cache for %s to %s: %s", base, quote, exc)
                continue
            populated += 1
        logger.info("Rate cache initialized with %d pairs.", populated)
        return populated

    def close(self) -> None:
        self.provider.close()

    def _await_in_flight(self, key: str, in_flight: Future[float]) -> float:
        logger.debug("Waiting for in-flight rate computation for %s", key)
        try:
            return in_flight.result(timeout=self.wait_timeout)
        except FutureTimeoutError as exc:
            raise ProviderError(f"Timed out waiting for rate {key}") from exc

    def _derive(self, base: str, quote: str) -> float:
        base_is_address = is_address(base)
        quote_is_address = is_address(quote)

        if base_is_address and quote_is_address:
            return self._triangulate(base, quote, via=self.native_symbol)
        if quote_is_address:
            return self._reciprocal(base, quote)
        if not base_is_address:
            return self._triangulate(base, quote, via=self.anchor)
        return self._fetch(base, quote)

    def _triangulate(self, base: str, quote: str, *, via: str) -> float:
        base_leg = self.get_rate(base, via)
        quote_leg = self.get_rate(quote, via)
        if not base_leg or not quote_leg:
            logger.warning("Cannot triangulate %s to %s via %s: missing leg", base, quote, via)
            return UNKNOWN_RATE

        rate = base_leg / quote_leg
        self._store(base, quote, rate)
        return rate

    def _reciprocal(self, base: str, quote: str) -> float:
        rate = self.get_rate(quote, base)
        return 1 / rate if rate else UNKNOWN_RATE

    def _fetch(self, base: str, quote: str) -> float:
        rate = self.provider.fetch_rate(base, quote)
        if not rate:
            logger.warning("Provider returned no rate for %s to %s", base, quote)
            return UNKNOWN_RATE
        self._store(base, quote, rate)
        return rate

    def _store(self, base: str, quote: str, rate: float) -> None:
        key = cache_key(base, quote)
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._entries[key] = CacheEntry(value=rate, timestamp=now)
            else:
                entry.value = rate
                entry.timestamp = now
                entry.refreshing = False
        logger.debug("Refreshed cache for %s", key)


def build_rate_cache(settings: AppSettings) -> RateCache:
    client = _CoinGeckoClient(
        base_url=settings.coingecko_base_url,
        api_key=settings.coingecko_api_key,
        timeout=settings.request_timeout_seconds,
        retry_attempts=settings.retry_attempts,
        retry_backoff_seconds=settings.retry_backoff_seconds,
    )
    source = CoinGeckoSource(
        client=client,
        platform=settings.coingecko_platform,
        native_id=settings.coingecko_native_id,
        native_symbol=settings.native_symbol,
    )
    return RateCache(
        source,
        freshness_seconds=settings.rate_freshness_seconds,
        native_symbol=settings.native_symbol,
        anchor=settings.anchor_address,
        wait_timeout=settings.rate_wait_timeout,
    )


__all__ = ["RateCache", "build_rate_cache"]
