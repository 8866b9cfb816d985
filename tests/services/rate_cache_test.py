from __future__ import annotations

import threading

import pytest

from config import AppSettings
from domain.errors import ProviderError, ValidationError
from services.rate_cache import RateCache, build_rate_cache
from services.rate_types import UNKNOWN_RATE, RateState
from tests.constants import DAI, USDC, USDT, ZERO_ADDRESS
from tests.helpers.price_providers import BlockingPriceProvider, FakeClock, SlowPriceProvider, StubPriceProvider


@pytest.mark.parametrize(
    ("base", "quote"),
    [("eth", "eth"), (" ETH ", "eth"), ("Cny", "cNY "), (USDT.upper(), f"  {USDT}"), (ZERO_ADDRESS, "eth")],
)
def test_same_currency_is_one_without_provider_call(
    rate_cache: RateCache, provider: StubPriceProvider, base: str, quote: str
) -> None:
    assert rate_cache.get_rate(base, quote) == 1.0
    assert provider.calls == []


def test_blank_currency_is_rejected(rate_cache: RateCache) -> None:
    with pytest.raises(ValidationError):
        rate_cache.get_rate("  ", "eth")


def test_token_to_symbol_fetches_once_and_reuses_cache(rate_cache: RateCache, provider: StubPriceProvider) -> None:
    first = rate_cache.get_rate(USDT, "eth")
    second = rate_cache.get_rate(f" {USDT.upper()} ", "ETH")

    assert first == 0.0004
    assert second == first
    assert provider.calls == [(USDT, "eth")]
    assert rate_cache.rate_state(USDT, "eth") is RateState.FRESH


def test_zero_address_is_treated_as_native_asset(rate_cache: RateCache, provider: StubPriceProvider) -> None:
    assert rate_cache.get_rate(USDT, ZERO_ADDRESS) == 0.0004
    assert provider.calls == [(USDT, "eth")]


def test_fresh_reverse_entry_answers_with_reciprocal(rate_cache: RateCache, provider: StubPriceProvider) -> None:
    forward = rate_cache.get_rate(USDT, "eth")

    reverse = rate_cache.get_rate("eth", USDT)

    assert reverse == pytest.approx(1 / forward)
    assert provider.calls == [(USDT, "eth")]


def test_symbol_to_token_uses_reciprocal_of_reverse_lookup(rate_cache: RateCache, provider: StubPriceProvider) -> None:
    rate = rate_cache.get_rate("cny", USDT)

    assert rate == pytest.approx(1 / 7.1)
    assert provider.calls == [(USDT, "cny")]
    assert "cny-" + USDT not in rate_cache.snapshot()


def test_two_tokens_triangulate_through_native_asset(clock: FakeClock) -> None:
    provider = StubPriceProvider({(USDT, "eth"): 0.0004, (DAI, "eth"): 0.0005})
    cache = RateCache(provider, clock=clock, anchor=USDC)

    rate = cache.get_rate(USDT, DAI)

    assert rate == pytest.approx(0.0004 / 0.0005)
    assert rate == pytest.approx(cache.get_rate(USDT, "eth") / cache.get_rate(DAI, "eth"))
    assert provider.calls == [(USDT, "eth"), (DAI, "eth")]
    entry = cache.snapshot()[f"{USDT}-{DAI}"]
    assert entry.value == pytest.approx(0.8)
    assert entry.timestamp == clock.now
    assert entry.refreshing is False

    cache.get_rate(USDT, DAI)
    assert len(provider.calls) == 2


def test_two_symbols_triangulate_through_anchor(rate_cache: RateCache, provider: StubPriceProvider) -> None:
    rate = rate_cache.get_rate("cny", "eth")

    cny_in_usdc = 1 / 7.2
    eth_in_usdc = 1 / 0.0004
    assert rate == pytest.approx(cny_in_usdc / eth_in_usdc)
    assert provider.calls == [(USDC, "cny"), (USDC, "eth")]
    assert rate_cache.snapshot()["cny-eth"].value == pytest.approx(rate)


def test_stale_entry_is_refreshed_after_window(
    rate_cache: RateCache, provider: StubPriceProvider, clock: FakeClock
) -> None:
    rate_cache.get_rate(USDT, "eth")
    clock.advance(899)
    assert rate_cache.get_rate(USDT, "eth") == 0.0004

    clock.advance(1)
    provider.rates[(USDT, "eth")] = 0.0005
    assert rate_cache.rate_state(USDT, "eth") is RateState.STALE

    assert rate_cache.get_rate(USDT, "eth") == 0.0005
    assert len(provider.calls) == 2
    assert rate_cache.snapshot()[f"{USDT}-eth"].timestamp == clock.now


def test_provider_failure_propagates_and_releases_refresh(
    rate_cache: RateCache, provider: StubPriceProvider, clock: FakeClock
) -> None:
    rate_cache.get_rate(USDT, "eth")
    clock.advance(1000)
    provider.error = ProviderError("upstream down")

    with pytest.raises(ProviderError, match="upstream down"):
        rate_cache.get_rate(USDT, "eth")
    assert rate_cache.rate_state(USDT, "eth") is RateState.STALE

    provider.error = None
    assert rate_cache.get_rate(USDT, "eth") == 0.0004
    assert len(provider.calls) == 3


def test_failed_first_fetch_leaves_no_entry(clock: FakeClock) -> None:
    provider = StubPriceProvider()
    cache = RateCache(provider, clock=clock, anchor=USDC)

    with pytest.raises(ProviderError):
        cache.get_rate(DAI, "cny")
    assert cache.rate_state(DAI, "cny") is RateState.EMPTY

    provider.rates[(DAI, "cny")] = 7.0
    assert cache.get_rate(DAI, "cny") == 7.0


def test_triangulation_leg_failure_bubbles_up(clock: FakeClock) -> None:
    provider = StubPriceProvider({(USDT, "eth"): 0.0004})
    cache = RateCache(provider, clock=clock, anchor=USDC)

    with pytest.raises(ProviderError):
        cache.get_rate(USDT, DAI)
    assert f"{USDT}-{DAI}" not in cache.snapshot()


def test_zero_inner_rate_yields_unknown(clock: FakeClock) -> None:
    provider = StubPriceProvider({(DAI, "cny"): 0.0})
    cache = RateCache(provider, clock=clock, anchor=USDC)

    assert cache.get_rate("cny", DAI) == UNKNOWN_RATE
    assert cache.snapshot() == {}


def test_stale_refresh_is_coalesced_and_serves_old_value(clock: FakeClock) -> None:
    provider = BlockingPriceProvider({(USDT, "eth"): 0.0004})
    cache = RateCache(provider, clock=clock, anchor=USDC)
    provider.release.set()
    cache.get_rate(USDT, "eth")

    clock.advance(901)
    provider.rates[(USDT, "eth")] = 0.0005
    provider.started.clear()
    provider.release.clear()
    results: list[float] = []
    refresher = threading.Thread(target=lambda: results.append(cache.get_rate(USDT, "eth")))
    refresher.start()
    assert provider.started.wait(timeout=5)

    assert cache.rate_state(USDT, "eth") is RateState.REFRESHING
    assert cache.get_rate(USDT, "eth") == 0.0004
    assert cache.get_rate(USDT, "eth") == 0.0004

    provider.release.set()
    refresher.join(timeout=5)

    assert results == [0.0005]
    assert len(provider.calls) == 2
    assert cache.get_rate(USDT, "eth") == 0.0005


def test_concurrent_first_lookups_share_one_fetch(clock: FakeClock) -> None:
    provider = BlockingPriceProvider({(USDT, "eth"): 0.0004})
    cache = RateCache(provider, clock=clock, anchor=USDC)
    results: list[float] = []

    def lookup() -> None:
        results.append(cache.get_rate(USDT, "eth"))

    first = threading.Thread(target=lookup)
    first.start()
    assert provider.started.wait(timeout=5)
    second = threading.Thread(target=lookup)
    second.start()
    second.join(timeout=0.1)

    provider.release.set()
    first.join(timeout=5)
    second.join(timeout=5)

    assert results == [0.0004, 0.0004]
    assert provider.calls == [(USDT, "eth")]


def test_waiter_times_out_when_fetch_hangs(clock: FakeClock) -> None:
    provider = BlockingPriceProvider({(USDT, "eth"): 0.0004})
    cache = RateCache(provider, clock=clock, anchor=USDC, wait_timeout=0.05)
    first = threading.Thread(target=lambda: cache.get_rate(USDT, "eth"))
    first.start()
    assert provider.started.wait(timeout=5)

    with pytest.raises(ProviderError, match="Timed out"):
        cache.get_rate(USDT, "eth")

    provider.release.set()
    first.join(timeout=5)
    assert provider.calls == [(USDT, "eth")]


def test_convert_scales_by_rate(rate_cache: RateCache) -> None:
    assert rate_cache.convert(10, USDT, "cny") == pytest.approx(71.0)


def test_warm_up_skips_failures(rate_cache: RateCache, provider: StubPriceProvider) -> None:
    populated = rate_cache.warm_up([(USDT, "eth"), (DAI, "eth"), (USDC, "cny")])

    assert populated == 2
    assert set(rate_cache.snapshot()) == {f"{USDT}-eth", f"{USDC}-cny"}


def test_anchor_must_be_an_address() -> None:
    with pytest.raises(ValueError):
        RateCache(StubPriceProvider(), anchor="usdc")


def test_fresh_reverse_hit_releases_stale_forward_claim(
    rate_cache: RateCache, provider: StubPriceProvider, clock: FakeClock
) -> None:
    rate_cache.get_rate("cny", "eth")
    clock.advance(1000)
    reverse = rate_cache.get_rate("eth", "cny")
    calls_before = len(provider.calls)

    forward = rate_cache.get_rate("cny", "eth")

    assert forward == pytest.approx(1 / reverse)
    assert len(provider.calls) == calls_before
    assert rate_cache.rate_state("cny", "eth") is RateState.STALE


def test_waiter_gets_rate_from_slow_first_fetch(clock: FakeClock) -> None:
    provider = SlowPriceProvider({(USDT, "eth"): 0.0004}, delay=0.3)
    cache = RateCache(provider, clock=clock, anchor=USDC, wait_timeout=2.0)
    results: list[float] = []
    errors: list[Exception] = []

    def lookup() -> None:
        try:
            results.append(cache.get_rate(USDT, "eth"))
        except ProviderError as exc:
            errors.append(exc)

    threads = [threading.Thread(target=lookup) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5)

    assert errors == []
    assert results == [0.0004, 0.0004]
    assert provider.calls == [(USDT, "eth")]


def test_built_cache_waits_for_full_provider_budget() -> None:
    settings = AppSettings(_env_file=None, request_timeout_seconds=10, retry_attempts=3, retry_backoff_seconds=1)  # type: ignore[call-arg]

    cache = build_rate_cache(settings)

    assert cache.wait_timeout == settings.fetch_budget_seconds
    assert cache.wait_timeout >= 2 * (3 + 1) * 10
    cache.close()


def test_close_releases_provider(rate_cache: RateCache, provider: StubPriceProvider) -> None:
    rate_cache.close()

    assert provider.closed is True


class _Aborted(BaseException):
    pass


def test_waiter_sees_base_exception_from_first_fetch(clock: FakeClock) -> None:
    provider = BlockingPriceProvider({(USDT, "eth"): 0.0004})
    provider.error = _Aborted()
    cache = RateCache(provider, clock=clock, anchor=USDC, wait_timeout=5.0)
    outcomes: list[BaseException] = []

    def lookup() -> None:
        try:
            cache.get_rate(USDT, "eth")
        except BaseException as exc:
            outcomes.append(exc)

    first = threading.Thread(target=lookup)
    first.start()
    assert provider.started.wait(timeout=5)
    second = threading.Thread(target=lookup)
    second.start()
    second.join(timeout=0.1)

    provider.release.set()
    first.join(timeout=5)
    second.join(timeout=5)

    assert len(outcomes) == 2
    assert all(isinstance(outcome, _Aborted) for outcome in outcomes)
    assert cache.rate_state(USDT, "eth") is RateState.EMPTY
