import pytest

from services.rate_cache import RateCache
from tests.constants import USDC, USDT
from tests.helpers.price_providers import FakeClock, StubPriceProvider


@pytest.fixture(scope="function")
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(scope="function")
def provider() -> StubPriceProvider:
    return StubPriceProvider(
        {
            (USDT, "eth"): 0.0004,
            (USDC, "eth"): 0.0004,
            (USDT, "cny"): 7.1,
            (USDC, "cny"): 7.2,
        }
    )


@pytest.fixture(scope="function")
def rate_cache(provider: StubPriceProvider, clock: FakeClock) -> RateCache:
    return RateCache(provider, clock=clock, anchor=USDC)
