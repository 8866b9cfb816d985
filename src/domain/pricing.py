from __future__ import annotations

from typing import Protocol


class PriceProvider(Protocol):
    """Remote "token price in vs-currency" lookup.

    ``asset`` is a contract address or the native-asset marker. Implementations raise
    ``ProviderError`` when the transport fails or the upstream has no data for the pair.
    Every call may be slow; callers must not assume the provider caches anything.
    """

    def fetch_rate(self, asset: str, vs_currency: str) -> float: ...

    def close(self) -> None: ...


__all__ = ["PriceProvider"]
