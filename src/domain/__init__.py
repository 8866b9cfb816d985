"""Domain types for the conversion service.

Currency identifiers, the price lookup interface and the error taxonomy live here
so that the rate cache, the CoinGecko client and the HTTP layer share one
vocabulary without depending on each other.
"""

__all__ = [
    "currency",
    "errors",
    "pricing",
]
