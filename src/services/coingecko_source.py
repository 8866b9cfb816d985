from __future__ import annotations

import logging
import math
from typing import Any

import requests
from requests import Response
from requests.adapters import HTTPAdapter
from urllib3.util import Retry

from domain.currency import NATIVE_SYMBOL, is_zero_address
from domain.errors import ProviderError
from domain.pricing import PriceProvider

logger = logging.getLogger(__name__)


class CoinGeckoAPIError(ProviderError):
    pass


class _CoinGeckoClient:
    def __init__(
        self,
        base_url: str = "https://api.coingecko.com/api/v3",
        api_key: str | None = None,
        timeout: float = 10.0,
        session: requests.Session | None = None,
        retry_attempts: int = 3,
        retry_backoff_seconds: float = 1,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._session = session or requests.Session()

        retry = Retry(
            total=retry_attempts,
            backoff_factor=retry_backoff_seconds,
            status_forcelist={429, 502, 503, 504},
            allowed_methods={"GET"},
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry)
        self._session.mount("https://", adapter)
        self._session.mount("http://", adapter)

    def close(self) -> None:
        self._session.close()

    def get_simple_price(self, *, ids: str, vs_currencies: str) -> dict[str, Any]:
        return self._request("GET", "/simple/price", params={"ids": ids, "vs_currencies": vs_currencies})

    def get_token_price(self, *, platform: str, contract_addresses: str, vs_currencies: str) -> dict[str, Any]:
        params = {"contract_addresses": contract_addresses, "vs_currencies": vs_currencies}
        return self._request("GET", f"/simple/token_price/{platform}", params=params)

    def _request(self, method: str, path: str, *, params: dict[str, Any] | None = None) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        headers = {"accept": "application/json"}
        if self.api_key:
            headers["x-cg-demo-api-key"] = self.api_key
        try:
            response = self._session.request(method, url, params=params, timeout=self.timeout, headers=headers)
            response.raise_for_status()
        except requests.HTTPError as exc:
            resp = exc.response
            message, payload_err = self._extract_error(resp)
            raise CoinGeckoAPIError(
                message, status_code=getattr(resp, "status_code", None), payload=payload_err
            ) from exc
        except requests.RequestException as exc:
            status_code = getattr(getattr(exc, "response", None), "status_code", None)
            raise CoinGeckoAPIError("CoinGecko API request failed", status_code=status_code) from exc

        try:
            payload: dict[str, Any] = response.json()
        except ValueError as exc:
            raise CoinGeckoAPIError("CoinGecko API returned invalid JSON", payload=response.text) from exc

        if not isinstance(payload, dict):
            raise CoinGeckoAPIError("CoinGecko API returned unexpected payload type", payload=payload)

        return payload

    @staticmethod
    def _extract_error(response: Response | None) -> tuple[str, Any | None]:
        message = "CoinGecko API request failed"
        if response is None:
            return message, None
        try:
            payload = response.json()
            status = payload.get("status") if isinstance(payload, dict) else None
            if isinstance(status, dict) and status.get("error_message"):
                message = status["error_message"]
            elif isinstance(payload, dict) and isinstance(payload.get("error"), str):
                message = payload["error"]
        except ValueError:
            payload = response.text
        return message, payload


class CoinGeckoSource(PriceProvider):
    """Spot prices of ERC-20 tokens and the native asset from CoinGecko's simple API."""

    def __init__(
        self,
        *,
        client: _CoinGeckoClient | None = None,
        platform: str = "ethereum",
        native_id: str = "ethereum",
        native_symbol: str = NATIVE_SYMBOL,
    ) -> None:
        if not platform:
            raise ValueError("platform must be provided")
        if not native_id:
            raise ValueError("native_id must be provided")

        self.client = client or _CoinGeckoClient()
        self.platform = platform
        self.native_id = native_id
        self.native_symbol = native_symbol

    def fetch_rate(self, asset: str, vs_currency: str) -> float:
        asset = asset.strip().lower()
        vs_currency = vs_currency.strip().lower()

        if self._is_native(asset):
            payload = self.client.get_simple_price(ids=self.native_id, vs_currencies=vs_currency)
            key = self.native_id
        else:
            payload = self.client.get_token_price(
                platform=self.platform, contract_addresses=asset, vs_currencies=vs_currency
            )
            key = asset

        logger.debug("CoinGecko response for %s/%s: %s", asset, vs_currency, payload)
        return self._extract_rate(payload, key=key, asset=asset, vs_currency=vs_currency)

    def close(self) -> None:
        self.client.close()

    def _is_native(self, asset: str) -> bool:
        return asset == self.native_symbol or is_zero_address(asset)

    @staticmethod
    def _extract_rate(payload: dict[str, Any], *, key: str, asset: str, vs_currency: str) -> float:
        prices = payload.get(key)
        if not isinstance(prices, dict) or vs_currency not in prices:
            raise CoinGeckoAPIError(f"No data found for {asset} with currency {vs_currency}", payload=payload)

        raw = prices[vs_currency]
        try:
            rate = float(raw)
        except (TypeError, ValueError) as exc:
            raise CoinGeckoAPIError(f"Non-numeric price for {asset} in {vs_currency}", payload=payload) from exc

        if not math.isfinite(rate) or rate <= 0:
            raise CoinGeckoAPIError(f"Invalid price {raw!r} for {asset} in {vs_currency}", payload=payload)
        return rate


__all__ = ["CoinGeckoAPIError", "CoinGeckoSource"]
