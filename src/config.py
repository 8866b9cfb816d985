from __future__ import annotations

from functools import cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

USDT_ADDRESS = "0xdac17f958d2ee523a2206206994597c13d831ec7"
USDC_ADDRESS = "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"


class AppSettings(BaseSettings):
    coingecko_base_url: str = "https://api.coingecko.com/api/v3"
    coingecko_api_key: str | None = None
    coingecko_platform: str = "ethereum"
    coingecko_native_id: str = "ethereum"
    request_timeout_seconds: float = 10.0
    retry_attempts: int = 3
    retry_backoff_seconds: float = 1.0

    rate_freshness_seconds: float = 900.0
    native_symbol: str = "eth"
    anchor_address: str = USDC_ADDRESS
    wait_timeout_seconds: float | None = None
    warm_up_on_startup: bool = True
    warm_up_pairs: list[tuple[str, str]] = [
        (USDT_ADDRESS, "eth"),
        (USDC_ADDRESS, "eth"),
        (USDT_ADDRESS, "cny"),
        (USDC_ADDRESS, "cny"),
    ]

    account_chain_id: int = 1

    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @field_validator("native_symbol")
    @classmethod
    def _normalize_symbol(cls, value: str) -> str:
        cleaned = value.strip().lower()
        if not cleaned:
            raise ValueError("native_symbol must not be blank")
        return cleaned

    @field_validator("anchor_address")
    @classmethod
    def _anchor_must_be_address(cls, value: str) -> str:
        cleaned = value.strip().lower()
        if not cleaned.startswith("0x"):
            raise ValueError("anchor_address must be a contract address")
        return cleaned

    @property
    def fetch_budget_seconds(self) -> float:
        """Worst case for one uncached lookup: two sequential provider calls, each retried."""
        per_call = (self.retry_attempts + 1) * self.request_timeout_seconds
        backoff = self.retry_backoff_seconds * 2**self.retry_attempts
        return 2 * (per_call + backoff)

    @property
    def rate_wait_timeout(self) -> float:
        return self.wait_timeout_seconds if self.wait_timeout_seconds is not None else self.fetch_budget_seconds

    @model_validator(mode="after")
    def _wait_covers_fetch_budget(self) -> AppSettings:
        if self.wait_timeout_seconds is not None and self.wait_timeout_seconds < self.fetch_budget_seconds:
            raise ValueError(
                f"wait_timeout_seconds must be at least {self.fetch_budget_seconds:.1f}s to cover provider retries"
            )
        return self


@cache
def config() -> AppSettings:
    return AppSettings()
