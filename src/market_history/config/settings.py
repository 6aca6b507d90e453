"""Configuration management for the history client."""
from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional

try:  # pragma: no cover - import shim for Python < 3.11
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover - fallback for older interpreters
    import tomli as tomllib  # type: ignore[no-redef]

from pydantic import BaseModel, Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from market_history.data.models import Granularity
from market_history.fetch.rate_limiter import RateBudget
from market_history.fetch.retry import RetryPolicy


class BinanceSettings(BaseModel):
    """Binance REST connection parameters; public kline data needs no key."""

    api_key: str | None = Field(None)
    api_secret: str | None = Field(None)
    base_url: str = Field("https://api.binance.com/api")
    futures_url: str | None = Field(None, description="Optional override for the USD-M futures REST endpoint")
    market: str = Field("spot", pattern="^(spot|futures)$")
    request_timeout: int = Field(20, ge=1)
    candles_per_request: int = Field(1000, ge=1, le=1000)


class CategoryLimit(BaseModel):
    """Requests allowed per refill window for one endpoint category."""

    capacity: int = Field(..., ge=1)
    interval_seconds: float = Field(1.0, gt=0.0)


def _default_categories() -> Dict[str, CategoryLimit]:
    return {
        "quote": CategoryLimit(capacity=1),
        "historical": CategoryLimit(capacity=3),
        "orders": CategoryLimit(capacity=10),
        "standard": CategoryLimit(capacity=10),
    }


class RateLimitSettings(BaseModel):
    enabled: bool = Field(True)
    default_category: str = Field("historical", min_length=1, description="Category charged for historical chunk calls")
    categories: Dict[str, CategoryLimit] = Field(default_factory=_default_categories)

    @model_validator(mode="after")
    def _require_category(self) -> "RateLimitSettings":
        if not self.categories:
            raise ValueError("at least one rate limit category must be configured")
        return self

    def to_budgets(self) -> list[RateBudget]:
        return [
            RateBudget(name, capacity=limit.capacity, interval=limit.interval_seconds)
            for name, limit in self.categories.items()
        ]


class RetrySettings(BaseModel):
    max_attempts: int = Field(3, ge=1)
    base_delay: float = Field(0.5, ge=0.0, description="Seconds before the first retry")
    max_delay: float = Field(30.0, ge=0.0)
    multiplier: float = Field(2.0, ge=1.0)
    jitter_min: float = Field(0.0, ge=0.0)
    jitter_max: float = Field(0.25, ge=0.0)

    @model_validator(mode="after")
    def _check_jitter(self) -> "RetrySettings":
        if self.jitter_min > self.jitter_max:
            raise ValueError("jitter_min must not exceed jitter_max")
        return self

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            multiplier=self.multiplier,
            jitter=(self.jitter_min, self.jitter_max),
        )


class CacheSettings(BaseModel):
    enabled: bool = Field(True)
    ttl_seconds: float = Field(300.0, gt=0.0)
    max_entries: int = Field(512, ge=1)


class FetchSettings(BaseModel):
    """Defaults for what the download script retrieves."""

    symbol: str = Field("BTCUSDT")
    granularity: Granularity = Field(Granularity.MINUTE)
    start_date: str = Field(..., description="ISO8601 inclusive start timestamp")
    continuous: bool = Field(False)
    include_oi: bool = Field(False)
    continue_on_error: bool = Field(False)
    use_cache: bool = Field(True)

    @model_validator(mode="before")
    @classmethod
    def _parse_granularity(cls, data):
        if isinstance(data, dict) and isinstance(data.get("granularity"), str):
            data = {**data, "granularity": Granularity.parse(data["granularity"])}
        return data


class AppSettings(BaseSettings):
    """Application-wide configuration composed from individual domains."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_nested_delimiter="__",
        env_file=".env",
    )

    fetch: FetchSettings
    binance: BinanceSettings = BinanceSettings()
    rate_limits: RateLimitSettings = RateLimitSettings()
    retry: RetrySettings = RetrySettings()
    cache: CacheSettings = CacheSettings()


def load_settings(path: Optional[Path] = None) -> AppSettings:
    """Load settings from a TOML file, falling back to environment variables."""

    if path is None:
        path = Path("config/settings.toml")

    if path.exists():
        raw_data = tomllib.loads(path.read_text())
        return AppSettings.model_validate(raw_data)

    try:
        return AppSettings()
    except ValidationError as exc:
        raise RuntimeError(
            f"Unable to load configuration. Provide {path} or the relevant environment variables."
        ) from exc
