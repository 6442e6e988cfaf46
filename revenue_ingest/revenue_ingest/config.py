from __future__ import annotations

import os
from dataclasses import dataclass


def _env_str(name: str, default: str | None) -> str | None:
    raw = os.getenv(name)
    if raw is None:
        return default
    raw = raw.strip()
    if raw.lower() in {"", "none", "null"}:
        return default
    return raw


def _env_int(name: str, default: int, *, lo: int | None = None, hi: int | None = None) -> int:
    raw = os.getenv(name, str(default)).strip().lower()
    if raw in {"", "none", "null"}:
        return default
    try:
        val = int(raw)
    except ValueError:
        return default
    if lo is not None:
        val = max(lo, val)
    if hi is not None:
        val = min(hi, val)
    return val


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, str(default)).strip().lower()
    if raw in {"", "none", "null"}:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class PipelineConfig:
    timezone: str = "Asia/Shanghai"
    display_currency: str | None = None
    page_size: int = 100
    max_concurrent_requests: int = 8
    max_concurrent_merchants: int = 4
    time_slices: int = 1
    payments_api_base_url: str = "https://api.stripe.com"
    exchange_rate_url: str = "https://api.exchangerate-api.com/v4/latest"
    http_timeout_seconds: float = 10.0
    log_level: str = "INFO"
    log_format: str = "plain"


def load_config() -> PipelineConfig:
    """
    Snapshot of env configuration.
    Unset / empty / unparsable values fall back to defaults.
    """
    display = _env_str("DISPLAY_CURRENCY", None)
    return PipelineConfig(
        timezone=_env_str("REVENUE_TIMEZONE", "Asia/Shanghai"),
        display_currency=display.upper() if display else None,
        # upstream caps list pages at 100
        page_size=_env_int("PAGE_SIZE", 100, lo=1, hi=100),
        max_concurrent_requests=_env_int("MAX_CONCURRENT_REQUESTS", 8, lo=1),
        max_concurrent_merchants=_env_int("MAX_CONCURRENT_MERCHANTS", 4, lo=1),
        time_slices=_env_int("TIME_SLICES", 1, lo=1),
        payments_api_base_url=_env_str("PAYMENTS_API_BASE_URL", "https://api.stripe.com"),
        exchange_rate_url=_env_str("EXCHANGE_RATE_URL", "https://api.exchangerate-api.com/v4/latest"),
        http_timeout_seconds=_env_float("HTTP_TIMEOUT_SECONDS", 10.0),
        log_level=_env_str("LOG_LEVEL", "INFO").upper(),
        log_format=_env_str("LOG_FORMAT", "plain").lower(),
    )
