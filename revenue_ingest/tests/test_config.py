import pytest

from revenue_ingest.config import PipelineConfig, load_config

ENV_VARS = (
    "REVENUE_TIMEZONE",
    "DISPLAY_CURRENCY",
    "PAGE_SIZE",
    "MAX_CONCURRENT_REQUESTS",
    "MAX_CONCURRENT_MERCHANTS",
    "TIME_SLICES",
    "PAYMENTS_API_BASE_URL",
    "EXCHANGE_RATE_URL",
    "HTTP_TIMEOUT_SECONDS",
    "LOG_LEVEL",
    "LOG_FORMAT",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults(clean_env):
    assert load_config() == PipelineConfig()
    cfg = load_config()
    assert cfg.timezone == "Asia/Shanghai"
    assert cfg.display_currency is None
    assert cfg.page_size == 100


def test_overrides(clean_env):
    clean_env.setenv("REVENUE_TIMEZONE", "America/New_York")
    clean_env.setenv("DISPLAY_CURRENCY", "hkd")
    clean_env.setenv("TIME_SLICES", "6")
    clean_env.setenv("HTTP_TIMEOUT_SECONDS", "2.5")
    clean_env.setenv("LOG_LEVEL", "debug")
    clean_env.setenv("LOG_FORMAT", "JSON")
    cfg = load_config()
    assert cfg.timezone == "America/New_York"
    assert cfg.display_currency == "HKD"
    assert cfg.time_slices == 6
    assert cfg.http_timeout_seconds == 2.5
    assert cfg.log_level == "DEBUG"
    assert cfg.log_format == "json"


@pytest.mark.parametrize(
    "raw,expected",
    [("500", 100), ("0", 1), ("-3", 1), ("25", 25), ("abc", 100), ("", 100), ("null", 100)],
)
def test_page_size_clamped(clean_env, raw, expected):
    clean_env.setenv("PAGE_SIZE", raw)
    assert load_config().page_size == expected


def test_unparsable_values_fall_back(clean_env):
    clean_env.setenv("MAX_CONCURRENT_REQUESTS", "many")
    clean_env.setenv("HTTP_TIMEOUT_SECONDS", "soon")
    clean_env.setenv("DISPLAY_CURRENCY", "none")
    cfg = load_config()
    assert cfg.max_concurrent_requests == 8
    assert cfg.http_timeout_seconds == 10.0
    assert cfg.display_currency is None
