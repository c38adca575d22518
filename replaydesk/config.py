"""ReplayDesk — application configuration.

Loads .env variables into a typed config object.
Every variable is optional: without a Twelve Data key the market-data
provider is disabled and sessions replay synthetic candles.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from replaydesk.errors import ConfigurationError


_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    twelvedata_api_key: str
    twelvedata_base_url: str
    default_interval: str
    candle_limit: int
    base_tick_seconds: float  # period of one playback tick at 1x speed
    starting_balance: float
    request_timeout_seconds: float
    enforce_stops: bool
    log_level: str
    api_port: int

    @property
    def market_data_enabled(self) -> bool:
        """``True`` when a Twelve Data API key is configured."""
        return bool(self.twelvedata_api_key)


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ConfigurationError`` (a ``ValueError``) naming the offending
    variable when a value cannot be parsed or is out of range.
    """
    load_dotenv(dotenv_path=env_path)

    config = Config(
        twelvedata_api_key=os.environ.get("TWELVEDATA_API_KEY", ""),
        twelvedata_base_url=os.environ.get(
            "TWELVEDATA_BASE_URL", "https://api.twelvedata.com"
        ),
        default_interval=os.environ.get("DEFAULT_INTERVAL", "1h"),
        candle_limit=_parse("CANDLE_LIMIT", "1000", int),
        base_tick_seconds=_parse("BASE_TICK_SECONDS", "1.0", float),
        starting_balance=_parse("STARTING_BALANCE", "10000", float),
        request_timeout_seconds=_parse("REQUEST_TIMEOUT_SECONDS", "10", float),
        enforce_stops=(
            os.environ.get("ENFORCE_STOPS", "false").strip().lower() in _TRUE_VALUES
        ),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        api_port=_parse("API_PORT", "8080", int),
    )

    for name, value in [
        ("CANDLE_LIMIT", config.candle_limit),
        ("BASE_TICK_SECONDS", config.base_tick_seconds),
        ("STARTING_BALANCE", config.starting_balance),
        ("REQUEST_TIMEOUT_SECONDS", config.request_timeout_seconds),
    ]:
        if value <= 0:
            raise ConfigurationError(f"{name} must be positive, got {value}", field=name)

    return config


def _parse(name: str, default: str, cast):
    raw = os.environ.get(name, default)
    try:
        return cast(raw)
    except ValueError:
        raise ConfigurationError(
            f"Invalid value for {name}: {raw!r}", field=name
        ) from None
