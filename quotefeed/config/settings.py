import os
from functools import lru_cache

from pydantic import BaseModel, Field, field_validator

DEFAULT_SYMBOLS = [
    "AAPL", "MSFT", "AMZN", "GOOGL", "TSLA", "NVDA", "JPM", "JNJ", "V", "PG",
    "UNH", "HD", "MA", "BAC", "DIS", "PYPL", "ADBE", "NFLX", "CMCSA", "INTC",
    "PFE", "CSCO", "PEP", "XOM", "T", "ABT", "CRM", "KO", "WMT", "ABBV",
    "MCD", "NKE", "MDT", "COST", "AVGO", "QCOM", "TXN", "HON", "UNP", "LIN",
    "SBUX", "CAT", "IBM", "GS", "LOW", "AMGN", "CVX", "DHR", "LMT", "BLK",
]


def parse_symbols(raw: str) -> list[str]:
    """Split a comma separated universe, dropping blanks and repeats."""
    out: list[str] = []
    seen: set[str] = set()
    for part in raw.split(","):
        value = part.strip()
        if not value or value in seen:
            continue
        seen.add(value)
        out.append(value)
    return out


class Settings(BaseModel):
    FINNHUB_API_KEY: str
    FEED_SYMBOLS: list[str] = Field(default_factory=lambda: list(DEFAULT_SYMBOLS))
    RETRY_INTERVAL_SECONDS: float = Field(default=300.0, gt=0)
    FINNHUB_FORCE_CANDLES: bool = False
    FEED_OUTPUT_PATH: str = "trades.csv"
    FLUSH_INTERVAL_SECONDS: float = Field(default=1.0, gt=0)
    SHUTDOWN_GRACE_SECONDS: float = Field(default=5.0, gt=0)
    STREAM_MAX_CONNECT_ATTEMPTS: int = Field(default=1, ge=1)
    FINNHUB_REST_URL: str = "https://finnhub.io/api/v1"
    FINNHUB_WS_URL: str = "wss://ws.finnhub.io"

    @field_validator("FINNHUB_API_KEY")
    @classmethod
    def _token_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("FINNHUB_API_KEY must not be empty")
        return value

    @field_validator("FEED_SYMBOLS")
    @classmethod
    def _universe_not_empty(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("FEED_SYMBOLS must name at least one symbol")
        return value

    @classmethod
    def from_env(cls) -> "Settings":
        values = {
            "FINNHUB_API_KEY": os.getenv("FINNHUB_API_KEY"),
        }

        raw_symbols = os.getenv("FEED_SYMBOLS")
        if raw_symbols is not None:
            values["FEED_SYMBOLS"] = parse_symbols(raw_symbols)

        # unset or empty optional vars fall back to the model defaults
        for name in (
            "RETRY_INTERVAL_SECONDS",
            "FINNHUB_FORCE_CANDLES",
            "FEED_OUTPUT_PATH",
            "FLUSH_INTERVAL_SECONDS",
            "SHUTDOWN_GRACE_SECONDS",
            "STREAM_MAX_CONNECT_ATTEMPTS",
            "FINNHUB_REST_URL",
            "FINNHUB_WS_URL",
        ):
            raw = os.getenv(name)
            if raw is not None and raw.strip():
                values[name] = raw.strip()

        return cls.model_validate(values)


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
