from __future__ import annotations

import time
from typing import Any, Dict, Optional

import requests
from pydantic import BaseModel, ValidationError

from quotefeed.errors import (
    MalformedResponseError,
    PermanentEndpointError,
    RateLimitedError,
    TransientNetworkError,
    UpstreamStatusError,
)
from quotefeed.schemas.finnhub import CandleResult, QuoteResult


class FinnhubRestClient:
    """Finnhub REST client for instantaneous quotes and one-minute candles."""

    DEFAULT_BASE_URL = "https://finnhub.io/api/v1"
    TIMEOUT_SEC = 10

    def __init__(
        self,
        token: str,
        *,
        session: Optional[Any] = None,
        base_url: Optional[str] = None,
        timeout_sec: float = TIMEOUT_SEC,
    ) -> None:
        if not token:
            raise ValueError("token is required")

        self.token = token
        self.base_url = (base_url or self.DEFAULT_BASE_URL).rstrip("/")
        self.session = session or requests.Session()
        self.timeout_sec = timeout_sec
        self.requests_sent = 0

    @staticmethod
    def classify_status(status_code: int, *, endpoint: str) -> None:
        """Raise the typed error for a non-2xx status; return for success."""
        if 200 <= status_code < 300:
            return
        message = f"{endpoint} returned HTTP {status_code}"
        if status_code == 429:
            raise RateLimitedError(message, status_code=status_code)
        if status_code >= 500:
            raise TransientNetworkError(message, status_code=status_code)
        if status_code in (403, 404):
            raise PermanentEndpointError(message, status_code=status_code)
        raise UpstreamStatusError(message, status_code=status_code)

    def _get(self, path: str, params: Dict[str, Any], model: type[BaseModel]) -> Any:
        self.requests_sent += 1
        try:
            response = self.session.get(
                f"{self.base_url}{path}",
                params={**params, "token": self.token},
                timeout=self.timeout_sec,
            )
        except requests.RequestException as exc:
            raise TransientNetworkError(f"{path} request error: {exc}") from exc

        self.classify_status(int(response.status_code), endpoint=path)

        try:
            payload = response.json()
        except ValueError as exc:
            raise MalformedResponseError(
                f"{path} body is not JSON", status_code=response.status_code
            ) from exc
        if not isinstance(payload, dict):
            raise MalformedResponseError(
                f"{path} body must be an object", status_code=response.status_code
            )

        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            raise MalformedResponseError(
                f"{path} body does not match schema: {exc.error_count()} error(s)",
                status_code=response.status_code,
            ) from exc

    def get_quote(self, symbol: str) -> QuoteResult:
        return self._get("/quote", {"symbol": symbol}, QuoteResult)

    def get_candle(
        self,
        symbol: str,
        *,
        resolution: str = "1",
        lookback_sec: int = 60,
        now: Optional[float] = None,
    ) -> CandleResult:
        end = int(time.time() if now is None else now)
        return self._get(
            "/stock/candle",
            {
                "symbol": symbol,
                "resolution": resolution,
                "from": end - lookback_sec,
                "to": end,
            },
            CandleResult,
        )

    def close(self) -> None:
        close = getattr(self.session, "close", None)
        if callable(close):
            close()
