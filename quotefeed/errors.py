from __future__ import annotations


class FeedError(Exception):
    """Base class for quote feed failures."""


class UpstreamError(FeedError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransientNetworkError(UpstreamError):
    """Connection errors, timeouts and 5xx responses."""


class RateLimitedError(TransientNetworkError):
    pass


class MalformedResponseError(UpstreamError):
    """Body could not be decoded or did not match the endpoint schema."""


class PermanentEndpointError(UpstreamError):
    """403/404: the endpoint will not serve this symbol."""


class UpstreamStatusError(UpstreamError):
    """Any other non-2xx status."""


RETRYABLE_ERRORS = (TransientNetworkError, MalformedResponseError)


class SnapshotFetchError(FeedError):
    def __init__(self, symbol: str, reason: str) -> None:
        super().__init__(f"snapshot fetch failed for {symbol}: {reason}")
        self.symbol = symbol
        self.reason = reason


class StreamConnectionError(FeedError):
    pass


class FileWriteError(FeedError):
    pass
