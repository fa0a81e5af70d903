from __future__ import annotations

import threading
import time
from typing import Callable

from quotefeed.errors import (
    PermanentEndpointError,
    RETRYABLE_ERRORS,
    SnapshotFetchError,
    UpstreamError,
    UpstreamStatusError,
)
from quotefeed.schemas.quote import Snapshot, normalize_to_millis
from quotefeed.services.retry_policy import RetryPolicy, call_with_retry
from quotefeed.services.snapshot_store import LatestValueStore


class SnapshotFetcher:
    """Candle-first snapshot fetch with quote fallback.

    A candle request that answers 403/404 marks the symbol as candle
    unsupported for the rest of the process, and later fetches go straight to
    the quote endpoint. ``force_candles`` disables that memo.
    """

    def __init__(
        self,
        *,
        rest_client,
        store: LatestValueStore,
        policy: RetryPolicy | None = None,
        force_candles: bool = False,
        sleep_fn: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
        pacing_sec: float = 0.5,
    ) -> None:
        self.rest_client = rest_client
        self.store = store
        self.policy = policy or RetryPolicy()
        self.force_candles = force_candles
        self.sleep_fn = sleep_fn
        self.clock = clock
        self.pacing_sec = pacing_sec
        self._lock = threading.Lock()
        self._no_candle: set[str] = set()

        self.candle_ok = 0
        self.quote_ok = 0
        self.candle_fallbacks = 0
        self.failures = 0

    def is_candle_unsupported(self, symbol: str) -> bool:
        with self._lock:
            return symbol in self._no_candle

    def _mark_candle_unsupported(self, symbol: str) -> None:
        with self._lock:
            self._no_candle.add(symbol)

    def candle_unsupported_symbols(self) -> list[str]:
        with self._lock:
            return sorted(self._no_candle)

    def _count(self, name: str) -> None:
        with self._lock:
            setattr(self, name, getattr(self, name) + 1)

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    def _retry(self, fn, *, symbol: str, endpoint: str):
        def _on_retry(attempt: int, exc: BaseException, delay: float) -> None:
            print(
                f"[FETCH][retry] symbol={symbol} endpoint={endpoint} attempt={attempt} "
                f"delay_sec={delay:.3f} error={exc}",
                flush=True,
            )

        return call_with_retry(
            fn,
            policy=self.policy,
            sleep_fn=self.sleep_fn,
            on_retry=_on_retry,
        )

    def _fetch_candle(self, symbol: str) -> Snapshot | None:
        """Return a candle snapshot, or None when the quote endpoint should be tried."""
        try:
            result = self._retry(
                lambda: self.rest_client.get_candle(symbol, now=self.clock()),
                symbol=symbol,
                endpoint="candle",
            )
        except PermanentEndpointError as exc:
            if not self.force_candles:
                self._mark_candle_unsupported(symbol)
            print(
                f"[FETCH][candle_unsupported] symbol={symbol} status={exc.status_code} "
                f"memoized={int(not self.force_candles)}",
                flush=True,
            )
            return None
        except UpstreamStatusError as exc:
            print(f"[FETCH][candle_error] symbol={symbol} status={exc.status_code}", flush=True)
            return None
        except RETRYABLE_ERRORS as exc:
            print(f"[FETCH][candle_exhausted] symbol={symbol} error={exc}", flush=True)
            return None

        bar = result.last_bar()
        if bar is None:
            print(f"[FETCH][candle_empty] symbol={symbol} status={result.s}", flush=True)
            return None

        ts_ms = normalize_to_millis(bar.ts) if bar.ts else self._now_ms()
        return Snapshot(
            symbol=symbol,
            price=bar.close,
            volume=bar.volume,
            ts_ms=ts_ms,
            source="candle",
        )

    def _fetch_quote(self, symbol: str) -> Snapshot:
        try:
            result = self._retry(
                lambda: self.rest_client.get_quote(symbol),
                symbol=symbol,
                endpoint="quote",
            )
        except UpstreamError as exc:
            raise SnapshotFetchError(symbol, f"quote: {exc}") from exc

        if result.price is None:
            raise SnapshotFetchError(symbol, "quote: missing price")

        ts_ms = normalize_to_millis(result.t) if result.t and result.t > 0 else self._now_ms()
        return Snapshot(
            symbol=symbol,
            price=result.price,
            volume=0,
            ts_ms=ts_ms,
            source="quote",
        )

    def fetch(self, symbol: str) -> Snapshot:
        """Fetch one snapshot and store it. Raises SnapshotFetchError if both endpoints fail."""
        snapshot = None
        if self.force_candles or not self.is_candle_unsupported(symbol):
            snapshot = self._fetch_candle(symbol)
            if snapshot is None:
                self._count("candle_fallbacks")

        if snapshot is None:
            try:
                snapshot = self._fetch_quote(symbol)
            except SnapshotFetchError as exc:
                self._count("failures")
                print(f"[FETCH][failed] symbol={symbol} reason={exc.reason}", flush=True)
                raise
            self._count("quote_ok")
        else:
            self._count("candle_ok")

        self.store.upsert(snapshot)
        print(
            f"[FETCH][snapshot] symbol={symbol} source={snapshot.source} "
            f"price={snapshot.price:.2f} volume={snapshot.volume} ts_ms={snapshot.ts_ms}",
            flush=True,
        )
        return snapshot

    def fetch_universe(
        self,
        symbols: list[str],
        *,
        stop_event: threading.Event | None = None,
    ) -> list[str]:
        """Fetch every symbol once, in order. Returns the symbols that failed.

        When ``stop_event`` is set the pass ends before the next symbol;
        symbols not reached are neither fetched nor reported as failed.
        """
        print(f"[FETCH][initial_pass_start] symbols={len(symbols)}", flush=True)
        failed: list[str] = []
        attempted = 0
        for idx, symbol in enumerate(symbols):
            if stop_event is not None and stop_event.is_set():
                print(
                    f"[FETCH][initial_pass_interrupted] done={attempted} skipped={len(symbols) - attempted}",
                    flush=True,
                )
                break
            attempted += 1
            try:
                self.fetch(symbol)
            except SnapshotFetchError:
                failed.append(symbol)
            if self.pacing_sec > 0 and idx < len(symbols) - 1:
                self.sleep_fn(self.pacing_sec)
        print(
            f"[FETCH][initial_pass_done] ok={attempted - len(failed)} failed={len(failed)}",
            flush=True,
        )
        return failed

    def metrics(self) -> dict[str, int]:
        with self._lock:
            return {
                "candle_ok": self.candle_ok,
                "quote_ok": self.quote_ok,
                "candle_fallbacks": self.candle_fallbacks,
                "fetch_failures": self.failures,
                "candle_unsupported": len(self._no_candle),
            }
