from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Callable

from quotefeed.config.settings import Settings
from quotefeed.integrations.finnhub_rest import FinnhubRestClient
from quotefeed.integrations.finnhub_ws import TradeStreamClient
from quotefeed.schemas.quote import Snapshot
from quotefeed.services.batch_writer import BatchWriter
from quotefeed.services.retry_policy import RetryPolicy
from quotefeed.services.retry_queue import RetryQueue
from quotefeed.services.snapshot_fetcher import SnapshotFetcher
from quotefeed.services.snapshot_store import LatestValueStore
from quotefeed.services.trade_ingest import TradeIngestWorker

IDLE = "IDLE"
STARTING = "STARTING"
RUNNING = "RUNNING"
STOPPING = "STOPPING"
STOPPED = "STOPPED"


class IngestionService:
    """Owns the ingestion pipeline and runs its startup and shutdown in order.

    Startup: initial snapshot pass, first flush, trade stream, periodic
    flush, periodic retry. Shutdown: periodic tasks, stream (normal
    closure), final flush, REST session.
    """

    def __init__(
        self,
        *,
        symbols: list[str],
        rest_client,
        stream_client,
        output_path: str | Path,
        flush_interval_sec: float = 1.0,
        retry_interval_sec: float = 300.0,
        shutdown_grace_sec: float = 5.0,
        max_connect_attempts: int = 1,
        force_candles: bool = False,
        retry_policy: RetryPolicy | None = None,
        fetch_pacing_sec: float = 0.5,
        retry_pacing_sec: float = 0.3,
        sleep_fn: Callable[[float], None] = time.sleep,
    ) -> None:
        if not symbols:
            raise ValueError("symbols must not be empty")

        self.symbols = list(symbols)
        self.rest_client = rest_client
        self.stream_client = stream_client
        self.shutdown_grace_sec = shutdown_grace_sec
        self.max_connect_attempts = max_connect_attempts

        self.store = LatestValueStore()
        self.fetcher = SnapshotFetcher(
            rest_client=rest_client,
            store=self.store,
            policy=retry_policy,
            force_candles=force_candles,
            sleep_fn=sleep_fn,
            pacing_sec=fetch_pacing_sec,
        )
        self.retry_queue = RetryQueue(
            fetcher=self.fetcher,
            interval_sec=retry_interval_sec,
            pacing_sec=retry_pacing_sec,
            sleep_fn=sleep_fn,
        )
        self.batch_writer = BatchWriter(
            store=self.store,
            symbols=self.symbols,
            output_path=output_path,
            interval_sec=flush_interval_sec,
        )
        self.trade_ingest = TradeIngestWorker(self.store, self.symbols)
        stream_client.set_on_trade(self.trade_ingest.on_trade)
        stream_client.set_on_state_change(self.trade_ingest.sync_stream_state)

        self._lock = threading.Lock()
        self._stream_thread: threading.Thread | None = None
        self.state = IDLE

    @classmethod
    def from_settings(cls, settings: Settings) -> "IngestionService":
        rest_client = FinnhubRestClient(settings.FINNHUB_API_KEY, base_url=settings.FINNHUB_REST_URL)
        stream_client = TradeStreamClient(settings.FINNHUB_API_KEY, ws_url=settings.FINNHUB_WS_URL)
        return cls(
            symbols=settings.FEED_SYMBOLS,
            rest_client=rest_client,
            stream_client=stream_client,
            output_path=settings.FEED_OUTPUT_PATH,
            flush_interval_sec=settings.FLUSH_INTERVAL_SECONDS,
            retry_interval_sec=settings.RETRY_INTERVAL_SECONDS,
            shutdown_grace_sec=settings.SHUTDOWN_GRACE_SECONDS,
            max_connect_attempts=settings.STREAM_MAX_CONNECT_ATTEMPTS,
            force_candles=settings.FINNHUB_FORCE_CANDLES,
        )

    def _run_stream(self) -> None:
        ended_by_request = self.stream_client.run(
            self.symbols, max_connect_attempts=self.max_connect_attempts
        )
        print(f"[STREAM][worker_exit] ended_by_request={int(ended_by_request)}", flush=True)

    def start(self, stop_event: threading.Event | None = None) -> None:
        """Run the startup sequence.

        A ``stop_event`` set before or during the initial pass cuts the pass
        short; the stream and the periodic schedules are then not started and
        the caller is expected to call ``stop()``.
        """
        with self._lock:
            if self.state != IDLE:
                return
            self.state = STARTING

        print(
            f"[FEED][start] symbols={len(self.symbols)} force_candles={int(self.fetcher.force_candles)} "
            f"output={self.batch_writer.output_path}",
            flush=True,
        )
        failed = self.fetcher.fetch_universe(self.symbols, stop_event=stop_event)
        self.retry_queue.extend(failed)
        if stop_event is not None and stop_event.is_set():
            print("[FEED][start_aborted] reason=stop_requested", flush=True)
            return

        self.batch_writer.flush()

        self._stream_thread = threading.Thread(target=self._run_stream, daemon=True, name="trade-stream")
        self._stream_thread.start()
        self.batch_writer.start()
        self.retry_queue.start()

        with self._lock:
            self.state = RUNNING
        print(f"[FEED][started] failed_symbols={len(failed)}", flush=True)

    def stop(self) -> None:
        with self._lock:
            if self.state in (STOPPING, STOPPED):
                return
            self.state = STOPPING

        print("[FEED][stop] flushing and closing", flush=True)
        grace = self.shutdown_grace_sec
        self.batch_writer.stop(timeout=grace)
        self.retry_queue.stop(timeout=grace)

        self.stream_client.close()
        thread = self._stream_thread
        if thread is not None and thread.is_alive():
            thread.join(timeout=grace)
            if thread.is_alive():
                print(f"[FEED][task_abandoned] task=trade-stream timeout_sec={grace}", flush=True)

        self.batch_writer.flush()
        self.rest_client.close()

        with self._lock:
            self.state = STOPPED
        print("[FEED][stopped]", flush=True)

    def run_until_stopped(self, stop_event: threading.Event, *, poll_sec: float = 0.5) -> None:
        try:
            self.start(stop_event)
            while not stop_event.wait(poll_sec):
                pass
        finally:
            self.stop()

    def snapshot(self, symbol: str) -> Snapshot | None:
        return self.store.get(symbol)

    def universe_rows(self) -> list[Snapshot]:
        """Universe in configured order; symbols with no data get a ``none`` placeholder."""
        rows: list[Snapshot] = []
        for symbol in self.symbols:
            row = self.store.get(symbol)
            if row is None:
                row = Snapshot(symbol=symbol, price=0.0, volume=0, ts_ms=0, source="none")
            rows.append(row)
        return rows

    def stream_status(self) -> dict:
        return {
            "state": self.stream_client.state,
            "last_error": self.stream_client.last_error,
            "connect_attempts": self.stream_client.connect_attempts,
            "frames_received": self.stream_client.frames_received,
            "frames_ignored": self.stream_client.frames_ignored,
        }

    def trigger_retry(self) -> dict:
        return self.retry_queue.retry_once()

    def metrics(self) -> dict:
        return {
            "service_state": self.state,
            "universe_size": len(self.symbols),
            "stored_symbols": len(self.store),
            "store_upserts": self.store.upserts,
            **self.fetcher.metrics(),
            **self.retry_queue.metrics(),
            **self.batch_writer.metrics(),
            **self.trade_ingest.metrics(),
        }
