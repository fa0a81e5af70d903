from __future__ import annotations

import threading
import time
from typing import Callable

from quotefeed.errors import SnapshotFetchError
from quotefeed.services.periodic import PeriodicTask
from quotefeed.services.snapshot_fetcher import SnapshotFetcher


class RetryQueue:
    """Symbols whose snapshot fetch failed, retried on a fixed interval until they succeed."""

    def __init__(
        self,
        *,
        fetcher: SnapshotFetcher,
        interval_sec: float = 300.0,
        pacing_sec: float = 0.3,
        sleep_fn: Callable[[float], None] = time.sleep,
    ) -> None:
        self.fetcher = fetcher
        self.interval_sec = interval_sec
        self.pacing_sec = pacing_sec
        self.sleep_fn = sleep_fn
        self._lock = threading.Lock()
        self._failed: set[str] = set()
        self._pass_lock = threading.Lock()
        self._task = PeriodicTask(name="retry-queue", interval_sec=interval_sec, fn=self.retry_once)
        self._metrics = {
            "retry_runs": 0,
            "retried": 0,
            "recovered": 0,
        }

    def add(self, symbol: str) -> None:
        with self._lock:
            self._failed.add(symbol)

    def extend(self, symbols: list[str]) -> None:
        with self._lock:
            self._failed.update(symbols)

    def discard(self, symbol: str) -> None:
        with self._lock:
            self._failed.discard(symbol)

    def members(self) -> list[str]:
        with self._lock:
            return sorted(self._failed)

    def __contains__(self, symbol: object) -> bool:
        with self._lock:
            return symbol in self._failed

    def __len__(self) -> int:
        with self._lock:
            return len(self._failed)

    def retry_once(self) -> dict:
        """Retry every queued symbol once.

        Only one pass runs at a time; a call made while another pass is in
        progress returns at once with ``skipped`` set. A pass stops between
        symbols once the periodic task has been asked to stop.
        """
        if not self._pass_lock.acquire(blocking=False):
            print("[RETRY][skipped] reason=pass_in_progress", flush=True)
            return {
                "retried": 0,
                "recovered": [],
                "still_failed": self.members(),
                "skipped": True,
            }
        try:
            return self._run_pass()
        finally:
            self._pass_lock.release()

    def _run_pass(self) -> dict:
        pending = self.members()
        recovered: list[str] = []
        retried = 0
        if pending:
            print(f"[RETRY][run] pending={len(pending)}", flush=True)

        for idx, symbol in enumerate(pending):
            if self._task.stop_requested:
                print(f"[RETRY][interrupted] remaining={len(pending) - idx}", flush=True)
                break
            retried += 1
            try:
                self.fetcher.fetch(symbol)
            except SnapshotFetchError:
                print(f"[RETRY][still_failed] symbol={symbol}", flush=True)
            else:
                self.discard(symbol)
                recovered.append(symbol)
                print(f"[RETRY][recovered] symbol={symbol}", flush=True)
            if self.pacing_sec > 0 and idx < len(pending) - 1:
                self.sleep_fn(self.pacing_sec)

        with self._lock:
            self._metrics["retry_runs"] += 1
            self._metrics["retried"] += retried
            self._metrics["recovered"] += len(recovered)

        return {
            "retried": retried,
            "recovered": recovered,
            "still_failed": self.members(),
            "skipped": False,
        }

    def start(self) -> None:
        self._task.start()

    def stop(self, timeout: float = 5.0) -> bool:
        return self._task.stop(timeout=timeout)

    @property
    def running(self) -> bool:
        return self._task.running

    def metrics(self) -> dict:
        with self._lock:
            counters = dict(self._metrics)
        return {
            **counters,
            "failed_symbols": self.members(),
        }
