from __future__ import annotations

import threading
from typing import Callable


class PeriodicTask:
    """Run ``fn`` every ``interval_sec`` on a daemon thread until stopped."""

    def __init__(self, *, name: str, interval_sec: float, fn: Callable[[], object]) -> None:
        self.name = name
        self.interval_sec = interval_sec
        self.fn = fn
        self.runs = 0
        self.errors = 0
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def _loop(self) -> None:
        while not self._stop_event.wait(self.interval_sec):
            try:
                self.fn()
            except Exception as exc:
                self.errors += 1
                print(f"[FEED][task_error] task={self.name} error={exc!r}", flush=True)
            self.runs += 1

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name=self.name)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> bool:
        """Signal the loop to end and wait up to ``timeout`` seconds.

        Returns False when the thread is still busy after the wait; it is a
        daemon thread and is left to die with the process.
        """
        self._stop_event.set()
        thread = self._thread
        if thread is None or not thread.is_alive():
            return True
        thread.join(timeout=timeout)
        if thread.is_alive():
            print(f"[FEED][task_abandoned] task={self.name} timeout_sec={timeout}", flush=True)
            return False
        return True
