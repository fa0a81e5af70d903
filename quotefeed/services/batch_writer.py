from __future__ import annotations

import os
import stat
import tempfile
import threading
import time
from pathlib import Path

from quotefeed.errors import FileWriteError
from quotefeed.schemas.quote import Snapshot
from quotefeed.services.periodic import PeriodicTask
from quotefeed.services.snapshot_store import LatestValueStore

CSV_HEADER = "symbol,price,volume,timestamp_ms,source"


def format_row(symbol: str, snapshot: Snapshot | None) -> str:
    if snapshot is None:
        return f"{symbol},0.00,0,0,"
    return f"{symbol},{snapshot.price:.2f},{snapshot.volume},{snapshot.ts_ms},{snapshot.source}"


def _target_mode(path: Path) -> int:
    """Mode of the existing file, or the umask default for a new one."""
    try:
        return stat.S_IMODE(os.stat(path).st_mode)
    except FileNotFoundError:
        umask = os.umask(0)
        os.umask(umask)
        return 0o666 & ~umask


def write_text_atomic(path: Path, text: str) -> None:
    """Write ``text`` to a temp file beside ``path`` and rename it into place.

    The result keeps the destination's permissions, or the umask default
    when the file is new.
    """
    tmp_fd, tmp_path = tempfile.mkstemp(
        prefix=f".{path.name}.",
        suffix=".tmp",
        dir=str(path.parent),
    )
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8", newline="") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_path, _target_mode(path))
        os.replace(tmp_path, path)
    except (OSError, ValueError) as exc:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise FileWriteError(f"could not write {path}: {exc}") from exc


class BatchWriter:
    """Renders the universe from the store into a CSV file, one row per symbol."""

    def __init__(
        self,
        *,
        store: LatestValueStore,
        symbols: list[str],
        output_path: str | Path,
        interval_sec: float = 1.0,
    ) -> None:
        self.store = store
        self.symbols = list(symbols)
        self.output_path = Path(output_path)
        self.interval_sec = interval_sec
        self._write_lock = threading.Lock()
        self._task = PeriodicTask(name="batch-writer", interval_sec=interval_sec, fn=self.flush)
        self.flushes = 0
        self.flush_errors = 0
        self.last_flush_ts: int | None = None
        self.last_rows_written = 0

    def render(self) -> str:
        lines = [CSV_HEADER]
        written = 0
        for symbol in self.symbols:
            snapshot = self.store.get(symbol)
            if snapshot is not None:
                written += 1
            lines.append(format_row(symbol, snapshot))
        self.last_rows_written = written
        return "\n".join(lines) + "\n"

    def flush(self) -> bool:
        """Atomically rewrite the output file. Returns False if the write failed."""
        with self._write_lock:
            text = self.render()
            try:
                self.output_path.parent.mkdir(parents=True, exist_ok=True)
                write_text_atomic(self.output_path, text)
            except (FileWriteError, OSError) as exc:
                self.flush_errors += 1
                print(f"[FLUSH][error] path={self.output_path} error={exc}", flush=True)
                return False

            self.flushes += 1
            self.last_flush_ts = int(time.time())
            return True

    def start(self) -> None:
        self._task.start()

    def stop(self, timeout: float = 5.0) -> bool:
        return self._task.stop(timeout=timeout)

    @property
    def running(self) -> bool:
        return self._task.running

    def metrics(self) -> dict:
        return {
            "flushes": self.flushes,
            "flush_errors": self.flush_errors,
            "last_flush_ts": self.last_flush_ts,
            "rows_with_data": self.last_rows_written,
            "output_path": str(self.output_path),
        }
