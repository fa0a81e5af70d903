from __future__ import annotations

import threading

from quotefeed.schemas.quote import Snapshot


class LatestValueStore:
    """Latest snapshot per symbol; every write replaces the previous value."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rows: dict[str, Snapshot] = {}
        self.upserts = 0

    def upsert(self, snapshot: Snapshot) -> None:
        with self._lock:
            self._rows[snapshot.symbol] = snapshot
            self.upserts += 1

    def get(self, symbol: str) -> Snapshot | None:
        with self._lock:
            return self._rows.get(symbol)

    def list_many(self, symbols: list[str]) -> list[Snapshot]:
        out: list[Snapshot] = []
        for s in symbols:
            row = self.get(s)
            if row:
                out.append(row)
        return out

    def symbols(self) -> list[str]:
        with self._lock:
            return list(self._rows)

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)
