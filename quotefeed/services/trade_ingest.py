from __future__ import annotations

import threading
import time

from quotefeed.schemas.finnhub import TradeEvent
from quotefeed.schemas.quote import Snapshot, normalize_to_millis
from quotefeed.services.snapshot_store import LatestValueStore


class TradeIngestWorker:
    """Stream trade hook -> store upsert, plus stream state for metrics.

    Trades for symbols outside the universe are stored under their own symbol
    like any other trade. The batch writer never emits them; they are counted
    in ``out_of_universe_trades``.
    """

    def __init__(self, store: LatestValueStore, universe: list[str]) -> None:
        self.store = store
        self.universe = frozenset(universe)
        self._lock = threading.Lock()
        self.trades = 0
        self.out_of_universe_trades = 0
        self.last_trade_ts_ms: int | None = None
        self.last_message_at: int | None = None
        self.stream_state = "DISCONNECTED"
        self.stream_last_error: str | None = None
        self.stream_connect_attempts = 0

    def on_trade(self, event: TradeEvent) -> Snapshot:
        snapshot = Snapshot(
            symbol=event.symbol,
            price=event.p,
            volume=max(int(event.v), 0),
            ts_ms=normalize_to_millis(event.t),
            source="trade",
        )
        self.store.upsert(snapshot)
        with self._lock:
            self.trades += 1
            if snapshot.symbol not in self.universe:
                self.out_of_universe_trades += 1
            self.last_trade_ts_ms = snapshot.ts_ms
            self.last_message_at = int(time.time())
        return snapshot

    def sync_stream_state(
        self,
        *,
        state: str,
        connect_attempts: int,
        last_error: str | None,
    ) -> None:
        self.stream_state = state
        self.stream_connect_attempts = int(connect_attempts)
        self.stream_last_error = last_error

    def metrics(self) -> dict:
        with self._lock:
            return {
                "trades": self.trades,
                "out_of_universe_trades": self.out_of_universe_trades,
                "last_trade_ts_ms": self.last_trade_ts_ms,
                "last_trade_message_at": self.last_message_at,
                "stream_state": self.stream_state,
                "stream_last_error": self.stream_last_error,
                "stream_connect_attempts": self.stream_connect_attempts,
            }
