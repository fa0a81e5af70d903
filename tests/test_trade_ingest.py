import unittest

from quotefeed.schemas.finnhub import TradeEvent
from quotefeed.schemas.quote import Snapshot
from quotefeed.services.snapshot_store import LatestValueStore
from quotefeed.services.trade_ingest import TradeIngestWorker


class TestTradeIngestWorker(unittest.TestCase):
    def test_trade_becomes_trade_snapshot_with_millis(self):
        store = LatestValueStore()
        worker = TradeIngestWorker(store, ["AAPL"])

        snapshot = worker.on_trade(TradeEvent(s="AAPL", p=150.25, v=42, t=1700000000))

        self.assertEqual(snapshot.source, "trade")
        self.assertEqual(snapshot.ts_ms, 1700000000000)
        self.assertEqual(snapshot.volume, 42)
        self.assertEqual(store.get("AAPL"), snapshot)

    def test_trade_overwrites_newer_rest_value(self):
        store = LatestValueStore()
        store.upsert(Snapshot(symbol="AAPL", price=160.0, ts_ms=1700000009000, source="quote"))
        worker = TradeIngestWorker(store, ["AAPL"])

        worker.on_trade(TradeEvent(s="AAPL", p=150.0, v=1, t=1700000000000))

        self.assertEqual(store.get("AAPL").price, 150.0)

    def test_fractional_volume_is_truncated(self):
        store = LatestValueStore()
        worker = TradeIngestWorker(store, ["BINANCE:BTCUSDT"])

        snapshot = worker.on_trade(TradeEvent(s="BINANCE:BTCUSDT", p=35000.5, v=0.25, t=1700000000000))

        self.assertEqual(snapshot.volume, 0)

    def test_out_of_universe_trade_is_stored_and_counted(self):
        store = LatestValueStore()
        worker = TradeIngestWorker(store, ["AAPL"])

        worker.on_trade(TradeEvent(s="ZZZZ", p=1.0, v=1, t=1700000000000))

        self.assertIsNotNone(store.get("ZZZZ"))
        metrics = worker.metrics()
        self.assertEqual(metrics["trades"], 1)
        self.assertEqual(metrics["out_of_universe_trades"], 1)

    def test_stream_state_sync(self):
        worker = TradeIngestWorker(LatestValueStore(), ["AAPL"])

        worker.sync_stream_state(state="CLOSED", connect_attempts=2, last_error="dropped")

        metrics = worker.metrics()
        self.assertEqual(metrics["stream_state"], "CLOSED")
        self.assertEqual(metrics["stream_connect_attempts"], 2)
        self.assertEqual(metrics["stream_last_error"], "dropped")


if __name__ == "__main__":
    unittest.main()
