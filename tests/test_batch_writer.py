import os
import stat
import tempfile
import threading
import time
import unittest
from pathlib import Path
from unittest.mock import patch

from quotefeed.schemas.quote import Snapshot
from quotefeed.services.batch_writer import CSV_HEADER, BatchWriter, format_row
from quotefeed.services.snapshot_store import LatestValueStore


class TestBatchWriter(unittest.TestCase):
    def setUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        self.tmpdir = Path(self._tmpdir.name)
        self.output = self.tmpdir / "trades.csv"
        self.store = LatestValueStore()

    def tearDown(self):
        self._tmpdir.cleanup()

    def _writer(self, symbols, **kwargs):
        return BatchWriter(store=self.store, symbols=symbols, output_path=self.output, **kwargs)

    def test_rows_follow_universe_order_with_placeholders(self):
        self.store.upsert(Snapshot(symbol="MSFT", price=300.1, volume=0, ts_ms=1700000000000, source="quote"))
        self.store.upsert(Snapshot(symbol="TSLA", price=200.0, volume=12, ts_ms=1700000001000, source="trade"))
        writer = self._writer(["AAPL", "MSFT", "TSLA"])

        self.assertTrue(writer.flush())

        lines = self.output.read_text(encoding="utf-8").splitlines()
        self.assertEqual(
            lines,
            [
                CSV_HEADER,
                "AAPL,0.00,0,0,",
                "MSFT,300.10,0,1700000000000,quote",
                "TSLA,200.00,12,1700000001000,trade",
            ],
        )
        self.assertEqual(writer.metrics()["rows_with_data"], 2)

    def test_header_matches_output_contract(self):
        self.assertEqual(CSV_HEADER, "symbol,price,volume,timestamp_ms,source")

    def test_price_is_formatted_to_two_decimals(self):
        row = format_row("AAPL", Snapshot(symbol="AAPL", price=150.257, volume=3, ts_ms=5, source="candle"))
        self.assertEqual(row, "AAPL,150.26,3,5,candle")

    def test_out_of_universe_symbols_are_not_emitted(self):
        self.store.upsert(Snapshot(symbol="ZZZZ", price=1.0, ts_ms=1, source="trade"))
        writer = self._writer(["AAPL"])

        writer.flush()

        self.assertNotIn("ZZZZ", self.output.read_text(encoding="utf-8"))

    def test_consecutive_flushes_are_byte_identical(self):
        self.store.upsert(Snapshot(symbol="AAPL", price=150.25, ts_ms=1700000000000, source="quote"))
        writer = self._writer(["AAPL", "MSFT"])

        writer.flush()
        first = self.output.read_bytes()
        writer.flush()
        second = self.output.read_bytes()

        self.assertEqual(first, second)

    def test_next_flush_reflects_latest_write(self):
        writer = self._writer(["AAPL"])
        self.store.upsert(Snapshot(symbol="AAPL", price=150.0, ts_ms=1700000000000, source="quote"))
        writer.flush()
        self.store.upsert(Snapshot(symbol="AAPL", price=151.5, volume=7, ts_ms=1700000002000, source="trade"))
        writer.flush()

        lines = self.output.read_text(encoding="utf-8").splitlines()
        self.assertEqual(lines[1], "AAPL,151.50,7,1700000002000,trade")

    def test_failed_write_keeps_previous_file_and_leaves_no_temp(self):
        self.store.upsert(Snapshot(symbol="AAPL", price=150.0, ts_ms=1700000000000, source="quote"))
        writer = self._writer(["AAPL"])
        writer.flush()
        before = self.output.read_bytes()

        self.store.upsert(Snapshot(symbol="AAPL", price=999.0, ts_ms=1700000009000, source="trade"))
        with patch("quotefeed.services.batch_writer.os.replace", side_effect=OSError("disk full")):
            ok = writer.flush()

        self.assertFalse(ok)
        self.assertEqual(self.output.read_bytes(), before)
        self.assertEqual(sorted(p.name for p in self.tmpdir.iterdir()), ["trades.csv"])
        self.assertEqual(writer.metrics()["flush_errors"], 1)

    @unittest.skipIf(os.name == "nt", "POSIX permissions")
    def test_flush_keeps_existing_file_mode(self):
        writer = self._writer(["AAPL"])
        writer.flush()
        os.chmod(self.output, 0o640)

        self.assertTrue(writer.flush())

        self.assertEqual(stat.S_IMODE(os.stat(self.output).st_mode), 0o640)

    @unittest.skipIf(os.name == "nt", "POSIX permissions")
    def test_new_file_gets_umask_default_mode(self):
        umask = os.umask(0o022)
        try:
            self.assertTrue(self._writer(["AAPL"]).flush())
        finally:
            os.umask(umask)

        self.assertEqual(stat.S_IMODE(os.stat(self.output).st_mode), 0o644)

    def test_unencodable_row_fails_cleanly_without_temp_file(self):
        writer = self._writer(["BAD\udcff"])

        ok = writer.flush()

        self.assertFalse(ok)
        self.assertEqual(list(self.tmpdir.iterdir()), [])
        self.assertEqual(writer.metrics()["flush_errors"], 1)

    def test_missing_parent_directory_is_created(self):
        nested = self.tmpdir / "out" / "feed.csv"
        writer = BatchWriter(store=self.store, symbols=["AAPL"], output_path=nested)

        self.assertTrue(writer.flush())
        self.assertTrue(nested.exists())

    def test_concurrent_reader_never_sees_partial_file(self):
        symbols = [f"S{i:03d}" for i in range(200)]
        for i, symbol in enumerate(symbols):
            self.store.upsert(Snapshot(symbol=symbol, price=float(i), ts_ms=i, source="quote"))
        writer = self._writer(symbols)
        writer.flush()
        expected_rows = len(symbols) + 1

        stop = threading.Event()
        short_reads = []

        def reader():
            while not stop.is_set():
                try:
                    with open(self.output, encoding="utf-8") as f:
                        count = len(f.read().splitlines())
                except FileNotFoundError:
                    short_reads.append(0)
                    continue
                if count < expected_rows:
                    short_reads.append(count)

        thread = threading.Thread(target=reader)
        thread.start()
        try:
            for _ in range(50):
                writer.flush()
        finally:
            stop.set()
            thread.join()

        self.assertEqual(short_reads, [])

    def test_periodic_flush_runs_until_stopped(self):
        writer = self._writer(["AAPL"], interval_sec=0.01)

        writer.start()
        try:
            for _ in range(100):
                if writer.flushes >= 2:
                    break
                time.sleep(0.01)
        finally:
            self.assertTrue(writer.stop(timeout=1.0))

        self.assertGreaterEqual(writer.flushes, 2)
        self.assertTrue(os.path.exists(self.output))


if __name__ == "__main__":
    unittest.main()
