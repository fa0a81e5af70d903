"""Headless entry point: run the ingestion pipeline until SIGINT/SIGTERM."""

from __future__ import annotations

import signal
import threading

from pydantic import ValidationError

from quotefeed.config.settings import get_settings
from quotefeed.services.ingest_service import IngestionService


def install_signal_handlers(stop_event: threading.Event) -> None:
    def _handler(signum, _frame) -> None:
        if stop_event.is_set():
            print(f"[FEED][signal_ignored] signal={signum} reason=shutdown_in_progress", flush=True)
            return
        print(f"[FEED][signal] signal={signum} initiating shutdown", flush=True)
        stop_event.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def main() -> int:
    try:
        settings = get_settings()
    except ValidationError as exc:
        print(f"[FEED][config_error] {exc}", flush=True)
        return 2

    service = IngestionService.from_settings(settings)
    stop_event = threading.Event()
    install_signal_handlers(stop_event)
    service.run_until_stopped(stop_event)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
