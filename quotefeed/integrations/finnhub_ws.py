from __future__ import annotations

import json
import time
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError

from quotefeed.errors import StreamConnectionError
from quotefeed.schemas.finnhub import TradeEvent

NORMAL_CLOSURE = 1000

DISCONNECTED = "DISCONNECTED"
CONNECTING = "CONNECTING"
SUBSCRIBED = "SUBSCRIBED"
RECEIVING = "RECEIVING"
CLOSING = "CLOSING"
CLOSED = "CLOSED"


def parse_trade_message(payload: dict | str | bytes) -> list[TradeEvent]:
    """Parse a stream frame into trade events.

    Frames that are not ``{"type": "trade", "data": [...]}`` (pings,
    subscription acks, garbage) yield an empty list. Records inside a trade
    frame that fail validation are dropped one by one.
    """
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8", errors="replace")
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError:
            return []
    if not isinstance(payload, dict):
        return []
    if payload.get("type") != "trade":
        return []

    data = payload.get("data")
    if not isinstance(data, list):
        return []

    events: list[TradeEvent] = []
    for record in data:
        if not isinstance(record, dict):
            continue
        try:
            events.append(TradeEvent.model_validate(record))
        except ValidationError:
            continue
    return events


class TradeStreamClient:
    """Finnhub trade stream: one connection, one subscribe message per symbol."""

    DEFAULT_WS_URL = "wss://ws.finnhub.io"

    def __init__(
        self,
        token: str,
        on_trade: Optional[Callable[[TradeEvent], None]] = None,
        *,
        ws_url: Optional[str] = None,
        websocket_app_factory: Optional[Callable[..., Any]] = None,
        on_state_change: Optional[Callable[..., None]] = None,
    ) -> None:
        self.token = token
        self._on_trade = on_trade
        self.base_url = (ws_url or self.DEFAULT_WS_URL).rstrip("/")
        self._websocket_app_factory = websocket_app_factory or self._default_websocket_app_factory
        self._on_state_change = on_state_change
        self._ws_app: Any = None
        self._close_requested = False
        self._first_message_logged = False

        self.state = DISCONNECTED
        self.running = False
        self.last_error: str | None = None
        self.connect_attempts = 0
        self.frames_received = 0
        self.frames_ignored = 0
        self.trades_received = 0

    @property
    def ws_url(self) -> str:
        return f"{self.base_url}?token={self.token}"

    @property
    def masked_url(self) -> str:
        return f"{self.base_url}?token=***"

    def _default_websocket_app_factory(self, *args: Any, **kwargs: Any) -> Any:
        from websocket import WebSocketApp

        return WebSocketApp(*args, **kwargs)

    def _set_state(self, state: str) -> None:
        self.state = state
        if self._on_state_change is None:
            return
        self._on_state_change(
            state=state,
            connect_attempts=self.connect_attempts,
            last_error=self.last_error,
        )

    def set_on_trade(self, callback: Callable[[TradeEvent], None]) -> None:
        self._on_trade = callback

    def set_on_state_change(self, callback: Callable[..., None]) -> None:
        self._on_state_change = callback

    @staticmethod
    def build_subscribe_message(symbol: str) -> Dict[str, Any]:
        return {"type": "subscribe", "symbol": symbol}

    def handle_raw_message(self, payload: dict | str | bytes) -> list[TradeEvent]:
        self.frames_received += 1
        events = parse_trade_message(payload)
        if not events:
            self.frames_ignored += 1
            return events
        self.trades_received += len(events)
        if self._on_trade is not None:
            for event in events:
                self._on_trade(event)
        return events

    def connect_and_subscribe(self, symbols: list[str], *, run_forever: bool = True) -> Any:
        self.connect_attempts += 1
        self._set_state(CONNECTING)
        print(
            f"[STREAM][connect] url={self.masked_url} symbols={len(symbols)} attempt={self.connect_attempts}",
            flush=True,
        )
        state = {"opened": False}

        def _on_open(ws: Any) -> None:
            state["opened"] = True
            print("[STREAM][connect_result] status=open", flush=True)
            self._set_state(SUBSCRIBED)
            for symbol in symbols:
                ws.send(json.dumps(self.build_subscribe_message(symbol)))
            print(f"[STREAM][subscribe] symbols={','.join(symbols)}", flush=True)
            self._set_state(RECEIVING)

        def _on_message(_: Any, raw_message: Any) -> None:
            if not self._first_message_logged:
                print("[STREAM][first_message] received=1", flush=True)
                self._first_message_logged = True
            self.handle_raw_message(raw_message)

        def _on_error(_: Any, error: Any) -> None:
            self.last_error = str(error)
            print(f"[STREAM][error] {self.last_error}", flush=True)

        def _on_close(_: Any, code: Any, reason: Any) -> None:
            print(f"[STREAM][close] code={code} reason={reason}", flush=True)
            self._set_state(CLOSED)

        ws_app = self._websocket_app_factory(
            self.ws_url,
            on_open=_on_open,
            on_message=_on_message,
            on_error=_on_error,
            on_close=_on_close,
        )
        self._ws_app = ws_app
        # close() may have run before the app existed
        if self._close_requested:
            self._set_state(CLOSED)
            return ws_app

        if run_forever:
            ws_app.run_forever()
            if self.state != CLOSED:
                self._set_state(CLOSED)
            if not state["opened"]:
                raise StreamConnectionError(self.last_error or "stream_open_not_confirmed")
            if not self._close_requested:
                raise StreamConnectionError(self.last_error or "stream_closed_unexpectedly")

        return ws_app

    def run_with_reconnect(
        self,
        *,
        connect_once: Callable[[], None],
        sleep_fn: Callable[[float], None] = time.sleep,
        max_retries: int = 1,
        backoff_base_sec: float = 1.0,
        backoff_cap_sec: float = 30.0,
    ) -> bool:
        """Run connect loop with exponential backoff. Returns True if the stream ended by request.

        ``max_retries=1`` means a single connection with no reconnect.
        """
        if max_retries < 1 or self._close_requested:
            return False

        self.running = True
        self.last_error = None

        for attempt in range(max_retries):
            if not self.running:
                return False

            try:
                connect_once()
                return True
            except Exception as exc:
                self.last_error = str(exc)
                print(f"[STREAM][connection_failed] attempt={attempt + 1} error={exc}", flush=True)

                if not self.running:
                    return False

                if attempt == max_retries - 1:
                    break

                backoff = min(backoff_base_sec * (2**attempt), backoff_cap_sec)
                sleep_fn(backoff)

        self.running = False
        self._set_state(CLOSED)
        return False

    def run(self, symbols: list[str], *, max_connect_attempts: int = 1) -> bool:
        return self.run_with_reconnect(
            connect_once=lambda: self.connect_and_subscribe(symbols),
            max_retries=max_connect_attempts,
        )

    def close(self) -> None:
        """Ask the server for a normal closure and stop reconnecting."""
        self._close_requested = True
        self.running = False
        ws_app = self._ws_app
        if ws_app is None or self.state == CLOSED:
            self._set_state(CLOSED)
            return
        self._set_state(CLOSING)
        print(f"[STREAM][closing] code={NORMAL_CLOSURE}", flush=True)
        ws_app.close(status=NORMAL_CLOSURE, reason=b"shutdown")
