from typing import Literal

from pydantic import BaseModel, Field

SnapshotSource = Literal["quote", "candle", "trade", "none"]

# Epoch values below this are seconds, not milliseconds.
MILLIS_THRESHOLD = 1_000_000_000_000


def normalize_to_millis(ts: int) -> int:
    ts = int(ts)
    return ts * 1000 if ts < MILLIS_THRESHOLD else ts


class Snapshot(BaseModel):
    symbol: str
    price: float
    volume: int = Field(default=0, ge=0)
    ts_ms: int
    source: SnapshotSource
