"""Typed payloads for the upstream REST and streaming endpoints.

Every field the upstream may omit is optional here, so a missing value is
visible to the caller instead of being read as zero.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class QuoteResult(BaseModel):
    c: float | None = None
    h: float | None = None
    l: float | None = None
    o: float | None = None
    pc: float | None = None
    t: int | None = None

    @property
    def price(self) -> float | None:
        return self.c


class CandleBar(BaseModel):
    close: float
    volume: int
    ts: int | None


class CandleResult(BaseModel):
    s: str | None = None
    c: list[float] = Field(default_factory=list)
    h: list[float] = Field(default_factory=list)
    l: list[float] = Field(default_factory=list)
    o: list[float] = Field(default_factory=list)
    v: list[float] = Field(default_factory=list)
    t: list[int] = Field(default_factory=list)

    @property
    def is_ok(self) -> bool:
        return (self.s or "").lower() == "ok"

    def last_bar(self) -> CandleBar | None:
        """Most recent bar, or None when the status is not ok or there is no close."""
        if not self.is_ok or not self.c:
            return None
        idx = len(self.c) - 1
        volume = int(self.v[idx]) if len(self.v) > idx else 0
        ts = int(self.t[idx]) if len(self.t) > idx else None
        return CandleBar(close=self.c[idx], volume=max(volume, 0), ts=ts)


class TradeEvent(BaseModel):
    s: str = Field(min_length=1)
    p: float
    v: float = 0
    t: int

    @property
    def symbol(self) -> str:
        return self.s
