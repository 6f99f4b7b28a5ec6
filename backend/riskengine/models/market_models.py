"""Market domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from riskengine.infrastructure.utils.timeutils import utc_now


@dataclass(frozen=True)
class PriceTick:
    ltp: float
    high_price: float
    low_price: float
    timestamp: datetime = field(default_factory=utc_now)
    symbol: Optional[str] = None


@dataclass(frozen=True)
class Ohlc:
    """Previous-period high/low/close triple (pivot point input)."""

    high: float
    low: float
    close: float
    open: Optional[float] = None


@dataclass
class SessionBar:
    symbol: Optional[str]
    session_sec: int
    open_time: datetime
    open: float
    high: float
    low: float
    close: float
    ticks: int = 0

    def to_ohlc(self) -> Ohlc:
        return Ohlc(high=self.high, low=self.low, close=self.close, open=self.open)


@dataclass(frozen=True)
class MacdValues:
    macd: float
    signal: float
    histogram: float


@dataclass(frozen=True)
class BollingerBands:
    upper: float
    middle: float
    lower: float


@dataclass(frozen=True)
class PivotPoints:
    r3: float
    r2: float
    r1: float
    pivot: float
    s1: float
    s2: float
    s3: float


@dataclass(frozen=True)
class MarketBreadth:
    advance_decline_ratio: float = 0.0
    vix_value: float = 0.0
    put_call_ratio: float = 0.0


@dataclass(frozen=True)
class IndicatorSnapshot:
    atr: float
    macd: MacdValues
    bollinger_bands: BollingerBands
    pivot_points: PivotPoints
    market_breadth: MarketBreadth
    samples: int = 0
    last_price: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "atr": self.atr,
            "macd": self.macd.__dict__,
            "bollinger_bands": self.bollinger_bands.__dict__,
            "pivot_points": self.pivot_points.__dict__,
            "market_breadth": self.market_breadth.__dict__,
            "samples": self.samples,
            "last_price": self.last_price,
        }
