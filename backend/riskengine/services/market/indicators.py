"""Technical indicators (ATR, MACD, Bollinger, pivots) over a bounded tick history."""

from __future__ import annotations

import math
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, List, Optional, Protocol, Sequence

from riskengine.infrastructure.logging.logging import get_logger
from riskengine.models.market_models import (
    BollingerBands,
    IndicatorSnapshot,
    MacdValues,
    MarketBreadth,
    Ohlc,
    PivotPoints,
    PriceTick,
)


class InsufficientHistory(ValueError):
    """Not enough ticks recorded yet; wait for warm-up."""

    def __init__(self, required: int, available: int) -> None:
        super().__init__(f"insufficient_history required={required} available={available}")
        self.required = required
        self.available = available


def ema(data: Sequence[float], period: int) -> float:
    """EMA seeded with data[0], k = 2 / (period + 1)."""
    if not data:
        raise ValueError("ema requires at least one value")
    k = 2.0 / (period + 1.0)
    value = float(data[0])
    for x in data[1:]:
        value = value + (float(x) - value) * k
    return value


def ema_series(data: Sequence[float], period: int) -> List[float]:
    """Running EMA value after each element (same seeding as ema())."""
    if not data:
        return []
    k = 2.0 / (period + 1.0)
    value = float(data[0])
    out = [value]
    for x in data[1:]:
        value = value + (float(x) - value) * k
        out.append(value)
    return out


def sma(data: Sequence[float], period: int) -> float:
    window = list(data[-period:])
    if not window:
        raise ValueError("sma requires at least one value")
    return sum(window) / len(window)


def std_dev(data: Sequence[float], period: int) -> float:
    """Population standard deviation over the trailing window."""
    window = list(data[-period:])
    if not window:
        raise ValueError("std_dev requires at least one value")
    mean = sum(window) / len(window)
    variance = sum((x - mean) ** 2 for x in window) / len(window)
    return math.sqrt(variance)


def true_ranges(ticks: Sequence[PriceTick]) -> List[float]:
    out: List[float] = []
    for prev, cur in zip(ticks, ticks[1:]):
        out.append(
            max(
                cur.high_price - cur.low_price,
                abs(cur.high_price - prev.ltp),
                abs(cur.low_price - prev.ltp),
            )
        )
    return out


def average_true_range(ticks: Sequence[PriceTick], period: int = 14) -> float:
    # EMA seeded with the first true range, not an SMA seed
    trs = true_ranges(ticks)
    if not trs:
        raise InsufficientHistory(required=2, available=len(ticks))
    return ema(trs, period)


def macd(
    closes: Sequence[float],
    fast_period: int = 12,
    slow_period: int = 26,
    signal_period: int = 9,
    signal_mode: str = "trailing",
) -> MacdValues:
    """MACD line, signal and histogram.

    signal_mode="trailing": signal is the EMA of the running MACD line.
    signal_mode="single_point": signal is the EMA of [macd], i.e. equal to macd.
    """
    fast = ema_series(closes, fast_period)
    slow = ema_series(closes, slow_period)
    line = [f - s for f, s in zip(fast, slow)]
    value = line[-1]

    if signal_mode == "single_point":
        signal = ema([value], signal_period)
    else:
        signal = ema(line, signal_period)

    return MacdValues(macd=value, signal=signal, histogram=value - signal)


def bollinger_bands(closes: Sequence[float], period: int = 20, num_std: float = 2.0) -> BollingerBands:
    middle = sma(closes, period)
    width = std_dev(closes, period) * num_std
    return BollingerBands(upper=middle + width, middle=middle, lower=middle - width)


def pivot_points(previous: Ohlc) -> PivotPoints:
    h, l, c = previous.high, previous.low, previous.close
    pp = (h + l + c) / 3.0
    return PivotPoints(
        r3=h + 2.0 * (pp - l),
        r2=pp + (h - l),
        r1=2.0 * pp - l,
        pivot=pp,
        s1=2.0 * pp - h,
        s2=pp - (h - l),
        s3=l - 2.0 * (h - pp),
    )


class BreadthProvider(Protocol):
    async def get_breadth(self) -> MarketBreadth:
        ...


class NeutralBreadthProvider:
    """Used when no market-wide feed is wired in."""

    async def get_breadth(self) -> MarketBreadth:
        return MarketBreadth()


@dataclass
class IndicatorEngine:
    capacity: int = 500
    atr_period: int = 14
    macd_fast_period: int = 12
    macd_slow_period: int = 26
    macd_signal_period: int = 9
    macd_signal_mode: str = "trailing"
    bollinger_period: int = 20
    bollinger_std_dev: float = 2.0
    breadth_provider: BreadthProvider = field(default_factory=NeutralBreadthProvider)

    _history: Deque[PriceTick] = field(init=False, repr=False)
    _lock: threading.Lock = field(init=False, repr=False, default_factory=threading.Lock)

    def __post_init__(self) -> None:
        self._validate_periods()
        self._history = deque(maxlen=self.capacity)
        self._log = get_logger("indicators")

    def _validate_periods(self) -> None:
        if self.macd_fast_period <= 1 or self.macd_slow_period <= 1 or self.macd_signal_period <= 1:
            raise ValueError("macd periods must be > 1")
        if self.macd_slow_period <= self.macd_fast_period:
            raise ValueError("macd_slow_period must be greater than macd_fast_period")
        if self.atr_period <= 1:
            raise ValueError("atr_period must be > 1")
        if self.bollinger_period <= 1:
            raise ValueError("bollinger_period must be > 1")
        if self.macd_signal_mode not in ("trailing", "single_point"):
            raise ValueError("macd_signal_mode must be 'trailing' or 'single_point'")
        if self.capacity < self.warmup:
            raise ValueError(f"capacity must be >= {self.warmup}")

    @property
    def warmup(self) -> int:
        """Minimum ticks required by the longest-period indicator."""
        return max(self.macd_slow_period, self.bollinger_period, 2)

    def __len__(self) -> int:
        with self._lock:
            return len(self._history)

    def is_ready(self) -> bool:
        return len(self) >= self.warmup

    def record_tick(self, tick: PriceTick) -> None:
        for value in (tick.ltp, tick.high_price, tick.low_price):
            if not math.isfinite(value):
                raise ValueError(f"non-finite price in tick: {tick}")
        with self._lock:
            self._history.append(tick)

    def history(self) -> List[PriceTick]:
        with self._lock:
            return list(self._history)

    def snapshot(
        self,
        previous_period: Optional[Ohlc] = None,
        breadth: Optional[MarketBreadth] = None,
    ) -> IndicatorSnapshot:
        ticks = self.history()
        if len(ticks) < self.warmup:
            raise InsufficientHistory(required=self.warmup, available=len(ticks))

        closes = [t.ltp for t in ticks]
        last = ticks[-1]
        if previous_period is None:
            # No closed prior period: the latest tick stands in for it
            previous_period = Ohlc(high=last.high_price, low=last.low_price, close=last.ltp)

        return IndicatorSnapshot(
            atr=average_true_range(ticks, self.atr_period),
            macd=macd(
                closes,
                fast_period=self.macd_fast_period,
                slow_period=self.macd_slow_period,
                signal_period=self.macd_signal_period,
                signal_mode=self.macd_signal_mode,
            ),
            bollinger_bands=bollinger_bands(closes, self.bollinger_period, self.bollinger_std_dev),
            pivot_points=pivot_points(previous_period),
            market_breadth=breadth or MarketBreadth(),
            samples=len(ticks),
            last_price=last.ltp,
        )

    async def analyze(self, previous_period: Optional[Ohlc] = None) -> IndicatorSnapshot:
        """Snapshot enriched with market breadth from the configured feed."""
        try:
            breadth = await self.breadth_provider.get_breadth()
        except Exception as e:
            self._log.warning("breadth_feed_unavailable", error=str(e))
            breadth = MarketBreadth()
        return self.snapshot(previous_period=previous_period, breadth=breadth)
