"""Build per-session OHLC bars from price ticks (pivot point input)."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from riskengine.infrastructure.logging.logging import get_logger
from riskengine.infrastructure.utils.timeutils import ensure_utc
from riskengine.models.market_models import Ohlc, PriceTick, SessionBar


def _floor_time(ts: datetime, session_sec: int) -> datetime:
    """Floor a timestamp to the open_time of its session bucket."""
    epoch = int(ensure_utc(ts).timestamp())
    floored = epoch - (epoch % session_sec)
    return datetime.fromtimestamp(floored, tz=timezone.utc)


@dataclass
class CandleBuilder:
    """Accumulates ticks into session bars.

    - Builds bars of session_sec (default one day)
    - Closes the current bar when a tick moves into the next bucket
    - Calls on_bar_closed callback (if provided) safely
    """

    symbol: Optional[str] = None
    session_sec: int = 86400
    on_bar_closed: Optional[Callable[[SessionBar], None]] = None

    _current: Optional[SessionBar] = None
    _previous: Optional[SessionBar] = None

    @property
    def current(self) -> Optional[SessionBar]:
        return self._current

    def previous_ohlc(self) -> Optional[Ohlc]:
        """H/L/C of the last closed session, None until one has closed."""
        return self._previous.to_ohlc() if self._previous else None

    def _open_bar(self, tick: PriceTick, open_time: datetime) -> SessionBar:
        return SessionBar(
            symbol=self.symbol,
            session_sec=self.session_sec,
            open_time=open_time,
            open=tick.ltp,
            high=tick.high_price,
            low=tick.low_price,
            close=tick.ltp,
            ticks=1,
        )

    def update_with_tick(self, tick: PriceTick) -> Optional[SessionBar]:
        """Returns the closed bar if a session closed on this tick, otherwise None."""
        if self.symbol is not None and tick.symbol is not None and tick.symbol != self.symbol:
            return None

        open_time = _floor_time(tick.timestamp, self.session_sec)

        if self._current is None:
            self._current = self._open_bar(tick, open_time)
            return None

        if open_time > self._current.open_time:
            closed = self._current
            self._previous = closed

            # never let callback errors break tick processing
            if self.on_bar_closed:
                try:
                    self.on_bar_closed(closed)
                except Exception as e:
                    get_logger("session_bars").warning("bar_callback_error", error=str(e))

            self._current = self._open_bar(tick, open_time)
            return closed

        # Same session (late ticks included) -> update OHLC
        bar = self._current
        bar.close = tick.ltp
        bar.high = max(bar.high, tick.high_price)
        bar.low = min(bar.low, tick.low_price)
        bar.ticks += 1
        return None
