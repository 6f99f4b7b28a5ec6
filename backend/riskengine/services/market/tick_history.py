"""Load recorded ticks from CSV and replay them into the engine."""

from __future__ import annotations

import asyncio
import csv
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional

from riskengine.infrastructure.logging.logging import get_logger
from riskengine.models.market_models import PriceTick

log = get_logger("tick_history")


def _parse_timestamp(raw: str) -> datetime:
    raw = raw.strip()
    if raw.replace(".", "", 1).isdigit():
        return datetime.fromtimestamp(float(raw), tz=timezone.utc)
    ts = datetime.fromisoformat(raw)
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


def row_to_tick(row: Dict[str, str]) -> PriceTick:
    """CSV row with timestamp, ltp and optional high/low/symbol columns."""
    ltp = float(row["ltp"])
    high = float(row.get("high") or row.get("high_price") or ltp)
    low = float(row.get("low") or row.get("low_price") or ltp)
    return PriceTick(
        ltp=ltp,
        high_price=high,
        low_price=low,
        timestamp=_parse_timestamp(row["timestamp"]),
        symbol=(row.get("symbol") or None),
    )


def load_ticks_csv(path: Path) -> List[PriceTick]:
    """Rows that cannot be parsed are skipped and counted in the log."""
    ticks: List[PriceTick] = []
    skipped = 0
    with open(path, "r", encoding="utf-8", newline="") as f:
        for row in csv.DictReader(f):
            try:
                ticks.append(row_to_tick(row))
            except (KeyError, ValueError):
                skipped += 1
    ticks.sort(key=lambda t: t.timestamp)
    log.info("ticks_loaded", path=str(path), ticks=len(ticks), skipped=skipped)
    return ticks


async def replay_ticks(ticks: List[PriceTick], delay_sec: Optional[float] = 0.0) -> AsyncIterator[PriceTick]:
    for tick in ticks:
        yield tick
        if delay_sec:
            await asyncio.sleep(delay_sec)
