from datetime import datetime, timezone

import pytest

from riskengine.services.market.tick_history import load_ticks_csv, replay_ticks


def test_load_ticks_csv(tmp_path):
    path = tmp_path / "ticks.csv"
    path.write_text(
        "timestamp,ltp,high,low,symbol\n"
        "2024-03-04T09:15:02,101.5,102,101,NIFTY\n"
        "1709543700,100.0,,,NIFTY\n"
        "bad,row,,,\n",
        encoding="utf-8",
    )
    ticks = load_ticks_csv(path)

    assert len(ticks) == 2
    # sorted by time: the epoch row is 09:15:00
    assert ticks[0].ltp == 100.0
    assert ticks[0].high_price == 100.0
    assert ticks[0].timestamp == datetime(2024, 3, 4, 9, 15, tzinfo=timezone.utc)
    assert ticks[1].high_price == 102.0
    assert ticks[1].symbol == "NIFTY"


@pytest.mark.asyncio
async def test_replay_yields_all_ticks(ticks_factory):
    ticks = ticks_factory(5)
    seen = [t async for t in replay_ticks(ticks)]
    assert seen == ticks
