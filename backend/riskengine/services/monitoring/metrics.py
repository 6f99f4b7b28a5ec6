"""In-memory engine status for the API + status file."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class EngineStatus:
    running: bool = False
    ticks_recorded: int = 0
    indicators_ready: bool = False
    last_tick_price: Optional[float] = None
    cycles_completed: int = 0
    cycles_failed: int = 0
    last_cycle_at: Optional[str] = None
    last_error: Optional[str] = None
    enforcement_failures: int = 0
    risk: Optional[Dict[str, Any]] = None
    indicators: Optional[Dict[str, Any]] = None
