"""Portfolio statistics derived from broker account state."""

from __future__ import annotations

import math
from typing import List, Sequence

from riskengine.models.trade_models import AccountState


def margin_utilization(account: AccountState) -> float:
    total = account.margin_used + account.margin_available
    if total <= 0:
        return 0.0
    return account.margin_used / total


def daily_pnl(account: AccountState) -> float:
    return account.equity - account.day_start_equity


def returns_from_equity(equity_curve: Sequence[float]) -> List[float]:
    """Fractional change between consecutive equity observations."""
    out: List[float] = []
    for prev, cur in zip(equity_curve, equity_curve[1:]):
        if prev > 0:
            out.append((cur - prev) / prev)
    return out


def max_drawdown(returns: Sequence[float]) -> float:
    """Largest peak-to-trough decline of the cumulative return curve, as a fraction."""
    wealth = 1.0
    peak = 1.0
    worst = 0.0
    for r in returns:
        wealth *= 1.0 + r
        peak = max(peak, wealth)
        if peak > 0:
            worst = max(worst, (peak - wealth) / peak)
    return worst


def sharpe_ratio(returns: Sequence[float], risk_free_rate: float, annualization_factor: int = 252) -> float:
    """(mean - rf / annualization) / population stddev; 0.0 when undefined."""
    if len(returns) < 2:
        return 0.0
    mean = sum(returns) / len(returns)
    variance = sum((r - mean) ** 2 for r in returns) / len(returns)
    sd = math.sqrt(variance)
    if sd == 0.0:
        return 0.0
    return (mean - risk_free_rate / annualization_factor) / sd
