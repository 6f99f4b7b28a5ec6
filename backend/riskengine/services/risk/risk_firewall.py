"""Hard limit checks (NOT NEGOTIABLE).

Pure decisions over RiskMetrics; the risk manager turns breaches into orders.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List

from riskengine.infrastructure.utils.config import RiskLimitsConfig
from riskengine.models.trade_models import EnforcementKind, RiskDecision, RiskMetrics, Severity

DAILY_LOSS_REASON = "Daily loss limit reached"
DRAWDOWN_REASON = "Maximum drawdown reached"
MARGIN_REASON = "High margin utilization"


@dataclass(frozen=True)
class LimitBreach:
    kind: EnforcementKind
    reason: str


class RiskFirewall:
    def __init__(self, limits: RiskLimitsConfig) -> None:
        self.limits = limits

    def daily_loss_breached(self, portfolio_value: float, daily_pnl: float) -> bool:
        return daily_pnl <= -self.limits.max_daily_loss * portfolio_value

    def breaches(self, metrics: RiskMetrics) -> List[LimitBreach]:
        """Breached limits in enforcement priority order (several may fire)."""
        out: List[LimitBreach] = []
        if self.daily_loss_breached(metrics.portfolio_value, metrics.daily_pnl):
            out.append(LimitBreach(EnforcementKind.LIQUIDATE_ALL, DAILY_LOSS_REASON))
        if metrics.max_drawdown >= self.limits.max_drawdown:
            out.append(LimitBreach(EnforcementKind.LIQUIDATE_ALL, DRAWDOWN_REASON))
        if metrics.margin_utilization >= self.limits.margin_threshold:
            out.append(LimitBreach(EnforcementKind.REDUCE, MARGIN_REASON))
        return out

    def risk_level(self, *, portfolio_value: float, daily_pnl: float, drawdown: float, margin: float) -> Severity:
        """Grade by the highest usage of any limit: >=100% HIGH, >=50% MEDIUM."""
        usage = [drawdown / self.limits.max_drawdown, margin / self.limits.margin_threshold]
        if portfolio_value > 0:
            usage.append(max(-daily_pnl, 0.0) / (self.limits.max_daily_loss * portfolio_value))
        worst = max(usage)
        if worst >= 1.0:
            return Severity.HIGH
        if worst >= 0.5:
            return Severity.MEDIUM
        return Severity.LOW

    def check_position_size(self, notional: float, portfolio_value: float) -> RiskDecision:
        if portfolio_value <= 0:
            return RiskDecision(False, "invalid_portfolio_value")
        share = abs(notional) / portfolio_value
        if share > self.limits.max_position_size:
            return RiskDecision(False, f"max_position_size_exceeded share={share:.4f}")
        return RiskDecision(True, "ok")
