"""Broker, risk and alert domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from riskengine.infrastructure.utils.timeutils import utc_now


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class AlertType(str, Enum):
    RISK_ALERT = "RISK_ALERT"
    SYSTEM_ALERT = "SYSTEM_ALERT"


@dataclass(frozen=True)
class Position:
    tradingsymbol: str
    symboltoken: str
    exchange: str
    producttype: str
    quantity: int           # >0 long, <0 short
    ltp: float = 0.0
    pnl: float = 0.0


@dataclass(frozen=True)
class AccountState:
    equity: float
    day_start_equity: float
    margin_used: float = 0.0
    margin_available: float = 0.0


@dataclass(frozen=True)
class OrderRequest:
    tradingsymbol: str
    symboltoken: str
    transactiontype: str    # "BUY" | "SELL"
    exchange: str
    producttype: str
    quantity: int
    variety: str = "NORMAL"
    ordertype: str = "MARKET"

    def to_payload(self) -> Dict[str, Any]:
        return dict(self.__dict__)


@dataclass(frozen=True)
class OrderResult:
    order_id: str
    status: str = "COMPLETE"
    message: str = ""


@dataclass(frozen=True)
class RiskMetrics:
    portfolio_value: float
    open_positions: int
    margin_utilization: float
    daily_pnl: float
    max_drawdown: float
    sharpe_ratio: float
    current_risk: Severity
    stop_loss_hit: bool
    computed_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "portfolio_value": self.portfolio_value,
            "open_positions": self.open_positions,
            "margin_utilization": self.margin_utilization,
            "daily_pnl": self.daily_pnl,
            "max_drawdown": self.max_drawdown,
            "sharpe_ratio": self.sharpe_ratio,
            "current_risk": self.current_risk.value,
            "stop_loss_hit": self.stop_loss_hit,
            "computed_at": self.computed_at.isoformat(),
        }


@dataclass(frozen=True)
class Alert:
    type: AlertType
    severity: Severity
    message: str
    timestamp: datetime = field(default_factory=utc_now)
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "data": self.data,
        }


class EnforcementKind(str, Enum):
    LIQUIDATE_ALL = "LIQUIDATE_ALL"
    REDUCE = "REDUCE"


@dataclass(frozen=True)
class OrderFailure:
    tradingsymbol: str
    error: str


@dataclass(frozen=True)
class EnforcementAction:
    kind: EnforcementKind
    reason: str
    placed: Tuple[OrderResult, ...] = ()
    failures: Tuple[OrderFailure, ...] = ()

    @property
    def partially_failed(self) -> bool:
        return bool(self.failures)


@dataclass(frozen=True)
class RiskDecision:
    allowed: bool
    reason: str


@dataclass
class CycleReport:
    """Outcome of one engine cycle as seen by the status API."""

    metrics: Optional[RiskMetrics] = None
    actions: List[EnforcementAction] = field(default_factory=list)
    error: Optional[str] = None
