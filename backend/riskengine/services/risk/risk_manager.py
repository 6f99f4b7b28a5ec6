"""Risk manager: score the live portfolio and de-risk it when limits break.

One evaluation cycle = fetch positions + account -> compute RiskMetrics ->
enforce limits. Cycles are serialized so a liquidation still placing orders
is never overlapped by the next cycle.
"""

from __future__ import annotations

import asyncio
import itertools
import math
from collections import deque
from typing import Deque, List, Optional, Sequence, Tuple

from riskengine.infrastructure.broker.broker_client import BrokerClient, BrokerError, OrderPlacementError
from riskengine.infrastructure.logging.logging import cycle_context, get_logger
from riskengine.infrastructure.utils.config import RiskConfig
from riskengine.models.market_models import IndicatorSnapshot
from riskengine.models.trade_models import (
    AccountState,
    Alert,
    AlertType,
    EnforcementAction,
    EnforcementKind,
    OrderFailure,
    OrderRequest,
    OrderResult,
    Position,
    RiskDecision,
    RiskMetrics,
    Severity,
)
from riskengine.services.notification.notifier import AlertSink
from riskengine.services.risk.risk_firewall import RiskFirewall
from riskengine.services.risk.risk_metrics import (
    daily_pnl,
    margin_utilization,
    max_drawdown,
    returns_from_equity,
    sharpe_ratio,
)


def closing_order(position: Position, quantity: Optional[int] = None) -> OrderRequest:
    """Market order in the opposite direction of the position."""
    qty = abs(position.quantity) if quantity is None else int(quantity)
    return OrderRequest(
        tradingsymbol=position.tradingsymbol,
        symboltoken=position.symboltoken,
        transactiontype="SELL" if position.quantity > 0 else "BUY",
        exchange=position.exchange,
        producttype=position.producttype,
        quantity=qty,
    )


def reduction_fraction(utilization: float, target: float) -> float:
    """Share of every position to close so utilization falls to target."""
    if utilization <= 0 or utilization <= target:
        return 0.0
    return min(1.0, (utilization - target) / utilization)


class RiskManager:
    def __init__(self, broker: BrokerClient, notifier: AlertSink, config: Optional[RiskConfig] = None) -> None:
        self._log = get_logger("risk_manager")
        self.broker = broker
        self.notifier = notifier
        self.config = config or RiskConfig()
        self.limits = self.config.limits
        self.firewall = RiskFirewall(self.limits)

        self._equity_curve: Deque[float] = deque(maxlen=self.config.returns_history + 1)
        self._cycle_lock = asyncio.Lock()
        self._cycles = itertools.count(1)

        self.last_metrics: Optional[RiskMetrics] = None
        self.last_actions: List[EnforcementAction] = []

    @property
    def cycle_in_progress(self) -> bool:
        return self._cycle_lock.locked()

    async def evaluate_risk(self, market: Optional[IndicatorSnapshot] = None) -> RiskMetrics:
        """Run one cycle. BrokerError propagates; enforcement failures do not."""
        async with self._cycle_lock:
            with cycle_context(next(self._cycles)):
                log = self._log
                if market is not None:
                    log = log.bind(atr=market.atr, last_price=market.last_price)

                positions, account = await self._fetch_state()
                metrics = self.calculate_risk_metrics(positions, account)
                log.info("risk_metrics", **metrics.to_dict())

                self.last_actions = await self.enforce_risk_limits(metrics)
                self.last_metrics = metrics
                log.info("risk_cycle_done", actions=[a.kind.value for a in self.last_actions])
                return metrics

    async def _fetch_state(self) -> Tuple[List[Position], AccountState]:
        try:
            positions = await self.broker.get_positions()
            account = await self.broker.get_account()
        except BrokerError as e:
            self._log.error("broker_state_unavailable", error=str(e))
            raise
        except Exception as e:
            self._log.error("broker_state_unavailable", error=str(e))
            raise BrokerError(f"broker_state_unavailable: {e}") from e
        return list(positions), account

    def calculate_risk_metrics(self, positions: Sequence[Position], account: AccountState) -> RiskMetrics:
        self._equity_curve.append(account.equity)
        returns = returns_from_equity(list(self._equity_curve))

        portfolio_value = account.equity
        pnl = daily_pnl(account)
        utilization = margin_utilization(account)
        drawdown = max_drawdown(returns)

        return RiskMetrics(
            portfolio_value=portfolio_value,
            open_positions=sum(1 for p in positions if p.quantity != 0),
            margin_utilization=utilization,
            daily_pnl=pnl,
            max_drawdown=drawdown,
            sharpe_ratio=sharpe_ratio(returns, self.limits.risk_free_rate, self.config.annualization_factor),
            current_risk=self.firewall.risk_level(
                portfolio_value=portfolio_value,
                daily_pnl=pnl,
                drawdown=drawdown,
                margin=utilization,
            ),
            stop_loss_hit=self.firewall.daily_loss_breached(portfolio_value, pnl),
        )

    async def enforce_risk_limits(self, metrics: RiskMetrics) -> List[EnforcementAction]:
        actions: List[EnforcementAction] = []
        for breach in self.firewall.breaches(metrics):
            if breach.kind == EnforcementKind.LIQUIDATE_ALL:
                actions.append(await self.liquidate_all_positions(breach.reason))
            else:
                actions.append(await self.reduce_positions(breach.reason, metrics.margin_utilization))
        return actions

    def check_position_size(self, notional: float, portfolio_value: Optional[float] = None) -> RiskDecision:
        """Pre-trade check against max_position_size (defaults to last known portfolio value)."""
        if portfolio_value is None:
            portfolio_value = self.last_metrics.portfolio_value if self.last_metrics else 0.0
        return self.firewall.check_position_size(notional, portfolio_value)

    async def _current_positions(self) -> Tuple[List[Position], List[OrderFailure]]:
        # Re-read so a second action in the same cycle sees the already flattened book
        try:
            positions = await self.broker.get_positions()
        except Exception as e:
            self._log.error("enforcement_positions_unavailable", error=str(e))
            return [], [OrderFailure(tradingsymbol="*", error=f"positions_unavailable: {e}")]
        return [p for p in positions if p.quantity != 0], []

    async def _place(self, order: OrderRequest) -> OrderResult:
        try:
            return await self.broker.place_order(order)
        except OrderPlacementError:
            raise
        except Exception as e:
            raise OrderPlacementError(order, str(e)) from e

    async def _place_all(
        self, orders: Sequence[OrderRequest], reason: str
    ) -> Tuple[Tuple[OrderResult, ...], Tuple[OrderFailure, ...]]:
        results = await asyncio.gather(*(self._place(o) for o in orders), return_exceptions=True)

        placed: List[OrderResult] = []
        failures: List[OrderFailure] = []
        for order, result in zip(orders, results):
            if isinstance(result, BaseException):
                self._log.error(
                    "order_failed",
                    reason=reason,
                    tradingsymbol=order.tradingsymbol,
                    side=order.transactiontype,
                    quantity=order.quantity,
                    error=str(result),
                )
                failures.append(OrderFailure(tradingsymbol=order.tradingsymbol, error=str(result)))
            else:
                self._log.info(
                    "order_placed",
                    reason=reason,
                    tradingsymbol=order.tradingsymbol,
                    side=order.transactiontype,
                    quantity=order.quantity,
                    order_id=result.order_id,
                )
                placed.append(result)
        return tuple(placed), tuple(failures)

    async def liquidate_all_positions(self, reason: str) -> EnforcementAction:
        positions, fetch_failures = await self._current_positions()
        orders = [closing_order(p) for p in positions]
        placed, failures = await self._place_all(orders, reason)
        failures = tuple(fetch_failures) + failures

        if orders or failures:
            message = f"All positions liquidated: {reason}"
        else:
            message = f"Liquidation skipped, no open positions: {reason}"
        if failures:
            message += f" ({len(failures)} of {len(orders) or len(failures)} orders failed)"
            self._log.warning("enforcement_partial_failure", action="liquidate_all", failures=len(failures))

        await self.notifier.send_alert(
            Alert(
                type=AlertType.RISK_ALERT,
                severity=Severity.HIGH,
                message=message,
                data={
                    "reason": reason,
                    "orders_placed": len(placed),
                    "orders_failed": [f.tradingsymbol for f in failures],
                },
            )
        )
        return EnforcementAction(EnforcementKind.LIQUIDATE_ALL, reason, placed, failures)

    async def reduce_positions(self, reason: str, utilization: float) -> EnforcementAction:
        target = self.limits.margin_threshold * self.config.reduce_target_ratio
        fraction = reduction_fraction(utilization, target)

        positions, fetch_failures = await self._current_positions()
        orders: List[OrderRequest] = []
        if fraction > 0:
            for p in positions:
                size = abs(p.quantity)
                qty = min(size, max(1, math.ceil(size * fraction)))
                orders.append(closing_order(p, qty))

        placed, failures = await self._place_all(orders, reason)
        failures = tuple(fetch_failures) + failures
        if failures:
            self._log.warning("enforcement_partial_failure", action="reduce", failures=len(failures))

        await self.notifier.send_alert(
            Alert(
                type=AlertType.RISK_ALERT,
                severity=Severity.MEDIUM,
                message=f"Positions reduced by {fraction:.0%}: {reason}",
                data={
                    "reason": reason,
                    "margin_utilization": utilization,
                    "target_utilization": target,
                    "orders_placed": len(placed),
                    "orders_failed": [f.tradingsymbol for f in failures],
                },
            )
        )
        return EnforcementAction(EnforcementKind.REDUCE, reason, placed, failures)
