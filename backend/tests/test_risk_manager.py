"""Risk manager: metrics, limit priority, liquidation fan-out, failure semantics."""

import asyncio

import pytest

from riskengine.infrastructure.broker.broker_client import BrokerError
from riskengine.infrastructure.utils.config import RiskConfig, RiskLimitsConfig
from riskengine.models.trade_models import (
    AccountState,
    AlertType,
    EnforcementKind,
    RiskMetrics,
    Severity,
)
from riskengine.services.risk.risk_firewall import (
    DAILY_LOSS_REASON,
    DRAWDOWN_REASON,
    MARGIN_REASON,
    RiskFirewall,
)
from riskengine.services.risk.risk_manager import RiskManager, closing_order, reduction_fraction
from riskengine.services.risk.risk_metrics import max_drawdown, returns_from_equity, sharpe_ratio


def metrics(**overrides) -> RiskMetrics:
    base = dict(
        portfolio_value=100_000.0,
        open_positions=1,
        margin_utilization=0.1,
        daily_pnl=0.0,
        max_drawdown=0.0,
        sharpe_ratio=0.0,
        current_risk=Severity.LOW,
        stop_loss_hit=False,
    )
    base.update(overrides)
    return RiskMetrics(**base)


class TestRiskFirewall:
    def test_daily_loss_beyond_limit_liquidates(self):
        fw = RiskFirewall(RiskLimitsConfig())
        breaches = fw.breaches(metrics(daily_pnl=-6000.0))
        assert [(b.kind, b.reason) for b in breaches] == [(EnforcementKind.LIQUIDATE_ALL, DAILY_LOSS_REASON)]

    def test_daily_loss_exactly_at_limit_liquidates(self):
        fw = RiskFirewall(RiskLimitsConfig())
        assert fw.breaches(metrics(daily_pnl=-5000.0))

    def test_drawdown_below_threshold_does_not_liquidate(self):
        fw = RiskFirewall(RiskLimitsConfig())
        assert fw.breaches(metrics(max_drawdown=0.08)) == []

    def test_drawdown_at_threshold_liquidates(self):
        fw = RiskFirewall(RiskLimitsConfig())
        assert [b.reason for b in fw.breaches(metrics(max_drawdown=0.10))] == [DRAWDOWN_REASON]

    def test_all_breaches_in_priority_order(self):
        fw = RiskFirewall(RiskLimitsConfig())
        breaches = fw.breaches(metrics(daily_pnl=-9000.0, max_drawdown=0.2, margin_utilization=0.75))
        assert [b.reason for b in breaches] == [DAILY_LOSS_REASON, DRAWDOWN_REASON, MARGIN_REASON]
        assert breaches[2].kind == EnforcementKind.REDUCE

    def test_risk_level_grades(self):
        fw = RiskFirewall(RiskLimitsConfig())
        assert fw.risk_level(portfolio_value=100_000, daily_pnl=0, drawdown=0.0, margin=0.1) == Severity.LOW
        assert fw.risk_level(portfolio_value=100_000, daily_pnl=-3000, drawdown=0.0, margin=0.1) == Severity.MEDIUM
        assert fw.risk_level(portfolio_value=100_000, daily_pnl=0, drawdown=0.0, margin=0.7) == Severity.HIGH

    def test_position_size_check(self):
        fw = RiskFirewall(RiskLimitsConfig())
        assert fw.check_position_size(2_000.0, 100_000.0).allowed
        decision = fw.check_position_size(2_500.0, 100_000.0)
        assert not decision.allowed
        assert decision.reason.startswith("max_position_size_exceeded")
        assert not fw.check_position_size(10.0, 0.0).allowed


class TestRiskStatistics:
    def test_returns_from_equity(self):
        assert returns_from_equity([100.0, 110.0, 99.0]) == pytest.approx([0.1, -0.1])

    def test_max_drawdown_peak_to_trough(self):
        # wealth 1.1 -> 0.55 -> 0.66
        assert max_drawdown([0.1, -0.5, 0.2]) == pytest.approx(0.5)

    def test_max_drawdown_monotonic_rise_is_zero(self):
        assert max_drawdown([0.01, 0.02, 0.03]) == 0.0

    def test_sharpe_undefined_cases(self):
        assert sharpe_ratio([], 0.05) == 0.0
        assert sharpe_ratio([0.01], 0.05) == 0.0
        assert sharpe_ratio([0.01, 0.01, 0.01], 0.05) == 0.0

    def test_sharpe_population_stddev(self):
        returns = [0.02, -0.01, 0.03, 0.0]
        mean = sum(returns) / 4
        sd = (sum((r - mean) ** 2 for r in returns) / 4) ** 0.5
        assert sharpe_ratio(returns, 0.05, 252) == pytest.approx((mean - 0.05 / 252) / sd)


class TestOrders:
    def test_short_position_is_bought_back(self, position_factory):
        order = closing_order(position_factory("INFY", -50, exchange="BSE", producttype="DELIVERY"))
        assert order.transactiontype == "BUY"
        assert order.quantity == 50
        assert order.tradingsymbol == "INFY"
        assert order.exchange == "BSE"
        assert order.producttype == "DELIVERY"
        assert order.ordertype == "MARKET"

    def test_long_position_is_sold(self, position_factory):
        order = closing_order(position_factory("TCS", 10))
        assert (order.transactiontype, order.quantity) == ("SELL", 10)

    def test_reduction_fraction(self):
        assert reduction_fraction(0.8, 0.63) == pytest.approx(0.17 / 0.8)
        assert reduction_fraction(0.5, 0.63) == 0.0


class TestEvaluateRisk:
    @pytest.mark.asyncio
    async def test_daily_loss_triggers_liquidation(self, broker_factory, sink, position_factory):
        broker = broker_factory(
            positions=[position_factory("RELIANCE", 100), position_factory("INFY", -50)],
            account=AccountState(equity=100_000.0, day_start_equity=106_000.0),
        )
        rm = RiskManager(broker, sink)

        result = await rm.evaluate_risk()

        assert result.daily_pnl == pytest.approx(-6000.0)
        assert result.stop_loss_hit
        assert result.current_risk == Severity.HIGH
        assert [(o.tradingsymbol, o.transactiontype, o.quantity) for o in broker.orders] == [
            ("RELIANCE", "SELL", 100),
            ("INFY", "BUY", 50),
        ]
        assert len(sink.alerts) == 1
        alert = sink.alerts[0]
        assert alert.type == AlertType.RISK_ALERT
        assert alert.severity == Severity.HIGH
        assert alert.message == f"All positions liquidated: {DAILY_LOSS_REASON}"
        assert [a.kind for a in rm.last_actions] == [EnforcementKind.LIQUIDATE_ALL]

    @pytest.mark.asyncio
    async def test_healthy_portfolio_places_nothing(self, broker_factory, sink, position_factory):
        broker = broker_factory(
            positions=[position_factory("RELIANCE", 100)],
            account=AccountState(equity=100_000.0, day_start_equity=101_000.0, margin_used=20_000, margin_available=80_000),
        )
        rm = RiskManager(broker, sink)

        result = await rm.evaluate_risk()

        assert result.open_positions == 1
        assert result.margin_utilization == pytest.approx(0.2)
        assert broker.orders == []
        assert sink.alerts == []
        assert rm.last_actions == []
        assert rm.last_metrics is result

    @pytest.mark.asyncio
    async def test_drawdown_across_cycles(self, broker_factory, sink, position_factory):
        broker = broker_factory(positions=[position_factory("SBIN", 10)])
        rm = RiskManager(broker, sink)

        for equity in (100_000.0, 95_000.0, 89_000.0):
            broker.account = AccountState(equity=equity, day_start_equity=equity)
            result = await rm.evaluate_risk()

        assert result.max_drawdown == pytest.approx(0.11)
        assert [a.reason for a in rm.last_actions] == [DRAWDOWN_REASON]
        assert len(sink.alerts) == 1

    @pytest.mark.asyncio
    async def test_high_margin_reduces_positions(self, broker_factory, sink, position_factory):
        broker = broker_factory(
            positions=[position_factory("HDFC", 100), position_factory("ITC", -3)],
            account=AccountState(equity=100_000.0, day_start_equity=100_000.0, margin_used=80.0, margin_available=20.0),
        )
        rm = RiskManager(broker, sink)

        await rm.evaluate_risk()

        # target 0.7 * 0.9 = 0.63 -> cut (0.8 - 0.63) / 0.8 of every position, rounded up
        assert [(o.tradingsymbol, o.transactiontype, o.quantity) for o in broker.orders] == [
            ("HDFC", "SELL", 22),
            ("ITC", "BUY", 1),
        ]
        assert len(sink.alerts) == 1
        assert sink.alerts[0].severity == Severity.MEDIUM
        assert MARGIN_REASON in sink.alerts[0].message

    @pytest.mark.asyncio
    async def test_broker_error_fails_the_cycle(self, broker_factory, sink):
        broker = broker_factory()
        broker.positions_error = BrokerError("session expired")
        rm = RiskManager(broker, sink)

        with pytest.raises(BrokerError):
            await rm.evaluate_risk()
        assert rm.last_metrics is None
        assert sink.alerts == []

    @pytest.mark.asyncio
    async def test_unexpected_broker_exception_is_wrapped(self, broker_factory, sink):
        broker = broker_factory()
        broker.positions_error = ConnectionResetError("socket closed")
        rm = RiskManager(broker, sink)

        with pytest.raises(BrokerError, match="socket closed"):
            await rm.evaluate_risk()

    @pytest.mark.asyncio
    async def test_cycles_do_not_overlap_liquidation(self, broker_factory, sink, position_factory):
        broker = broker_factory(
            positions=[position_factory("A", 1), position_factory("B", 2)],
            account=AccountState(equity=100_000.0, day_start_equity=120_000.0),
            order_delay=0.02,
        )
        rm = RiskManager(broker, sink)

        await asyncio.gather(rm.evaluate_risk(), rm.evaluate_risk())

        assert not broker.fetched_during_orders
        assert len(sink.alerts) == 2

    @pytest.mark.asyncio
    async def test_daily_loss_and_drawdown_in_one_cycle_liquidate_once(self, broker_factory, sink, position_factory):
        broker = broker_factory(positions=[position_factory("A", 10), position_factory("B", -5)])
        rm = RiskManager(broker, sink)

        broker.account = AccountState(equity=100_000.0, day_start_equity=100_000.0)
        await rm.evaluate_risk()
        broker.account = AccountState(equity=88_000.0, day_start_equity=100_000.0)
        result = await rm.evaluate_risk()

        assert result.stop_loss_hit
        assert result.max_drawdown == pytest.approx(0.12)
        assert [a.reason for a in rm.last_actions] == [DAILY_LOSS_REASON, DRAWDOWN_REASON]
        assert [(o.tradingsymbol, o.transactiontype, o.quantity) for o in broker.orders] == [
            ("A", "SELL", 10),
            ("B", "BUY", 5),
        ]
        assert len(rm.last_actions[0].placed) == 2
        assert rm.last_actions[1].placed == ()
        assert rm.last_actions[1].failures == ()
        assert [a.message for a in sink.alerts] == [
            f"All positions liquidated: {DAILY_LOSS_REASON}",
            f"Liquidation skipped, no open positions: {DRAWDOWN_REASON}",
        ]

    @pytest.mark.asyncio
    async def test_later_cycles_after_liquidation_report_flat_book(self, broker_factory, sink, position_factory):
        broker = broker_factory(
            positions=[position_factory("RELIANCE", 100)],
            account=AccountState(equity=94_000.0, day_start_equity=100_000.0),
        )
        rm = RiskManager(broker, sink)

        for _ in range(3):
            await rm.evaluate_risk()

        assert len(broker.orders) == 1
        assert sink.alerts[0].message == f"All positions liquidated: {DAILY_LOSS_REASON}"
        assert all(a.message.startswith("Liquidation skipped, no open positions") for a in sink.alerts[1:])
        assert all(a.data["orders_placed"] == 0 for a in sink.alerts[1:])


class TestLiquidateAll:
    @pytest.mark.asyncio
    async def test_failed_order_does_not_block_others(self, broker_factory, sink, position_factory):
        broker = broker_factory(
            positions=[position_factory("AAA", 10), position_factory("BBB", -20), position_factory("CCC", 30)],
            failing_symbols={"BBB"},
        )
        rm = RiskManager(broker, sink)

        action = await rm.liquidate_all_positions("Daily loss limit reached")

        assert [o.tradingsymbol for o in broker.orders] == ["AAA", "BBB", "CCC"]
        assert len(action.placed) == 2
        assert [f.tradingsymbol for f in action.failures] == ["BBB"]
        assert action.partially_failed
        assert len(sink.alerts) == 1
        assert sink.alerts[0].severity == Severity.HIGH
        assert sink.alerts[0].data["orders_failed"] == ["BBB"]

    @pytest.mark.asyncio
    async def test_orders_are_placed_concurrently(self, broker_factory, sink, position_factory):
        broker = broker_factory(
            positions=[position_factory(s, 5) for s in ("A", "B", "C")],
            order_delay=0.02,
        )
        rm = RiskManager(broker, sink)

        await rm.liquidate_all_positions("test")

        assert broker.max_in_flight == 3

    @pytest.mark.asyncio
    async def test_flat_positions_are_skipped(self, broker_factory, sink, position_factory):
        broker = broker_factory(positions=[position_factory("A", 0), position_factory("B", 4)])
        rm = RiskManager(broker, sink)

        await rm.liquidate_all_positions("test")

        assert [o.tradingsymbol for o in broker.orders] == ["B"]

    @pytest.mark.asyncio
    async def test_alert_still_sent_when_positions_unavailable(self, broker_factory, sink):
        broker = broker_factory()
        broker.positions_error = BrokerError("timeout")
        rm = RiskManager(broker, sink)

        action = await rm.liquidate_all_positions("test")

        assert action.failures[0].tradingsymbol == "*"
        assert len(sink.alerts) == 1


def test_limits_must_be_fractions():
    with pytest.raises(ValueError):
        RiskLimitsConfig(max_daily_loss=0.0)
    with pytest.raises(ValueError):
        RiskLimitsConfig(margin_threshold=1.5)
    assert RiskConfig().limits.max_position_size == 0.02
