"""Risk engine driver: ticks -> indicators, timer -> risk cycle + metric recording."""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import AsyncIterator, Optional

import uvicorn

from riskengine.api.server import create_app
from riskengine.infrastructure.broker.broker_client import BrokerClient, BrokerError
from riskengine.infrastructure.broker.paper_broker import PaperBroker
from riskengine.infrastructure.logging.logging import configure_logging, get_logger
from riskengine.infrastructure.utils.config import RiskEngineConfig, load_config
from riskengine.infrastructure.utils.timeutils import utc_now
from riskengine.models.market_models import IndicatorSnapshot, PriceTick
from riskengine.models.trade_models import CycleReport
from riskengine.services.market.candle_builder import CandleBuilder
from riskengine.services.market.indicators import BreadthProvider, IndicatorEngine, InsufficientHistory
from riskengine.services.market.tick_history import load_ticks_csv, replay_ticks
from riskengine.services.monitoring.metric_monitor import MetricMonitor, finite_observations
from riskengine.services.monitoring.metrics import EngineStatus
from riskengine.services.monitoring.metrics_store import write_json
from riskengine.services.notification.notifier import AlertSink, DashboardFeed, NotificationService
from riskengine.services.risk.risk_manager import RiskManager


class RiskEngine:
    """Explicit context object holding every stateful service of one session."""

    def __init__(
        self,
        config: RiskEngineConfig,
        broker: BrokerClient,
        *,
        notifier: Optional[AlertSink] = None,
        dashboard: Optional[DashboardFeed] = None,
        breadth_provider: Optional[BreadthProvider] = None,
    ) -> None:
        self._log = get_logger("engine")
        self.config = config
        self.broker = broker

        nc = config.notifications
        self.dashboard = dashboard or DashboardFeed(
            max_alerts=nc.dashboard_max_alerts,
            path=Path(nc.dashboard_path) if nc.dashboard_path else None,
        )
        self.notifier: AlertSink = notifier or NotificationService.from_config(nc, self.dashboard)

        ic = config.indicators
        indicator_kwargs = dict(
            capacity=ic.history_capacity,
            atr_period=ic.atr_period,
            macd_fast_period=ic.macd_fast_period,
            macd_slow_period=ic.macd_slow_period,
            macd_signal_period=ic.macd_signal_period,
            macd_signal_mode=ic.macd_signal_mode,
            bollinger_period=ic.bollinger_period,
            bollinger_std_dev=ic.bollinger_std_dev,
        )
        if breadth_provider is not None:
            indicator_kwargs["breadth_provider"] = breadth_provider
        self.indicators = IndicatorEngine(**indicator_kwargs)
        self.sessions = CandleBuilder(session_sec=ic.session_length_sec)

        self.risk = RiskManager(broker, self.notifier, config.risk)
        self.monitor = MetricMonitor.from_config(self.notifier, config.monitoring)

        self.status = EngineStatus()
        self.last_snapshot: Optional[IndicatorSnapshot] = None
        self.last_report: Optional[CycleReport] = None

    def on_tick(self, tick: PriceTick) -> None:
        self.indicators.record_tick(tick)
        self.sessions.update_with_tick(tick)

        # Paper books are marked to market from the same feed
        update_price = getattr(self.broker, "update_price", None)
        if tick.symbol and callable(update_price):
            update_price(tick.symbol, tick.ltp)

        self.status.ticks_recorded += 1
        self.status.last_tick_price = tick.ltp
        self.status.indicators_ready = self.indicators.is_ready()

    async def refresh_indicators(self) -> Optional[IndicatorSnapshot]:
        try:
            snapshot = await self.indicators.analyze(self.sessions.previous_ohlc())
        except InsufficientHistory as e:
            self._log.debug("indicators_warming_up", required=e.required, available=e.available)
            return None
        self.last_snapshot = snapshot
        self.status.indicators = snapshot.to_dict()
        return snapshot

    async def run_cycle(self) -> CycleReport:
        started = time.perf_counter()
        report = CycleReport()
        snapshot = await self.refresh_indicators()

        try:
            metrics = await self.risk.evaluate_risk(market=snapshot)
        except BrokerError as e:
            # metrics unavailable this cycle; next timer tick retries
            report.error = str(e)
            self.status.cycles_failed += 1
            self.status.last_error = str(e)
            self._log.error("risk_metrics_unavailable", error=str(e))
        else:
            report.metrics = metrics
            report.actions = list(self.risk.last_actions)
            self.status.cycles_completed += 1
            self.status.risk = metrics.to_dict()
            self.status.enforcement_failures += sum(len(a.failures) for a in report.actions)

        latency_ms = (time.perf_counter() - started) * 1000.0
        observations = {"risk_cycle_latency_ms": latency_ms}
        if report.metrics is not None:
            observations.update(
                portfolio_value=report.metrics.portfolio_value,
                daily_pnl=report.metrics.daily_pnl,
                margin_utilization=report.metrics.margin_utilization,
                max_drawdown=report.metrics.max_drawdown,
            )
        if snapshot is not None:
            observations.update(atr=snapshot.atr, last_price=snapshot.last_price)
        await self.monitor.record(finite_observations(observations))

        self.status.last_cycle_at = utc_now().isoformat()
        self.last_report = report
        self._write_status()
        return report

    def _write_status(self) -> None:
        path = self.config.monitoring.status_path
        if not path:
            return
        try:
            write_json(Path(path), self.status.__dict__)
        except OSError as e:
            self._log.warning("status_write_failed", path=path, error=str(e))

    async def consume(self, ticks: AsyncIterator[PriceTick]) -> None:
        async for tick in ticks:
            try:
                self.on_tick(tick)
            except ValueError as e:
                self._log.warning("tick_rejected", error=str(e))

    async def run(self, stop: asyncio.Event) -> None:
        """Timer-driven cycles until stop is set. Cycles never overlap."""
        interval = self.config.engine.cycle_interval_seconds
        self.status.running = True
        self._log.info("engine_started", interval_sec=interval)
        try:
            while not stop.is_set():
                await self.run_cycle()
                try:
                    await asyncio.wait_for(stop.wait(), timeout=interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            self.status.running = False
            self._write_status()
            self._log.info("engine_stopped", cycles=self.status.cycles_completed)


def build_paper_broker(config: RiskEngineConfig) -> PaperBroker:
    ec = config.engine
    broker = PaperBroker(starting_equity=ec.paper_starting_equity, margin_rate=ec.paper_margin_rate)
    for p in ec.paper_positions:
        broker.open_position(
            p.tradingsymbol,
            p.quantity,
            p.price,
            exchange=p.exchange,
            producttype=p.producttype,
        )
    broker.roll_day()
    return broker


async def run_engine(
    config_path: Optional[Path] = None,
    *,
    ticks_path: Optional[Path] = None,
    broker: Optional[BrokerClient] = None,
    serve_api: bool = True,
) -> None:
    config = load_config(config_path)
    configure_logging(config.log_level, json_logs=config.log_json)
    log = get_logger("engine")

    if broker is None:
        if not config.engine.dry_run:
            raise RuntimeError("No live broker client configured. Set engine.dry_run or pass a broker.")
        broker = build_paper_broker(config)
    log.info("config_loaded", dry_run=config.engine.dry_run, limits=config.risk.limits.model_dump())

    engine = RiskEngine(config, broker)
    stop = asyncio.Event()
    tasks = [asyncio.create_task(engine.run(stop))]

    if ticks_path is not None:
        ticks = load_ticks_csv(ticks_path)
        tasks.append(asyncio.create_task(engine.consume(replay_ticks(ticks, config.engine.tick_replay_delay_sec))))

    if serve_api:
        server = uvicorn.Server(
            uvicorn.Config(create_app(engine), host=config.api.host, port=config.api.port, log_level="warning")
        )
        tasks.append(asyncio.create_task(server.serve()))

    try:
        await asyncio.gather(*tasks)
    finally:
        stop.set()
        for t in tasks:
            t.cancel()
