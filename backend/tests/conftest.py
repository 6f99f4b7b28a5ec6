"""Shared fakes: scripted broker, recording alert sink, tick factories."""

from __future__ import annotations

import asyncio
import dataclasses
import math
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Set

import pytest

from riskengine.infrastructure.broker.broker_client import OrderPlacementError
from riskengine.models.market_models import PriceTick
from riskengine.models.trade_models import AccountState, Alert, OrderRequest, OrderResult, Position


class FakeBroker:
    def __init__(
        self,
        positions: Optional[List[Position]] = None,
        account: Optional[AccountState] = None,
        *,
        failing_symbols: Optional[Set[str]] = None,
        order_delay: float = 0.0,
    ) -> None:
        self.positions = list(positions or [])
        self.account = account or AccountState(equity=100_000.0, day_start_equity=100_000.0)
        self.failing_symbols = set(failing_symbols or ())
        self.order_delay = order_delay
        self.orders: List[OrderRequest] = []
        self.positions_error: Optional[Exception] = None
        self.in_flight = 0
        self.max_in_flight = 0
        self.fetched_during_orders = False

    async def get_positions(self) -> List[Position]:
        if self.in_flight:
            self.fetched_during_orders = True
        if self.positions_error is not None:
            raise self.positions_error
        return list(self.positions)

    async def get_account(self) -> AccountState:
        return self.account

    async def place_order(self, order: OrderRequest) -> OrderResult:
        self.orders.append(order)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.order_delay:
                await asyncio.sleep(self.order_delay)
            if order.tradingsymbol in self.failing_symbols:
                raise OrderPlacementError(order, "rejected_by_exchange")
            self._fill(order)
            return OrderResult(order_id=f"OID-{len(self.orders)}")
        finally:
            self.in_flight -= 1

    def _fill(self, order: OrderRequest) -> None:
        delta = order.quantity if order.transactiontype == "BUY" else -order.quantity
        self.positions = [
            dataclasses.replace(p, quantity=p.quantity + delta) if p.tradingsymbol == order.tradingsymbol else p
            for p in self.positions
        ]


class RecordingSink:
    def __init__(self) -> None:
        self.alerts: List[Alert] = []

    async def send_alert(self, alert: Alert) -> None:
        self.alerts.append(alert)


def make_position(symbol: str, quantity: int, *, exchange: str = "NSE", producttype: str = "INTRADAY") -> Position:
    return Position(
        tradingsymbol=symbol,
        symboltoken=f"{symbol}-TOKEN",
        exchange=exchange,
        producttype=producttype,
        quantity=quantity,
    )


def make_ticks(n: int, *, start: float = 100.0, symbol: Optional[str] = None) -> List[PriceTick]:
    t0 = datetime(2024, 1, 2, 9, 15, tzinfo=timezone.utc)
    out: List[PriceTick] = []
    for i in range(n):
        price = start + 5.0 * math.sin(i / 3.0) + 0.1 * i
        out.append(
            PriceTick(
                ltp=price,
                high_price=price + 0.5 + (i % 3) * 0.1,
                low_price=price - 0.5,
                timestamp=t0 + timedelta(seconds=i),
                symbol=symbol,
            )
        )
    return out


@pytest.fixture
def broker() -> FakeBroker:
    return FakeBroker()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def ticks_factory():
    return make_ticks


@pytest.fixture
def position_factory():
    return make_position


@pytest.fixture
def broker_factory():
    return FakeBroker
