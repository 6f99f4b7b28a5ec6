"""Broker capability used by the risk manager.

The transport (SmartAPI, FIX, REST...) lives behind this protocol; the
risk engine only needs positions, account state and market order placement.
"""

from __future__ import annotations

from typing import List, Protocol

from riskengine.models.trade_models import AccountState, OrderRequest, OrderResult, Position


class BrokerError(RuntimeError):
    """Broker-side failure; fatal to the risk cycle that hit it."""


class OrderPlacementError(BrokerError):
    def __init__(self, order: OrderRequest, reason: str) -> None:
        super().__init__(f"order_rejected symbol={order.tradingsymbol} reason={reason}")
        self.order = order
        self.reason = reason


class BrokerClient(Protocol):
    async def get_positions(self) -> List[Position]:
        ...

    async def get_account(self) -> AccountState:
        ...

    async def place_order(self, order: OrderRequest) -> OrderResult:
        ...
