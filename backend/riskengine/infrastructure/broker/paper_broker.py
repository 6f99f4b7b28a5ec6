"""In-memory paper broker (dry runs + tests).

Cash accounting: buying spends qty * price, selling (or shorting) adds it.
Equity = cash + sum(quantity * ltp). Market orders fill immediately at ltp.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from typing import Dict, List, Optional, Set

from riskengine.infrastructure.broker.broker_client import OrderPlacementError
from riskengine.infrastructure.logging.logging import get_logger
from riskengine.models.trade_models import AccountState, OrderRequest, OrderResult, Position


@dataclass
class _Book:
    tradingsymbol: str
    symboltoken: str
    exchange: str
    producttype: str
    quantity: int
    avg_price: float
    ltp: float

    def to_position(self) -> Position:
        return Position(
            tradingsymbol=self.tradingsymbol,
            symboltoken=self.symboltoken,
            exchange=self.exchange,
            producttype=self.producttype,
            quantity=self.quantity,
            ltp=self.ltp,
            pnl=self.quantity * (self.ltp - self.avg_price),
        )


class PaperBroker:
    def __init__(
        self,
        *,
        starting_equity: float = 100_000.0,
        margin_rate: float = 0.2,
        rejected_symbols: Optional[Set[str]] = None,
    ) -> None:
        self._log = get_logger("paper_broker")
        self._cash = float(starting_equity)
        self._margin_rate = float(margin_rate)
        self._books: Dict[str, _Book] = {}
        self._order_ids = itertools.count(1)
        self.rejected_symbols: Set[str] = set(rejected_symbols or ())
        self._day_start_equity = self.equity()

    def equity(self) -> float:
        return self._cash + sum(b.quantity * b.ltp for b in self._books.values())

    def margin_used(self) -> float:
        return sum(abs(b.quantity) * b.ltp for b in self._books.values()) * self._margin_rate

    def open_position(
        self,
        tradingsymbol: str,
        quantity: int,
        price: float,
        *,
        symboltoken: str = "",
        exchange: str = "NSE",
        producttype: str = "INTRADAY",
    ) -> None:
        """Seed a filled position without going through order placement."""
        self._cash -= quantity * price
        self._books[tradingsymbol] = _Book(
            tradingsymbol=tradingsymbol,
            symboltoken=symboltoken or tradingsymbol,
            exchange=exchange,
            producttype=producttype,
            quantity=int(quantity),
            avg_price=float(price),
            ltp=float(price),
        )

    def update_price(self, tradingsymbol: str, ltp: float) -> None:
        book = self._books.get(tradingsymbol)
        if book is not None:
            book.ltp = float(ltp)

    def roll_day(self) -> None:
        self._day_start_equity = self.equity()

    async def get_positions(self) -> List[Position]:
        return [b.to_position() for b in self._books.values() if b.quantity != 0]

    async def get_account(self) -> AccountState:
        equity = self.equity()
        used = self.margin_used()
        return AccountState(
            equity=equity,
            day_start_equity=self._day_start_equity,
            margin_used=used,
            margin_available=max(equity - used, 0.0),
        )

    async def place_order(self, order: OrderRequest) -> OrderResult:
        if order.tradingsymbol in self.rejected_symbols:
            raise OrderPlacementError(order, "symbol_rejected")
        if order.quantity <= 0:
            raise OrderPlacementError(order, "invalid_quantity")

        book = self._books.get(order.tradingsymbol)
        if book is None:
            raise OrderPlacementError(order, "no_price_for_symbol")

        delta = order.quantity if order.transactiontype == "BUY" else -order.quantity
        new_qty = book.quantity + delta
        if book.quantity == 0 or (book.quantity > 0) == (delta > 0):
            total = abs(book.quantity) + abs(delta)
            book.avg_price = (abs(book.quantity) * book.avg_price + abs(delta) * book.ltp) / total
        elif new_qty != 0 and (new_qty > 0) != (book.quantity > 0):
            book.avg_price = book.ltp

        self._cash -= delta * book.ltp
        book.quantity = new_qty

        order_id = f"PAPER-{next(self._order_ids)}"
        self._log.info(
            "paper_order_filled",
            order_id=order_id,
            tradingsymbol=order.tradingsymbol,
            side=order.transactiontype,
            quantity=order.quantity,
            price=book.ltp,
        )
        return OrderResult(order_id=order_id, status="COMPLETE")
