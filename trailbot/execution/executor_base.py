from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import AsyncIterator, Dict, Optional, Protocol


@dataclass(frozen=True)
class InstrumentInfo:
    symbol: str
    price_precision: int
    quantity_precision: int


@dataclass(frozen=True)
class OrderSpec:
    symbol: str
    side: str                          # BUY/SELL
    order_type: str                    # LIMIT / TAKE_PROFIT_MARKET / STOP_MARKET
    quantity: Decimal
    price: Optional[Decimal] = None    # LIMIT only
    stop_price: Optional[Decimal] = None
    time_in_force: str = "GTC"


class ExchangeBase(Protocol):
    """Order-entry side of the exchange. Every call is request/response."""

    async def set_leverage(self, symbol: str, leverage: int) -> None: ...

    async def set_margin_type(self, symbol: str, margin_type: str) -> None: ...

    async def get_instruments(self) -> Dict[str, InstrumentInfo]: ...

    async def submit_order(self, spec: OrderSpec) -> str: ...

    async def modify_order(
        self, symbol: str, order_id: str, new_price: Decimal, side: str, quantity: Decimal
    ) -> None: ...

    async def cancel_all_orders(self, symbol: str) -> None: ...


class MarketDataBase(Protocol):
    def mark_prices(self, symbol: str) -> AsyncIterator[Decimal]:
        """Mark prices for one symbol until the stream closes."""
        ...
