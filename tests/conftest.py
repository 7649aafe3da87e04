"""
Shared fixtures for trailbot tests.

Provides:
- a Config with no network endpoints and zero settle delay
- an in-memory exchange that records every call
- a queue-driven mark price feed
"""

import asyncio
from decimal import Decimal
from typing import Dict, List, Optional

import pytest

from trailbot.config import Config
from trailbot.context import TradingContext
from trailbot.errors import ExchangeError
from trailbot.execution.executor_base import InstrumentInfo, OrderSpec

D = Decimal


class FakeExchange:
    def __init__(self, instruments: Optional[Dict[str, InstrumentInfo]] = None):
        self.instruments = instruments if instruments is not None else {
            "BTCUSDT": InstrumentInfo("BTCUSDT", price_precision=2, quantity_precision=3),
            "ETHUSDT": InstrumentInfo("ETHUSDT", price_precision=2, quantity_precision=3),
        }
        self.calls: List[tuple] = []
        self.orders: List[OrderSpec] = []
        self.reject_legs: Dict[str, str] = {}       # order_type -> error message
        self.fail_modify: Optional[str] = None
        self.fail_cancel: Optional[str] = None
        self.fail_leverage: Optional[str] = None
        self.modify_delays: Dict[Decimal, float] = {}   # stop price -> seconds before it lands
        self.landed: List[Decimal] = []
        self._next_id = 0

    async def set_leverage(self, symbol, leverage):
        self.calls.append(("set_leverage", symbol, leverage))
        if self.fail_leverage:
            raise ExchangeError(self.fail_leverage, code=-4028)

    async def set_margin_type(self, symbol, margin_type):
        self.calls.append(("set_margin_type", symbol, margin_type))

    async def get_instruments(self):
        self.calls.append(("get_instruments",))
        await asyncio.sleep(0)
        return dict(self.instruments)

    async def submit_order(self, spec):
        self.calls.append(("submit_order", spec.order_type))
        await asyncio.sleep(0)
        if spec.order_type in self.reject_legs:
            raise ExchangeError(self.reject_legs[spec.order_type], code=-2019)
        self.orders.append(spec)
        self._next_id += 1
        return f"cid-{self._next_id}"

    async def modify_order(self, symbol, order_id, new_price, side, quantity):
        self.calls.append(("modify_order", symbol, order_id, new_price, side, quantity))
        if self.fail_modify:
            raise ExchangeError(self.fail_modify, code=-2013)
        await asyncio.sleep(self.modify_delays.get(new_price, 0))
        self.landed.append(new_price)

    async def cancel_all_orders(self, symbol):
        self.calls.append(("cancel_all_orders", symbol))
        if self.fail_cancel:
            raise ExchangeError(self.fail_cancel, code=-1000)

    def named(self, name):
        return [c for c in self.calls if c[0] == name]


class FakeMarketData:
    """Each symbol gets a queue; putting None ends that stream."""

    def __init__(self):
        self.queues: Dict[str, asyncio.Queue] = {}
        self.opened: List[str] = []

    def queue(self, symbol) -> asyncio.Queue:
        if symbol not in self.queues:
            self.queues[symbol] = asyncio.Queue()
        return self.queues[symbol]

    async def mark_prices(self, symbol):
        self.opened.append(symbol)
        q = self.queue(symbol)
        while True:
            item = await q.get()
            if item is None:
                return
            if isinstance(item, Exception):
                raise item
            yield item


@pytest.fixture
def config():
    return Config(
        BINANCE_API_KEY="key",
        BINANCE_API_SECRET="secret",
        TELEGRAM_BOT_TOKEN="token",
        SIGNAL_CHAT_ID="-1002230847160",
        POSITION_BUDGET_USD=7.0,
        SETTLE_DELAY_SEC=0,
    )


@pytest.fixture
def exchange():
    return FakeExchange()


@pytest.fixture
def market_data():
    return FakeMarketData()


@pytest.fixture
def ctx(config, exchange, market_data):
    return TradingContext(config=config, exchange=exchange, market_data=market_data)
