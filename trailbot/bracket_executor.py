from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Tuple

from trailbot.context import TradingContext
from trailbot.errors import (
    ExchangeError,
    InstrumentNotFound,
    OrderRejected,
    StopLossUndefined,
)
from trailbot.execution.executor_base import InstrumentInfo, OrderSpec
from trailbot.signal_parser import Direction, TradeIntent
from trailbot.utils import round_price, round_qty

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BracketOrderResult:
    symbol: str
    direction: Direction
    quantity: Decimal

    # prices as sent to the exchange
    entry_price: Decimal
    take_profit_price: Decimal
    stop_price: Decimal
    target_prices: Tuple[Decimal, ...]
    price_precision: int

    # exchange order ids
    entry_order_id: str
    take_profit_order_id: str
    stop_order_id: str           # handle used to amend the stop later


def margin_type_for(label: str) -> Optional[str]:
    m = (label or "").strip().upper()
    if m.startswith("CROSS"):
        return "CROSSED"
    if m.startswith("ISO"):
        return "ISOLATED"
    return None


def targets_in_order(direction: Direction, targets: Tuple[Decimal, ...]) -> bool:
    pairs = zip(targets, targets[1:])
    if direction is Direction.LONG:
        return all(a < b for a, b in pairs)
    return all(a > b for a, b in pairs)


class BracketOrderExecutor:
    """
    Opens a position with three legs:
      1) LIMIT entry
      2) TAKE_PROFIT_MARKET at the last target
      3) STOP_MARKET at the stop loss
    Legs are not atomic. A failed leg leaves earlier legs live unless
    UNWIND_ON_PARTIAL_FAILURE is set.
    """

    def __init__(self, ctx: TradingContext):
        self.ctx = ctx

    # -----------------------------
    # Helpers
    # -----------------------------
    def resolve_stop(self, intent: TradeIntent) -> Decimal:
        if intent.stop_loss is not None:
            return intent.stop_loss

        pct = Decimal(str(self.ctx.config.DEFAULT_STOP_PCT))
        if pct <= 0:
            raise StopLossUndefined(intent.symbol)

        if intent.direction is Direction.LONG:
            stop = intent.entry * (1 - pct / 100)
        else:
            stop = intent.entry * (1 + pct / 100)
        logger.info("[ORDER] %s has no stop loss, using %s%% fallback -> %s", intent.symbol, pct, stop)
        return stop

    async def _apply_leverage(self, intent: TradeIntent) -> None:
        ex = self.ctx.exchange
        margin_type = margin_type_for(intent.margin_mode)
        if margin_type is not None:
            try:
                await ex.set_margin_type(intent.symbol, margin_type)
            except ExchangeError as e:
                logger.warning("[ORDER] margin type %s not applied for %s: %s", margin_type, intent.symbol, e)
        else:
            logger.warning("[ORDER] unknown margin mode %r for %s, left unchanged", intent.margin_mode, intent.symbol)

        try:
            await ex.set_leverage(intent.symbol, intent.leverage)
        except ExchangeError as e:
            logger.warning("[ORDER] leverage %sx not applied for %s: %s", intent.leverage, intent.symbol, e)

    async def _submit(self, leg: str, spec: OrderSpec, placed: List[str]) -> str:
        try:
            order_id = await self.ctx.exchange.submit_order(spec)
        except ExchangeError as e:
            logger.error("[ORDER] %s leg rejected for %s: %s", leg, spec.symbol, e)
            await self._unwind(spec.symbol, placed)
            raise OrderRejected(spec.symbol, leg, str(e), placed) from e

        placed.append(order_id)
        logger.info(
            "[ORDER] %s placed %s %s %s qty=%s price=%s stop=%s id=%s",
            leg, spec.symbol, spec.side, spec.order_type, spec.quantity, spec.price, spec.stop_price, order_id,
        )
        return order_id

    async def _unwind(self, symbol: str, placed: List[str]) -> None:
        if not placed:
            return
        if not self.ctx.config.UNWIND_ON_PARTIAL_FAILURE:
            logger.warning("[ORDER] %s left with live legs %s after partial failure", symbol, placed)
            return
        try:
            await self.ctx.exchange.cancel_all_orders(symbol)
            logger.warning("[ORDER] %s unwound legs %s after partial failure", symbol, placed)
        except ExchangeError as e:
            logger.error("[ORDER] %s unwind failed, legs %s may still be live: %s", symbol, placed, e)

    # -----------------------------
    # Main entry
    # -----------------------------
    async def execute(self, intent: TradeIntent) -> BracketOrderResult:
        symbol = intent.symbol
        cfg = self.ctx.config

        instruments = await self.ctx.exchange.get_instruments()
        info: Optional[InstrumentInfo] = instruments.get(symbol)
        if info is None:
            raise InstrumentNotFound(symbol)

        stop_raw = self.resolve_stop(intent)

        if not targets_in_order(intent.direction, intent.targets):
            logger.warning("[ORDER] %s targets %s are not ordered for %s", symbol, list(intent.targets), intent.direction.value)

        pp = info.price_precision
        entry = round_price(intent.entry, pp)
        targets = tuple(round_price(t, pp) for t in intent.targets)
        take_profit = targets[-1]
        stop = round_price(stop_raw, pp)

        if entry <= 0:
            raise OrderRejected(symbol, "entry", f"entry {intent.entry} rounds to zero at precision {pp}")
        if any(t <= 0 for t in targets):
            raise OrderRejected(symbol, "take_profit", f"targets {list(intent.targets)} round to zero at precision {pp}")
        if stop <= 0:
            raise OrderRejected(symbol, "stop_loss", f"stop {stop_raw} rounds to zero at precision {pp}")

        await self._apply_leverage(intent)

        budget = Decimal(str(cfg.POSITION_BUDGET_USD))
        qty = round_qty(budget / entry * intent.leverage, info.quantity_precision)

        logger.info("[ORDER] %s entry=%s qty=%s target=%s stop=%s", symbol, entry, qty, take_profit, stop)

        if qty <= 0:
            raise OrderRejected(symbol, "entry", f"quantity rounds to zero (budget={budget}, entry={entry})")

        side = intent.direction.entry_side
        exit_side = intent.direction.exit_side
        placed: List[str] = []

        entry_id = await self._submit(
            "entry",
            OrderSpec(symbol=symbol, side=side, order_type="LIMIT", quantity=qty, price=entry),
            placed,
        )
        tp_id = await self._submit(
            "take_profit",
            OrderSpec(symbol=symbol, side=exit_side, order_type="TAKE_PROFIT_MARKET", quantity=qty, stop_price=take_profit),
            placed,
        )
        stop_id = await self._submit(
            "stop_loss",
            OrderSpec(symbol=symbol, side=exit_side, order_type="STOP_MARKET", quantity=qty, stop_price=stop),
            placed,
        )

        return BracketOrderResult(
            symbol=symbol,
            direction=intent.direction,
            quantity=qty,
            entry_price=entry,
            take_profit_price=take_profit,
            stop_price=stop,
            target_prices=targets,
            price_precision=pp,
            entry_order_id=entry_id,
            take_profit_order_id=tp_id,
            stop_order_id=stop_id,
        )
