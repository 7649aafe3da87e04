from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, List, Optional, Set, Tuple

from trailbot.bracket_executor import BracketOrderResult
from trailbot.context import TradingContext
from trailbot.errors import AmendmentFailure, ExchangeError
from trailbot.signal_parser import TradeIntent
from trailbot.utils import round_price

logger = logging.getLogger(__name__)


@dataclass
class TrailState:
    intent: TradeIntent
    result: BracketOrderResult
    last_target_reached: int = -1              # index into result.target_prices
    closure: Optional["asyncio.Task[None]"] = None
    stop_index: int = -1                        # target index whose stop is live on the exchange
    amend_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def symbol(self) -> str:
        return self.result.symbol

    @property
    def final_index(self) -> int:
        return len(self.result.target_prices) - 1


class TrailingStopEngine:
    """
    Per-symbol trailing stop.

    Each tick may advance `last_target_reached` by one crossing: the stop
    moves to the entry on the first target, then to the previous target on
    each later one. Crossing the final target also schedules a cancel of
    all open orders after SETTLE_DELAY_SEC.

    `on_price_tick` never awaits, so the index read/write for a symbol cannot
    interleave with another tick for the same symbol. Exchange calls run as
    tasks owned by the engine; their failures are logged, not retried.
    Amendments for one symbol go out in crossing order under `amend_lock`.
    """

    def __init__(self, ctx: TradingContext, on_flattened: Optional[Callable[[str], None]] = None):
        self.ctx = ctx
        self.on_flattened = on_flattened
        self.amendments: List[Tuple[str, int, Decimal]] = []
        self._tasks: Set["asyncio.Task[None]"] = set()

    # -----------------------------
    # Registry
    # -----------------------------
    def is_tracking(self, symbol: str) -> bool:
        return symbol in self.ctx.trails

    def track(self, intent: TradeIntent, result: BracketOrderResult) -> Optional[TrailState]:
        if result.symbol in self.ctx.trails:
            logger.info("[TRAIL] %s already tracked, ignoring new bracket", result.symbol)
            return None
        state = TrailState(intent=intent, result=result)
        self.ctx.trails[result.symbol] = state
        logger.info(
            "[TRAIL] tracking %s %s entry=%s targets=%s stop_id=%s",
            result.symbol, result.direction.value, result.entry_price,
            [str(t) for t in result.target_prices], result.stop_order_id,
        )
        return state

    def drop(self, symbol: str) -> None:
        if self.ctx.trails.pop(symbol, None) is None:
            return
        logger.info("[TRAIL] stopped tracking %s", symbol)

    # -----------------------------
    # Tick processing
    # -----------------------------
    def on_price_tick(self, symbol: str, price: Decimal) -> None:
        state = self.ctx.trails.get(symbol)
        if state is None:
            return

        res = state.result
        direction = res.direction
        targets = res.target_prices
        prev = state.last_target_reached

        for i in range(prev + 1, len(targets)):
            if direction.reached(price, targets[i]):
                new_stop = res.entry_price if i == 0 else targets[i - 1]
                new_stop = round_price(new_stop, res.price_precision)
                state.last_target_reached = i
                logger.info("[TRAIL] %s target %d reached at %s, stop -> %s", symbol, i, price, new_stop)
                self.amendments.append((symbol, i, new_stop))
                self._spawn(self._amend_stop(state, i, new_stop), f"amend-{symbol}-{i}")
                break

        if prev < state.final_index and direction.reached(price, targets[-1]) and state.closure is None:
            logger.info("[TRAIL] %s reached final target at %s, closing in %ss", symbol, price, self.ctx.config.SETTLE_DELAY_SEC)
            state.closure = self._spawn(self._close_position(state), f"close-{symbol}")

    # -----------------------------
    # Exchange side effects
    # -----------------------------
    async def _amend_stop(self, state: TrailState, index: int, new_stop: Decimal) -> None:
        res = state.result
        # One amendment in flight per symbol; a stop never moves back to an older target.
        async with state.amend_lock:
            if index <= state.stop_index:
                logger.debug("[TRAIL] %s amendment for target %d superseded by %d", res.symbol, index, state.stop_index)
                return
            try:
                await self.ctx.exchange.modify_order(
                    res.symbol, res.stop_order_id, new_stop, res.direction.exit_side, res.quantity
                )
            except ExchangeError as e:
                raise AmendmentFailure(res.symbol, res.stop_order_id, new_stop, str(e)) from e
            state.stop_index = index
        logger.info("[TRAIL] stop loss for %s moved to %s", res.symbol, new_stop)

    async def _close_position(self, state: TrailState) -> None:
        symbol = state.symbol
        await asyncio.sleep(self.ctx.config.SETTLE_DELAY_SEC)
        current = self.ctx.trails.get(symbol)
        if current is not None and current is not state:
            logger.info("[TRAIL] %s re-tracked during settle delay, skipping cancel", symbol)
            return
        await self.ctx.exchange.cancel_all_orders(symbol)
        logger.info("[TRAIL] all orders canceled for %s", symbol)
        if self.on_flattened is not None:
            self.on_flattened(symbol)

    def _spawn(self, coro, name: str) -> "asyncio.Task[None]":
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: "asyncio.Task[None]") -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        if isinstance(exc, AmendmentFailure):
            logger.error("[TRAIL] %s", exc)
        else:
            logger.error("[TRAIL] task %s failed: %r", task.get_name(), exc)

    async def drain(self) -> None:
        """Wait for every amendment/closure task started so far."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
