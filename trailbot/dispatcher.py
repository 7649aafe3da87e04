from __future__ import annotations

import asyncio
import logging
from typing import Optional

from trailbot.bracket_executor import BracketOrderExecutor, BracketOrderResult
from trailbot.context import TradingContext
from trailbot.errors import TrailbotError, TransportDisconnect
from trailbot.signal_parser import ParseFailure, TradeIntent, parse
from trailbot.telegram import Notifier
from trailbot.trailing_stop import TrailingStopEngine

logger = logging.getLogger(__name__)


class Dispatcher:
    """
    Signal text -> parser -> bracket executor -> trailing engine.

    A symbol is "busy" from the moment its signal is accepted until its
    mark-price stream closes. Signals for a busy symbol are dropped before
    any order is sent.
    """

    def __init__(
        self,
        ctx: TradingContext,
        *,
        executor: Optional[BracketOrderExecutor] = None,
        engine: Optional[TrailingStopEngine] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.ctx = ctx
        self.executor = executor or BracketOrderExecutor(ctx)
        self.engine = engine or TrailingStopEngine(ctx)
        if self.engine.on_flattened is None:
            self.engine.on_flattened = self.close_stream
        self.notifier = notifier

    def _notify(self, msg: str) -> None:
        if self.notifier is not None:
            self.notifier.send(msg)

    # -----------------------------
    # Ingestion
    # -----------------------------
    async def on_message(self, chat_id: str, text: str) -> None:
        if str(chat_id) != str(self.ctx.config.SIGNAL_CHAT_ID):
            return

        logger.info("[SIGNAL] new message from channel:\n%s", text)
        result = parse(text)
        if isinstance(result, ParseFailure):
            logger.info("[SIGNAL] no trade signal extracted: %s", result.reason)
            return

        logger.info("[SIGNAL] parsed %s", result)
        await self.handle_intent(result)

    async def handle_intent(self, intent: TradeIntent) -> Optional[BracketOrderResult]:
        symbol = intent.symbol
        if self.ctx.is_busy(symbol):
            logger.info("[SIGNAL] %s already tracked, skipping duplicate signal", symbol)
            return None

        self.ctx.pending.add(symbol)
        try:
            try:
                result = await self.executor.execute(intent)
            except TrailbotError as e:
                logger.error("[ORDER] failed to place bracket for %s: %s", symbol, e)
                self._notify(f"❌ {symbol} order failed\n{e}")
                return None

            if self.engine.track(intent, result) is None:
                return None
            self._open_stream(symbol)
        finally:
            self.ctx.pending.discard(symbol)

        self._notify(
            f"🟢 OPEN {intent.direction.value} {symbol}\n"
            f"Entry: {result.entry_price}\n"
            f"Qty: {result.quantity}\n"
            f"TP: {result.take_profit_price}\n"
            f"SL: {result.stop_price}"
        )
        return result

    # -----------------------------
    # Market data streams
    # -----------------------------
    def _open_stream(self, symbol: str) -> None:
        task = asyncio.get_running_loop().create_task(self._stream(symbol), name=f"markprice-{symbol}")
        self.ctx.streams[symbol] = task

    async def _stream(self, symbol: str) -> None:
        try:
            async for price in self.ctx.market_data.mark_prices(symbol):
                logger.debug("[WS] %s mark price %s", symbol, price)
                self.engine.on_price_tick(symbol, price)
        except asyncio.CancelledError:
            logger.info("[WS] stream for %s cancelled", symbol)
            raise
        except Exception as e:
            logger.error("[WS] %s", TransportDisconnect(f"mark price stream {symbol}", repr(e)))
        finally:
            self.ctx.streams.pop(symbol, None)
            self.engine.drop(symbol)
            logger.info("[WS] stream closed for %s", symbol)

    def close_stream(self, symbol: str) -> None:
        task = self.ctx.streams.get(symbol)
        if task is not None and not task.done():
            task.cancel()
        self._notify(f"🔴 CLOSE {symbol}\nfinal target reached, open orders canceled")

    async def shutdown(self) -> None:
        tasks = list(self.ctx.streams.values())
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self.engine.drain()
