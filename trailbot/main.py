from __future__ import annotations

import asyncio
import logging
from typing import List

from trailbot.config import Config
from trailbot.context import TradingContext
from trailbot.dispatcher import Dispatcher
from trailbot.execution.binance_futures import BinanceFuturesClient, BinanceMarkPriceFeed
from trailbot.telegram import Notifier, TelegramSignalFeed

logger = logging.getLogger("trailbot")


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )


# ============================================================
# MAIN
# ============================================================
async def main(cfg: Config) -> None:
    exchange = BinanceFuturesClient(
        cfg.BINANCE_API_KEY,
        cfg.BINANCE_API_SECRET,
        base_url=cfg.BINANCE_FUTURES_REST,
        recv_window_ms=cfg.RECV_WINDOW_MS,
    )
    ctx = TradingContext(
        config=cfg,
        exchange=exchange,
        market_data=BinanceMarkPriceFeed(cfg.BINANCE_FUTURES_WS),
    )

    notifier = None
    if cfg.TELEGRAM_NOTIFY_CHAT_ID:
        notifier = Notifier(cfg.TELEGRAM_BOT_TOKEN, cfg.TELEGRAM_NOTIFY_CHAT_ID)

    dispatcher = Dispatcher(ctx, notifier=notifier)
    feed = TelegramSignalFeed(cfg.TELEGRAM_BOT_TOKEN)

    me = await feed.get_me()
    logger.info("[TELEGRAM] connected as @%s, listening on chat %s", me.get("username"), cfg.SIGNAL_CHAT_ID)

    jobs: List = [
        feed.run(dispatcher.on_message),
        feed.health_loop(cfg.HEALTH_CHECK_SEC),
    ]
    if notifier is not None:
        notifier.send("✅ TRAILBOT RUNNING")
        jobs.append(notifier.worker())

    try:
        await asyncio.gather(*jobs)
    finally:
        await dispatcher.shutdown()
        await feed.close()
        await exchange.close()


def run() -> None:
    cfg = Config.from_env()
    setup_logging(cfg.LOG_LEVEL)
    try:
        asyncio.run(main(cfg))
    except KeyboardInterrupt:
        logger.info("stopped")


if __name__ == "__main__":
    run()
