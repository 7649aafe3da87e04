from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Set

from trailbot.config import Config
from trailbot.execution.executor_base import ExchangeBase, MarketDataBase

if TYPE_CHECKING:
    from trailbot.trailing_stop import TrailState


@dataclass
class TradingContext:
    """
    Everything shared between the dispatcher, the executor and the engine.
    Only the dispatcher creates one; the others get it by reference.
    """
    config: Config
    exchange: ExchangeBase
    market_data: MarketDataBase
    trails: Dict[str, "TrailState"] = field(default_factory=dict)
    streams: Dict[str, "asyncio.Task[None]"] = field(default_factory=dict)
    pending: Set[str] = field(default_factory=set)

    def is_busy(self, symbol: str) -> bool:
        return symbol in self.trails or symbol in self.streams or symbol in self.pending
