from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)


class Direction(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def entry_side(self) -> str:
        return "BUY" if self is Direction.LONG else "SELL"

    @property
    def exit_side(self) -> str:
        return "SELL" if self is Direction.LONG else "BUY"

    def reached(self, price: Decimal, level: Decimal) -> bool:
        """True when `price` is at or beyond `level` in the profitable direction."""
        if self is Direction.LONG:
            return price >= level
        return price <= level


@dataclass(frozen=True)
class TradeIntent:
    symbol: str
    direction: Direction
    margin_mode: str
    leverage: int
    entry: Decimal
    stop_loss: Optional[Decimal]      # None -> signal carried no stop loss
    targets: Tuple[Decimal, ...]      # text order, not sorted


@dataclass(frozen=True)
class ParseFailure:
    reason: str


ParseResult = Union[TradeIntent, ParseFailure]


# ============================================================
# Field patterns (first match wins per line, in this order)
# ============================================================
_PAIR = re.compile(r"Pair:\s*(\w+)", re.IGNORECASE)
_DIRECTION = re.compile(r"Direction:\s*(\w+)", re.IGNORECASE)
_LEVERAGE = re.compile(r"Leverage:\s*(\w+)\s*(\d+)x", re.IGNORECASE)
_ENTRY = re.compile(r"Entry:\s*([\d.]+)", re.IGNORECASE)
_TARGET = re.compile(r"Target\d*:\s*([\d.]+)", re.IGNORECASE)
_STOP_LOSS = re.compile(r"Stop Loss:\s*([\d.]+)", re.IGNORECASE)

_REQUIRED = ("pair", "direction", "margin_mode", "leverage", "entry")


def _price(raw: str) -> Optional[Decimal]:
    try:
        value = Decimal(raw)
    except InvalidOperation:
        return None
    if not value.is_finite() or value <= 0:
        return None
    return value


def _direction(raw: str) -> Optional[Direction]:
    try:
        return Direction(raw.strip().upper())
    except ValueError:
        return None


def parse(text: str) -> ParseResult:
    """
    Extract a TradeIntent from a channel post such as:

        📩Pair: BTCUSDT
        📉Direction: LONG
        💯Leverage: Cross 20x
        📊Entry: 100
        ✅Target1: 110
        ✅Target2: 120
        ⛔Stop Loss: 95

    Lines may come in any order. A field whose number does not parse is
    treated as missing. Never raises.
    """
    if not text:
        return ParseFailure("empty message")

    fields: Dict[str, object] = {}
    targets: List[Decimal] = []

    for line in (ln.strip() for ln in text.splitlines()):
        if not line:
            continue

        m = _PAIR.search(line)
        if m:
            fields["pair"] = m.group(1).upper()
            continue

        m = _DIRECTION.search(line)
        if m:
            d = _direction(m.group(1))
            if d is not None:
                fields["direction"] = d
            continue

        m = _LEVERAGE.search(line)
        if m:
            fields["margin_mode"] = m.group(1)
            lev = int(m.group(2))
            if lev > 0:
                fields["leverage"] = lev
            continue

        m = _ENTRY.search(line)
        if m:
            p = _price(m.group(1))
            if p is not None:
                fields["entry"] = p
            continue

        m = _TARGET.search(line)
        if m:
            p = _price(m.group(1))
            if p is not None:
                targets.append(p)
            continue

        m = _STOP_LOSS.search(line)
        if m:
            p = _price(m.group(1))
            if p is not None:
                fields["stop_loss"] = p
            continue

    missing = [k for k in _REQUIRED if k not in fields]
    if not targets:
        missing.append("targets")
    if missing:
        logger.debug("[PARSE] incomplete signal, missing=%s", missing)
        return ParseFailure("missing " + ", ".join(missing))

    return TradeIntent(
        symbol=str(fields["pair"]),
        direction=fields["direction"],  # type: ignore[arg-type]
        margin_mode=str(fields["margin_mode"]),
        leverage=int(fields["leverage"]),  # type: ignore[arg-type]
        entry=fields["entry"],  # type: ignore[arg-type]
        stop_loss=fields.get("stop_loss"),  # type: ignore[arg-type]
        targets=tuple(targets),
    )
