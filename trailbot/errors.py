from __future__ import annotations

from typing import Optional, Sequence


class TrailbotError(Exception):
    """Base for every failure the bot logs instead of surfacing."""


class ExchangeError(TrailbotError):
    def __init__(self, message: str, *, code: Optional[int] = None, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status

    def __str__(self) -> str:
        if self.code is not None:
            return f"[{self.code}] {self.message}"
        return self.message


class InstrumentNotFound(TrailbotError):
    def __init__(self, symbol: str):
        super().__init__(f"Symbol information not found for {symbol}")
        self.symbol = symbol


class StopLossUndefined(TrailbotError):
    def __init__(self, symbol: str):
        super().__init__(f"No stop loss in signal for {symbol} and no fallback configured")
        self.symbol = symbol


class OrderRejected(TrailbotError):
    """
    One bracket leg was refused.
    `submitted` lists the order ids of legs that were already placed and are
    still live on the exchange unless an unwind was requested.
    """

    def __init__(self, symbol: str, leg: str, reason: str, submitted: Sequence[str] = ()):
        super().__init__(f"{leg} order rejected for {symbol}: {reason}")
        self.symbol = symbol
        self.leg = leg
        self.reason = reason
        self.submitted = tuple(submitted)


class AmendmentFailure(TrailbotError):
    def __init__(self, symbol: str, order_id: str, new_stop, reason: str):
        super().__init__(f"stop amendment to {new_stop} failed for {symbol} ({order_id}): {reason}")
        self.symbol = symbol
        self.order_id = order_id
        self.new_stop = new_stop
        self.reason = reason


class TransportDisconnect(TrailbotError):
    def __init__(self, source: str, reason: str):
        super().__init__(f"{source} disconnected: {reason}")
        self.source = source
        self.reason = reason
