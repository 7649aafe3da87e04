from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import find_dotenv, load_dotenv


def _require(key: str) -> str:
    val = os.getenv(key)
    if val is None or val.strip() == "":
        raise RuntimeError(f"[CONFIG] Missing env var: {key}")
    return val.strip()

def _get(key: str, default: str) -> str:
    val = os.getenv(key)
    if val is None or val.strip() == "":
        return default
    return val.strip()

def _opt(key: str) -> Optional[str]:
    val = os.getenv(key)
    if val is None or val.strip() == "":
        return None
    return val.strip()

def _oi(key: str, default: int) -> int:
    return int(_get(key, str(default)))

def _of(key: str, default: float) -> float:
    return float(_get(key, str(default)))

@dataclass(frozen=True)
class Config:
    # ================= BINANCE =================
    BINANCE_API_KEY: str = ""
    BINANCE_API_SECRET: str = ""
    BINANCE_FUTURES_REST: str = "https://fapi.binance.com"
    BINANCE_FUTURES_WS: str = "wss://fstream.binance.com"
    RECV_WINDOW_MS: int = 5000

    # ================= TELEGRAM =================
    TELEGRAM_BOT_TOKEN: str = ""
    SIGNAL_CHAT_ID: str = ""
    TELEGRAM_NOTIFY_CHAT_ID: Optional[str] = None
    HEALTH_CHECK_SEC: int = 5 * 60

    # ================= ORDERS =================
    POSITION_BUDGET_USD: float = 7.0       # notional (USD) before leverage
    DEFAULT_STOP_PCT: float = 0.0          # 0 -> reject signals without a stop loss
    UNWIND_ON_PARTIAL_FAILURE: int = 0

    # ================= TRAILING =================
    SETTLE_DELAY_SEC: float = 5.0          # lets the take-profit leg fill before cancel-all

    LOG_LEVEL: str = "INFO"

    @classmethod
    def from_env(cls, *, load_env_file: bool = True) -> "Config":
        if load_env_file:
            load_dotenv(find_dotenv(usecwd=True), override=True)

        return cls(
            BINANCE_API_KEY=_require("BINANCE_API_KEY"),
            BINANCE_API_SECRET=_require("BINANCE_API_SECRET"),
            BINANCE_FUTURES_REST=_get("BINANCE_FUTURES_REST", cls.BINANCE_FUTURES_REST),
            BINANCE_FUTURES_WS=_get("BINANCE_FUTURES_WS", cls.BINANCE_FUTURES_WS),
            RECV_WINDOW_MS=_oi("RECV_WINDOW_MS", cls.RECV_WINDOW_MS),
            TELEGRAM_BOT_TOKEN=_require("TELEGRAM_BOT_TOKEN"),
            SIGNAL_CHAT_ID=_require("SIGNAL_CHAT_ID"),
            TELEGRAM_NOTIFY_CHAT_ID=_opt("TELEGRAM_NOTIFY_CHAT_ID"),
            HEALTH_CHECK_SEC=_oi("HEALTH_CHECK_SEC", cls.HEALTH_CHECK_SEC),
            POSITION_BUDGET_USD=_of("POSITION_BUDGET_USD", cls.POSITION_BUDGET_USD),
            DEFAULT_STOP_PCT=_of("DEFAULT_STOP_PCT", cls.DEFAULT_STOP_PCT),
            UNWIND_ON_PARTIAL_FAILURE=_oi("UNWIND_ON_PARTIAL_FAILURE", cls.UNWIND_ON_PARTIAL_FAILURE),
            SETTLE_DELAY_SEC=_of("SETTLE_DELAY_SEC", cls.SETTLE_DELAY_SEC),
            LOG_LEVEL=_get("LOG_LEVEL", cls.LOG_LEVEL).upper(),
        )
