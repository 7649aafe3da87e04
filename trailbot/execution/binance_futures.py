from __future__ import annotations

import hashlib
import hmac
import asyncio
import json
import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Any, AsyncIterator, Dict, Mapping, Optional
from urllib.parse import urlencode

import aiohttp
from yarl import URL

from trailbot.errors import ExchangeError
from trailbot.execution.executor_base import InstrumentInfo, OrderSpec

logger = logging.getLogger(__name__)

MARK_PRICE_EVENT = "markPriceUpdate"


# ============================================================
# Signing / response helpers
# ============================================================
def _fmt(value: Any) -> str:
    if isinstance(value, Decimal):
        return format(value, "f")
    return str(value)


def sign_params(params: Mapping[str, Any], secret: str) -> str:
    """Query string with the HMAC-SHA256 `signature` appended."""
    query = urlencode([(k, _fmt(v)) for k, v in params.items() if v is not None])
    sig = hmac.new(secret.encode("utf-8"), query.encode("utf-8"), hashlib.sha256).hexdigest()
    return f"{query}&signature={sig}" if query else f"signature={sig}"


def check_response(status: int, payload: Any) -> Any:
    # Binance reports failures as {"code": <negative>, "msg": ...}, sometimes with HTTP 200.
    if isinstance(payload, dict) and "code" in payload and "msg" in payload:
        code = int(payload["code"])
        if code < 0 or status >= 400:
            raise ExchangeError(str(payload["msg"]), code=code, status=status)
    if status >= 400:
        raise ExchangeError(f"HTTP {status}: {payload}", status=status)
    return payload


def parse_instruments(exchange_info: Mapping[str, Any]) -> Dict[str, InstrumentInfo]:
    out: Dict[str, InstrumentInfo] = {}
    for s in exchange_info.get("symbols", []):
        try:
            out[s["symbol"]] = InstrumentInfo(
                symbol=s["symbol"],
                price_precision=int(s["pricePrecision"]),
                quantity_precision=int(s["quantityPrecision"]),
            )
        except (KeyError, TypeError, ValueError):
            logger.debug("[BINANCE] skipping malformed symbol entry: %s", s)
    return out


def order_params(spec: OrderSpec) -> Dict[str, Any]:
    params: Dict[str, Any] = {
        "symbol": spec.symbol,
        "side": spec.side,
        "type": spec.order_type,
        "timeInForce": spec.time_in_force,
        "quantity": spec.quantity,
    }
    if spec.price is not None:
        params["price"] = spec.price
    if spec.stop_price is not None:
        params["stopPrice"] = spec.stop_price
    return params


def parse_mark_price(raw: str) -> Optional[Decimal]:
    """Price from a mark-price websocket frame, or None for any other event."""
    try:
        event = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(event, dict) or event.get("e") != MARK_PRICE_EVENT:
        return None
    try:
        price = Decimal(str(event["p"]))
    except (KeyError, InvalidOperation):
        return None
    return price if price.is_finite() else None


# ============================================================
# REST: order entry
# ============================================================
class BinanceFuturesClient:
    def __init__(
        self,
        api_key: str,
        api_secret: str,
        *,
        base_url: str = "https://fapi.binance.com",
        recv_window_ms: int = 5000,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.api_key = api_key
        self.api_secret = api_secret
        self.base_url = base_url.rstrip("/")
        self.recv_window_ms = int(recv_window_ms)
        self._session = session

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"X-MBX-APIKEY": self.api_key},
                timeout=aiohttp.ClientTimeout(total=15),
            )
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()

    async def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None, *, signed: bool = True) -> Any:
        params = dict(params or {})
        if signed:
            params["recvWindow"] = self.recv_window_ms
            params["timestamp"] = int(time.time() * 1000)
            query = sign_params(params, self.api_secret)
        else:
            query = urlencode([(k, _fmt(v)) for k, v in params.items() if v is not None])

        url = f"{self.base_url}{path}"
        if query:
            url = f"{url}?{query}"

        s = await self._get_session()
        try:
            async with s.request(method, URL(url, encoded=True)) as r:
                text = await r.text()
                try:
                    payload = json.loads(text) if text else {}
                except ValueError:
                    payload = text
                return check_response(r.status, payload)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ExchangeError(f"{method} {path} failed: {e}") from e

    # -----------------------------
    # Account settings
    # -----------------------------
    async def set_leverage(self, symbol: str, leverage: int) -> None:
        await self._request("POST", "/fapi/v1/leverage", {"symbol": symbol, "leverage": int(leverage)})

    async def set_margin_type(self, symbol: str, margin_type: str) -> None:
        await self._request("POST", "/fapi/v1/marginType", {"symbol": symbol, "marginType": margin_type})

    # -----------------------------
    # Instruments
    # -----------------------------
    async def get_instruments(self) -> Dict[str, InstrumentInfo]:
        info = await self._request("GET", "/fapi/v1/exchangeInfo", signed=False)
        return parse_instruments(info)

    # -----------------------------
    # Orders
    # -----------------------------
    async def submit_order(self, spec: OrderSpec) -> str:
        resp = await self._request("POST", "/fapi/v1/order", order_params(spec))
        order_id = resp.get("clientOrderId") if isinstance(resp, dict) else None
        if not order_id:
            raise ExchangeError(f"order response without clientOrderId: {resp}")
        return str(order_id)

    async def modify_order(self, symbol: str, order_id: str, new_price: Decimal, side: str, quantity: Decimal) -> None:
        resp = await self._request(
            "PUT",
            "/fapi/v1/order",
            {
                "symbol": symbol,
                "origClientOrderId": order_id,
                "side": side,
                "quantity": quantity,
                "price": new_price,
            },
        )
        logger.debug("[BINANCE] modify %s %s -> %s", symbol, order_id, resp)

    async def cancel_all_orders(self, symbol: str) -> None:
        await self._request("DELETE", "/fapi/v1/allOpenOrders", {"symbol": symbol})


# ============================================================
# WS: mark price
# ============================================================
class BinanceMarkPriceFeed:
    """
    One websocket per symbol. The iterator ends when the socket closes; there
    is no reconnect, the caller stops tracking the symbol instead.
    """

    def __init__(self, ws_base: str = "wss://fstream.binance.com", *, heartbeat: float = 30.0):
        self.ws_base = ws_base.rstrip("/")
        self.heartbeat = heartbeat

    def url_for(self, symbol: str) -> str:
        return f"{self.ws_base}/ws/{symbol.lower()}@markPrice"

    async def mark_prices(self, symbol: str) -> AsyncIterator[Decimal]:
        url = self.url_for(symbol)
        async with aiohttp.ClientSession() as s:
            async with s.ws_connect(url, heartbeat=self.heartbeat) as ws:
                logger.info("[WS] connected %s", url)
                async for msg in ws:
                    if msg.type == aiohttp.WSMsgType.TEXT:
                        price = parse_mark_price(msg.data)
                        if price is not None:
                            yield price
                    elif msg.type == aiohttp.WSMsgType.ERROR:
                        raise ConnectionError(f"websocket error for {symbol}: {ws.exception()}")
                logger.info("[WS] closed %s (code=%s)", url, ws.close_code)
