from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import aiohttp

from trailbot.errors import TransportDisconnect
from trailbot.utils import backoff_s

logger = logging.getLogger(__name__)

API_ROOT = "https://api.telegram.org"

MessageHandler = Callable[[str, str], Awaitable[None]]


def extract_post(update: Dict[str, Any]) -> Optional[Tuple[str, str]]:
    """(chat_id, text) for a channel post or message update, else None."""
    msg = update.get("channel_post") or update.get("message")
    if not isinstance(msg, dict):
        return None
    text = msg.get("text") or msg.get("caption")
    chat = msg.get("chat") or {}
    if not text or "id" not in chat:
        return None
    return str(chat["id"]), str(text)


# ============================================================
# Ingestion: Bot API long polling
# ============================================================
class TelegramSignalFeed:
    def __init__(self, token: str, *, poll_timeout: int = 30, api_root: str = API_ROOT):
        self.token = token
        self.poll_timeout = int(poll_timeout)
        self.api_root = api_root.rstrip("/")
        self.offset: Optional[int] = None
        self._session: Optional[aiohttp.ClientSession] = None

    def _url(self, method: str) -> str:
        return f"{self.api_root}/bot{self.token}/{method}"

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.poll_timeout + 15)
            )
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()

    async def reconnect(self) -> None:
        await self.close()
        self._session = None
        await self._get_session()

    async def _call(self, method: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        s = await self._get_session()
        async with s.post(self._url(method), json=payload or {}) as r:
            try:
                data = await r.json(content_type=None)
            except ValueError as e:
                raise TransportDisconnect("telegram", f"{method}: bad response ({e})") from e
        if not isinstance(data, dict) or not data.get("ok"):
            raise TransportDisconnect("telegram", f"{method}: {data}")
        return data.get("result")

    async def get_updates(self) -> List[Dict[str, Any]]:
        payload: Dict[str, Any] = {
            "timeout": self.poll_timeout,
            "allowed_updates": ["channel_post", "message"],
        }
        if self.offset is not None:
            payload["offset"] = self.offset
        updates = await self._call("getUpdates", payload) or []
        if updates:
            self.offset = max(int(u["update_id"]) for u in updates) + 1
        return updates

    async def get_me(self) -> Dict[str, Any]:
        return await self._call("getMe")

    async def run(self, handler: MessageHandler) -> None:
        failures = 0
        while True:
            try:
                updates = await self.get_updates()
                failures = 0
            except (aiohttp.ClientError, asyncio.TimeoutError, TransportDisconnect) as e:
                failures += 1
                delay = backoff_s(failures)
                logger.error("[TELEGRAM] polling failed (%s), retry in %.1fs", e, delay)
                await asyncio.sleep(delay)
                continue

            for update in updates:
                post = extract_post(update)
                if post is None:
                    continue
                chat_id, text = post
                try:
                    await handler(chat_id, text)
                except Exception:
                    logger.exception("[TELEGRAM] handler failed for update %s", update.get("update_id"))

    async def health_loop(self, interval_sec: float) -> None:
        while True:
            await asyncio.sleep(interval_sec)
            try:
                await self.get_me()
                logger.info("[TELEGRAM] connection is alive")
            except (aiohttp.ClientError, asyncio.TimeoutError, TransportDisconnect) as e:
                logger.error("[TELEGRAM] connection seems to be lost: %s", e)
                try:
                    await self.reconnect()
                    await self.get_me()
                    logger.info("[TELEGRAM] reconnected successfully")
                except (aiohttp.ClientError, asyncio.TimeoutError, TransportDisconnect) as e2:
                    logger.error("[TELEGRAM] failed to reconnect: %s", e2)


# ============================================================
# Notifications (serialize sends to avoid rate-limit / lost awaits)
# ============================================================
async def send_telegram(session: aiohttp.ClientSession, token: str, chat_id: str, text: str) -> None:
    url = f"{API_ROOT}/bot{token}/sendMessage"
    payload = {
        "chat_id": chat_id,
        "text": text,
        "disable_web_page_preview": True,
    }
    async with session.post(url, json=payload) as r:
        if r.status >= 400:
            raise TransportDisconnect("telegram", f"sendMessage HTTP {r.status}: {await r.text()}")


class Notifier:
    def __init__(self, token: str, chat_id: str, *, maxsize: int = 500):
        self.token = token
        self.chat_id = chat_id
        self.queue: asyncio.Queue[str] = asyncio.Queue(maxsize=maxsize)

    def send(self, msg: str) -> None:
        try:
            self.queue.put_nowait(msg)
        except asyncio.QueueFull:
            logger.warning("[TELEGRAM] queue full, dropped message")

    async def worker(self) -> None:
        async with aiohttp.ClientSession() as s:
            while True:
                msg = await self.queue.get()
                try:
                    await send_telegram(s, self.token, self.chat_id, msg)
                except (aiohttp.ClientError, asyncio.TimeoutError, TransportDisconnect) as e:
                    logger.error("[TELEGRAM] send failed: %s", e)
                finally:
                    self.queue.task_done()
                await asyncio.sleep(0.2)
