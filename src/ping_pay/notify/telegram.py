"""Telegram Bot API client via httpx.

Sends claim notifications and long-polls ``getUpdates`` so that anyone who
messages the bot gets their ``handle -> chat_id`` mapping recorded.  The
polling task is started and stopped by :class:`ping_pay.service.PingPay`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import httpx

from ping_pay.errors import InvalidHandle
from ping_pay.storage.ledger import LedgerStore
from ping_pay.storage.models import normalize_handle

logger = logging.getLogger("ping_pay.notify.telegram")

API_BASE = "https://api.telegram.org"

WELCOME_TEXT = (
    "Welcome to PingPay{name}!\n\n"
    "You're now registered to receive notifications when someone sends you USDC.\n\n"
    "Just share your Telegram handle with friends and they can send you USDC instantly!"
)
BALANCE_TEXT = (
    "To check your balance, open the PingPay Receive page and enter your Telegram handle!"
)


class TelegramBot:
    """Minimal Bot API client: ``sendMessage`` plus an update loop."""

    def __init__(
        self,
        token: str,
        ledger: LedgerStore,
        poll_timeout: int = 30,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.token = token
        self.ledger = ledger
        self.poll_timeout = poll_timeout
        self._client = client
        self._owns_client = client is None
        self._offset = 0
        self._task: Optional[asyncio.Task] = None

    def _url(self, method: str) -> str:
        return f"{API_BASE}/bot{self.token}/{method}"

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.poll_timeout + 10)
        return self._client

    async def _call(self, method: str, payload: dict) -> dict:
        resp = await self._http().post(self._url(method), json=payload)
        if resp.status_code >= 400:
            try:
                data = resp.json()
            except Exception:
                data = resp.text
            raise RuntimeError(f"Telegram API error ({resp.status_code}): {data}")
        body = resp.json()
        if not body.get("ok"):
            raise RuntimeError(f"Telegram API error: {body.get('description', body)}")
        return body

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    async def send_message(self, chat_id: int, text: str) -> None:
        await self._call(
            "sendMessage",
            {"chat_id": chat_id, "text": text, "disable_web_page_preview": False},
        )

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    async def handle_update(self, update: dict) -> None:
        """Record the sender's chat and answer the bot commands."""
        self._offset = max(self._offset, int(update.get("update_id", 0)) + 1)
        message = update.get("message")
        if not message:
            return
        chat_id = message["chat"]["id"]
        username = (message.get("from") or {}).get("username")
        text = (message.get("text") or "").strip()

        handle = None
        if username:
            try:
                handle = normalize_handle(username)
            except InvalidHandle:
                logger.warning(f"Ignoring unusable username {username!r}")
        if handle:
            is_start = text.startswith("/start")
            if is_start or await self.ledger.get_channel(handle) is None:
                await self.ledger.save_channel(handle, chat_id)
                logger.info(f"Saved @{handle} with chatId {chat_id}")

        if text.startswith("/start"):
            name = f", @{username}" if username else ""
            await self.send_message(chat_id, WELCOME_TEXT.format(name=name))
        elif text.startswith("/balance"):
            await self.send_message(chat_id, BALANCE_TEXT)

    async def poll_once(self) -> int:
        """Fetch and handle one batch of updates; returns how many arrived."""
        body = await self._call(
            "getUpdates",
            {"offset": self._offset, "timeout": self.poll_timeout, "allowed_updates": ["message"]},
        )
        updates = body.get("result", [])
        for update in updates:
            try:
                await self.handle_update(update)
            except Exception as e:
                logger.error(f"Failed to handle update {update.get('update_id')}: {e}")
        return len(updates)

    async def _run(self) -> None:
        logger.info("Telegram bot started")
        while True:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Telegram polling error: {e}; retrying in 5s")
                await asyncio.sleep(5)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="telegram-poll")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
        logger.info("Telegram bot stopped")
