"""Best-effort recipient notification.

Delivery never affects the transfer state machine: every outcome,
including a send failure, comes back as a :class:`NotificationResult`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from ping_pay.storage.ledger import LedgerStore
from ping_pay.storage.models import normalize_handle

logger = logging.getLogger("ping_pay.notify")


class MessageSender(Protocol):
    """Anything that can push a text message to a chat id."""

    async def send_message(self, chat_id: int, text: str) -> None:
        ...


@dataclass(frozen=True)
class NotificationResult:
    delivered: bool
    reason: Optional[str] = None
    claim_url: Optional[str] = None

    def to_dict(self) -> dict:
        return {"delivered": self.delivered, "reason": self.reason, "claimUrl": self.claim_url}


class NotificationGateway:
    """Looks up a handle's registered chat and tells them they were paid."""

    def __init__(
        self,
        ledger: LedgerStore,
        sender: MessageSender | None,
        claim_base_url: str,
        token_symbol: str = "USDC",
    ) -> None:
        self.ledger = ledger
        self.sender = sender
        self.claim_base_url = claim_base_url.rstrip("/")
        self.token_symbol = token_symbol

    def claim_url(self, claim_token: str) -> str:
        return f"{self.claim_base_url}?token={claim_token}"

    async def register_channel(self, handle: str, chat_id: int) -> None:
        clean = normalize_handle(handle)
        await self.ledger.save_channel(clean, chat_id)
        logger.info(f"Saved @{clean} with chatId {chat_id}")

    async def notify_recipient(
        self,
        handle: str,
        amount: str,
        claim_token: str,
        sender_handle: Optional[str] = None,
    ) -> NotificationResult:
        clean = normalize_handle(handle)
        claim_url = self.claim_url(claim_token)

        if self.sender is None:
            logger.info("Chat bot not configured. Skipping notification.")
            return NotificationResult(False, "notifications disabled", claim_url)

        channel = await self.ledger.get_channel(clean)
        if channel is None:
            logger.warning(f"@{clean} hasn't started the bot yet. Cannot send notification.")
            return NotificationResult(False, "recipient not reachable", claim_url)

        sender_part = f" from @{sender_handle}" if sender_handle else ""
        text = (
            f"You received {amount} {self.token_symbol}{sender_part}!\n\n"
            f"Claim it here: {claim_url}"
        )
        try:
            await self.sender.send_message(channel.chat_id, text)
        except Exception as e:
            logger.error(f"Failed to send notification to @{clean}: {e}")
            return NotificationResult(False, str(e), claim_url)

        logger.info(f"Notification sent to @{clean}")
        return NotificationResult(True, None, claim_url)
