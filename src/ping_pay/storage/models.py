"""Pydantic models mapping to the PingPay database tables."""

from __future__ import annotations

import re
import secrets
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from ping_pay.errors import InvalidHandle


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TransferStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CLAIMED = "claimed"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_HANDLE_RE = re.compile(r"^[a-z0-9_]{1,64}$")


def normalize_handle(handle: str) -> str:
    """Lower-case a chat handle and strip a leading ``@``.

    ``"@Alice"``, ``"alice"`` and ``"ALICE"`` all become ``"alice"``.
    """
    cleaned = (handle or "").strip().lstrip("@").lower()
    if not _HANDLE_RE.match(cleaned):
        raise InvalidHandle(f"Not a valid chat handle: {handle!r}")
    return cleaned


def _new_id() -> str:
    return str(uuid.uuid4())


def _new_claim_token() -> str:
    """256 bits from the OS CSPRNG, URL-safe."""
    return secrets.token_urlsafe(32)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Record models
# ---------------------------------------------------------------------------

class WalletRecord(BaseModel):
    """Maps to the ``wallets`` table."""

    handle: str
    address: str
    private_key: str = Field(repr=False, exclude=True)
    created_at: datetime = Field(default_factory=utcnow)


class TransferRecord(BaseModel):
    """Maps to the ``transfers`` table."""

    id: str = Field(default_factory=_new_id)
    sender_address: Optional[str] = None
    sender_handle: Optional[str] = None
    recipient_handle: str
    recipient_address: str
    amount: str  # stored as string to preserve decimal precision
    status: TransferStatus = TransferStatus.PENDING
    claim_token: str = Field(default_factory=_new_claim_token)
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    failure_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    confirmed_at: Optional[datetime] = None
    claimed_at: Optional[datetime] = None

    def summary(self) -> dict:
        """Public view of a transfer; never includes the claim token."""
        return self.model_dump(mode="json", exclude={"claim_token"})


class ChannelRecord(BaseModel):
    """Maps to the ``chat_channels`` table: where to reach a handle."""

    handle: str
    chat_id: int
    updated_at: datetime = Field(default_factory=utcnow)
