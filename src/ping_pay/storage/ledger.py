"""Ledger store: keyed access to wallets, transfers, and chat channels.

Every status change is a conditional ``UPDATE ... WHERE status = ?`` so
that two callers racing on the same transfer cannot both win, even when
they run in different processes against the same database.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

import aiosqlite

from ping_pay.errors import TransactionAlreadyUsed
from ping_pay.storage.database import Database
from ping_pay.storage.models import (
    ChannelRecord,
    TransferRecord,
    TransferStatus,
    WalletRecord,
    utcnow,
)

logger = logging.getLogger("ping_pay.storage.ledger")

_RECENT_FIRST = "ORDER BY created_at DESC, rowid DESC"


class LedgerStore:
    """Durable record of wallets and transfers backed by :class:`Database`."""

    def __init__(self, db: Database) -> None:
        self.db = db

    # ------------------------------------------------------------------
    # Wallets
    # ------------------------------------------------------------------

    async def get_wallet_by_handle(self, handle: str) -> Optional[WalletRecord]:
        row = await self.db.fetch_one(
            "SELECT * FROM wallets WHERE handle = ?", (handle,)
        )
        return WalletRecord(**row) if row else None

    async def get_wallet_by_address(self, address: str) -> Optional[WalletRecord]:
        row = await self.db.fetch_one(
            "SELECT * FROM wallets WHERE address = ? COLLATE NOCASE", (address,)
        )
        return WalletRecord(**row) if row else None

    async def insert_wallet_if_absent(self, wallet: WalletRecord) -> WalletRecord:
        """Insert *wallet* unless its handle already exists; return the stored row.

        The unique key on ``handle`` is what makes wallet creation
        exactly-once: a losing concurrent insert is ignored and the caller
        gets the winner's wallet back.
        """
        cursor = await self.db.execute(
            "INSERT INTO wallets (handle, address, private_key, created_at) "
            "VALUES (?, ?, ?, ?) ON CONFLICT(handle) DO NOTHING",
            (
                wallet.handle,
                wallet.address,
                wallet.private_key,
                wallet.created_at.isoformat(),
            ),
        )
        if cursor.rowcount == 1:
            logger.info(f"Wallet created for @{wallet.handle}: {wallet.address}")
        stored = await self.get_wallet_by_handle(wallet.handle)
        if stored is None:
            raise RuntimeError(f"Wallet for @{wallet.handle} missing after insert")
        return stored

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    async def create_transfer(self, transfer: TransferRecord) -> TransferRecord:
        await self.db.execute(
            "INSERT INTO transfers "
            "(id, sender_address, sender_handle, recipient_handle, recipient_address, "
            "amount, status, claim_token, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                transfer.id,
                transfer.sender_address,
                transfer.sender_handle,
                transfer.recipient_handle,
                transfer.recipient_address,
                transfer.amount,
                transfer.status.value,
                transfer.claim_token,
                transfer.created_at.isoformat(),
            ),
        )
        return transfer

    async def get_transfer(self, transfer_id: str) -> Optional[TransferRecord]:
        row = await self.db.fetch_one(
            "SELECT * FROM transfers WHERE id = ?", (transfer_id,)
        )
        return TransferRecord(**row) if row else None

    async def get_transfer_by_claim_token(self, token: str) -> Optional[TransferRecord]:
        """Exact-match lookup; a token never resolves to any other transfer."""
        row = await self.db.fetch_one(
            "SELECT * FROM transfers WHERE claim_token = ?", (token,)
        )
        return TransferRecord(**row) if row else None

    async def get_transfer_by_tx_hash(self, tx_hash: str) -> Optional[TransferRecord]:
        row = await self.db.fetch_one(
            "SELECT * FROM transfers WHERE tx_hash = ? COLLATE NOCASE", (tx_hash,)
        )
        return TransferRecord(**row) if row else None

    async def transition_to_confirmed(
        self, transfer_id: str, tx_hash: str, block_number: int
    ) -> bool:
        """pending -> confirmed. Returns True only for the caller that won.

        A tx hash confirms at most one transfer; attaching one that another
        transfer already holds raises :class:`TransactionAlreadyUsed`.
        """
        try:
            cursor = await self.db.execute(
                "UPDATE transfers SET status = ?, tx_hash = ?, block_number = ?, "
                "confirmed_at = ? WHERE id = ? AND status = ?",
                (
                    TransferStatus.CONFIRMED.value,
                    tx_hash,
                    block_number,
                    utcnow().isoformat(),
                    transfer_id,
                    TransferStatus.PENDING.value,
                ),
            )
        except aiosqlite.IntegrityError as e:
            raise TransactionAlreadyUsed(
                f"Transaction {tx_hash} already confirmed another transfer"
            ) from e
        return cursor.rowcount == 1

    async def transition_to_claimed(self, transfer_id: str) -> bool:
        """confirmed -> claimed, stamping ``claimed_at``."""
        cursor = await self.db.execute(
            "UPDATE transfers SET status = ?, claimed_at = ? "
            "WHERE id = ? AND status = ?",
            (
                TransferStatus.CLAIMED.value,
                utcnow().isoformat(),
                transfer_id,
                TransferStatus.CONFIRMED.value,
            ),
        )
        return cursor.rowcount == 1

    async def transition_to_failed(self, transfer_id: str, reason: str) -> bool:
        """pending -> failed."""
        cursor = await self.db.execute(
            "UPDATE transfers SET status = ?, failure_reason = ? "
            "WHERE id = ? AND status = ?",
            (
                TransferStatus.FAILED.value,
                reason,
                transfer_id,
                TransferStatus.PENDING.value,
            ),
        )
        return cursor.rowcount == 1

    async def list_transfers_by_sender_address(self, address: str) -> list[TransferRecord]:
        rows = await self.db.fetch_all(
            f"SELECT * FROM transfers WHERE sender_address = ? COLLATE NOCASE {_RECENT_FIRST}",
            (address,),
        )
        return [TransferRecord(**r) for r in rows]

    async def list_transfers_by_sender_handle(self, handle: str) -> list[TransferRecord]:
        rows = await self.db.fetch_all(
            f"SELECT * FROM transfers WHERE sender_handle = ? {_RECENT_FIRST}",
            (handle,),
        )
        return [TransferRecord(**r) for r in rows]

    async def list_transfers_for_recipient(
        self, handle: str, status: TransferStatus | None = None
    ) -> list[TransferRecord]:
        if status:
            rows = await self.db.fetch_all(
                f"SELECT * FROM transfers WHERE recipient_handle = ? AND status = ? {_RECENT_FIRST}",
                (handle, status.value),
            )
        else:
            rows = await self.db.fetch_all(
                f"SELECT * FROM transfers WHERE recipient_handle = ? {_RECENT_FIRST}",
                (handle,),
            )
        return [TransferRecord(**r) for r in rows]

    async def list_stale_pending(self, created_before: datetime) -> list[TransferRecord]:
        rows = await self.db.fetch_all(
            "SELECT * FROM transfers WHERE status = ? AND created_at < ? "
            "ORDER BY created_at ASC",
            (TransferStatus.PENDING.value, created_before.isoformat()),
        )
        return [TransferRecord(**r) for r in rows]

    # ------------------------------------------------------------------
    # Chat channels
    # ------------------------------------------------------------------

    async def save_channel(self, handle: str, chat_id: int) -> ChannelRecord:
        record = ChannelRecord(handle=handle, chat_id=chat_id)
        await self.db.execute(
            "INSERT INTO chat_channels (handle, chat_id, updated_at) VALUES (?, ?, ?) "
            "ON CONFLICT(handle) DO UPDATE SET chat_id = excluded.chat_id, "
            "updated_at = excluded.updated_at",
            (record.handle, record.chat_id, record.updated_at.isoformat()),
        )
        return record

    async def get_channel(self, handle: str) -> Optional[ChannelRecord]:
        row = await self.db.fetch_one(
            "SELECT * FROM chat_channels WHERE handle = ?", (handle,)
        )
        return ChannelRecord(**row) if row else None
