"""Transfer lifecycle: prepare -> confirm -> claim -> withdraw.

Status only ever moves forward::

    pending --confirm--> confirmed --claim--> claimed
    pending --fail-----> failed

Each forward step is a conditional write in the ledger, so a transfer can
be confirmed (and its recipient notified) at most once no matter how many
callers race on it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from ping_pay.amounts import format_amount, parse_amount
from ping_pay.chain.client import ChainClient, checksum_address
from ping_pay.errors import (
    HandleMismatch,
    InsufficientFunds,
    InvalidAmount,
    InvalidStateTransition,
    NotFound,
    TransactionAlreadyUsed,
)
from ping_pay.notify.gateway import NotificationGateway, NotificationResult
from ping_pay.storage.ledger import LedgerStore
from ping_pay.storage.models import TransferRecord, TransferStatus, WalletRecord, normalize_handle, utcnow
from ping_pay.wallet.custodian import WalletCustodian, Withdrawal

logger = logging.getLogger("ping_pay.transfers")

WITHDRAW_ALL = "ALL"


@dataclass
class ConfirmOutcome:
    """Result of :meth:`TransferLifecycle.confirm`."""

    transfer: TransferRecord
    notification: Optional[NotificationResult] = None


@dataclass
class ClaimOutcome:
    """Result of :meth:`TransferLifecycle.claim_verify`.

    ``available`` is False while the transfer is still pending: the funds
    are not on-chain yet, which is a normal state, not an error.
    """

    transfer: TransferRecord
    wallet: Optional[WalletRecord]
    claimed: bool = False
    already_claimed: bool = False
    available: bool = True
    balance: Decimal = field(default_factory=lambda: Decimal(0))


class TransferLifecycle:
    """Orchestrates the transfer state machine over the ledger and chain."""

    def __init__(
        self,
        ledger: LedgerStore,
        custodian: WalletCustodian,
        chain: ChainClient,
        notifier: NotificationGateway,
    ) -> None:
        self.ledger = ledger
        self.custodian = custodian
        self.chain = chain
        self.notifier = notifier

    async def get(self, transfer_id: str) -> TransferRecord:
        transfer = await self.ledger.get_transfer(transfer_id)
        if transfer is None:
            raise NotFound(f"Transfer {transfer_id} not found")
        return transfer

    async def get_by_claim_token(self, claim_token: str) -> TransferRecord:
        transfer = await self.ledger.get_transfer_by_claim_token(claim_token)
        if transfer is None:
            raise NotFound("Claim not found or expired")
        return transfer

    # ------------------------------------------------------------------
    # prepare
    # ------------------------------------------------------------------

    async def prepare(
        self,
        recipient_handle: str,
        amount: object,
        sender_address: Optional[str] = None,
        sender_handle: Optional[str] = None,
    ) -> TransferRecord:
        """Create a pending transfer to *recipient_handle*'s custodial wallet.

        Not idempotent: every call records a new transfer.
        """
        value = parse_amount(amount, self.chain.network.token_decimals)
        recipient = normalize_handle(recipient_handle)
        sender = checksum_address(sender_address) if sender_address else None
        sender_hint = normalize_handle(sender_handle) if sender_handle else None

        wallet, created = await self.custodian.get_or_create(recipient)
        transfer = await self.ledger.create_transfer(
            TransferRecord(
                sender_address=sender,
                sender_handle=sender_hint,
                recipient_handle=wallet.handle,
                recipient_address=wallet.address,
                amount=format_amount(value),
            )
        )
        logger.info(
            f"Transfer {transfer.id} prepared: {transfer.amount} to @{recipient} "
            f"({wallet.address}{', new wallet' if created else ''})"
        )
        return transfer

    # ------------------------------------------------------------------
    # confirm
    # ------------------------------------------------------------------

    async def confirm(self, transfer_id: str, tx_hash: str) -> ConfirmOutcome:
        """Verify *tx_hash* on-chain and move the transfer to confirmed.

        Verification errors propagate and leave the transfer pending, so
        the caller may retry with the same or a corrected hash.  Losing a
        race to another confirm raises :class:`InvalidStateTransition`
        carrying the winner's tx hash.  A hash that already confirmed a
        different transfer raises :class:`TransactionAlreadyUsed` before any
        chain lookup.
        """
        transfer = await self.get(transfer_id)
        if transfer.status != TransferStatus.PENDING:
            raise InvalidStateTransition(
                f"Transfer {transfer_id} is '{transfer.status.value}', not pending",
                current_status=transfer.status.value,
                tx_hash=transfer.tx_hash,
            )

        tx_hash = tx_hash.lower()
        holder = await self.ledger.get_transfer_by_tx_hash(tx_hash)
        if holder is not None and holder.id != transfer_id:
            raise TransactionAlreadyUsed(
                f"Transaction {tx_hash} already confirmed transfer {holder.id}",
                transfer_id=holder.id,
            )

        expected = Decimal(transfer.amount)
        verified = await self.chain.verify_transfer(
            tx_hash, transfer.recipient_address, expected
        )

        won = await self.ledger.transition_to_confirmed(
            transfer_id, tx_hash, verified.block_number
        )
        current = await self.get(transfer_id)
        if not won:
            raise InvalidStateTransition(
                f"Transfer {transfer_id} was already moved to '{current.status.value}'",
                current_status=current.status.value,
                tx_hash=current.tx_hash,
            )

        logger.info(
            f"Transfer {transfer_id} confirmed in block {verified.block_number} "
            f"(on-chain {verified.actual_amount}, recorded {current.amount})"
        )
        notification = await self.notifier.notify_recipient(
            current.recipient_handle,
            current.amount,
            current.claim_token,
            current.sender_handle,
        )
        return ConfirmOutcome(transfer=current, notification=notification)

    # ------------------------------------------------------------------
    # fail / expire
    # ------------------------------------------------------------------

    async def fail(self, transfer_id: str, reason: str) -> TransferRecord:
        """pending -> failed (operator action)."""
        if not await self.ledger.transition_to_failed(transfer_id, reason):
            current = await self.get(transfer_id)
            raise InvalidStateTransition(
                f"Transfer {transfer_id} is '{current.status.value}', not pending",
                current_status=current.status.value,
                tx_hash=current.tx_hash,
            )
        logger.info(f"Transfer {transfer_id} marked failed: {reason}")
        return await self.get(transfer_id)

    async def expire_stale(self, older_than: timedelta, now: datetime | None = None) -> list[TransferRecord]:
        """Fail every transfer still pending after *older_than*."""
        cutoff = (now or utcnow()) - older_than
        expired = []
        for transfer in await self.ledger.list_stale_pending(cutoff):
            if await self.ledger.transition_to_failed(transfer.id, "expired"):
                expired.append(await self.get(transfer.id))
        if expired:
            logger.info(f"Expired {len(expired)} stale pending transfer(s)")
        return expired

    # ------------------------------------------------------------------
    # claim
    # ------------------------------------------------------------------

    async def claim_verify(self, claim_token: str, presented_handle: str) -> ClaimOutcome:
        """Check the claimant's handle and move the transfer to claimed."""
        transfer = await self.get_by_claim_token(claim_token)

        clean = normalize_handle(presented_handle)
        if clean != transfer.recipient_handle:
            raise HandleMismatch("Handle does not match recipient")

        wallet = await self.ledger.get_wallet_by_handle(clean)

        if transfer.status == TransferStatus.PENDING:
            return ClaimOutcome(transfer=transfer, wallet=wallet, available=False)
        if transfer.status == TransferStatus.FAILED:
            raise InvalidStateTransition(
                f"Transfer {transfer.id} failed and cannot be claimed",
                current_status=transfer.status.value,
                tx_hash=transfer.tx_hash,
            )

        claimed_now = False
        if transfer.status == TransferStatus.CONFIRMED:
            claimed_now = await self.ledger.transition_to_claimed(transfer.id)
            transfer = await self.get(transfer.id)
            if claimed_now:
                logger.info(f"Transfer {transfer.id} claimed by @{clean}")

        balance = await self.custodian.balance(wallet.address) if wallet else Decimal(0)
        return ClaimOutcome(
            transfer=transfer,
            wallet=wallet,
            claimed=True,
            already_claimed=not claimed_now,
            balance=balance,
        )

    # ------------------------------------------------------------------
    # withdraw
    # ------------------------------------------------------------------

    async def withdraw(self, handle: str, to_address: str, amount: object = WITHDRAW_ALL) -> Withdrawal:
        """Move funds from the handle's custodial wallet to an external address.

        *amount* is a decimal amount or :data:`WITHDRAW_ALL`.
        """
        wallet = await self.custodian.get(handle)
        destination = checksum_address(to_address)

        balance = await self.chain.token_balance(wallet.address)
        if balance <= 0:
            raise InsufficientFunds(f"@{wallet.handle} has no balance to withdraw")

        if amount == WITHDRAW_ALL:
            return await self.custodian.send_all(wallet.handle, destination)

        if amount is None:
            raise InvalidAmount("Amount is required when not withdrawing everything")
        value = parse_amount(amount, self.chain.network.token_decimals)
        if value > balance:
            raise InsufficientFunds(
                f"Requested {format_amount(value)}, wallet holds {format_amount(balance)}"
            )
        return await self.custodian.send(wallet.handle, destination, value)

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    async def list_by_sender(self, sender: str) -> list[TransferRecord]:
        """Transfers sent from an address or by a handle, newest first."""
        if sender.startswith("0x"):
            return await self.ledger.list_transfers_by_sender_address(checksum_address(sender))
        return await self.ledger.list_transfers_by_sender_handle(normalize_handle(sender))

    async def pending_claims(self, handle: str) -> list[TransferRecord]:
        """Confirmed transfers *handle* has not claimed yet."""
        return await self.ledger.list_transfers_for_recipient(
            normalize_handle(handle), TransferStatus.CONFIRMED
        )

    async def list_received(self, handle: str) -> list[TransferRecord]:
        return await self.ledger.list_transfers_for_recipient(normalize_handle(handle))
