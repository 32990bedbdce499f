"""PingPay - the top-level object wiring ledger, chain, wallets, and notifications.

Everything process-scoped (database connection, chat bot polling) is
opened in :meth:`PingPay.start` and released in :meth:`PingPay.shutdown`.
The public methods return plain JSON-ready dicts and are what the HTTP API
and CLI call.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from pathlib import Path
from typing import Optional

from ping_pay.amounts import format_amount, parse_amount
from ping_pay.chain.client import ChainClient, checksum_address
from ping_pay.chain.networks import resolve_network
from ping_pay.config import PingPayConfig, get_data_dir, is_placeholder, load_config
from ping_pay.errors import InvalidStateTransition
from ping_pay.interpreter import ParsedCommand, build_interpreter
from ping_pay.notify.gateway import MessageSender, NotificationGateway
from ping_pay.notify.telegram import TelegramBot
from ping_pay.storage.database import Database, get_database
from ping_pay.storage.ledger import LedgerStore
from ping_pay.storage.models import TransferRecord, TransferStatus
from ping_pay.transfers.lifecycle import WITHDRAW_ALL, TransferLifecycle
from ping_pay.wallet.custodian import WalletCustodian

logger = logging.getLogger("ping_pay.service")


class PingPay:
    """Send stablecoins to a chat handle.

    Parameters
    ----------
    config:
        Service configuration.
    db:
        Database (connected in :meth:`start` if it isn't already).
    chain:
        Chain client; built from ``config.network`` when omitted.
    sender:
        Notification transport; a :class:`TelegramBot` is built when the
        telegram section is enabled and this is omitted.
    interpreter:
        Command interpreter; built from ``config.interpreter`` when omitted.
    """

    def __init__(
        self,
        config: PingPayConfig,
        db: Database,
        chain: ChainClient | None = None,
        sender: MessageSender | None = None,
        interpreter=None,
    ) -> None:
        self.config = config
        self.db = db
        self.ledger = LedgerStore(db)
        self.network = resolve_network(config.network) if chain is None else chain.network
        self.chain = chain or ChainClient(
            self.network, verification=config.verification, fees=config.fees
        )

        self.bot: Optional[TelegramBot] = None
        if sender is None and config.telegram.enabled and not is_placeholder(config.telegram.bot_token):
            self.bot = TelegramBot(
                config.telegram.bot_token,
                self.ledger,
                poll_timeout=config.telegram.poll_timeout_seconds,
            )
            sender = self.bot
        elif sender is None:
            logger.info("Telegram bot token not configured. Bot features disabled.")

        self.notifier = NotificationGateway(
            self.ledger,
            sender,
            config.telegram.claim_base_url,
            token_symbol=self.network.token_symbol,
        )
        self.custodian = WalletCustodian(self.ledger, self.chain)
        self.lifecycle = TransferLifecycle(self.ledger, self.custodian, self.chain, self.notifier)
        self.interpreter = interpreter or build_interpreter(config.interpreter)

    @classmethod
    def from_data_dir(cls, base_path: Path | None = None) -> PingPay:
        """Build from ``.ping-pay/config.yaml`` without connecting anything."""
        data_dir = get_data_dir(base_path)
        config = load_config(data_dir / "config.yaml")
        return cls(config, get_database(data_dir, config.server.database))

    @classmethod
    async def load(cls, base_path: Path | None = None) -> PingPay:
        """Like :meth:`from_data_dir`, then connect the database."""
        service = cls.from_data_dir(base_path)
        await service.db.connect()
        return service

    async def start(self) -> None:
        if not self.db.connected:
            await self.db.connect()
        if self.bot is not None:
            self.bot.start()
        logger.info(f"PingPay ready on {self.network.name} (token {self.network.token_address})")

    async def shutdown(self) -> None:
        if self.bot is not None:
            await self.bot.stop()
        await self.db.close()

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def _explorer(self, tx_hash: Optional[str]) -> Optional[str]:
        return self.chain.explorer_url(tx_hash) if tx_hash else None

    def transfer_summary(self, transfer: TransferRecord) -> dict:
        return {
            "id": transfer.id,
            "senderAddress": transfer.sender_address,
            "senderHandle": transfer.sender_handle,
            "recipientHandle": transfer.recipient_handle,
            "recipientAddress": transfer.recipient_address,
            "amount": transfer.amount,
            "status": transfer.status.value,
            "txHash": transfer.tx_hash,
            "blockNumber": transfer.block_number,
            "createdAt": transfer.created_at.isoformat(),
            "claimedAt": transfer.claimed_at.isoformat() if transfer.claimed_at else None,
            "explorerUrl": self._explorer(transfer.tx_hash),
        }

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    async def parse_command(self, command: str) -> dict:
        result = await self.interpreter.parse(command)
        if isinstance(result, ParsedCommand):
            return {
                "parsed": True,
                "amount": format_amount(result.amount),
                "recipient": result.recipient,
                "currency": self.network.token_symbol,
                "network": self.network.name,
            }
        return {"parsed": False, "reason": result.reason}

    async def prepare_transfer(
        self,
        recipient_handle: str,
        amount: object,
        sender_address: Optional[str] = None,
        sender_handle: Optional[str] = None,
    ) -> dict:
        transfer = await self.lifecycle.prepare(
            recipient_handle, amount, sender_address, sender_handle
        )
        value = parse_amount(transfer.amount, self.network.token_decimals)
        fee = await self.chain.estimate_fee(sender_address, transfer.recipient_address, value)
        return {
            "id": transfer.id,
            "recipientHandle": transfer.recipient_handle,
            "recipientAddress": transfer.recipient_address,
            "amount": transfer.amount,
            "claimToken": transfer.claim_token,
            "tokenAddress": self.network.token_address,
            "network": self.network.name,
            "chainId": self.network.chain_id,
            "gasEstimate": fee.to_dict(),
        }

    async def estimate_transfer(
        self, recipient_handle: str, amount: object, sender_address: Optional[str] = None
    ) -> dict:
        value = parse_amount(amount, self.network.token_decimals)
        wallet, _ = await self.custodian.get_or_create(recipient_handle)
        fee = await self.chain.estimate_fee(sender_address, wallet.address, value)
        return {
            **fee.to_dict(),
            "recipientAddress": wallet.address,
            "tokenAddress": self.network.token_address,
        }

    async def confirm_transfer(self, transfer_id: str, tx_hash: str) -> dict:
        """Confirm a transfer; a repeat confirm with the same hash is not an error.

        When another caller already confirmed the transfer with this very
        hash, the current record is returned without re-notifying.
        """
        notification = None
        try:
            outcome = await self.lifecycle.confirm(transfer_id, tx_hash)
            transfer, notification = outcome.transfer, outcome.notification
        except InvalidStateTransition as exc:
            joined = exc.current_status in (
                TransferStatus.CONFIRMED.value,
                TransferStatus.CLAIMED.value,
            ) and (exc.tx_hash or "").lower() == tx_hash.lower()
            if not joined:
                raise
            logger.info(f"Transfer {transfer_id} already confirmed with {tx_hash}")
            transfer = await self.lifecycle.get(transfer_id)

        return {
            "id": transfer.id,
            "status": transfer.status.value,
            "txHash": transfer.tx_hash,
            "blockNumber": transfer.block_number,
            "claimToken": transfer.claim_token,
            "explorerUrl": self._explorer(transfer.tx_hash),
            "notification": notification.to_dict() if notification else None,
        }

    async def get_transfer(self, transfer_id: str) -> dict:
        return self.transfer_summary(await self.lifecycle.get(transfer_id))

    async def list_transfers_by_sender(self, sender: str) -> list[dict]:
        return [self.transfer_summary(t) for t in await self.lifecycle.list_by_sender(sender)]

    async def list_transfers_received(self, handle: str) -> list[dict]:
        return [self.transfer_summary(t) for t in await self.lifecycle.list_received(handle)]

    async def fail_transfer(self, transfer_id: str, reason: str) -> dict:
        return self.transfer_summary(await self.lifecycle.fail(transfer_id, reason))

    async def expire_stale(self, hours: float) -> list[dict]:
        expired = await self.lifecycle.expire_stale(timedelta(hours=hours))
        return [self.transfer_summary(t) for t in expired]

    # ------------------------------------------------------------------
    # Claims
    # ------------------------------------------------------------------

    async def get_claim(self, token: str) -> dict:
        transfer = await self.lifecycle.get_by_claim_token(token)
        balance = await self.custodian.balance(transfer.recipient_address)
        return {
            "id": transfer.id,
            "amount": transfer.amount,
            "senderHandle": transfer.sender_handle,
            "recipientHandle": transfer.recipient_handle,
            "recipientAddress": transfer.recipient_address,
            "status": transfer.status.value,
            "claimedAt": transfer.claimed_at.isoformat() if transfer.claimed_at else None,
            "currentBalance": format_amount(balance),
            "txHash": transfer.tx_hash,
            "explorerUrl": self._explorer(transfer.tx_hash),
        }

    async def verify_claim(self, token: str, handle: str) -> dict:
        outcome = await self.lifecycle.claim_verify(token, handle)
        wallet = None
        if outcome.wallet is not None:
            wallet = {"address": outcome.wallet.address, "balance": format_amount(outcome.balance)}
        return {
            "claimed": outcome.claimed,
            "alreadyClaimed": outcome.already_claimed,
            "available": outcome.available,
            "status": outcome.transfer.status.value,
            "amount": outcome.transfer.amount,
            "claimedAt": outcome.transfer.claimed_at.isoformat() if outcome.transfer.claimed_at else None,
            "wallet": wallet,
        }

    async def pending_claims(self, handle: str) -> list[dict]:
        return [
            {
                "id": t.id,
                "amount": t.amount,
                "senderHandle": t.sender_handle,
                "txHash": t.tx_hash,
                "createdAt": t.created_at.isoformat(),
                "claimToken": t.claim_token,
            }
            for t in await self.lifecycle.pending_claims(handle)
        ]

    async def withdraw(
        self,
        handle: str,
        to_address: str,
        amount: object = None,
        withdraw_all: bool = False,
    ) -> dict:
        result = await self.lifecycle.withdraw(
            handle, to_address, WITHDRAW_ALL if withdraw_all else amount
        )
        return {**result.to_dict(), "explorerUrl": self._explorer(result.tx_hash)}

    # ------------------------------------------------------------------
    # Wallets
    # ------------------------------------------------------------------

    async def get_wallet(self, handle: str) -> dict:
        wallet = await self.custodian.get(handle)
        balance = await self.custodian.balance(wallet.address)
        return {"handle": wallet.handle, "address": wallet.address, "balance": format_amount(balance)}

    async def create_wallet(self, handle: str) -> dict:
        wallet, created = await self.custodian.get_or_create(handle)
        balance = await self.custodian.balance(wallet.address)
        return {
            "handle": wallet.handle,
            "address": wallet.address,
            "balance": format_amount(balance),
            "isNew": created,
        }

    async def get_balance(self, address: str) -> dict:
        balance = await self.custodian.balance(checksum_address(address))
        return {"balance": format_amount(balance), "tokenAddress": self.network.token_address}

    def token_info(self) -> dict:
        return {
            "address": self.network.token_address,
            "symbol": self.network.token_symbol,
            "decimals": self.network.token_decimals,
            "network": self.network.name,
            "chainId": self.network.chain_id,
        }

