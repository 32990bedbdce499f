"""Custodial wallets: one keypair per chat handle, held by the service."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from ping_pay.amounts import format_amount
from ping_pay.chain.client import ChainClient, checksum_address
from ping_pay.errors import InsufficientFunds, InsufficientGas, NotFound
from ping_pay.storage.ledger import LedgerStore
from ping_pay.storage.models import WalletRecord, normalize_handle
from ping_pay.wallet.keys import generate_keypair

logger = logging.getLogger("ping_pay.wallet.custodian")


@dataclass(frozen=True)
class Withdrawal:
    tx_hash: str
    amount: Decimal

    def to_dict(self) -> dict:
        return {"txHash": self.tx_hash, "amount": format_amount(self.amount)}


class WalletCustodian:
    """Creates handle wallets and moves funds out of them.

    The private key never leaves this class except into
    :meth:`ChainClient.submit_transfer`.
    """

    def __init__(self, ledger: LedgerStore, chain: ChainClient) -> None:
        self.ledger = ledger
        self.chain = chain

    # ------------------------------------------------------------------
    # Wallet lifecycle
    # ------------------------------------------------------------------

    async def get(self, handle: str) -> WalletRecord:
        """Existing wallet for *handle*; raises :class:`NotFound`."""
        clean = normalize_handle(handle)
        wallet = await self.ledger.get_wallet_by_handle(clean)
        if wallet is None:
            raise NotFound(f"No wallet found for @{clean}")
        return wallet

    async def get_or_create(self, handle: str) -> tuple[WalletRecord, bool]:
        """Return ``(wallet, created)`` for *handle*, generating one if needed.

        Safe under concurrency: if two callers race, the ledger's unique
        key keeps the first insert and both get the same wallet back.
        """
        clean = normalize_handle(handle)
        existing = await self.ledger.get_wallet_by_handle(clean)
        if existing is not None:
            return existing, False

        address, private_key = generate_keypair()
        stored = await self.ledger.insert_wallet_if_absent(
            WalletRecord(handle=clean, address=address, private_key=private_key)
        )
        return stored, stored.address == address

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    async def balance(self, address: str) -> Decimal:
        """Token balance; zero when the chain cannot be queried."""
        return await self.chain.balance_of(address)

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    async def send(self, handle: str, to_address: str, amount: Decimal) -> Withdrawal:
        """Send *amount* from the handle's wallet to *to_address*."""
        wallet = await self.get(handle)
        destination = checksum_address(to_address)
        balance = await self.chain.token_balance(wallet.address)
        if amount > balance:
            raise InsufficientFunds(
                f"Requested {format_amount(amount)}, wallet holds {format_amount(balance)}"
            )
        tx_hash = await self.chain.submit_transfer(wallet.private_key, destination, amount)
        logger.info(f"Withdrawal from @{wallet.handle}: {amount} to {destination} (tx={tx_hash})")
        return Withdrawal(tx_hash=tx_hash, amount=amount)

    async def send_all(self, handle: str, to_address: str) -> Withdrawal:
        """Send the wallet's whole token balance to *to_address*.

        The native-currency balance is checked against the estimated fee
        before anything is submitted.
        """
        wallet = await self.get(handle)
        destination = checksum_address(to_address)
        balance = await self.chain.token_balance(wallet.address)
        if balance <= 0:
            raise InsufficientFunds(f"@{wallet.handle} has no balance to withdraw")

        await self.ensure_gas(wallet, destination, balance)

        tx_hash = await self.chain.submit_transfer(wallet.private_key, destination, balance)
        logger.info(f"Withdraw-all from @{wallet.handle}: {balance} to {destination} (tx={tx_hash})")
        return Withdrawal(tx_hash=tx_hash, amount=balance)

    async def ensure_gas(self, wallet: WalletRecord, destination: str, amount: Decimal) -> None:
        """Raise :class:`InsufficientGas` if the fee exceeds the native balance."""
        fee = await self.chain.estimate_fee(wallet.address, destination, amount)
        native = await self.chain.native_balance(wallet.address)
        if native < fee.estimated_cost:
            symbol = self.chain.network.native_symbol
            raise InsufficientGas(
                f"Insufficient {symbol} for gas. Need ~{fee.estimated_cost} {symbol}, "
                f"have {native}",
                required=fee.estimated_cost,
                available=native,
            )
