"""Pytest configuration and fixtures for PingPay tests"""
import asyncio
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from ping_pay.amounts import within_tolerance
from ping_pay.api.server import create_app
from ping_pay.chain.client import FeeEstimate, VerifiedTransfer, checksum_address
from ping_pay.chain.networks import get_network
from ping_pay.config import PingPayConfig
from ping_pay.errors import AmountMismatch, ChainSubmissionError, ChainUnavailable, TransactionNotFound
from ping_pay.interpreter import RegexInterpreter
from ping_pay.notify.gateway import NotificationGateway
from ping_pay.service import PingPay
from ping_pay.storage.database import Database
from ping_pay.storage.ledger import LedgerStore
from ping_pay.transfers.lifecycle import TransferLifecycle
from ping_pay.wallet.custodian import WalletCustodian

EXTERNAL_ADDRESS = "0x1111111111111111111111111111111111111111"
SENDER_ADDRESS = "0x2222222222222222222222222222222222222222"


def tx_hash(n: int) -> str:
    """A well-formed, deterministic transaction hash."""
    return "0x" + f"{n:064x}"


class FakeChainClient:
    """In-memory stand-in for :class:`ChainClient`.

    Tests register on-chain payments with :meth:`pay`; ``verify_transfer``
    applies the same tolerance rule as the real client.
    """

    def __init__(self):
        self.network = get_network("arbitrum-sepolia")
        self.tolerance = Decimal("0.99")
        self.balances: dict[str, Decimal] = {}
        self.native: dict[str, Decimal] = {}
        self.payments: dict[str, tuple[str, Decimal]] = {}
        self.submitted: list[tuple[str, str, Decimal]] = []
        self.verify_calls = 0
        self.balance_error: Optional[Exception] = None
        self.submit_error: Optional[Exception] = None
        self.fee = Decimal("0.00002")

    def pay(self, tx: str, recipient: str, amount: str) -> None:
        self.payments[tx] = (recipient, Decimal(amount))

    def explorer_url(self, tx: str) -> str:
        return self.network.tx_url(tx)

    async def token_balance(self, address: str) -> Decimal:
        if self.balance_error is not None:
            raise ChainUnavailable(str(self.balance_error)) from self.balance_error
        return self.balances.get(checksum_address(address), Decimal(0))

    async def balance_of(self, address: str) -> Decimal:
        try:
            return await self.token_balance(address)
        except ChainUnavailable:
            return Decimal(0)

    async def native_balance(self, address: str) -> Decimal:
        return self.native.get(checksum_address(address), Decimal(0))

    async def estimate_fee(self, from_address=None, to_address=None, amount=None) -> FeeEstimate:
        return FeeEstimate(
            gas_limit=100_000,
            gas_price_gwei=Decimal("0.2"),
            estimated_cost=self.fee,
        )

    async def submit_transfer(self, private_key: str, to_address: str, amount: Decimal) -> str:
        if self.submit_error is not None:
            raise ChainSubmissionError(str(self.submit_error))
        self.submitted.append((private_key, checksum_address(to_address), amount))
        return tx_hash(9000 + len(self.submitted))

    async def verify_transfer(self, tx: str, expected_recipient: str, expected_amount: Decimal) -> VerifiedTransfer:
        self.verify_calls += 1
        # Yield so concurrent confirms interleave between check and write.
        await asyncio.sleep(0)
        if tx not in self.payments:
            raise TransactionNotFound(f"Transaction {tx} not found")
        recipient, actual = self.payments[tx]
        if recipient.lower() != expected_recipient.lower() or not within_tolerance(
            actual, expected_amount, self.tolerance
        ):
            seen = actual if recipient.lower() == expected_recipient.lower() else Decimal(0)
            raise AmountMismatch("Amount too low", expected=expected_amount, actual=seen)
        return VerifiedTransfer(tx_hash=tx, block_number=123, actual_amount=actual, sender=SENDER_ADDRESS)


class RecordingSender:
    """Collects outgoing chat messages instead of sending them."""

    def __init__(self, fail: bool = False):
        self.messages: list[tuple[int, str]] = []
        self.fail = fail

    async def send_message(self, chat_id: int, text: str) -> None:
        if self.fail:
            raise RuntimeError("Telegram API error (403): bot was blocked by the user")
        self.messages.append((chat_id, text))


@pytest_asyncio.fixture(scope="function")
async def db(tmp_path) -> AsyncGenerator[Database, None]:
    """A fresh SQLite database per test."""
    database = Database(tmp_path / "ping_pay.db")
    await database.connect()
    try:
        yield database
    finally:
        await database.close()


@pytest.fixture
def ledger(db) -> LedgerStore:
    return LedgerStore(db)


@pytest.fixture
def chain() -> FakeChainClient:
    return FakeChainClient()


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def custodian(ledger, chain) -> WalletCustodian:
    return WalletCustodian(ledger, chain)


@pytest.fixture
def notifier(ledger, sender) -> NotificationGateway:
    return NotificationGateway(ledger, sender, "http://localhost:5173/receive")


@pytest.fixture
def lifecycle(ledger, custodian, chain, notifier) -> TransferLifecycle:
    return TransferLifecycle(ledger, custodian, chain, notifier)


@pytest.fixture
def service(db, chain, sender) -> PingPay:
    return PingPay(PingPayConfig(), db, chain=chain, sender=sender, interpreter=RegexInterpreter())


@pytest_asyncio.fixture(scope="function")
async def client(service) -> AsyncGenerator[AsyncClient, None]:
    """An async test client over the ASGI app (lifespan not run)."""
    app = create_app(service)
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac
