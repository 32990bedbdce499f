"""Web3 client for the stablecoin contract: balances, submission, verification.

Web3 calls are synchronous, so every RPC round-trip is pushed to a worker
thread with :func:`asyncio.to_thread` to keep the event loop free.

Read paths (balances, fee estimates) degrade to safe defaults on RPC
failure.  Write paths (submission) and verification never degrade: they
raise a :mod:`ping_pay.errors` exception so no failure is silent.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from eth_account import Account
from web3 import Web3
from web3 import exceptions as web3_exceptions
from web3.middleware import ExtraDataToPOAMiddleware

from ping_pay.amounts import from_base_units, to_base_units, within_tolerance
from ping_pay.chain.networks import Network
from ping_pay.chain.retry import RetryPolicy
from ping_pay.config import FeeConfig, VerificationConfig
from ping_pay.errors import (
    AmountMismatch,
    ChainExecutionFailed,
    ChainSubmissionError,
    ChainUnavailable,
    InvalidAddress,
    TransactionNotFound,
    TransactionTimeout,
)

logger = logging.getLogger("ping_pay.chain")

ERC20_ABI = [
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "transfer",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "Transfer",
        "type": "event",
        "anonymous": False,
        "inputs": [
            {"name": "from", "type": "address", "indexed": True},
            {"name": "to", "type": "address", "indexed": True},
            {"name": "value", "type": "uint256", "indexed": False},
        ],
    },
]

TRANSFER_TOPIC = Web3.keccak(text="Transfer(address,address,uint256)")

_TX_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")

# RPC trouble worth another poll; anything else is a bug and propagates.
_TRANSIENT_ERRORS = (OSError, web3_exceptions.Web3Exception)


@dataclass(frozen=True)
class VerifiedTransfer:
    """What the chain says about a verified token transfer."""

    tx_hash: str
    block_number: int
    actual_amount: Decimal
    sender: Optional[str] = None


@dataclass(frozen=True)
class FeeEstimate:
    gas_limit: int
    gas_price_gwei: Decimal
    estimated_cost: Decimal  # in the native currency
    fallback: bool = False

    def to_dict(self) -> dict:
        return {
            "gasLimit": str(self.gas_limit),
            "gasPrice": str(self.gas_price_gwei),
            "estimatedCost": str(self.estimated_cost),
            "fallback": self.fallback,
        }


def _as_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    return bytes.fromhex(str(value).removeprefix("0x"))


def _topic_address(topic: Any) -> str:
    """The last 20 bytes of an indexed address topic, as a checksum address."""
    return Web3.to_checksum_address(_as_bytes(topic)[-20:])


def checksum_address(address: str) -> str:
    """Validate and checksum an address, raising :class:`InvalidAddress`."""
    if not isinstance(address, str) or not Web3.is_address(address):
        raise InvalidAddress(f"Not a valid address: {address!r}")
    return Web3.to_checksum_address(address)


class ChainClient:
    """Talks to one network's RPC endpoint about one token contract.

    Parameters
    ----------
    network:
        Chain and token definition.
    verification:
        Confirmation depth, receipt timeout, and amount tolerance.
    fees:
        Gas limit and fallback values for advisory estimates.
    retry:
        Policy for polling a freshly submitted transaction into view.
        Defaults to one built from *verification*.
    w3:
        Pre-built ``Web3`` instance (tests pass a fake).
    """

    def __init__(
        self,
        network: Network,
        verification: VerificationConfig | None = None,
        fees: FeeConfig | None = None,
        retry: RetryPolicy | None = None,
        w3: Web3 | None = None,
    ) -> None:
        self.network = network
        self.verification = verification or VerificationConfig()
        self.fees = fees or FeeConfig()
        self.retry = retry or RetryPolicy.from_config(self.verification)
        if w3 is None:
            w3 = Web3(Web3.HTTPProvider(network.rpc_url))
            # L2s and testnets carry POA-style extraData in block headers.
            if network.chain_id != 1:
                w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        self.w3 = w3
        self._token = None

    @property
    def token(self):
        if self._token is None:
            self._token = self.w3.eth.contract(
                address=Web3.to_checksum_address(self.network.token_address),
                abi=ERC20_ABI,
            )
        return self._token

    def explorer_url(self, tx_hash: str) -> str:
        return self.network.tx_url(tx_hash)

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    async def token_balance(self, address: str) -> Decimal:
        """Token balance; RPC failures raise :class:`ChainUnavailable`."""
        checksum = checksum_address(address)
        try:
            units = await asyncio.to_thread(
                lambda: self.token.functions.balanceOf(checksum).call()
            )
        except Exception as e:
            raise ChainUnavailable(
                f"Could not read {self.network.token_symbol} balance for {checksum}: {e}"
            ) from e
        return from_base_units(int(units), self.network.token_decimals)

    async def balance_of(self, address: str) -> Decimal:
        """Token balance, reported as zero when the RPC call fails.

        A zero here is not proof of an empty wallet: it may be an outage.
        Use :meth:`token_balance` where that distinction matters.
        """
        try:
            return await self.token_balance(address)
        except ChainUnavailable as e:
            logger.warning(f"Failed to get {self.network.token_symbol} balance for {address}: {e}")
            return from_base_units(0, self.network.token_decimals)

    async def native_balance(self, address: str) -> Decimal:
        """Native currency balance (for gas); RPC failures raise :class:`ChainUnavailable`."""
        checksum = checksum_address(address)
        try:
            balance_wei = await asyncio.to_thread(self.w3.eth.get_balance, checksum)
        except Exception as e:
            raise ChainUnavailable(
                f"Could not read {self.network.native_symbol} balance for {checksum}: {e}"
            ) from e
        return Decimal(str(Web3.from_wei(balance_wei, "ether")))

    # ------------------------------------------------------------------
    # Fees
    # ------------------------------------------------------------------

    async def estimate_fee(
        self,
        from_address: str | None = None,
        to_address: str | None = None,
        amount: Decimal | None = None,
    ) -> FeeEstimate:
        """Advisory fee for one token transfer; never raises."""
        gas_limit = self.fees.transfer_gas_limit
        try:
            gas_price_wei = await asyncio.to_thread(lambda: self.w3.eth.gas_price)
        except Exception as e:
            logger.warning(f"Fee estimate failed, using fallback: {e}")
            return FeeEstimate(
                gas_limit=gas_limit,
                gas_price_gwei=self.fees.fallback_gas_price_gwei,
                estimated_cost=self.fees.fallback_estimated_cost,
                fallback=True,
            )
        cost_wei = gas_limit * int(gas_price_wei)
        return FeeEstimate(
            gas_limit=gas_limit,
            gas_price_gwei=Decimal(str(Web3.from_wei(gas_price_wei, "gwei"))),
            estimated_cost=Decimal(str(Web3.from_wei(cost_wei, "ether"))),
        )

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def _fee_fields(self) -> dict:
        """EIP-1559 fee parameters, falling back to a legacy gas price."""
        latest = self.w3.eth.get_block("latest")
        base_fee = latest.get("baseFeePerGas")
        if base_fee is not None:
            max_priority = Web3.to_wei(self.fees.priority_fee_gwei, "gwei")
            return {
                "maxFeePerGas": base_fee * 2 + max_priority,
                "maxPriorityFeePerGas": max_priority,
            }
        return {"gasPrice": self.w3.eth.gas_price}

    def _send_token_transfer(self, private_key: str, to_address: str, units: int) -> str:
        account = Account.from_key(private_key)
        nonce = self.w3.eth.get_transaction_count(account.address, "pending")
        params: dict = {
            "from": account.address,
            "nonce": nonce,
            "chainId": self.network.chain_id,
            "gas": self.fees.transfer_gas_limit,
        }
        params.update(self._fee_fields())
        tx = self.token.functions.transfer(to_address, units).build_transaction(params)
        signed = Account.sign_transaction(tx, private_key)
        tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        return Web3.to_hex(tx_hash)

    async def submit_transfer(self, private_key: str, to_address: str, amount: Decimal) -> str:
        """Sign and broadcast a token transfer; returns the tx hash.

        Does not wait for inclusion.  Failures are raised, never retried:
        a blind resubmission could pick a fresh nonce and pay twice.
        """
        checksum_to = checksum_address(to_address)
        units = to_base_units(amount, self.network.token_decimals)
        try:
            tx_hash = await asyncio.to_thread(
                self._send_token_transfer, private_key, checksum_to, units
            )
        except Exception as exc:
            logger.error(f"Submission of {amount} {self.network.token_symbol} to {checksum_to} failed: {exc}")
            raise ChainSubmissionError(f"Node rejected transfer: {exc}") from exc
        logger.info(f"Transaction sent: {tx_hash} ({amount} {self.network.token_symbol} to {checksum_to})")
        return tx_hash

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    async def _get_transaction(self, tx_hash: str) -> Optional[Any]:
        try:
            return await asyncio.to_thread(self.w3.eth.get_transaction, tx_hash)
        except web3_exceptions.TransactionNotFound:
            return None

    async def _wait_for_receipt(self, tx_hash: str) -> Any:
        timeout = self.verification.receipt_timeout_seconds
        try:
            # The outer deadline covers a provider whose own timeout never fires.
            return await asyncio.wait_for(
                asyncio.to_thread(
                    self.w3.eth.wait_for_transaction_receipt,
                    tx_hash,
                    timeout=timeout,
                    poll_latency=self.retry.delay,
                ),
                timeout=timeout + self.retry.delay,
            )
        except (web3_exceptions.TimeExhausted, asyncio.TimeoutError) as exc:
            raise TransactionTimeout(
                f"Transaction {tx_hash} not included within {timeout:.0f}s"
            ) from exc

    async def _wait_for_depth(self, tx_hash: str, block_number: int) -> None:
        """Wait until *block_number* has ``confirmations - 1`` blocks on top."""
        depth = self.verification.confirmations
        if depth <= 1:
            return

        async def _deep_enough() -> Optional[bool]:
            head = await asyncio.to_thread(lambda: self.w3.eth.block_number)
            return True if head - block_number + 1 >= depth else None

        reached = await self.retry.poll(
            _deep_enough, label=f"depth {tx_hash[:10]}", retry_on=_TRANSIENT_ERRORS
        )
        if not reached:
            raise TransactionTimeout(
                f"Transaction {tx_hash} did not reach {depth} confirmations"
            )

    def _find_transfer_units(self, receipt: Any, recipient: str) -> Optional[int]:
        """Value of the first token Transfer event paying *recipient*."""
        token_address = self.network.token_address.lower()
        wanted = recipient.lower()
        for log in receipt["logs"]:
            topics = log.get("topics") or []
            if str(log.get("address", "")).lower() != token_address:
                continue
            if len(topics) != 3 or _as_bytes(topics[0]) != bytes(TRANSFER_TOPIC):
                continue
            if _topic_address(topics[2]).lower() != wanted:
                continue
            return int.from_bytes(_as_bytes(log["data"]), "big")
        return None

    async def verify_transfer(
        self, tx_hash: str, expected_recipient: str, expected_amount: Decimal
    ) -> VerifiedTransfer:
        """Confirm that *tx_hash* paid *expected_recipient* at least the accepted amount.

        Steps: poll until the node knows the transaction, wait for its
        receipt (and any extra confirmations), reject reverted execution,
        then find the token Transfer event to the recipient and compare
        amounts within the configured tolerance.
        """
        if not _TX_HASH_RE.match(tx_hash or ""):
            raise TransactionNotFound(f"Malformed transaction hash: {tx_hash!r}")
        recipient = checksum_address(expected_recipient)

        logger.info(f"Verifying tx {tx_hash}: expecting {expected_amount} to {recipient}")
        tx = await self.retry.poll(
            lambda: self._get_transaction(tx_hash),
            label=f"lookup {tx_hash[:10]}",
            retry_on=_TRANSIENT_ERRORS,
        )
        if tx is None:
            raise TransactionNotFound(
                f"Transaction {tx_hash} not found after {self.retry.max_attempts} attempts"
            )

        receipt = await self._wait_for_receipt(tx_hash)
        block_number = int(receipt["blockNumber"])
        await self._wait_for_depth(tx_hash, block_number)

        if receipt["status"] != 1:
            raise ChainExecutionFailed(f"Transaction {tx_hash} reverted in block {block_number}")

        units = self._find_transfer_units(receipt, recipient)
        actual = from_base_units(units or 0, self.network.token_decimals)
        if units is None or not within_tolerance(
            actual, expected_amount, self.verification.amount_tolerance
        ):
            raise AmountMismatch(
                f"Amount too low: expected {expected_amount}, got {actual}",
                expected=expected_amount,
                actual=actual,
            )

        logger.info(f"Transaction {tx_hash} verified in block {block_number}: {actual} received")
        return VerifiedTransfer(
            tx_hash=tx_hash,
            block_number=block_number,
            actual_amount=actual,
            sender=tx.get("from"),
        )
