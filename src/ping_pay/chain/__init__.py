"""Chain access for PingPay.

Network definitions, a bounded retry policy for polling, and a Web3-backed
client for the stablecoin contract (balances, submission, and receipt-based
transfer verification).
"""

from ping_pay.chain.client import ChainClient, FeeEstimate, VerifiedTransfer, checksum_address
from ping_pay.chain.networks import Network, get_network, resolve_network
from ping_pay.chain.retry import RetryPolicy

__all__ = [
    "ChainClient",
    "FeeEstimate",
    "VerifiedTransfer",
    "checksum_address",
    "Network",
    "get_network",
    "resolve_network",
    "RetryPolicy",
]
