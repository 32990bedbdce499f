"""Custodial wallet system for PingPay.

Each chat handle gets an Ethereum-compatible keypair the first time it is
referenced.  The service holds the key and signs withdrawals on the
handle's behalf.
"""

from ping_pay.wallet.custodian import WalletCustodian, Withdrawal
from ping_pay.wallet.keys import generate_keypair

__all__ = ["WalletCustodian", "Withdrawal", "generate_keypair"]
