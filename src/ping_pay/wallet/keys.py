"""Custodial keypair generation using eth-account."""

from __future__ import annotations

from eth_account import Account


def generate_keypair() -> tuple[str, str]:
    """Generate a new Ethereum keypair.

    Returns
    -------
    tuple[str, str]
        ``(address, private_key)``: the checksummed address and the
        ``0x``-prefixed hex private key.
    """
    acct = Account.create()
    return acct.address, "0x" + acct.key.hex().removeprefix("0x")
