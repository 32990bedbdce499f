"""Fixed-point token amounts.

All ledger amounts are decimal strings at the token's precision.  They are
parsed, compared, and summed as :class:`~decimal.Decimal` (or as integer
base units on the wire) and never as floats.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

from ping_pay.errors import InvalidAmount

TOKEN_DECIMALS = 6


def _quantum(decimals: int) -> Decimal:
    return Decimal(1).scaleb(-decimals)


def parse_amount(value: object, decimals: int = TOKEN_DECIMALS) -> Decimal:
    """Parse a user-supplied amount into a positive Decimal.

    Raises :class:`InvalidAmount` for non-numeric, non-positive, or
    over-precise input (more fractional digits than the token supports).
    Floats are rejected outright because their repr may not be the
    amount the caller meant.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise InvalidAmount(f"Amount must be a decimal string, got {value!r}")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidAmount(f"Amount is not a valid decimal number: {value!r}")
    if not amount.is_finite() or amount <= 0:
        raise InvalidAmount(f"Amount must be positive, got {value!r}")
    exponent = amount.normalize().as_tuple().exponent
    if isinstance(exponent, int) and exponent < -decimals:
        raise InvalidAmount(
            f"Token supports at most {decimals} decimal places, got {value!r}"
        )
    try:
        return amount.quantize(_quantum(decimals))
    except InvalidOperation:
        raise InvalidAmount(f"Amount is out of range: {value!r}")


def format_amount(amount: Decimal, decimals: int = TOKEN_DECIMALS) -> str:
    """Canonical string form: fixed precision, trailing zeros dropped.

    ``Decimal("10.000000")`` -> ``"10"``, ``Decimal("0.5")`` -> ``"0.5"``.
    """
    quantized = amount.quantize(_quantum(decimals))
    if quantized == 0:
        return "0"
    return format(quantized.normalize(), "f")


def to_base_units(amount: Decimal, decimals: int = TOKEN_DECIMALS) -> int:
    """Convert a token amount to integer base units (e.g. 1.5 -> 1500000)."""
    return int(amount.quantize(_quantum(decimals)).scaleb(decimals))


def from_base_units(units: int, decimals: int = TOKEN_DECIMALS) -> Decimal:
    """Convert integer base units to a token amount."""
    return (Decimal(units).scaleb(-decimals)).quantize(_quantum(decimals))


def within_tolerance(actual: Decimal, expected: Decimal, tolerance: Decimal) -> bool:
    """True if *actual* is at least ``expected * tolerance``.

    Exact decimal arithmetic, so an amount sitting exactly on the boundary
    is accepted.
    """
    return actual >= expected * tolerance
