"""Error taxonomy shared by every PingPay component.

Each error carries a stable ``kind`` string (what API clients switch on)
and a human-readable ``detail``.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional


class PingPayError(Exception):
    """Base class for all domain errors."""

    kind = "PingPayError"

    def __init__(self, detail: str = "") -> None:
        super().__init__(detail or self.kind)
        self.detail = detail or self.kind

    def to_dict(self) -> dict:
        return {"error": self.kind, "detail": self.detail}


class NotFound(PingPayError):
    """A wallet, transfer, or claim token does not exist."""

    kind = "NotFound"


class InvalidStateTransition(PingPayError):
    """The transfer is not in a state that allows the requested step."""

    kind = "InvalidStateTransition"

    def __init__(
        self,
        detail: str,
        current_status: Optional[str] = None,
        tx_hash: Optional[str] = None,
    ) -> None:
        super().__init__(detail)
        self.current_status = current_status
        self.tx_hash = tx_hash


class HandleMismatch(PingPayError):
    """The presented handle is not the transfer's recipient."""

    kind = "HandleMismatch"


class InvalidAmount(PingPayError):
    """Amount is not a positive decimal at the token's precision."""

    kind = "InvalidAmount"


class InvalidAddress(PingPayError):
    """Not a well-formed chain address."""

    kind = "InvalidAddress"


class InvalidHandle(PingPayError):
    kind = "InvalidHandle"


class InsufficientFunds(PingPayError):
    kind = "InsufficientFunds"


class InsufficientGas(PingPayError):
    """The wallet cannot cover the network fee in the native currency."""

    kind = "InsufficientGas"

    def __init__(
        self,
        detail: str,
        required: Optional[Decimal] = None,
        available: Optional[Decimal] = None,
    ) -> None:
        super().__init__(detail)
        self.required = required
        self.available = available


class TransactionNotFound(PingPayError):
    kind = "TransactionNotFound"


class TransactionTimeout(PingPayError):
    kind = "TransactionTimeout"


class ChainExecutionFailed(PingPayError):
    """The transaction was mined but reverted."""

    kind = "ChainExecutionFailed"


class AmountMismatch(PingPayError):
    """The observed on-chain amount is below the accepted band."""

    kind = "AmountMismatch"

    def __init__(self, detail: str, expected: Decimal, actual: Decimal) -> None:
        super().__init__(detail)
        self.expected = expected
        self.actual = actual

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["expected"] = str(self.expected)
        data["actual"] = str(self.actual)
        return data


class ChainSubmissionError(PingPayError):
    """The node rejected a transaction we tried to send."""

    kind = "ChainSubmissionError"


class TransactionAlreadyUsed(PingPayError):
    """The tx hash already confirmed a different transfer."""

    kind = "TransactionAlreadyUsed"

    def __init__(self, detail: str, transfer_id: Optional[str] = None) -> None:
        super().__init__(detail)
        self.transfer_id = transfer_id


class ChainUnavailable(PingPayError):
    """A chain read failed, so the true state is unknown."""

    kind = "ChainUnavailable"
