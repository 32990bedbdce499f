"""Transfer state machine."""

from ping_pay.transfers.lifecycle import (
    WITHDRAW_ALL,
    ClaimOutcome,
    ConfirmOutcome,
    TransferLifecycle,
)

__all__ = ["WITHDRAW_ALL", "ClaimOutcome", "ConfirmOutcome", "TransferLifecycle"]
