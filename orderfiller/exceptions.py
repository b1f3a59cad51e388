"""Exception hierarchy for order filling.

Fill failures form a closed set of kinds so callers can branch on
retryability instead of matching message strings.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional


class FillerException(Exception):
    """Base exception for all filler errors."""
    pass


class ConfigurationException(FillerException):
    """Configuration validation error."""
    pass


class RegistryException(FillerException):
    """Order registry communication error."""
    pass


class FillErrorKind(Enum):
    ORDER_NOT_FOUND = "order_not_found"
    MALFORMED_ORDER_DATA = "malformed_order_data"
    ORDER_ALREADY_SETTLED = "order_already_settled"
    ORDER_EXPIRED = "order_expired"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    APPROVAL_FAILED = "approval_failed"
    TRANSACTION_REJECTED = "transaction_rejected"
    TRANSACTION_VALIDATION_FAILED = "transaction_validation_failed"
    CONFIRMATION_TIMEOUT = "confirmation_timeout"
    UNCLASSIFIED_FAILURE = "unclassified_failure"


class FillError(FillerException):
    """A classified failure of one fill attempt."""

    kind: FillErrorKind = FillErrorKind.UNCLASSIFIED_FAILURE
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        tx_hash: Optional[str] = None,
        retryable: Optional[bool] = None,
    ):
        self.message = message
        self.tx_hash = tx_hash
        self.retryable = self.default_retryable if retryable is None else bool(retryable)
        super().__init__(message)

    def __str__(self) -> str:
        if self.tx_hash and self.tx_hash not in self.message:
            return f"{self.message} (tx: {self.tx_hash})"
        return self.message

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "message": str(self),
            "retryable": self.retryable,
            "txHash": self.tx_hash,
        }


class OrderNotFound(FillError):
    kind = FillErrorKind.ORDER_NOT_FOUND


class MalformedOrderData(FillError):
    kind = FillErrorKind.MALFORMED_ORDER_DATA


class OrderAlreadySettled(FillError):
    kind = FillErrorKind.ORDER_ALREADY_SETTLED


class OrderExpired(FillError):
    kind = FillErrorKind.ORDER_EXPIRED


class InsufficientBalance(FillError):
    kind = FillErrorKind.INSUFFICIENT_BALANCE


class ApprovalFailed(FillError):
    kind = FillErrorKind.APPROVAL_FAILED


class TransactionRejected(FillError):
    """Rejected by the node or reverted on-chain.

    Created with ``retryable=False`` when the wallet owner declined to sign
    or the account cannot pay for gas.
    """

    kind = FillErrorKind.TRANSACTION_REJECTED
    default_retryable = True


class TransactionValidationFailed(FillError):
    kind = FillErrorKind.TRANSACTION_VALIDATION_FAILED
    default_retryable = True


class ConfirmationTimeout(FillError):
    kind = FillErrorKind.CONFIRMATION_TIMEOUT
    default_retryable = True


class UnclassifiedFailure(FillError):
    kind = FillErrorKind.UNCLASSIFIED_FAILURE
    default_retryable = True
