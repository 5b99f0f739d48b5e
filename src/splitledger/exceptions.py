"""Custom exceptions for SplitLedger."""

from decimal import Decimal, InvalidOperation

from pydantic import BaseModel
from pydantic import ValidationError as ModelValidationError


class SplitLedgerError(Exception):
    """Base exception for all SplitLedger errors."""

    code = "error"
    retryable = False


class ConfigurationError(SplitLedgerError):
    """Raised when configuration is invalid or missing."""

    code = "configuration_error"


class ValidationError(SplitLedgerError):
    """Raised when input is malformed; always raised before any write."""

    code = "validation_error"


class AuthorizationError(SplitLedgerError):
    """Raised when the actor lacks the required membership or ownership."""

    code = "authorization_error"


class NotFoundError(SplitLedgerError):
    """Raised when a referenced user, expense or settlement does not exist."""

    code = "not_found"

    def __init__(self, kind: str, identifier: object, message: str | None = None):
        self.kind = kind
        self.identifier = identifier
        super().__init__(message or f"{kind.capitalize()} {identifier} not found")


class InvalidSplitError(SplitLedgerError):
    """Raised when participant shares cannot be resolved."""

    code = "invalid_split"


class SplitMismatchError(InvalidSplitError):
    """Raised when shares do not reconcile with the expense total."""

    code = "split_mismatch"


class SettlementError(SplitLedgerError):
    """Base class for settlement precondition failures."""

    code = "settlement_error"


class NoDebtError(SettlementError):
    """Raised when the payer has no outstanding net debt to the recipient."""

    code = "no_debt"

    def __init__(self, net_debt: Decimal, message: str):
        self.net_debt = net_debt
        super().__init__(message)

    @property
    def reversed(self) -> bool:
        """True when the recipient is the one who owes money."""
        return self.net_debt < 0


class OverSettlementError(SettlementError):
    """Raised when a settlement exceeds the outstanding net debt."""

    code = "over_settlement"

    def __init__(self, amount: Decimal, net_debt: Decimal):
        self.amount = amount
        self.net_debt = net_debt
        super().__init__(
            f"Settlement amount {amount} exceeds outstanding debt of {net_debt}"
        )


class ConflictError(SplitLedgerError):
    """Raised when a unit of work could not acquire the write lock in time."""

    code = "conflict"
    retryable = True


class InfrastructureError(SplitLedgerError):
    """Raised when the underlying store fails."""

    code = "infrastructure_error"


class OperationFailure(BaseModel):
    """Caller-visible description of a failed operation."""

    code: str
    message: str
    retryable: bool = False


def describe_failure(error: BaseException) -> OperationFailure:
    """
    Translate an exception into a structured failure.

    Domain errors keep their message. Malformed input rejected by the models
    or by Decimal parsing is a validation error. Infrastructure and
    unexpected errors are reported without internal detail.
    """
    if isinstance(error, ModelValidationError):
        details = "; ".join(
            f"{'.'.join(str(part) for part in e['loc'])}: {e['msg']}"
            if e["loc"]
            else e["msg"]
            for e in error.errors()
        )
        return OperationFailure(
            code=ValidationError.code, message=f"Invalid input: {details}"
        )
    if isinstance(error, InvalidOperation):
        return OperationFailure(
            code=ValidationError.code, message="Not a valid amount"
        )
    if isinstance(error, SplitLedgerError) and not isinstance(
        error, InfrastructureError
    ):
        return OperationFailure(
            code=error.code, message=str(error), retryable=error.retryable
        )
    return OperationFailure(
        code=InfrastructureError.code,
        message="The operation failed. No changes were made.",
    )
