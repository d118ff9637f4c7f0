"""
Custom exception classes and FastAPI exception handlers.

The service layer raises domain-specific errors (like InsufficientFundsError)
without importing HTTP concepts. The handler layer translates them into
HTTP responses. Every domain error carries:

  - error_type: a stable machine-readable kind, also stored on failed
    transaction records and returned in failed outcomes
  - status_code: the HTTP status used when the error escapes to a client

Exception hierarchy:
    WalletError (base)
    ├── InvalidAmountError: non-positive or non-integral amount
    ├── InsufficientFundsError: withdrawal/transfer when balance too low
    ├── SelfTransferError: sender and receiver are the same account
    ├── ConversionUnavailableError: currency conversion cannot be performed
    │   ├── UnknownCurrencyError
    │   └── RateUnavailableError
    ├── MissingIdempotencyKeyError: blank or absent idempotency key
    ├── AlreadyProcessingError: another worker owns the key right now
    ├── IdempotencyKeyConflictError: the key belongs to another account
    ├── RecipientNotFoundError: no account for the recipient identity
    ├── AccountNotFoundError: requested account doesn't exist
    ├── DuplicateEmailError: onboarding an identity twice
    ├── InvalidTransactionError: record failed validation before insert
    └── StorageFailureError: unexpected database/cache failure

TerminalStateError is NOT a WalletError: resolving a record that
is already completed or failed is a programming error, not a business outcome.
"""

import uuid

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


# ---------------------------------------------------------------------------
# Base exception
# ---------------------------------------------------------------------------

class WalletError(Exception):
    """Base exception for all wallet domain errors."""

    error_type = "wallet_error"
    status_code = 400

    def __init__(self, detail: str = "An error occurred"):
        self.detail = detail
        super().__init__(self.detail)


# ---------------------------------------------------------------------------
# Domain exceptions
# ---------------------------------------------------------------------------

class InvalidAmountError(WalletError):
    """Raised when an amount is not a positive integer number of minor units."""

    error_type = "invalid_amount"

    def __init__(self, amount: object):
        self.amount = amount
        super().__init__(f"Amount must be a positive integer, got {amount!r}")


class InsufficientFundsError(WalletError):
    """
    Raised when a withdrawal or transfer would cause a negative balance.

    Attributes:
        account_id: The account that lacks sufficient funds.
        requested_cents: The amount the caller tried to withdraw.
        available_cents: The balance of the account at the time of the check.
    """

    error_type = "insufficient_funds"
    status_code = 422

    def __init__(
        self,
        account_id: uuid.UUID,
        requested_cents: int,
        available_cents: int,
    ):
        self.account_id = account_id
        self.requested_cents = requested_cents
        self.available_cents = available_cents
        super().__init__(
            f"Insufficient funds: requested {requested_cents} cents, "
            f"available {available_cents} cents"
        )


class SelfTransferError(WalletError):
    """Raised when a transfer names the same account on both sides."""

    error_type = "self_transfer"

    def __init__(self, account_id: uuid.UUID):
        self.account_id = account_id
        super().__init__("Cannot transfer to self")


class ConversionUnavailableError(WalletError):
    """Raised when an amount cannot be converted between two currencies."""

    error_type = "conversion_unavailable"
    status_code = 422


class UnknownCurrencyError(ConversionUnavailableError):
    error_type = "unknown_currency"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Unknown currency: {currency}")


class RateUnavailableError(ConversionUnavailableError):
    error_type = "rate_unavailable"

    def __init__(self, from_currency: str, to_currency: str):
        self.from_currency = from_currency
        self.to_currency = to_currency
        super().__init__(
            f"Currency conversion rate not available for {from_currency} to {to_currency}"
        )


class MissingIdempotencyKeyError(WalletError):
    """Raised when an operation is invoked without an idempotency key."""

    error_type = "missing_idempotency_key"

    def __init__(self):
        super().__init__("An idempotency key must be provided for this operation.")


class AlreadyProcessingError(WalletError):
    """
    Raised when another worker currently owns the idempotency key.

    The caller is expected to retry later; the coordinator never waits.
    """

    error_type = "already_processing"
    status_code = 409

    def __init__(self, key: str):
        self.key = key
        super().__init__("Request with idempotency key is being processed.")


class IdempotencyKeyConflictError(WalletError):
    """Raised when an idempotency key was already used by a different account."""

    error_type = "idempotency_key_conflict"
    status_code = 409

    def __init__(self, key: str):
        self.key = key
        super().__init__("Idempotency key was already used by another account.")


class RecipientNotFoundError(WalletError):
    """Raised when a transfer recipient cannot be resolved to an account."""

    error_type = "recipient_not_found"
    status_code = 404

    def __init__(self, identity: str):
        self.identity = identity
        super().__init__("Recipient user not found")


class AccountNotFoundError(WalletError):
    """Raised when a requested account does not exist."""

    error_type = "account_not_found"
    status_code = 404

    def __init__(self, account_id: uuid.UUID):
        self.account_id = account_id
        super().__init__(f"Account {account_id} not found")


class DuplicateEmailError(WalletError):
    """Raised when onboarding an email that is already registered."""

    error_type = "duplicate_email"
    status_code = 409

    def __init__(self, email: str):
        self.email = email
        super().__init__(f"Email {email} is already registered")


class InvalidTransactionError(WalletError):
    """Raised when a transaction record fails validation before it is persisted."""

    error_type = "invalid_transaction"


class StorageFailureError(WalletError):
    """Raised for unexpected database or cache failures."""

    error_type = "storage_failure"
    status_code = 503


class TerminalStateError(RuntimeError):
    """Raised when completing or failing a record that is no longer pending."""

    def __init__(self, record_id: uuid.UUID, status: str):
        self.record_id = record_id
        self.status = status
        super().__init__(f"Transaction {record_id} is already {status}")


def describe_failure(exc: Exception) -> tuple[str, str]:
    """Return (reason, error_type) for an exception that failed an attempt."""
    if isinstance(exc, WalletError):
        return exc.detail, exc.error_type
    return f"Unexpected error: {exc}", StorageFailureError.error_type


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

def register_exception_handlers(app: FastAPI) -> None:
    """
    Register custom exception handlers with the FastAPI application.

    Every domain error maps to its own status code and the consistent JSON
    body {"detail": "...", "error_type": "..."}.
    """

    @app.exception_handler(InsufficientFundsError)
    async def insufficient_funds_handler(
        request: Request, exc: InsufficientFundsError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "detail": exc.detail,
                "error_type": exc.error_type,
                "requested_cents": exc.requested_cents,
                "available_cents": exc.available_cents,
            },
        )

    @app.exception_handler(WalletError)
    async def wallet_error_handler(
        request: Request, exc: WalletError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail, "error_type": exc.error_type},
        )
