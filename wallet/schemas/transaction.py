"""
Pydantic schemas for transactions and operation outcomes.

All monetary amounts are in integer minor units (e.g., $10.50 = 1050).

Outcome is the single return type of every money-moving operation. It is
also what the idempotency cache stores: a replayed request deserialises the
cached JSON back into an Outcome and returns it verbatim.
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, EmailStr, Field

from wallet.models.transaction import COMPLETED, Transaction


class DepositRequest(BaseModel):
    """Request body for POST /v1/deposits."""
    amount_cents: int = Field(gt=0, description="Amount in minor units (must be positive)")


class WithdrawalRequest(BaseModel):
    """Request body for POST /v1/withdrawals."""
    amount_cents: int = Field(gt=0, description="Amount in minor units (must be positive)")


class TransferRequest(BaseModel):
    """Request body for POST /v1/transfers."""
    to_email: EmailStr
    amount_cents: int = Field(
        gt=0,
        description="Amount in the sender's minor units (must be positive)",
    )


class TransactionResponse(BaseModel):
    """Public representation of a transaction record."""
    id: uuid.UUID
    account_id: uuid.UUID
    kind: str
    amount_cents: int
    currency: str
    status: str
    idempotency_key: str
    failure_reason: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class Outcome(BaseModel):
    """
    Result of a deposit, withdrawal, or transfer.

    - success: True only when the record reached `completed`
    - payload: the canonical record (transfer_out for transfers)
    - error / error_type: human-readable reason and stable kind on failure
    """
    success: bool
    payload: TransactionResponse | None = None
    error: str | None = None
    error_type: str | None = None

    @classmethod
    def completed(cls, record: Transaction) -> "Outcome":
        return cls(success=True, payload=TransactionResponse.model_validate(record))

    @classmethod
    def failed(
        cls,
        error: str,
        error_type: str,
        record: Transaction | None = None,
    ) -> "Outcome":
        payload = TransactionResponse.model_validate(record) if record is not None else None
        return cls(success=False, payload=payload, error=error, error_type=error_type)

    @classmethod
    def from_record(cls, record: Transaction) -> "Outcome":
        """Rebuild the outcome of a terminal record (durable replay)."""
        if record.status == COMPLETED:
            return cls.completed(record)
        return cls.failed(
            error=record.failure_reason or "Transaction previously failed",
            error_type=record.failure_code or "storage_failure",
            record=record,
        )


class FailedOutcomeResponse(BaseModel):
    """Response body (422) for an operation that was attempted and failed."""
    detail: str
    error_type: str
    transaction: TransactionResponse | None = None
