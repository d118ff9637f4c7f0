"""
Transaction model: the audit record of every attempted money movement.

Every deposit, withdrawal, and transfer leg creates a Transaction record:

  - A deposit creates one `deposit` record
  - A withdrawal creates one `withdrawal` record
  - A transfer creates TWO records sharing one idempotency key: a
    `transfer_out` on the sending account and a `transfer_in` on the
    receiving account

Lifecycle:
  pending ──► completed
     │
     └─────► failed (failure_reason + failure_code set)

  Deposit, withdrawal, and transfer_out records are inserted as `pending`
  BEFORE the balance mutation is attempted and resolved AFTER it, so failed
  attempts remain visible for audit. transfer_in records are only ever
  written as `completed`, inside the same unit of work as the money
  movement. Once completed or failed, a record is never mutated again.

Idempotency key uniqueness:
  The key is NOT globally unique; the two legs of a transfer
  share it. Uniqueness is scoped to (idempotency_key, kind).
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    String,
    Integer,
    DateTime,
    ForeignKey,
    CheckConstraint,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from wallet.database import Base


DEPOSIT = "deposit"
WITHDRAWAL = "withdrawal"
TRANSFER_IN = "transfer_in"
TRANSFER_OUT = "transfer_out"
KINDS = (DEPOSIT, WITHDRAWAL, TRANSFER_IN, TRANSFER_OUT)

PENDING = "pending"
COMPLETED = "completed"
FAILED = "failed"
STATUSES = (PENDING, COMPLETED, FAILED)
TERMINAL_STATUSES = (COMPLETED, FAILED)


class Transaction(Base):
    __tablename__ = "transactions"

    __table_args__ = (
        # Amount must always be positive; direction is indicated by kind
        CheckConstraint("amount_cents > 0", name="ck_transactions_positive_amount"),
        CheckConstraint(
            "kind IN ('deposit', 'withdrawal', 'transfer_in', 'transfer_out')",
            name="ck_transactions_kind",
        ),
        CheckConstraint(
            "status IN ('pending', 'completed', 'failed')",
            name="ck_transactions_status",
        ),
        UniqueConstraint(
            "idempotency_key", "kind", name="uq_transactions_idempotency_key_kind"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    account_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("accounts.id"),
        nullable=False,
        index=True,
    )

    # deposit, withdrawal, transfer_in, transfer_out
    kind: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )

    # Amount in minor units of `currency`, always positive
    amount_cents: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default=PENDING,
        index=True,
    )

    idempotency_key: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )

    # Only set on failed records
    failure_reason: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
    )
    failure_code: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
