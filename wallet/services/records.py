"""
Transaction record store: the audit trail of every attempted movement.

Operations:
  - open():          validate and insert a `pending` record in its own
                     committed unit of work, BEFORE any balance mutation
  - complete():      pending -> completed
  - fail():          pending -> failed, with reason and error kind
  - add_completed(): insert an already-completed record inside a caller's
                     unit of work (the transfer_in leg)
  - find_for_key():  the authoritative record for an idempotency key
  - list_for_key():  every record under a key (two for a transfer)

Units of work:
  complete() and fail() accept an optional session. With a session, the
  transition joins the caller's unit of work (so a deposit's balance change
  and its completion commit together). Without one, the store opens and
  commits its own short unit. That is used to mark a record failed AFTER the money
  movement was rolled back, so the failure survives the rollback.

Terminal states:
  Both transitions re-read the row under a row lock and refuse to touch a
  record that is no longer pending (TerminalStateError).
"""

import uuid
from datetime import datetime, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from wallet.exceptions import (
    AlreadyProcessingError,
    InvalidAmountError,
    InvalidTransactionError,
    MissingIdempotencyKeyError,
    StorageFailureError,
    TerminalStateError,
    describe_failure,
)
from wallet.models.account import Account
from wallet.models.transaction import (
    COMPLETED,
    FAILED,
    KINDS,
    PENDING,
    TRANSFER_OUT,
    Transaction,
)

logger = structlog.get_logger(__name__)

MAX_REASON_LENGTH = 500


def validate_amount(amount: object) -> int:
    """Return `amount` if it is a strictly positive int, else raise InvalidAmountError."""
    # bool is an int subclass; True is not an amount
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmountError(amount)
    return amount


class TransactionRecordStore:
    """Persists transaction records and drives their three-state lifecycle."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def open(
        self,
        account: Account,
        kind: str,
        amount_cents: int,
        currency: str,
        idempotency_key: str,
    ) -> Transaction:
        """
        Validate and persist a new `pending` record.

        The insert is committed immediately so that a crash at any later
        point still leaves an auditable trace.

        Raises:
            InvalidTransactionError: Unknown kind or blank currency.
            InvalidAmountError: Amount is not a positive integer.
            MissingIdempotencyKeyError: Blank idempotency key.
            AlreadyProcessingError: A record of this kind already exists
                for the key.
            StorageFailureError: The insert itself failed.
        """
        self._validate(kind, amount_cents, currency, idempotency_key)

        record = Transaction(
            account_id=account.id,
            kind=kind,
            amount_cents=amount_cents,
            currency=currency,
            status=PENDING,
            idempotency_key=idempotency_key,
        )
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(record)
        except IntegrityError as exc:
            logger.warning(
                "Transaction record already exists for key",
                kind=kind,
                idempotency_key=idempotency_key,
            )
            raise AlreadyProcessingError(idempotency_key) from exc
        except SQLAlchemyError as exc:
            raise StorageFailureError(f"Could not open {kind} record: {exc}") from exc

        logger.info(
            "Transaction record opened",
            transaction_id=str(record.id),
            account_id=str(account.id),
            kind=kind,
            amount_cents=amount_cents,
            idempotency_key=idempotency_key,
        )
        return record

    async def add_completed(
        self,
        session: AsyncSession,
        account: Account,
        kind: str,
        amount_cents: int,
        currency: str,
        idempotency_key: str,
    ) -> Transaction:
        """Insert an already-completed record inside the caller's unit of work."""
        self._validate(kind, amount_cents, currency, idempotency_key)

        record = Transaction(
            account_id=account.id,
            kind=kind,
            amount_cents=amount_cents,
            currency=currency,
            status=COMPLETED,
            idempotency_key=idempotency_key,
        )
        session.add(record)
        await session.flush()
        return record

    async def complete(
        self,
        record: Transaction,
        session: AsyncSession | None = None,
    ) -> Transaction:
        """Transition a pending record to `completed`."""
        return await self._transition(record, COMPLETED, session)

    async def fail(
        self,
        record: Transaction,
        reason: str,
        error_type: str,
        session: AsyncSession | None = None,
    ) -> Transaction:
        """Transition a pending record to `failed`, recording why."""
        return await self._transition(
            record,
            FAILED,
            session,
            failure_reason=(reason or "Unknown failure")[:MAX_REASON_LENGTH],
            failure_code=error_type,
        )

    async def fail_with(self, record: Transaction, exc: Exception) -> Transaction:
        """Mark a record failed with the reason and kind of `exc`."""
        reason, error_type = describe_failure(exc)
        return await self.fail(record, reason, error_type)

    async def find_for_key(self, idempotency_key: str) -> Transaction | None:
        """
        Return the record that speaks for an idempotency key, if any.

        A transfer leaves two records under one key; the transfer_out leg
        is authoritative. Otherwise the key maps to at most one record.
        """
        records = await self.list_for_key(idempotency_key)
        if not records:
            return None
        for record in records:
            if record.kind == TRANSFER_OUT:
                return record
        return records[0]

    async def list_for_key(self, idempotency_key: str) -> list[Transaction]:
        """Every record written under an idempotency key, oldest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Transaction)
                .where(Transaction.idempotency_key == idempotency_key)
                .order_by(Transaction.created_at)
            )
            return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _validate(kind: str, amount_cents: int, currency: str, idempotency_key: str) -> None:
        if kind not in KINDS:
            raise InvalidTransactionError(
                f"Transaction kind must be one of {', '.join(KINDS)}, got {kind!r}"
            )
        validate_amount(amount_cents)
        if not currency:
            raise InvalidTransactionError("Transaction currency is required")
        if not idempotency_key or not idempotency_key.strip():
            raise MissingIdempotencyKeyError()

    async def _transition(
        self,
        record: Transaction,
        status: str,
        session: AsyncSession | None,
        **values,
    ) -> Transaction:
        if session is not None:
            return await self._apply_transition(session, record.id, status, values)

        try:
            async with self._session_factory() as own_session:
                async with own_session.begin():
                    updated = await self._apply_transition(
                        own_session, record.id, status, values
                    )
        except SQLAlchemyError as exc:
            raise StorageFailureError(
                f"Could not mark transaction {record.id} {status}: {exc}"
            ) from exc
        return updated

    @staticmethod
    async def _apply_transition(
        session: AsyncSession,
        record_id: uuid.UUID,
        status: str,
        values: dict,
    ) -> Transaction:
        # populate_existing: the caller's copy may be stale
        row = await session.get(
            Transaction,
            record_id,
            with_for_update=True,
            populate_existing=True,
        )
        if row is None:
            raise InvalidTransactionError(f"Transaction {record_id} does not exist")
        if row.is_terminal:
            raise TerminalStateError(row.id, row.status)

        row.status = status
        row.updated_at = datetime.now(timezone.utc)
        for name, value in values.items():
            setattr(row, name, value)
        await session.flush()

        logger.info(
            "Transaction record resolved",
            transaction_id=str(row.id),
            kind=row.kind,
            status=status,
            failure_reason=values.get("failure_reason"),
        )
        return row
