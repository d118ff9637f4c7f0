"""
Wallet service: the entry point for every money-moving operation.

deposit(), withdraw(), and transfer() all follow the same pattern:

  validate input ──► IdempotencyCoordinator.execute(key, ...)
                         │
                         ▼
                 open pending record ──► AccountLedger unit ──► complete
                                                │
                                                └── on failure: mark failed
                                                    (separate unit) and
                                                    return a failed Outcome

Validation errors (InvalidAmountError, SelfTransferError) are raised before
the coordinator is engaged. Failures after a record was opened never escape:
they become a failed Outcome whose record carries the reason.

build_wallet_service() wires the object graph from a session factory and a
cache client; the HTTP layer and the tests both use it.
"""

import uuid
from functools import partial

import structlog
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from wallet.config import Settings
from wallet.exceptions import WalletError
from wallet.models.account import Account
from wallet.models.transaction import DEPOSIT, WITHDRAWAL, Transaction
from wallet.schemas.transaction import Outcome
from wallet.services.currency import CurrencyConverter, StaticRateConverter
from wallet.services.idempotency import IdempotencyCoordinator
from wallet.services.ledger import AccountLedger, AccountLocks, LedgerUnit
from wallet.services.records import TransactionRecordStore, validate_amount
from wallet.services.transfer_service import TransferOrchestrator

logger = structlog.get_logger(__name__)


class WalletService:
    """Deposits, withdrawals, and transfers with at-most-once effects."""

    def __init__(
        self,
        coordinator: IdempotencyCoordinator,
        ledger: AccountLedger,
        records: TransactionRecordStore,
        transfers: TransferOrchestrator,
    ):
        self.coordinator = coordinator
        self.ledger = ledger
        self.records = records
        self.transfers = transfers

    async def deposit(
        self,
        account: Account,
        amount_cents: int,
        idempotency_key: str | None,
    ) -> Outcome:
        """Credit `amount_cents` to `account`, once per idempotency key."""
        validate_amount(amount_cents)
        return await self.coordinator.execute(
            idempotency_key,
            partial(self._move, account, DEPOSIT, amount_cents, idempotency_key),
            owner_id=account.id,
        )

    async def withdraw(
        self,
        account: Account,
        amount_cents: int,
        idempotency_key: str | None,
    ) -> Outcome:
        """Debit `amount_cents` from `account`, once per idempotency key."""
        validate_amount(amount_cents)
        return await self.coordinator.execute(
            idempotency_key,
            partial(self._move, account, WITHDRAWAL, amount_cents, idempotency_key),
            owner_id=account.id,
        )

    async def transfer(
        self,
        sender: Account,
        receiver: Account,
        amount_cents: int,
        idempotency_key: str | None,
    ) -> Outcome:
        """Move money between two accounts (see TransferOrchestrator)."""
        return await self.transfers.transfer(sender, receiver, amount_cents, idempotency_key)

    async def _move(
        self,
        account: Account,
        kind: str,
        amount_cents: int,
        idempotency_key: str,
    ) -> Outcome:
        record = await self.records.open(
            account, kind, amount_cents, account.currency, idempotency_key
        )

        try:
            async with self.ledger.unit(account.id) as unit:
                balance = self._apply(unit, account.id, kind, amount_cents)
                completed = await self.records.complete(record, session=unit.session)
        except Exception as exc:
            return await self._settle_failure(record, exc)

        logger.info(
            "Balance movement completed",
            idempotency_key=idempotency_key,
            account_id=str(account.id),
            kind=kind,
            amount_cents=amount_cents,
            balance_cents=balance,
        )
        return Outcome.completed(completed)

    @staticmethod
    def _apply(unit: LedgerUnit, account_id: uuid.UUID, kind: str, amount_cents: int) -> int:
        if kind == DEPOSIT:
            return unit.deposit(account_id, amount_cents)
        return unit.withdraw(account_id, amount_cents)

    async def _settle_failure(self, record: Transaction, exc: Exception) -> Outcome:
        logger.warning(
            "Balance movement failed",
            transaction_id=str(record.id),
            account_id=str(record.account_id),
            kind=record.kind,
            reason=str(exc),
            exc_info=not isinstance(exc, WalletError),
        )
        failed = await self.records.fail_with(record, exc)
        return Outcome.from_record(failed)


def build_wallet_service(
    session_factory: async_sessionmaker[AsyncSession],
    cache: Redis,
    settings: Settings,
    locks: AccountLocks | None = None,
    converter: CurrencyConverter | None = None,
) -> WalletService:
    """Wire the ledger core. Pass the process-wide `locks` when there is one."""
    records = TransactionRecordStore(session_factory)
    if locks is None:
        locks = AccountLocks()
    ledger = AccountLedger(session_factory, locks)
    coordinator = IdempotencyCoordinator(
        cache,
        records,
        key_prefix=settings.IDEMPOTENCY_KEY_PREFIX,
        in_progress_ttl=settings.IDEMPOTENCY_IN_PROGRESS_TTL_SECONDS,
        result_ttl=settings.IDEMPOTENCY_RESULT_TTL_SECONDS,
    )
    if converter is None:
        converter = StaticRateConverter(settings.EXCHANGE_RATES, settings.SUPPORTED_CURRENCIES)
    transfers = TransferOrchestrator(coordinator, ledger, records, converter)
    return WalletService(coordinator, ledger, records, transfers)
