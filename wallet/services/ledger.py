"""
Account ledger: the only code that mutates account balances.

Every balance change happens inside a LedgerUnit: one database transaction
that holds exclusive locks on every account it touches. Locks come in two
layers, both acquired in the same order:

  1. An in-process asyncio.Lock per account id. This serialises workers
     within one process, and it is the only lock that exists on SQLite,
     where SELECT ... FOR UPDATE renders as a plain SELECT.
  2. A row lock (SELECT ... FOR UPDATE) on each account row. On PostgreSQL
     this serialises workers across processes.

Lock order:
  Accounts are always locked in ascending id order, regardless of which
  account is the sender and which the receiver. Two transfers between the
  same pair in opposite directions therefore request the same first lock,
  and no cycle can form. The asyncio locks are acquired BEFORE the database
  session opens, so no worker ever sits on open database locks while
  waiting for an in-process lock.

Balances read before the unit acquired its locks are stale; the unit
re-reads every locked row and callers must use those copies.
"""

import asyncio
import uuid
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from wallet.exceptions import AccountNotFoundError, InsufficientFundsError, StorageFailureError
from wallet.models.account import Account
from wallet.services.records import validate_amount

logger = structlog.get_logger(__name__)


def lock_order(*account_ids: uuid.UUID) -> list[uuid.UUID]:
    """The deterministic order in which a set of accounts is locked."""
    return sorted(set(account_ids))


class AccountLocks:
    """
    Registry of in-process exclusive locks, one per account id.

    A single registry must be shared by every ledger in the process. A lock
    lives only while some unit holds or waits for it, so the registry stays
    as small as the number of accounts in flight.
    """

    def __init__(self):
        self._locks: dict[uuid.UUID, asyncio.Lock] = {}
        # Units holding or waiting for each lock
        self._users: dict[uuid.UUID, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def lock_for(self, account_id: uuid.UUID) -> asyncio.Lock:
        lock = self._locks.get(account_id)
        if lock is None:
            lock = self._locks[account_id] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def hold(self, *account_ids: uuid.UUID) -> AsyncIterator[list[uuid.UUID]]:
        """Acquire the locks for `account_ids` in lock order; release on exit."""
        ordered = lock_order(*account_ids)
        for account_id in ordered:
            self._users[account_id] = self._users.get(account_id, 0) + 1
        try:
            async with AsyncExitStack() as stack:
                for account_id in ordered:
                    await stack.enter_async_context(self.lock_for(account_id))
                yield ordered
        finally:
            self._forget(ordered)

    def _forget(self, account_ids: list[uuid.UUID]) -> None:
        for account_id in account_ids:
            remaining = self._users[account_id] - 1
            if remaining:
                self._users[account_id] = remaining
            else:
                del self._users[account_id]
                self._locks.pop(account_id, None)


class LedgerUnit:
    """
    An open, locked unit of work over one or more accounts.

    `session` is exposed so that records written alongside the balance
    change (transfer_in, completion of the pending record) commit or roll
    back with it.
    """

    def __init__(self, session: AsyncSession, accounts: dict[uuid.UUID, Account]):
        self.session = session
        self.accounts = accounts

    def account(self, account_id: uuid.UUID) -> Account:
        try:
            return self.accounts[account_id]
        except KeyError:
            raise AccountNotFoundError(account_id) from None

    def deposit(self, account_id: uuid.UUID, amount_cents: int) -> int:
        """Credit a locked account. Returns the new balance."""
        validate_amount(amount_cents)
        account = self.account(account_id)
        account.balance_cents += amount_cents
        return account.balance_cents

    def withdraw(self, account_id: uuid.UUID, amount_cents: int) -> int:
        """
        Debit a locked account. Returns the new balance.

        Raises:
            InsufficientFundsError: The balance is lower than the amount.
                Nothing is changed in that case.
        """
        validate_amount(amount_cents)
        account = self.account(account_id)
        if account.balance_cents < amount_cents:
            raise InsufficientFundsError(
                account_id=account_id,
                requested_cents=amount_cents,
                available_cents=account.balance_cents,
            )
        account.balance_cents -= amount_cents
        return account.balance_cents


class AccountLedger:
    """Owns balance mutation under exclusive per-account locks."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        locks: AccountLocks,
    ):
        self._session_factory = session_factory
        self.locks = locks

    @asynccontextmanager
    async def unit(self, *account_ids: uuid.UUID) -> AsyncIterator[LedgerUnit]:
        """
        Lock `account_ids` and yield a LedgerUnit over freshly read rows.

        The unit commits when the block exits normally and rolls back if it
        raises; the locks are released only after that, on every exit path.

        Raises:
            AccountNotFoundError: One of the accounts does not exist.
            StorageFailureError: The database failed while reading or committing.
        """
        async with self.locks.hold(*account_ids) as ordered:
            try:
                async with self._session_factory() as session:
                    async with session.begin():
                        accounts = {}
                        for account_id in ordered:
                            result = await session.execute(
                                select(Account)
                                .where(Account.id == account_id)
                                .with_for_update()  # No-op on SQLite
                            )
                            account = result.scalar_one_or_none()
                            if account is None:
                                raise AccountNotFoundError(account_id)
                            accounts[account_id] = account

                        yield LedgerUnit(session, accounts)
            except SQLAlchemyError as exc:
                logger.error(
                    "Ledger unit failed in storage",
                    account_ids=[str(a) for a in ordered],
                    error=str(exc),
                )
                raise StorageFailureError(f"Ledger storage failure: {exc}") from exc

    async def deposit(self, account_id: uuid.UUID, amount_cents: int) -> int:
        """Credit one account in its own unit of work. Returns the new balance."""
        validate_amount(amount_cents)
        async with self.unit(account_id) as unit:
            balance = unit.deposit(account_id, amount_cents)
        logger.info(
            "Balance credited",
            account_id=str(account_id),
            amount_cents=amount_cents,
            balance_cents=balance,
        )
        return balance

    async def withdraw(self, account_id: uuid.UUID, amount_cents: int) -> int:
        """Debit one account in its own unit of work. Returns the new balance."""
        validate_amount(amount_cents)
        async with self.unit(account_id) as unit:
            balance = unit.withdraw(account_id, amount_cents)
        logger.info(
            "Balance debited",
            account_id=str(account_id),
            amount_cents=amount_cents,
            balance_cents=balance,
        )
        return balance

    async def balance(self, account_id: uuid.UUID) -> int:
        """Read the committed balance of an account (no lock)."""
        async with self._session_factory() as session:
            account = await session.get(Account, account_id)
            if account is None:
                raise AccountNotFoundError(account_id)
            return account.balance_cents
