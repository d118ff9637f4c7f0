"""
Account service: identity onboarding, lookup, and read-side queries.

This module handles:
  - Onboarding: creating a User and its single Account in one step
  - Recipient resolution: external identity (email) -> Account
  - Reads: the caller's account, its transaction history, and a balance
    integrity check (stored balance vs. the sum of completed records)

Provisioning is explicit: an Account exists because onboard_user() created
it, never because some read found it missing.

Balances are never written here. All mutation goes through the
AccountLedger in wallet.services.ledger.
"""

import uuid

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from wallet.config import settings
from wallet.exceptions import (
    AccountNotFoundError,
    DuplicateEmailError,
    RecipientNotFoundError,
    UnknownCurrencyError,
)
from wallet.models.account import Account
from wallet.models.transaction import (
    COMPLETED,
    DEPOSIT,
    TRANSFER_IN,
    TRANSFER_OUT,
    WITHDRAWAL,
    Transaction,
)
from wallet.models.user import User
from wallet.services.auth_service import generate_api_key


async def onboard_user(
    db: AsyncSession,
    email: str,
    currency: str | None = None,
) -> tuple[User, Account]:
    """
    Register an identity and provision its account with a zero balance.

    Both rows are flushed in the caller's transaction; if either fails,
    neither is persisted.

    Args:
        db: Database session.
        email: External identity (must be unique).
        currency: ISO 4217 code; defaults to settings.DEFAULT_CURRENCY.

    Returns:
        Tuple of (User, Account).

    Raises:
        DuplicateEmailError: The email is already registered.
        UnknownCurrencyError: The currency is not supported.
    """
    currency = (currency or settings.DEFAULT_CURRENCY).upper()
    if currency not in settings.SUPPORTED_CURRENCIES:
        raise UnknownCurrencyError(currency)

    result = await db.execute(select(User).where(User.email == email))
    if result.scalar_one_or_none() is not None:
        raise DuplicateEmailError(email)

    user = User(email=email, api_key=generate_api_key())
    db.add(user)
    # Flush to get user.id assigned (needed for the FK below)
    await db.flush()

    account = Account(user_id=user.id, balance_cents=0, currency=currency)
    db.add(account)
    await db.flush()
    return user, account


async def get_account_for_user(db: AsyncSession, user_id: uuid.UUID) -> Account:
    """
    Return the account owned by `user_id`.

    Raises:
        AccountNotFoundError: The user has no account.
    """
    result = await db.execute(select(Account).where(Account.user_id == user_id))
    account = result.scalar_one_or_none()
    if account is None:
        raise AccountNotFoundError(user_id)
    return account


async def resolve_recipient(db: AsyncSession, email: str) -> Account:
    """
    Resolve an external identity to its account.

    Raises:
        RecipientNotFoundError: No user, or no account, for this email.
    """
    result = await db.execute(
        select(Account).join(User, Account.user_id == User.id).where(User.email == email)
    )
    account = result.scalar_one_or_none()
    if account is None:
        raise RecipientNotFoundError(email)
    return account


async def list_transactions(
    db: AsyncSession,
    account_id: uuid.UUID,
    status_filter: str | None = None,
    kind_filter: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Transaction]:
    """
    List an account's transaction records, newest first.

    Args:
        db: Database session.
        account_id: The account whose records to return.
        status_filter: Optional filter by status ("pending", "completed", "failed").
        kind_filter: Optional filter by kind ("deposit", "withdrawal", ...).
        limit: Max number of results (default 50).
        offset: Number of results to skip (for pagination).
    """
    query = (
        select(Transaction)
        .where(Transaction.account_id == account_id)
        .order_by(Transaction.created_at.desc())
        .limit(limit)
        .offset(offset)
    )

    if status_filter:
        query = query.where(Transaction.status == status_filter)
    if kind_filter:
        query = query.where(Transaction.kind == kind_filter)

    result = await db.execute(query)
    return list(result.scalars().all())


async def get_balance(db: AsyncSession, account: Account) -> dict:
    """
    Return the stored balance next to the balance computed from records.

    A mismatch would mean a balance changed without its record completing
    (or vice versa), which is a data integrity issue.
    """
    computed_balance_cents = await _compute_balance_from_transactions(db, account.id)
    return {
        "account_id": account.id,
        "balance_cents": account.balance_cents,
        "computed_balance_cents": computed_balance_cents,
        "match": account.balance_cents == computed_balance_cents,
        "currency": account.currency,
    }


async def _compute_balance_from_transactions(db: AsyncSession, account_id: uuid.UUID) -> int:
    """Completed credits (deposit, transfer_in) minus completed debits."""

    async def total(*kinds: str) -> int:
        result = await db.execute(
            select(func.coalesce(func.sum(Transaction.amount_cents), 0))
            .where(Transaction.account_id == account_id)
            .where(Transaction.status == COMPLETED)
            .where(Transaction.kind.in_(kinds))
        )
        return result.scalar()

    return await total(DEPOSIT, TRANSFER_IN) - await total(WITHDRAWAL, TRANSFER_OUT)
