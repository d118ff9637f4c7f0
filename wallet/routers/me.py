"""
Current-user router: read-only views of the caller's wallet.

Endpoints:
  GET /v1/me/wallet: Account id, balance, and currency
  GET /v1/me/balance: Stored vs. computed balance (integrity check)
  GET /v1/me/transactions: Transaction history, newest first
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from wallet.database import get_db
from wallet.dependencies import get_current_account
from wallet.models.account import Account
from wallet.schemas.account import AccountResponse, BalanceResponse
from wallet.schemas.transaction import TransactionResponse
from wallet.services import account_service

router = APIRouter()


@router.get(
    "/wallet",
    response_model=AccountResponse,
    summary="Get the caller's wallet",
)
async def get_wallet(account: Account = Depends(get_current_account)):
    return account


@router.get(
    "/balance",
    response_model=BalanceResponse,
    summary="Check the caller's balance against the transaction history",
)
async def get_balance(
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    """
    Return the stored balance alongside the balance computed by summing
    completed records. `match` should always be true.
    """
    return await account_service.get_balance(db, account)


@router.get(
    "/transactions",
    response_model=list[TransactionResponse],
    summary="List the caller's transactions",
)
async def list_transactions(
    status: str | None = Query(None, description="Filter by status: pending, completed, failed"),
    kind: str | None = Query(
        None, description="Filter by kind: deposit, withdrawal, transfer_in, transfer_out"
    ),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    """List the caller's transaction records, newest first, with optional filters."""
    return await account_service.list_transactions(
        db=db,
        account_id=account.id,
        status_filter=status,
        kind_filter=kind,
        limit=limit,
        offset=offset,
    )
