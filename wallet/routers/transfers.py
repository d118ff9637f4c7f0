"""
Transfers router: money transfers between users.

Endpoints:
  POST /v1/transfers: Transfer money to another user, identified by email

A transfer creates two linked records sharing the request's idempotency
key: a transfer_out on the sender and a transfer_in on the recipient. The
amount is in the sender's currency; the recipient is credited the
converted amount in theirs.
"""

from fastapi import APIRouter, Depends, Header, status
from sqlalchemy.ext.asyncio import AsyncSession

from wallet.database import get_db
from wallet.dependencies import get_current_account, get_wallet_service
from wallet.models.account import Account
from wallet.routers.transactions import OUTCOME_RESPONSES, render_outcome
from wallet.schemas.transaction import TransactionResponse, TransferRequest
from wallet.services import account_service
from wallet.services.wallet_service import WalletService

router = APIRouter()


@router.post(
    "",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
    responses=OUTCOME_RESPONSES,
    summary="Transfer money to another user",
)
async def create_transfer(
    request: TransferRequest,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    account: Account = Depends(get_current_account),
    service: WalletService = Depends(get_wallet_service),
    db: AsyncSession = Depends(get_db),
):
    """
    Transfer money from the authenticated user to `to_email`.

    - **to_email**: Recipient's registered email (404 if unknown)
    - **amount_cents**: Positive integer in the sender's minor units
    - Cannot transfer to yourself (400)
    - Returns the sender's transfer_out record
    """
    recipient = await account_service.resolve_recipient(db, request.to_email)
    outcome = await service.transfer(account, recipient, request.amount_cents, idempotency_key)
    return render_outcome(outcome)
