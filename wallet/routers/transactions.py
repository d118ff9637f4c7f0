"""
Deposit and withdrawal endpoints.

Endpoints:
  POST /v1/deposits: Credit the caller's account
  POST /v1/withdrawals: Debit the caller's account

Both require an Idempotency-Key header. Replaying a request with the same
key returns the original outcome without moving money again; a request
whose key is still being processed gets 409 and should be retried later.
A key already used by another account also gets 409 and is never replayed.

Responses:
  201: the operation completed; body is the transaction record
  422: the operation was attempted and failed (e.g. insufficient funds);
       body carries the reason, its error_type, and the failed record
"""

from fastapi import APIRouter, Depends, Header, status
from fastapi.responses import JSONResponse

from wallet.dependencies import get_current_account, get_wallet_service
from wallet.models.account import Account
from wallet.schemas.transaction import (
    DepositRequest,
    FailedOutcomeResponse,
    Outcome,
    TransactionResponse,
    WithdrawalRequest,
)
from wallet.services.wallet_service import WalletService

router = APIRouter()

OUTCOME_RESPONSES = {
    422: {"model": FailedOutcomeResponse, "description": "Attempted and failed"},
    409: {
        "description": "Idempotency key is being processed or belongs to another account"
    },
}


def render_outcome(outcome: Outcome) -> JSONResponse:
    """Translate an Outcome into a 201 (success) or 422 (failure) response."""
    if outcome.success:
        return JSONResponse(
            status_code=status.HTTP_201_CREATED,
            content=outcome.payload.model_dump(mode="json"),
        )
    body = FailedOutcomeResponse(
        detail=outcome.error or "Transaction failed",
        error_type=outcome.error_type or "storage_failure",
        transaction=outcome.payload,
    )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=body.model_dump(mode="json"),
    )


@router.post(
    "/deposits",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
    responses=OUTCOME_RESPONSES,
    summary="Deposit into the caller's account",
)
async def create_deposit(
    request: DepositRequest,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    account: Account = Depends(get_current_account),
    service: WalletService = Depends(get_wallet_service),
):
    """
    Deposit money into the authenticated user's account.

    - **amount_cents**: Positive integer in minor units (e.g., $10.50 = 1050)
    """
    outcome = await service.deposit(account, request.amount_cents, idempotency_key)
    return render_outcome(outcome)


@router.post(
    "/withdrawals",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
    responses=OUTCOME_RESPONSES,
    summary="Withdraw from the caller's account",
)
async def create_withdrawal(
    request: WithdrawalRequest,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    account: Account = Depends(get_current_account),
    service: WalletService = Depends(get_wallet_service),
):
    """
    Withdraw money from the authenticated user's account.

    A withdrawal larger than the balance fails with 422 and is still
    recorded (status "failed") for audit purposes.
    """
    outcome = await service.withdraw(account, request.amount_cents, idempotency_key)
    return render_outcome(outcome)
