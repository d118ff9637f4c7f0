"""
Onboarding router.

Endpoints:
  POST /v1/users: Register an identity and provision its account

This is the only unauthenticated endpoint besides /health. The response
contains the API key the user must send in X-User-API-Key from then on.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from wallet.database import get_db
from wallet.schemas.account import AccountResponse, OnboardRequest, OnboardResponse
from wallet.services import account_service

router = APIRouter()


@router.post(
    "",
    response_model=OnboardResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a user and create their account",
)
async def onboard(
    request: OnboardRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Register a new user with a single zero-balance account.

    - **email**: Must be a valid email and not already registered (409)
    - **currency**: Optional ISO 4217 code of the account (defaults to USD)
    """
    user, account = await account_service.onboard_user(
        db=db,
        email=request.email,
        currency=request.currency,
    )
    return OnboardResponse(
        user_id=user.id,
        email=user.email,
        api_key=user.api_key,
        account=AccountResponse.model_validate(account),
        created_at=user.created_at,
    )
