"""
FastAPI dependencies for authentication and service wiring.

  get_current_user     (X-User-API-Key header -> User)
      └── get_current_account (User -> Account)
  get_wallet_service   (app.state -> WalletService)

The WalletService, its Redis client, and its account lock registry are
built once in the application lifespan and stored on app.state; tests
override get_wallet_service with one wired to a fake cache.
"""

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from wallet.database import get_db
from wallet.models.account import Account
from wallet.models.user import User
from wallet.services import account_service, auth_service
from wallet.services.wallet_service import WalletService


async def get_current_user(
    api_key: str | None = Header(default=None, alias="X-User-API-Key"),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Resolve the API key header to a User.

    Raises:
        HTTPException 401: The header is missing or the key is unknown.
    """
    user = await auth_service.authenticate(db, api_key)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
    return user


async def get_current_account(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Account:
    """The authenticated user's account."""
    return await account_service.get_account_for_user(db, user.id)


def get_wallet_service(request: Request) -> WalletService:
    return request.app.state.wallet_service
