"""
Pydantic schemas for onboarding and wallet endpoints.

All monetary amounts are expressed in integer minor units.
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, EmailStr, Field


class OnboardRequest(BaseModel):
    """Request body for POST /v1/users."""
    email: EmailStr
    currency: str | None = Field(
        default=None,
        min_length=3,
        max_length=3,
        description="ISO 4217 code of the account; defaults to the configured currency",
    )


class AccountResponse(BaseModel):
    """Public representation of a wallet account."""
    id: uuid.UUID
    balance_cents: int
    currency: str

    model_config = {"from_attributes": True}


class OnboardResponse(BaseModel):
    """Response body for POST /v1/users: identity, API key, and new account."""
    user_id: uuid.UUID
    email: str
    api_key: str
    account: AccountResponse
    created_at: datetime


class BalanceResponse(BaseModel):
    """
    Balance check response: the stored balance and the balance computed by
    summing completed transaction records. `match` is False only if the two
    disagree, which would indicate a data integrity issue.
    """
    account_id: uuid.UUID
    balance_cents: int
    computed_balance_cents: int
    match: bool
    currency: str
