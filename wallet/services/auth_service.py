"""
Authentication service: static API key issue and lookup.

Each user is issued a random API key at onboarding and sends it in the
X-User-API-Key header. The lookup is a single indexed query; there is no
session or token state.
"""

import secrets

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wallet.models.user import User

API_KEY_BYTES = 24


def generate_api_key() -> str:
    """Return a fresh 48-character hex API key."""
    return secrets.token_hex(API_KEY_BYTES)


async def authenticate(db: AsyncSession, api_key: str | None) -> User | None:
    """Return the user owning `api_key`, or None if the key is missing or unknown."""
    if not api_key:
        return None
    result = await db.execute(select(User).where(User.api_key == api_key))
    return result.scalar_one_or_none()
