"""
SQLAlchemy ORM models package.

All models are imported here so that metadata.create_all() sees every
table and other modules can import from wallet.models directly.
"""

from wallet.models.user import User  # noqa: F401
from wallet.models.account import Account  # noqa: F401
from wallet.models.transaction import Transaction  # noqa: F401
