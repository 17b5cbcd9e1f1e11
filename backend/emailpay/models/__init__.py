"""
Models registry for Alembic - Import all models here to ensure Base.metadata is complete
"""

from emailpay.infrastructure.database import Base

from emailpay.core.users.models import WalletUser, HOT_WALLET_SENTINEL
from emailpay.core.transactions.models import EmailTransaction, TransactionStatus

__all__ = [
    "Base",
    "WalletUser",
    "HOT_WALLET_SENTINEL",
    "EmailTransaction",
    "TransactionStatus",
]
