"""
Transaction API response schemas
"""

from typing import List, Optional
from pydantic import BaseModel, Field

from emailpay.core.transactions.models import EmailTransaction
from emailpay.services.notifications import format_amount
from emailpay.utils.time import ensure_utc


def _iso(value) -> Optional[str]:
    return ensure_utc(value).isoformat() if value else None


class TransactionResponse(BaseModel):
    """Email transaction response schema"""
    tx_id: str = Field(..., description="Transaction id")
    amount: str = Field(..., description="Decimal amount as a string")
    asset: str = Field(..., description="Asset symbol (ETH, PYUSD)")
    sender_email: str
    recipient_email: str
    status: str = Field(..., description="pending, processing, completed, failed or expired")
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    explorer_url: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = Field(None, description="Failure kind, e.g. REVERTED or INSUFFICIENT_FUNDS")
    created_at: Optional[str] = None
    expires_at: Optional[str] = None
    completed_at: Optional[str] = None
    failed_at: Optional[str] = None
    retry_of: Optional[str] = Field(None, description="Transaction this one retries, if any")

    class Config:
        json_schema_extra = {
            "example": {
                "tx_id": "123e4567-e89b-12d3-a456-426614174000",
                "amount": "10",
                "asset": "PYUSD",
                "sender_email": "alice@example.com",
                "recipient_email": "bob@example.com",
                "status": "completed",
                "tx_hash": "0x5c504ed432cb51138bcf09aa5e8a410dd4a1e204ef84bfed1be16dfba1b22060",
                "block_number": 5123456,
                "explorer_url": "https://sepolia.etherscan.io/tx/0x5c504ed432cb51138bcf09aa5e8a410dd4a1e204ef84bfed1be16dfba1b22060",
                "created_at": "2025-12-18T00:00:00+00:00",
            }
        }

    @classmethod
    def from_model(cls, tx: EmailTransaction, explorer_tx_url: str) -> "TransactionResponse":
        meta = tx.meta or {}
        return cls(
            tx_id=tx.tx_id,
            amount=format_amount(tx.amount),
            asset=tx.asset,
            sender_email=tx.sender_email,
            recipient_email=tx.recipient_email,
            status=tx.status.value,
            tx_hash=tx.tx_hash,
            block_number=tx.block_number,
            explorer_url=explorer_tx_url.format(tx_hash=tx.tx_hash) if tx.tx_hash else None,
            error=tx.error,
            error_code=tx.error_code,
            created_at=_iso(tx.created_at),
            expires_at=_iso(tx.expires_at),
            completed_at=_iso(tx.completed_at),
            failed_at=_iso(tx.failed_at),
            retry_of=meta.get("retry_of"),
        )


class TransactionListResponse(BaseModel):
    """Transactions involving one email, newest first"""
    email: str
    count: int
    transactions: List[TransactionResponse]
