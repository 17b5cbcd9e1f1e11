"""
Transactions API endpoints - READ-ONLY
"""

import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from emailpay.api.dependencies import get_app_settings
from emailpay.api.exceptions import api_error
from emailpay.core.transactions.models import EmailTransaction, TransactionStatus
from emailpay.core.users.models import normalize_email
from emailpay.infrastructure.database import get_db
from emailpay.infrastructure.settings import Settings
from emailpay.schemas.transactions import TransactionListResponse, TransactionResponse

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get(
    "/user/{email}",
    response_model=TransactionListResponse,
    summary="List transactions for an email",
    description="Transactions sent or received by the email, newest first. Optional status filter.",
)
async def list_user_transactions(
    email: str,
    limit: int = Query(default=50, ge=1, le=200, description="Maximum number of transactions to return"),
    status_filter: Optional[str] = Query(default=None, alias="status", description="Filter by status"),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> TransactionListResponse:
    email = normalize_email(email)
    query = select(EmailTransaction).where(
        or_(EmailTransaction.sender_email == email, EmailTransaction.recipient_email == email)
    )

    if status_filter:
        try:
            query = query.where(EmailTransaction.status == TransactionStatus(status_filter.lower()))
        except ValueError:
            raise api_error(
                status.HTTP_400_BAD_REQUEST,
                "INVALID_STATUS",
                f"Invalid transaction status: {status_filter}",
            )

    transactions = db.execute(
        query.order_by(EmailTransaction.created_at.desc()).limit(limit)
    ).scalars().all()

    return TransactionListResponse(
        email=email,
        count=len(transactions),
        transactions=[TransactionResponse.from_model(tx, settings.EXPLORER_TX_URL) for tx in transactions],
    )


@router.get(
    "/{tx_id}",
    response_model=TransactionResponse,
    summary="Get transaction",
    description="Get one email transaction by id.",
)
async def get_transaction(
    tx_id: str,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> TransactionResponse:
    tx = db.execute(
        select(EmailTransaction).where(EmailTransaction.tx_id == tx_id)
    ).scalar_one_or_none()
    if tx is None:
        raise api_error(status.HTTP_404_NOT_FOUND, "TRANSACTION_NOT_FOUND", "Transaction not found")
    return TransactionResponse.from_model(tx, settings.EXPLORER_TX_URL)
