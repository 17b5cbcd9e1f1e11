"""
EmailTransaction model - one payment attempt requested by email
"""

import enum
from sqlalchemy import BigInteger, CheckConstraint, Column, DateTime, Enum as SQLEnum, JSON, Numeric, String, Text
from emailpay.core.common.base_model import BaseModel


class TransactionStatus(str, enum.Enum):
    """
    Transaction status enum

    pending -> processing -> completed | failed
    pending -> expired

    PROCESSING is the claim state held by exactly one execution.
    """
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    TransactionStatus.COMPLETED,
    TransactionStatus.FAILED,
    TransactionStatus.EXPIRED,
})


class EmailTransaction(BaseModel):
    """
    EmailTransaction model

    Created by the "process send" step after both parties are validated,
    mutated only by the transaction engine, never deleted (audit trail).
    """

    __tablename__ = "email_transactions"

    tx_id = Column(String(64), unique=True, nullable=False, index=True)
    amount = Column(Numeric(36, 18), nullable=False)
    asset = Column(String(16), nullable=False, default="PYUSD")
    sender_email = Column(String(255), nullable=False, index=True)
    recipient_email = Column(String(255), nullable=False, index=True)
    status = Column(
        SQLEnum(
            TransactionStatus,
            name="email_transaction_status",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
        default=TransactionStatus.PENDING,
        index=True,
    )
    expires_at = Column(DateTime(timezone=True), nullable=False)

    tx_hash = Column(String(66), nullable=True, index=True)
    block_number = Column(BigInteger, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)
    error = Column(Text, nullable=True)
    error_code = Column(String(40), nullable=True)
    # Set by the claim; reconciliation picks up records stuck in processing from here
    processing_started_at = Column(DateTime(timezone=True), nullable=True)

    # message_id / thread_id / rfc_message_id of the originating email, retry_of
    meta = Column("metadata", JSON, nullable=False, default=dict)

    __table_args__ = (
        CheckConstraint("amount > 0", name="check_email_transactions_amount_positive"),
    )

    @property
    def message_id(self):
        return (self.meta or {}).get("message_id")
