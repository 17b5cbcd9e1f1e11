"""
Transaction execution engine

Lifecycle of an EmailTransaction:

    pending -> processing -> completed | failed
    pending -> expired

Every status change is a conditional UPDATE that only succeeds from the
expected source status, so two executions of the same transaction can never
both act on it, and a terminal state is never overwritten.

Once a transfer is broadcast it is never failed as retryable: anything that
goes wrong afterwards leaves the record in processing with its tx hash, and
the reconciliation sweep settles it from the chain.
"""

import logging
import uuid
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from emailpay.core.transactions.models import EmailTransaction, TransactionStatus
from emailpay.core.users.models import WalletUser, normalize_email
from emailpay.infrastructure.settings import Settings
from emailpay.services.assets import get_asset
from emailpay.services.chain import ChainClient, TransactionReceipt, build_transfer_payload
from emailpay.services.errors import ExecutionError, ExecutionErrorKind
from emailpay.services.notifications import TransactionNotifier
from emailpay.services.signing import SigningBackendSelector
from emailpay.utils.metrics import record_transaction_created, record_transaction_outcome
from emailpay.utils.time import ensure_utc, start_of_utc_day, utcnow

logger = logging.getLogger(__name__)

EXECUTE_TASK = "emailpay-execute-transaction"

# Statuses that count against the sender's daily cap
DAILY_CAP_STATUSES = (
    TransactionStatus.PENDING,
    TransactionStatus.PROCESSING,
    TransactionStatus.COMPLETED,
)


class TransactionEngineError(Exception):
    """Base exception for transaction engine errors"""
    pass


class TransactionRejectedError(TransactionEngineError):
    """Raised by create when a request fails validation; nothing is persisted"""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(message)


class TransactionNotFoundError(TransactionEngineError):
    pass


class RetryNotAllowedError(TransactionEngineError):
    pass


class TransactionEngine:
    """Creates, executes, expires and retries email transactions"""

    def __init__(
        self,
        *,
        scheduler,
        signer_selector: SigningBackendSelector,
        chain: ChainClient,
        notifier: TransactionNotifier,
        settings: Settings,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.scheduler = scheduler
        self.signer_selector = signer_selector
        self.chain = chain
        self.notifier = notifier
        self.settings = settings
        self.clock = clock or utcnow

    # Lookups

    @staticmethod
    def get_transaction(db: Session, tx_id: str) -> Optional[EmailTransaction]:
        return db.execute(
            select(EmailTransaction).where(EmailTransaction.tx_id == tx_id)
        ).scalar_one_or_none()

    @staticmethod
    def _get_user(db: Session, email: str) -> Optional[WalletUser]:
        return db.execute(
            select(WalletUser).where(WalletUser.email == normalize_email(email))
        ).scalar_one_or_none()

    def _transition(
        self,
        db: Session,
        tx_id: str,
        from_status: TransactionStatus,
        to_status: TransactionStatus,
        **values: Any,
    ) -> bool:
        """Atomically move tx_id from from_status to to_status; False if it was not in from_status"""
        result = db.execute(
            update(EmailTransaction)
            .where(EmailTransaction.tx_id == tx_id, EmailTransaction.status == from_status)
            .values(status=to_status, **values)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount == 1

    # Create

    def _daily_total(self, db: Session, sender_email: str, asset: str, now: datetime) -> Decimal:
        total = db.execute(
            select(func.coalesce(func.sum(EmailTransaction.amount), 0)).where(
                EmailTransaction.sender_email == sender_email,
                EmailTransaction.asset == asset,
                EmailTransaction.status.in_(DAILY_CAP_STATUSES),
                EmailTransaction.created_at >= start_of_utc_day(now),
            )
        ).scalar_one()
        return Decimal(str(total))

    def create_transaction(
        self,
        db: Session,
        *,
        sender_email: str,
        recipient_email: str,
        amount,
        asset: str,
        email_message_id: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> EmailTransaction:
        """
        Validate and persist a pending transaction, then schedule its execution.

        Raises:
            TransactionRejectedError: if any business rule fails (nothing is persisted)
        """
        try:
            amount = Decimal(str(amount))
        except InvalidOperation:
            raise TransactionRejectedError("INVALID_AMOUNT", f"Invalid amount: {amount}")
        if not amount.is_finite() or amount <= 0:
            raise TransactionRejectedError("INVALID_AMOUNT", "Amount must be greater than zero")

        sender_email = normalize_email(sender_email)
        recipient_email = normalize_email(recipient_email)
        asset = (asset or "").upper()

        sender = self._get_user(db, sender_email)
        if sender is None or not sender.verified:
            raise TransactionRejectedError(
                "SENDER_NOT_VERIFIED",
                "Sender wallet not verified. Please create and verify your wallet first.",
            )

        recipient = self._get_user(db, recipient_email)
        if recipient is None or not recipient.verified:
            raise TransactionRejectedError(
                "RECIPIENT_NOT_VERIFIED",
                f"Recipient {recipient_email} does not have a verified EmailPay wallet",
            )

        if amount > self.settings.MAX_TX_AMOUNT:
            raise TransactionRejectedError(
                "AMOUNT_EXCEEDS_MAX",
                f"Amount {amount} exceeds the maximum of {self.settings.MAX_TX_AMOUNT} per transaction",
            )

        now = self.clock()
        spent_today = self._daily_total(db, sender_email, asset, now)
        if spent_today + amount > self.settings.DAILY_TX_CAP:
            raise TransactionRejectedError(
                "DAILY_CAP_EXCEEDED",
                f"Daily limit of {self.settings.DAILY_TX_CAP} {asset} exceeded "
                f"({spent_today} already sent today)",
            )

        tx_meta = dict(meta or {})
        if email_message_id:
            tx_meta["message_id"] = email_message_id

        tx = EmailTransaction(
            tx_id=str(uuid.uuid4()),
            amount=amount,
            asset=asset,
            sender_email=sender_email,
            recipient_email=recipient_email,
            status=TransactionStatus.PENDING,
            created_at=now,
            expires_at=now + timedelta(minutes=self.settings.TX_EXPIRY_MINUTES),
            meta=tx_meta,
        )
        db.add(tx)
        db.commit()
        db.refresh(tx)

        record_transaction_created(asset)
        logger.info(
            f"Transaction {tx.tx_id} created, scheduling execution",
            extra={"tx_id": tx.tx_id, "asset": asset, "sender": sender_email, "recipient": recipient_email},
        )

        self.scheduler.run_now(EXECUTE_TASK, {"tx_id": tx.tx_id})
        return tx

    # Execute

    def execute_transaction(self, db: Session, tx_id: str) -> Optional[EmailTransaction]:
        """
        Execute a pending transaction end to end.

        Safe to call any number of times: only the call that claims the
        pending record does any work, all others are logged no-ops.

        Failures before the broadcast mark the record failed. Failures after
        it (receipt timeout, RPC error, confirmation shortfall) are recorded
        on the record, which stays processing until
        reconcile_processing_transactions settles it from the chain.
        """
        tx = self.get_transaction(db, tx_id)
        if tx is None:
            logger.error(f"Transaction {tx_id} not found", extra={"tx_id": tx_id})
            return None

        if tx.status != TransactionStatus.PENDING:
            logger.warning(
                f"Transaction {tx_id} already processed with status {tx.status.value}",
                extra={"tx_id": tx_id, "status": tx.status.value},
            )
            return tx

        if self.clock() > ensure_utc(tx.expires_at):
            self._expire(db, tx_id)
            return self.get_transaction(db, tx_id)

        claimed = self._transition(
            db,
            tx_id,
            TransactionStatus.PENDING,
            TransactionStatus.PROCESSING,
            processing_started_at=self.clock(),
        )
        if not claimed:
            logger.info(f"Transaction {tx_id} claimed by another execution", extra={"tx_id": tx_id})
            return self.get_transaction(db, tx_id)

        logger.info(f"Executing transaction {tx_id}", extra={"tx_id": tx_id})
        tx = self.get_transaction(db, tx_id)

        try:
            tx_hash = self._broadcast(db, tx)
        except Exception as e:
            db.rollback()
            self._fail(db, tx_id, e)
            return self.get_transaction(db, tx_id)

        try:
            receipt = self.chain.wait_for_receipt(tx_hash)
            self._settle(db, tx_id, receipt, wait=True)
        except Exception as e:
            db.rollback()
            self._hold(db, tx_id, e)

        return self.get_transaction(db, tx_id)

    def _broadcast(self, db: Session, tx: EmailTransaction) -> str:
        sender = self._get_user(db, tx.sender_email)
        recipient = self._get_user(db, tx.recipient_email)
        if (
            sender is None
            or not sender.signing_backend_id
            or not sender.wallet_public_key
            or recipient is None
            or not recipient.wallet_address
        ):
            raise ExecutionError(ExecutionErrorKind.WALLET_INCOMPLETE, "Sender or recipient wallet not found")

        asset = get_asset(tx.asset, self.settings)
        payload = build_transfer_payload(asset, recipient.wallet_address, Decimal(tx.amount), self.settings.CHAIN_ID)

        backend = self.signer_selector.select(sender)
        tx_hash = backend.send_transaction(payload)

        self._record(db, tx.tx_id, tx_hash=tx_hash)
        logger.info(f"Transaction {tx.tx_id} submitted: {tx_hash}", extra={"tx_id": tx.tx_id, "tx_hash": tx_hash})
        return tx_hash

    def _record(self, db: Session, tx_id: str, **values: Any) -> None:
        """Write fields on a record still held in processing"""
        db.execute(
            update(EmailTransaction)
            .where(EmailTransaction.tx_id == tx_id, EmailTransaction.status == TransactionStatus.PROCESSING)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        db.commit()

    def _settle(self, db: Session, tx_id: str, receipt: TransactionReceipt, *, wait: bool) -> bool:
        """
        Finish a mined transaction from its receipt.

        With wait, blocks for the configured confirmations; without it, a
        shortfall leaves the record in processing. Returns True when the
        record reached a terminal state.
        """
        if not receipt.succeeded:
            return self._revert(db, tx_id, receipt)

        self._record(db, tx_id, tx_hash=receipt.tx_hash, block_number=receipt.block_number)

        required = self.settings.TX_CONFIRMATIONS
        if wait:
            self.chain.wait_for_confirmations(receipt.block_number, required)
        elif self.chain.get_confirmations(receipt.block_number) < required:
            logger.info(
                f"Transaction {tx_id} mined in block {receipt.block_number}, awaiting {required} confirmations",
                extra={"tx_id": tx_id, "block_number": receipt.block_number},
            )
            return False

        return self._complete(db, tx_id, receipt)

    def _complete(self, db: Session, tx_id: str, receipt: TransactionReceipt) -> bool:
        moved = self._transition(
            db,
            tx_id,
            TransactionStatus.PROCESSING,
            TransactionStatus.COMPLETED,
            tx_hash=receipt.tx_hash,
            block_number=receipt.block_number,
            completed_at=self.clock(),
            error=None,
            error_code=None,
        )
        if moved:
            record_transaction_outcome(TransactionStatus.COMPLETED.value)
            logger.info(
                f"Transaction {tx_id} completed: {receipt.tx_hash}",
                extra={"tx_id": tx_id, "tx_hash": receipt.tx_hash, "block_number": receipt.block_number},
            )
            self.notifier.transaction_completed(self.get_transaction(db, tx_id))
        return moved

    def _revert(self, db: Session, tx_id: str, receipt: TransactionReceipt) -> bool:
        moved = self._transition(
            db,
            tx_id,
            TransactionStatus.PROCESSING,
            TransactionStatus.FAILED,
            tx_hash=receipt.tx_hash,
            block_number=receipt.block_number,
            error="Transaction reverted",
            error_code=ExecutionErrorKind.REVERTED.value,
            failed_at=self.clock(),
        )
        if moved:
            record_transaction_outcome(TransactionStatus.FAILED.value)
            logger.error(f"Transaction {tx_id} reverted", extra={"tx_id": tx_id, "tx_hash": receipt.tx_hash})
            self.notifier.transaction_reverted(self.get_transaction(db, tx_id))
        return moved

    @staticmethod
    def _classify(error: Exception):
        if isinstance(error, ExecutionError):
            return error.kind, error.message
        return ExecutionErrorKind.INTERNAL, str(error) or error.__class__.__name__

    def _fail(self, db: Session, tx_id: str, error: Exception) -> bool:
        kind, message = self._classify(error)
        if isinstance(error, ExecutionError):
            logger.error(
                f"Transaction {tx_id} failed: {message}",
                extra={"tx_id": tx_id, "error_code": kind.value, "retryable": kind.retryable},
            )
        else:
            logger.exception(f"Error executing transaction {tx_id}", extra={"tx_id": tx_id})

        moved = self._transition(
            db,
            tx_id,
            TransactionStatus.PROCESSING,
            TransactionStatus.FAILED,
            error=message,
            error_code=kind.value,
            failed_at=self.clock(),
        )
        if moved:
            record_transaction_outcome(TransactionStatus.FAILED.value)
            self.notifier.transaction_error(self.get_transaction(db, tx_id))
        return moved

    def _hold(self, db: Session, tx_id: str, error: Exception) -> None:
        """Record a failure after the broadcast; the record stays processing"""
        kind, message = self._classify(error)
        if isinstance(error, ExecutionError):
            logger.warning(
                f"Transaction {tx_id} broadcast but not settled: {message}",
                extra={"tx_id": tx_id, "error_code": kind.value},
            )
        else:
            logger.exception(f"Error settling transaction {tx_id}", extra={"tx_id": tx_id})

        self._record(db, tx_id, error=message, error_code=kind.value)

    def _expire(self, db: Session, tx_id: str) -> bool:
        moved = self._transition(
            db,
            tx_id,
            TransactionStatus.PENDING,
            TransactionStatus.EXPIRED,
            error="Transaction expired before execution",
            error_code=ExecutionErrorKind.EXPIRED.value,
        )
        if moved:
            record_transaction_outcome(TransactionStatus.EXPIRED.value)
            logger.warning(f"Transaction {tx_id} expired", extra={"tx_id": tx_id})
            self.notifier.transaction_expired(self.get_transaction(db, tx_id))
        return moved

    # Maintenance

    def find_stale_transactions(self, db: Session, older_than: Optional[timedelta] = None) -> List[EmailTransaction]:
        """
        Pending transactions past their expiry.

        With older_than, pending transactions created longer ago than that
        are included even if their expiry has not passed yet.
        """
        now = self.clock()
        condition = EmailTransaction.expires_at < now
        if older_than is not None:
            condition = or_(condition, EmailTransaction.created_at < now - older_than)
        return db.execute(
            select(EmailTransaction)
            .where(EmailTransaction.status == TransactionStatus.PENDING, condition)
            .order_by(EmailTransaction.created_at)
        ).scalars().all()

    def expire_stale_transactions(self, db: Session, older_than: Optional[timedelta] = None) -> int:
        """Mark stale pending transactions as expired; returns how many moved"""
        stale_ids = [tx.tx_id for tx in self.find_stale_transactions(db, older_than)]

        expired = sum(1 for tx_id in stale_ids if self._expire(db, tx_id))
        if expired:
            logger.info(f"Expired {expired} stale transaction(s)", extra={"count": expired})
        return expired

    def find_unsettled_transactions(self, db: Session) -> List[EmailTransaction]:
        """Processing transactions claimed longer ago than the receipt timeout"""
        cutoff = self.clock() - timedelta(seconds=self.settings.TX_RECEIPT_TIMEOUT_SECONDS)
        return db.execute(
            select(EmailTransaction)
            .where(
                EmailTransaction.status == TransactionStatus.PROCESSING,
                or_(
                    EmailTransaction.processing_started_at.is_(None),
                    EmailTransaction.processing_started_at < cutoff,
                ),
            )
            .order_by(EmailTransaction.created_at)
        ).scalars().all()

    def reconcile_processing_transactions(self, db: Session) -> int:
        """
        Settle transactions left in processing by a timeout, an RPC error or a crash.

        - with a tx hash: settled from the receipt (completed once confirmed,
          failed REVERTED on status 0); never mined after
          TX_UNCONFIRMED_ABANDON_MINUTES -> failed UNCONFIRMED
        - without a tx hash: failed INTERRUPTED

        Neither UNCONFIRMED nor INTERRUPTED is retryable, since the transfer
        may still reach the chain. Returns how many reached a terminal state.
        """
        settled = 0
        for tx in self.find_unsettled_transactions(db):
            if not tx.tx_hash:
                error = ExecutionError(
                    ExecutionErrorKind.INTERRUPTED,
                    "Execution was interrupted before the broadcast was recorded",
                )
                settled += self._fail(db, tx.tx_id, error)
                continue

            try:
                receipt = self.chain.get_receipt(tx.tx_hash)
                if receipt is not None:
                    settled += self._settle(db, tx.tx_id, receipt, wait=False)
                elif self._abandoned(tx):
                    error = ExecutionError(
                        ExecutionErrorKind.UNCONFIRMED,
                        f"Transaction {tx.tx_hash} was not mined within "
                        f"{self.settings.TX_UNCONFIRMED_ABANDON_MINUTES} minutes",
                    )
                    settled += self._fail(db, tx.tx_id, error)
            except ExecutionError as e:
                db.rollback()
                logger.warning(
                    f"Could not reconcile transaction {tx.tx_id}: {e.message}",
                    extra={"tx_id": tx.tx_id, "tx_hash": tx.tx_hash, "error_code": e.kind.value},
                )

        if settled:
            logger.info(f"Reconciled {settled} processing transaction(s)", extra={"count": settled})
        return settled

    def _abandoned(self, tx: EmailTransaction) -> bool:
        started = ensure_utc(tx.processing_started_at or tx.created_at)
        return self.clock() - started > timedelta(minutes=self.settings.TX_UNCONFIRMED_ABANDON_MINUTES)

    def retry_transaction(self, db: Session, tx_id: str) -> EmailTransaction:
        """
        Create a fresh transaction from a failed (retryable) or expired one.

        The original record is left untouched; the new one carries
        meta["retry_of"] and goes through create's validation again.
        A failed record that carries a tx hash is never retried.
        """
        original = self.get_transaction(db, tx_id)
        if original is None:
            raise TransactionNotFoundError(f"Transaction {tx_id} not found")

        if original.status == TransactionStatus.FAILED:
            if original.tx_hash:
                raise RetryNotAllowedError(
                    f"Transaction {tx_id} was broadcast as {original.tx_hash}; check it on chain instead"
                )
            try:
                kind = ExecutionErrorKind(original.error_code)
            except ValueError:
                kind = ExecutionErrorKind.INTERNAL
            if not kind.retryable:
                raise RetryNotAllowedError(
                    f"Transaction {tx_id} failed with non-retryable error {kind.value}"
                )
        elif original.status != TransactionStatus.EXPIRED:
            raise RetryNotAllowedError(
                f"Transaction {tx_id} has status {original.status.value}; only failed or expired transactions can be retried"
            )

        meta = dict(original.meta or {})
        meta["retry_of"] = original.tx_id
        retried = self.create_transaction(
            db,
            sender_email=original.sender_email,
            recipient_email=original.recipient_email,
            amount=original.amount,
            asset=original.asset,
            meta=meta,
        )
        logger.info(f"Transaction {tx_id} retried as {retried.tx_id}", extra={"tx_id": tx_id, "retry_tx_id": retried.tx_id})
        return retried
