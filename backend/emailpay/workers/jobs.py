"""
EmailPay jobs - task handlers registered on the job scheduler
"""

import functools
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict

from emailpay.infrastructure.database import SessionLocal
from emailpay.services.container import ServiceContainer
from emailpay.services.email_dispatch import (
    PROCESS_BALANCE_TASK,
    PROCESS_SEND_TASK,
    PROCESS_VERIFICATION_TASK,
    dispatch_inbox,
)
from emailpay.services.intent_parser import SendIntent, validate_intent
from emailpay.services.transaction_engine import EXECUTE_TASK, TransactionRejectedError
from emailpay.services.wallet_service import WalletServiceError

logger = logging.getLogger(__name__)

POLL_INBOX_TASK = "emailpay-poll-inbox"
EXPIRE_STALE_TASK = "emailpay-expire-stale"
RECONCILE_TASK = "emailpay-reconcile-processing"


def task_handler(name: str):
    """Log and swallow anything a handler raises so one bad job never stops the worker"""

    def decorator(func: Callable[[Dict[str, Any]], None]):
        @functools.wraps(func)
        def wrapper(payload: Dict[str, Any]) -> None:
            try:
                func(payload)
            except Exception:
                logger.exception(f"Task {name} failed", extra={"task": name})

        return wrapper

    return decorator


def define_emailpay_tasks(container: ServiceContainer, session_factory=SessionLocal) -> None:
    """Register every EmailPay task on the container's scheduler"""
    scheduler = container.scheduler
    engine = container.engine
    wallets = container.wallet_service
    notifier = container.notifier

    @task_handler(POLL_INBOX_TASK)
    def poll_inbox(payload: Dict[str, Any]) -> None:
        if container.gateway is None:
            logger.warning("Gmail not configured, skipping inbox poll")
            return
        handled = dispatch_inbox(container.gateway, scheduler)
        if handled:
            logger.info(f"Dispatched {handled} email(s)")

    @task_handler(PROCESS_SEND_TASK)
    def process_send_transaction(payload: Dict[str, Any]) -> None:
        sender = payload["sender_email"]
        meta = payload.get("meta") or {}

        try:
            amount = Decimal(str(payload["amount"]))
        except InvalidOperation:
            notifier.transaction_rejected(sender, f"Invalid amount: {payload['amount']}", meta)
            return

        intent = SendIntent(
            amount=amount,
            asset=payload["asset"],
            recipient_email=payload["recipient_email"],
            raw_text=payload.get("raw_text", ""),
        )
        validation = validate_intent(intent, sender)
        if not validation.valid:
            logger.warning(f"Send request rejected: {validation.error}", extra={"sender": sender})
            notifier.transaction_rejected(sender, validation.error, meta)
            return

        with session_factory() as db:
            try:
                engine.create_transaction(
                    db,
                    sender_email=sender,
                    recipient_email=intent.recipient_email,
                    amount=intent.amount,
                    asset=intent.asset,
                    email_message_id=meta.get("message_id"),
                    meta=meta,
                )
            except TransactionRejectedError as e:
                logger.warning(
                    f"Transaction rejected: {e.message}",
                    extra={"sender": sender, "code": e.code},
                )
                notifier.transaction_rejected(sender, e.message, meta)

    @task_handler(EXECUTE_TASK)
    def execute_transaction(payload: Dict[str, Any]) -> None:
        with session_factory() as db:
            engine.execute_transaction(db, payload["tx_id"])

    @task_handler(PROCESS_VERIFICATION_TASK)
    def process_verification(payload: Dict[str, Any]) -> None:
        sender = payload["sender_email"]
        meta = payload.get("meta") or {}
        with session_factory() as db:
            try:
                user = wallets.verify_wallet(db, sender, payload["otp_code"])
            except WalletServiceError as e:
                logger.warning(f"Email verification failed: {e}", extra={"sender": sender})
                notifier.verification_result(sender, False, f"Verification failed: {e}", meta)
                return

        notifier.verification_result(
            sender,
            True,
            f"Your EmailPay wallet is verified.\n\nAddress: {user.wallet_address}",
            meta,
        )

    @task_handler(PROCESS_BALANCE_TASK)
    def process_balance_check(payload: Dict[str, Any]) -> None:
        sender = payload["sender_email"]
        meta = payload.get("meta") or {}
        with session_factory() as db:
            try:
                user = wallets.get_wallet(db, sender)
                balances = wallets.get_balances(db, sender)
            except WalletServiceError as e:
                logger.warning(f"Balance check failed: {e}", extra={"sender": sender})
                notifier.transaction_rejected(sender, str(e), meta)
                return
            address = user.wallet_address

        notifier.balance(sender, address, balances, meta)

    @task_handler(EXPIRE_STALE_TASK)
    def expire_stale(payload: Dict[str, Any]) -> None:
        with session_factory() as db:
            engine.expire_stale_transactions(db)

    @task_handler(RECONCILE_TASK)
    def reconcile_processing(payload: Dict[str, Any]) -> None:
        with session_factory() as db:
            engine.reconcile_processing_transactions(db)

    scheduler.define_task(POLL_INBOX_TASK, poll_inbox)
    scheduler.define_task(PROCESS_SEND_TASK, process_send_transaction)
    scheduler.define_task(EXECUTE_TASK, execute_transaction)
    scheduler.define_task(PROCESS_VERIFICATION_TASK, process_verification)
    scheduler.define_task(PROCESS_BALANCE_TASK, process_balance_check)
    scheduler.define_task(EXPIRE_STALE_TASK, expire_stale)
    scheduler.define_task(RECONCILE_TASK, reconcile_processing)


def schedule_recurring_tasks(container: ServiceContainer) -> None:
    settings = container.settings
    container.scheduler.run_every(POLL_INBOX_TASK, settings.GMAIL_POLL_INTERVAL_SECONDS)
    container.scheduler.run_every(EXPIRE_STALE_TASK, settings.EXPIRE_SWEEP_INTERVAL_SECONDS)
    container.scheduler.run_every(RECONCILE_TASK, settings.EXPIRE_SWEEP_INTERVAL_SECONDS)
