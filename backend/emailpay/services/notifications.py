"""
Reply notifications

Every reply is best-effort: a failed send is logged and counted, and never
changes the state already persisted for the transaction.
"""

import logging
from decimal import Decimal
from typing import Dict, Optional

from emailpay.core.transactions.models import EmailTransaction
from emailpay.infrastructure.settings import Settings
from emailpay.services.email_gateway import GmailGateway
from emailpay.utils.metrics import record_notification_failed

logger = logging.getLogger(__name__)


def format_amount(amount) -> str:
    """Drop trailing zeros: Decimal('10.500000') -> '10.5'"""
    value = Decimal(amount)
    text = format(value.normalize(), "f")
    return text


class TransactionNotifier:
    """Builds and sends reply emails for transaction and account events"""

    def __init__(self, gateway: Optional[GmailGateway], settings: Settings):
        self.gateway = gateway
        self.settings = settings

    def _send(
        self,
        to: str,
        subject: str,
        body: str,
        meta: Optional[Dict] = None,
    ) -> bool:
        meta = meta or {}
        if self.gateway is None:
            logger.warning("Email gateway not configured, reply skipped", extra={"to": to, "subject": subject})
            return False
        try:
            self.gateway.send_reply(
                to,
                subject,
                body,
                in_reply_to=meta.get("rfc_message_id"),
                thread_id=meta.get("thread_id"),
            )
            return True
        except Exception as e:
            record_notification_failed()
            logger.error("Failed to send reply email", extra={"to": to, "subject": subject, "error": str(e)})
            return False

    def _summary(self, tx: EmailTransaction) -> str:
        return (
            f"Amount: {format_amount(tx.amount)} {tx.asset}\n"
            f"From: {tx.sender_email}\n"
            f"To: {tx.recipient_email}\n"
        )

    def transaction_completed(self, tx: EmailTransaction) -> bool:
        explorer_url = self.settings.EXPLORER_TX_URL.format(tx_hash=tx.tx_hash)
        body = (
            "Transaction Successful!\n\n"
            + self._summary(tx)
            + f"Transaction Hash: {tx.tx_hash}\n"
            f"Block: {tx.block_number}\n"
            f"Explorer: {explorer_url}\n\n"
            f"Your {tx.asset} has been sent successfully via EmailPay."
        )
        subject = f"EmailPay: {format_amount(tx.amount)} {tx.asset} sent to {tx.recipient_email}"
        return self._send(tx.sender_email, subject, body, tx.meta)

    def transaction_reverted(self, tx: EmailTransaction) -> bool:
        body = (
            "Transaction Failed\n\n"
            + self._summary(tx)
            + "Error: Transaction reverted\n\n"
            "Please try again or check your wallet balance."
        )
        return self._send(tx.sender_email, "EmailPay: Transaction failed", body, tx.meta)

    def transaction_error(self, tx: EmailTransaction) -> bool:
        body = (
            "Transaction Error\n\n"
            + self._summary(tx)
            + f"Error: {tx.error}\n\n"
            "Please check your wallet configuration and try again."
        )
        return self._send(tx.sender_email, "EmailPay: Transaction error", body, tx.meta)

    def transaction_expired(self, tx: EmailTransaction) -> bool:
        body = (
            "Transaction Expired\n\n"
            + self._summary(tx)
            + "\nThe transaction was not executed before it expired. "
            "Send a new request to try again."
        )
        return self._send(tx.sender_email, "EmailPay: Transaction expired", body, tx.meta)

    def transaction_rejected(self, to: str, reason: str, meta: Optional[Dict] = None) -> bool:
        body = f"Your payment request could not be processed.\n\nReason: {reason}"
        return self._send(to, "EmailPay: Request rejected", body, meta)

    def balance(self, to: str, address: str, balances: Dict[str, Decimal], meta: Optional[Dict] = None) -> bool:
        lines = [f"{symbol}: {format_amount(amount)}" for symbol, amount in balances.items()]
        body = f"Wallet: {address}\n\n" + "\n".join(lines)
        return self._send(to, "EmailPay: Your balance", body, meta)

    def verification_result(self, to: str, verified: bool, detail: str, meta: Optional[Dict] = None) -> bool:
        subject = "EmailPay: Wallet verified" if verified else "EmailPay: Verification failed"
        return self._send(to, subject, detail, meta)

    def otp_code(self, to: str, otp_code: str, ttl_minutes: int) -> bool:
        body = (
            f"Your EmailPay verification code is {otp_code}.\n\n"
            f"It expires in {ttl_minutes} minutes. Reply with VERIFY {otp_code} "
            "or enter it on the website."
        )
        return self._send(to, "EmailPay: Your verification code", body)
