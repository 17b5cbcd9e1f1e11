"""
Intent parser - turns a plain-text email body into a typed intent

Supported commands (case-insensitive, first match wins):
- SEND <amount> <asset> TO <email>
- anything mentioning BALANCE
- VERIFY <6-digit code>
Everything else is an UnknownIntent, kept for observability only.
"""

import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import ClassVar, Optional, Union

from emailpay.core.users.models import normalize_email
from emailpay.services.assets import SUPPORTED_ASSET_SYMBOLS, is_supported_asset

logger = logging.getLogger(__name__)

SEND_PATTERN = re.compile(r"send\s+([\d.]+)\s+(\w+)\s+to\s+([\w._%+-]+@[\w.-]+\.\w+)", re.IGNORECASE)
VERIFY_PATTERN = re.compile(r"verify\s+(\d{6})", re.IGNORECASE)


@dataclass(frozen=True)
class SendIntent:
    amount: Decimal
    asset: str
    recipient_email: str
    raw_text: str
    type: ClassVar[str] = "send"


@dataclass(frozen=True)
class BalanceIntent:
    raw_text: str
    type: ClassVar[str] = "balance"


@dataclass(frozen=True)
class VerifyIntent:
    otp_code: str
    raw_text: str
    type: ClassVar[str] = "verify"


@dataclass(frozen=True)
class UnknownIntent:
    raw_text: str
    type: ClassVar[str] = "unknown"


EmailIntent = Union[SendIntent, BalanceIntent, VerifyIntent, UnknownIntent]


@dataclass(frozen=True)
class IntentValidation:
    valid: bool
    error: Optional[str] = None


def parse_email_intent(email_body: str, sender_email: str) -> Optional[EmailIntent]:
    """
    Parse an email body into an intent.

    Returns None on a hard parse error (a send command with a non-numeric
    or non-positive amount).
    """
    clean_body = email_body.strip().lower()

    send_match = SEND_PATTERN.search(clean_body)
    if send_match:
        amount_str, asset, recipient_email = send_match.groups()
        try:
            amount = Decimal(amount_str)
        except InvalidOperation:
            logger.warning(f"Invalid amount in email from {sender_email}: {amount_str}")
            return None

        if not amount.is_finite() or amount <= 0:
            logger.warning(f"Invalid amount in email from {sender_email}: {amount_str}")
            return None

        return SendIntent(
            amount=amount,
            asset=asset.upper(),
            recipient_email=recipient_email.lower(),
            raw_text=email_body,
        )

    if "balance" in clean_body:
        return BalanceIntent(raw_text=email_body)

    verify_match = VERIFY_PATTERN.search(clean_body)
    if verify_match:
        return VerifyIntent(otp_code=verify_match.group(1), raw_text=email_body)

    logger.warning(f"Could not parse intent from email: {email_body[:100]}")
    return UnknownIntent(raw_text=email_body)


def validate_intent(intent: EmailIntent, sender_email: str) -> IntentValidation:
    """Re-check domain rules on a parsed intent"""
    if not isinstance(intent, SendIntent):
        return IntentValidation(valid=True)

    if not intent.amount or intent.amount <= 0:
        return IntentValidation(valid=False, error="Invalid amount")

    if not intent.recipient_email:
        return IntentValidation(valid=False, error="Recipient email not found")

    if normalize_email(intent.recipient_email) == normalize_email(sender_email):
        return IntentValidation(valid=False, error="Cannot send to yourself")

    if not is_supported_asset(intent.asset):
        supported = ", ".join(SUPPORTED_ASSET_SYMBOLS)
        return IntentValidation(valid=False, error=f"Unsupported asset {intent.asset}; supported: {supported}")

    return IntentValidation(valid=True)
