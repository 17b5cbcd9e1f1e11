"""
Email dispatch loop - inbox messages to typed work items

No business rules live here: each message is parsed and handed to the
matching job, then removed from the unread set so it is not seen again.
"""

import logging
from typing import Any, Dict

from emailpay.services.email_gateway import GmailGateway, InboundMessage, extract_body, extract_sender
from emailpay.services.intent_parser import BalanceIntent, SendIntent, VerifyIntent, parse_email_intent
from emailpay.utils.metrics import record_email_dispatched

logger = logging.getLogger(__name__)

PROCESS_SEND_TASK = "emailpay-process-send-transaction"
PROCESS_VERIFICATION_TASK = "emailpay-process-verification"
PROCESS_BALANCE_TASK = "emailpay-process-balance-check"


def message_meta(message: InboundMessage) -> Dict[str, Any]:
    """Reply threading data carried along with every job"""
    return {
        "message_id": message.id,
        "thread_id": message.thread_id,
        "rfc_message_id": message.rfc_message_id,
        "subject": message.subject,
    }


def dispatch_message(gateway: GmailGateway, scheduler, message: InboundMessage) -> str:
    """Dispatch one message; returns the intent type it was routed as ("skipped" if unusable)"""
    sender = extract_sender(message)
    body = extract_body(message)
    if not sender or not body:
        logger.warning("Skipping message without sender or body", extra={"message_id": message.id})
        return "skipped"

    intent = parse_email_intent(body, sender)
    meta = message_meta(message)

    if isinstance(intent, SendIntent):
        scheduler.run_now(
            PROCESS_SEND_TASK,
            {
                "sender_email": sender,
                "recipient_email": intent.recipient_email,
                "amount": str(intent.amount),
                "asset": intent.asset,
                "raw_text": intent.raw_text,
                "meta": meta,
            },
        )
        gateway.trash(message.id)
        intent_type = intent.type
    elif isinstance(intent, VerifyIntent):
        scheduler.run_now(
            PROCESS_VERIFICATION_TASK,
            {"sender_email": sender, "otp_code": intent.otp_code, "meta": meta},
        )
        gateway.mark_read(message.id)
        intent_type = intent.type
    elif isinstance(intent, BalanceIntent):
        scheduler.run_now(PROCESS_BALANCE_TASK, {"sender_email": sender, "meta": meta})
        gateway.mark_read(message.id)
        intent_type = intent.type
    else:
        # Unknown intent or hard parse error: no action
        gateway.mark_read(message.id)
        intent_type = intent.type if intent is not None else "invalid"

    record_email_dispatched(intent_type)
    logger.info(f"Dispatched email as {intent_type}", extra={"message_id": message.id, "sender": sender})
    return intent_type


def dispatch_inbox(gateway: GmailGateway, scheduler) -> int:
    """Poll the inbox once and dispatch every new message; returns how many were handled"""
    messages = gateway.poll_for_new_messages()
    handled = 0
    for message in messages:
        try:
            if dispatch_message(gateway, scheduler, message) != "skipped":
                handled += 1
        except Exception:
            logger.exception("Failed to dispatch message", extra={"message_id": message.id})
    return handled
