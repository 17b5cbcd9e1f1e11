"""
Inbox dispatch tests
"""

from emailpay.services.email_dispatch import (
    PROCESS_BALANCE_TASK,
    PROCESS_SEND_TASK,
    PROCESS_VERIFICATION_TASK,
    dispatch_inbox,
    dispatch_message,
)
from emailpay.services.email_gateway import extract_body, extract_sender

from tests.fakes import make_message


def test_extract_sender_variants():
    assert extract_sender(make_message("m1", "Alice <Alice@Example.com>", "x")) == "alice@example.com"
    assert extract_sender(make_message("m2", "bob@example.com", "x")) == "bob@example.com"
    assert extract_sender(make_message("m3", "Just A Name", "x")) is None
    assert extract_sender(make_message("m4", None, "x")) is None


def test_extract_body_prefers_text_plain():
    message = make_message("m1", "a@x.com", "send 1 eth to b@x.com")
    message.payload["parts"].insert(0, {"mimeType": "text/html", "body": {"data": "PGI-aGk8L2I-"}})

    assert extract_body(message) == "send 1 eth to b@x.com"


def test_extract_body_falls_back_to_top_level_body():
    message = make_message("m1", "a@x.com", None)
    message.payload["body"] = {"data": "YmFsYW5jZQ"}

    assert extract_body(message) == "balance"


def test_send_is_dispatched_and_trashed(fake_gateway, scheduler):
    message = make_message("m1", "Alice <a@x.com>", "SEND 5 pyusd to c@x.com", subject="pay")

    assert dispatch_message(fake_gateway, scheduler, message) == "send"

    [(name, payload)] = scheduler.enqueued
    assert name == PROCESS_SEND_TASK
    assert payload["sender_email"] == "a@x.com"
    assert payload["recipient_email"] == "c@x.com"
    assert payload["amount"] == "5"
    assert payload["asset"] == "PYUSD"
    assert payload["meta"] == {
        "message_id": "m1",
        "thread_id": "thread-m1",
        "rfc_message_id": "<m1@mail.test>",
        "subject": "pay",
    }
    assert fake_gateway.trashed == ["m1"]
    assert fake_gateway.read == []


def test_verify_is_dispatched_and_marked_read(fake_gateway, scheduler):
    message = make_message("m1", "a@x.com", "verify 654321")

    assert dispatch_message(fake_gateway, scheduler, message) == "verify"

    [(name, payload)] = scheduler.enqueued
    assert name == PROCESS_VERIFICATION_TASK
    assert payload["otp_code"] == "654321"
    assert fake_gateway.read == ["m1"]
    assert fake_gateway.trashed == []


def test_balance_is_dispatched_and_marked_read(fake_gateway, scheduler):
    message = make_message("m1", "a@x.com", "What's my balance?")

    assert dispatch_message(fake_gateway, scheduler, message) == "balance"

    assert scheduler.names() == [PROCESS_BALANCE_TASK]
    assert fake_gateway.read == ["m1"]


def test_unknown_and_invalid_are_only_marked_read(fake_gateway, scheduler):
    unknown = make_message("m1", "a@x.com", "hello there")
    invalid = make_message("m2", "a@x.com", "send 0 pyusd to c@x.com")

    assert dispatch_message(fake_gateway, scheduler, unknown) == "unknown"
    assert dispatch_message(fake_gateway, scheduler, invalid) == "invalid"

    assert scheduler.enqueued == []
    assert fake_gateway.read == ["m1", "m2"]
    assert fake_gateway.trashed == []


def test_message_without_sender_or_body_is_skipped(fake_gateway, scheduler):
    assert dispatch_message(fake_gateway, scheduler, make_message("m1", None, "balance")) == "skipped"
    assert dispatch_message(fake_gateway, scheduler, make_message("m2", "a@x.com", None)) == "skipped"

    assert scheduler.enqueued == []
    assert fake_gateway.read == []


def test_dispatch_inbox_continues_after_failure(fake_gateway, scheduler, monkeypatch):
    fake_gateway.inbox = [
        make_message("m1", "a@x.com", "balance"),
        make_message("m2", "a@x.com", "send 1 eth to b@x.com"),
        make_message("m3", "a@x.com", "verify 111111"),
    ]

    def failing_trash(message_id):
        raise RuntimeError("mailbox unavailable")

    monkeypatch.setattr(fake_gateway, "trash", failing_trash)

    handled = dispatch_inbox(fake_gateway, scheduler)

    assert handled == 2
    assert fake_gateway.read == ["m1", "m3"]
