"""
Job handler tests - inbox to completed transaction through the scheduler
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from emailpay.core.transactions.models import EmailTransaction, TransactionStatus
from emailpay.services.email_dispatch import PROCESS_BALANCE_TASK, PROCESS_SEND_TASK, PROCESS_VERIFICATION_TASK
from emailpay.services.transaction_engine import EXECUTE_TASK
from emailpay.workers.jobs import (
    EXPIRE_STALE_TASK,
    POLL_INBOX_TASK,
    RECONCILE_TASK,
    define_emailpay_tasks,
    schedule_recurring_tasks,
)
from emailpay.workers.scheduler import UnknownTaskError

from tests.conftest import TestSessionLocal
from tests.fakes import make_message


@pytest.fixture
def tasks(container, scheduler):
    define_emailpay_tasks(container, session_factory=TestSessionLocal)
    return scheduler


def test_all_tasks_registered(tasks):
    assert tasks.task_names == sorted([
        POLL_INBOX_TASK,
        PROCESS_SEND_TASK,
        EXECUTE_TASK,
        PROCESS_VERIFICATION_TASK,
        PROCESS_BALANCE_TASK,
        EXPIRE_STALE_TASK,
        RECONCILE_TASK,
    ])


def test_unknown_task_raises(tasks):
    with pytest.raises(UnknownTaskError):
        tasks.execute("not-a-task", {})


def test_recurring_schedule(tasks, container, settings):
    schedule_recurring_tasks(container)

    assert tasks.recurring == {
        POLL_INBOX_TASK: settings.GMAIL_POLL_INTERVAL_SECONDS,
        EXPIRE_STALE_TASK: settings.EXPIRE_SWEEP_INTERVAL_SECONDS,
        RECONCILE_TASK: settings.EXPIRE_SWEEP_INTERVAL_SECONDS,
    }
    assert tasks.interval_for(POLL_INBOX_TASK) == settings.GMAIL_POLL_INTERVAL_SECONDS


def test_email_send_end_to_end(tasks, db_session, make_user, fake_gateway, fake_chain):
    make_user("a@x.com")
    make_user("b@x.com")
    fake_gateway.inbox = [make_message("m1", "Alice <a@x.com>", "SEND 5 pyusd to b@x.com", thread_id="t-1")]

    tasks.execute(POLL_INBOX_TASK, {})
    tasks.run_pending()

    tx = db_session.query(EmailTransaction).one()
    assert tx.status == TransactionStatus.COMPLETED
    assert tx.amount == Decimal("5")
    assert tx.message_id == "m1"
    assert fake_gateway.trashed == ["m1"]
    assert len(fake_chain.broadcast) == 1

    [reply] = fake_gateway.replies
    assert reply.subject == "EmailPay: 5 PYUSD sent to b@x.com"
    assert reply.thread_id == "t-1"


def test_send_to_self_is_rejected_by_reply(tasks, db_session, make_user, fake_gateway):
    make_user("a@x.com")

    tasks.execute(PROCESS_SEND_TASK, {
        "sender_email": "a@x.com",
        "recipient_email": "a@x.com",
        "amount": "5",
        "asset": "PYUSD",
        "meta": {"thread_id": "t-1"},
    })

    assert db_session.query(EmailTransaction).count() == 0
    [reply] = fake_gateway.replies
    assert reply.subject == "EmailPay: Request rejected"
    assert "Cannot send to yourself" in reply.body


def test_unverified_recipient_is_rejected_by_reply(tasks, db_session, make_user, fake_gateway, scheduler):
    make_user("a@x.com")

    tasks.execute(PROCESS_SEND_TASK, {
        "sender_email": "a@x.com",
        "recipient_email": "nobody@x.com",
        "amount": "5",
        "asset": "ETH",
    })

    assert db_session.query(EmailTransaction).count() == 0
    assert scheduler.enqueued == []
    assert "nobody@x.com" in fake_gateway.replies[0].body


def test_unsupported_asset_is_rejected_before_create(tasks, db_session, make_user, fake_gateway):
    make_user("a@x.com")
    make_user("b@x.com")

    tasks.execute(PROCESS_SEND_TASK, {
        "sender_email": "a@x.com",
        "recipient_email": "b@x.com",
        "amount": "5",
        "asset": "DOGE",
    })

    assert db_session.query(EmailTransaction).count() == 0
    assert "Unsupported asset DOGE" in fake_gateway.replies[0].body


def test_email_verification(tasks, db_session, wallet_service, fake_gateway, operator):
    challenge = wallet_service.create_wallet(db_session, "new@x.com")
    fake_gateway.replies.clear()

    tasks.execute(PROCESS_VERIFICATION_TASK, {"sender_email": "new@x.com", "otp_code": challenge.otp_code})

    db_session.expire_all()
    user = wallet_service.find_user(db_session, "new@x.com")
    assert user.verified
    assert user.wallet_address == operator.address
    [reply] = fake_gateway.replies
    assert reply.subject == "EmailPay: Wallet verified"
    assert operator.address in reply.body


def test_email_verification_wrong_code(tasks, db_session, wallet_service, fake_gateway):
    challenge = wallet_service.create_wallet(db_session, "new@x.com")
    fake_gateway.replies.clear()
    wrong = "000000" if challenge.otp_code != "000000" else "111111"

    tasks.execute(PROCESS_VERIFICATION_TASK, {"sender_email": "new@x.com", "otp_code": wrong})

    db_session.expire_all()
    assert not wallet_service.find_user(db_session, "new@x.com").verified
    assert fake_gateway.replies[0].subject == "EmailPay: Verification failed"


def test_balance_check(tasks, make_user, fake_chain, fake_gateway, operator):
    make_user("a@x.com")
    fake_chain.native_balances[operator.address.lower()] = Decimal("1.5")
    fake_chain.token_balances[operator.address.lower()] = Decimal("42.000000")

    tasks.execute(PROCESS_BALANCE_TASK, {"sender_email": "a@x.com", "meta": {}})

    [reply] = fake_gateway.replies
    assert reply.subject == "EmailPay: Your balance"
    assert "ETH: 1.5" in reply.body
    assert "PYUSD: 42" in reply.body
    assert operator.address in reply.body


def test_balance_check_unknown_sender(tasks, db_session, fake_gateway):
    tasks.execute(PROCESS_BALANCE_TASK, {"sender_email": "stranger@x.com"})

    assert fake_gateway.replies[0].subject == "EmailPay: Request rejected"


def test_expire_task(tasks, db_session, make_transaction):
    make_transaction("stale", age=timedelta(hours=1))

    tasks.execute(EXPIRE_STALE_TASK, {})

    db_session.expire_all()
    assert db_session.query(EmailTransaction).one().status == TransactionStatus.EXPIRED


def test_reconcile_task(tasks, db_session, make_transaction, clock):
    make_transaction(
        "crashed",
        status=TransactionStatus.PROCESSING,
        processing_started_at=clock() - timedelta(hours=1),
    )

    tasks.execute(RECONCILE_TASK, {})

    db_session.expire_all()
    tx = db_session.query(EmailTransaction).one()
    assert tx.status == TransactionStatus.FAILED
    assert tx.error_code == "INTERRUPTED"


def test_poll_without_gateway_is_noop(container, scheduler):
    container.gateway = None
    define_emailpay_tasks(container, session_factory=TestSessionLocal)

    scheduler.execute(POLL_INBOX_TASK, {})

    assert scheduler.enqueued == []
