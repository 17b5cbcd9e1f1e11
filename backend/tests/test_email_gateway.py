"""
Gmail gateway tests against a mocked HTTP transport
"""

import base64
import email
import json

import httpx
import pytest

from emailpay.services.email_gateway import GMAIL_API_BASE, OAUTH_TOKEN_URL, GmailGateway


class GmailStub:
    """Minimal Gmail API behind httpx.MockTransport"""

    def __init__(self):
        self.requests = []
        self.token_requests = 0
        self.fail_list = False

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)

        if url == OAUTH_TOKEN_URL:
            self.token_requests += 1
            return httpx.Response(200, json={"access_token": f"token-{self.token_requests}", "expires_in": 3600})

        assert request.headers["Authorization"].startswith("Bearer token-")
        path = request.url.path.replace("/gmail/v1/users/me", "")

        if path == "/messages" and request.method == "GET":
            if self.fail_list:
                return httpx.Response(500, json={"error": "backend"})
            return httpx.Response(200, json={"messages": [{"id": "m1", "threadId": "t1"}]})
        if path == "/messages/m1":
            body = base64.urlsafe_b64encode(b"balance please").decode().rstrip("=")
            return httpx.Response(200, json={
                "id": "m1",
                "threadId": "t1",
                "snippet": "balance please",
                "payload": {
                    "mimeType": "text/plain",
                    "headers": [{"name": "From", "value": "Alice <alice@example.com>"}],
                    "body": {"data": body},
                },
            })
        if path == "/messages/send":
            return httpx.Response(200, json={"id": "sent-1", "threadId": "t1"})
        if path in ("/messages/m1/modify", "/messages/m1/trash"):
            return httpx.Response(200, json={"id": "m1"})
        return httpx.Response(404)


@pytest.fixture
def stub():
    return GmailStub()


@pytest.fixture
def gateway(settings, stub):
    configured = settings.model_copy(update={
        "GMAIL_CLIENT_ID": "client",
        "GMAIL_CLIENT_SECRET": "secret",
        "GMAIL_REFRESH_TOKEN": "refresh",
        "GMAIL_USER": "pay@emailpay.app",
    })
    return GmailGateway(configured, http_client=httpx.Client(transport=httpx.MockTransport(stub)))


def test_poll_fetches_full_messages(gateway, stub):
    messages = gateway.poll_for_new_messages()

    assert [m.id for m in messages] == ["m1"]
    assert messages[0].thread_id == "t1"
    assert messages[0].header("from") == "Alice <alice@example.com>"
    list_request = stub.requests[1]
    assert list_request.url.params["q"] == "in:inbox is:unread newer_than:1d"


def test_access_token_is_cached(gateway, stub):
    gateway.poll_for_new_messages()
    gateway.mark_read("m1")

    assert stub.token_requests == 1


def test_poll_failure_returns_empty(gateway, stub):
    stub.fail_list = True

    assert gateway.poll_for_new_messages() == []


def test_mark_read_and_trash(gateway, stub):
    gateway.mark_read("m1")
    gateway.trash("m1")

    modify, trash = [r for r in stub.requests if str(r.url).startswith(GMAIL_API_BASE)]
    assert json.loads(modify.content) == {"removeLabelIds": ["UNREAD"]}
    assert trash.url.path.endswith("/messages/m1/trash")


def test_send_reply_threads_message(gateway, stub):
    sent_id = gateway.send_reply("alice@example.com", "EmailPay: Your balance", "ETH: 1", in_reply_to="<m1@mail>", thread_id="t1")

    assert sent_id == "sent-1"
    request = json.loads(stub.requests[-1].content)
    assert request["threadId"] == "t1"
    raw = base64.urlsafe_b64decode(request["raw"])
    message = email.message_from_bytes(raw)
    assert message["To"] == "alice@example.com"
    assert message["From"] == "pay@emailpay.app"
    assert message["In-Reply-To"] == "<m1@mail>"
    assert message["References"] == "<m1@mail>"
    assert message.get_payload().strip() == "ETH: 1"
