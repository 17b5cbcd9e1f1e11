"""
Email gateway - Gmail REST API over httpx

Authenticates with an OAuth refresh token, lists unread inbox messages,
fetches full payloads and sends plain-text replies in-thread.
"""

import base64
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from email.message import EmailMessage
from typing import Any, Dict, List, Optional

import httpx

from emailpay.infrastructure.settings import Settings
from emailpay.utils.time import utcnow

logger = logging.getLogger(__name__)

GMAIL_API_BASE = "https://gmail.googleapis.com/gmail/v1/users/me"
OAUTH_TOKEN_URL = "https://oauth2.googleapis.com/token"

ANGLE_ADDRESS_PATTERN = re.compile(r"<([^>]+)>")


class EmailGatewayError(Exception):
    """Raised when the mail provider rejects or fails a request"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


@dataclass
class InboundMessage:
    """A fetched inbox message with its full provider payload"""
    id: str
    thread_id: Optional[str]
    payload: Dict[str, Any] = field(default_factory=dict)
    snippet: str = ""

    def header(self, name: str) -> Optional[str]:
        for item in self.payload.get("headers", []):
            if item.get("name", "").lower() == name.lower():
                return item.get("value")
        return None

    @property
    def subject(self) -> str:
        return self.header("Subject") or ""

    @property
    def rfc_message_id(self) -> Optional[str]:
        return self.header("Message-ID")


def extract_sender(message: InboundMessage) -> Optional[str]:
    """Lowercased sender address from the From header, or None"""
    from_header = message.header("From")
    if not from_header:
        return None

    match = ANGLE_ADDRESS_PATTERN.search(from_header)
    if match:
        return match.group(1).strip().lower()

    for token in from_header.split():
        if "@" in token:
            return token.strip("\"'").lower()
    return None


def _decode_body_data(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8", errors="replace")


def extract_body(message: InboundMessage) -> Optional[str]:
    """Plain-text body: the first text/plain part, else the top-level body"""
    payload = message.payload

    stack = list(payload.get("parts") or [])
    while stack:
        part = stack.pop(0)
        if part.get("mimeType") == "text/plain" and part.get("body", {}).get("data"):
            return _decode_body_data(part["body"]["data"])
        stack.extend(part.get("parts") or [])

    data = payload.get("body", {}).get("data")
    if data:
        return _decode_body_data(data)
    return None


class GmailGateway:
    """Gmail mailbox access for the service account"""

    def __init__(self, settings: Settings, http_client: Optional[httpx.Client] = None):
        self.settings = settings
        self._client = http_client or httpx.Client(timeout=settings.HTTP_TIMEOUT_SECONDS)
        self._access_token: Optional[str] = None
        self._token_expires_at: Optional[datetime] = None

    def close(self) -> None:
        self._client.close()

    def _get_access_token(self) -> str:
        now = utcnow()
        if self._access_token and self._token_expires_at and now < self._token_expires_at:
            return self._access_token

        try:
            response = self._client.post(
                OAUTH_TOKEN_URL,
                data={
                    "client_id": self.settings.GMAIL_CLIENT_ID,
                    "client_secret": self.settings.GMAIL_CLIENT_SECRET,
                    "refresh_token": self.settings.GMAIL_REFRESH_TOKEN,
                    "grant_type": "refresh_token",
                },
            )
        except httpx.HTTPError as e:
            raise EmailGatewayError(f"OAuth token refresh failed: {e}") from e

        if response.status_code != 200:
            raise EmailGatewayError(
                f"OAuth token refresh returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        data = response.json()
        self._access_token = data["access_token"]
        # Refresh a minute early
        expires_in = int(data.get("expires_in", 3600))
        self._token_expires_at = now + timedelta(seconds=max(expires_in - 60, 0))
        return self._access_token

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        headers = {"Authorization": f"Bearer {self._get_access_token()}"}
        try:
            response = self._client.request(method, f"{GMAIL_API_BASE}{path}", headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise EmailGatewayError(f"Gmail request failed: {method} {path}: {e}") from e

        if response.status_code >= 400:
            raise EmailGatewayError(
                f"Gmail returned HTTP {response.status_code} for {method} {path}",
                status_code=response.status_code,
            )
        if not response.content:
            return {}
        return response.json()

    def poll_for_new_messages(self) -> List[InboundMessage]:
        """
        Fetch unread inbox messages matching the poll query.

        Provider errors are logged and yield an empty list, so a bad poll
        never crashes the recurring job.
        """
        try:
            listing = self._request(
                "GET",
                "/messages",
                params={"q": self.settings.GMAIL_POLL_QUERY, "maxResults": self.settings.GMAIL_POLL_MAX_RESULTS},
            )
            messages = []
            for ref in listing.get("messages", []):
                full = self._request("GET", f"/messages/{ref['id']}", params={"format": "full"})
                messages.append(
                    InboundMessage(
                        id=full["id"],
                        thread_id=full.get("threadId"),
                        payload=full.get("payload", {}),
                        snippet=full.get("snippet", ""),
                    )
                )
        except EmailGatewayError as e:
            logger.error("Gmail poll failed", extra={"error": e.message, "status_code": e.status_code})
            return []

        if messages:
            logger.info(f"Fetched {len(messages)} new message(s)")
        return messages

    def mark_read(self, message_id: str) -> None:
        self._request("POST", f"/messages/{message_id}/modify", json={"removeLabelIds": ["UNREAD"]})

    def trash(self, message_id: str) -> None:
        self._request("POST", f"/messages/{message_id}/trash")

    def send_reply(
        self,
        to: str,
        subject: str,
        body: str,
        in_reply_to: Optional[str] = None,
        thread_id: Optional[str] = None,
    ) -> str:
        """Send a plain-text email; returns the provider message id"""
        message = EmailMessage()
        message["To"] = to
        if self.settings.GMAIL_USER:
            message["From"] = self.settings.GMAIL_USER
        message["Subject"] = subject
        if in_reply_to:
            message["In-Reply-To"] = in_reply_to
            message["References"] = in_reply_to
        message.set_content(body)

        raw = base64.urlsafe_b64encode(message.as_bytes()).decode("ascii")
        request: Dict[str, Any] = {"raw": raw}
        if thread_id:
            request["threadId"] = thread_id

        result = self._request("POST", "/messages/send", json=request)
        logger.info("Reply sent", extra={"to": to, "gmail_message_id": result.get("id")})
        return result.get("id", "")
