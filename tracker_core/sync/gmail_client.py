# =============================================================================
# tracker_core/sync/gmail_client.py
# Mail Transport Interface and Gmail REST Implementation
# =============================================================================

from __future__ import annotations
import base64
from abc import ABC, abstractmethod
from email.message import EmailMessage
from typing import Any, Dict, Iterable, List, Optional
import logging

import requests
from google_auth_oauthlib.flow import InstalledAppFlow

logger = logging.getLogger(__name__)

GMAIL_SCOPES = [
    "https://www.googleapis.com/auth/gmail.send",
    "https://www.googleapis.com/auth/gmail.readonly",
]


class MailTransport(ABC):
    """Minimal mailbox operations the email channel needs."""

    @abstractmethod
    def request_token(self) -> bool:
        """Obtain an access token. Returns False when consent fails."""

    @abstractmethod
    def send_message(self, to: str, bcc: Iterable[str], subject: str, body: str) -> Optional[str]:
        """Send one plain-text message; returns the provider message id."""

    @abstractmethod
    def list_messages(self, query: str, max_results: int) -> List[Dict[str, Any]]:
        """
        Return up to ``max_results`` messages matching ``query``, newest first.

        Each message is a mapping with ``id``, ``subject``, ``snippet`` and
        ``payload`` (the provider's MIME tree, with base64url ``body.data``).
        """


def build_raw_message(to: str, bcc: Iterable[str], subject: str, body: str) -> str:
    """RFC 2822 message, base64url encoded for the Gmail ``raw`` field."""
    message = EmailMessage()
    message["To"] = to
    bcc = [address for address in bcc if address != to]
    if bcc:
        message["Bcc"] = ", ".join(sorted(bcc))
    message["Subject"] = subject
    message.set_content(body)
    return base64.urlsafe_b64encode(message.as_bytes()).decode("ascii")


def header_value(payload: Dict[str, Any], name: str) -> Optional[str]:
    for header in payload.get("headers") or []:
        if str(header.get("name", "")).lower() == name.lower():
            return header.get("value")
    return None


class GmailTransport(MailTransport):
    """
    Gmail REST API over a requests.Session.

    Usage:
        transport = GmailTransport(settings.gmail_client_secrets)
        if transport.request_token():
            transport.send_message("me@acme.com", [], subject, body)
    """

    BASE_URL = "https://gmail.googleapis.com/gmail/v1/users/me"

    def __init__(self, client_secrets_file: str, timeout: float = 30.0):
        self.client_secrets_file = client_secrets_file
        self.timeout = timeout
        self.session = requests.Session()
        self._token: Optional[str] = None

    @property
    def has_token(self) -> bool:
        return self._token is not None

    def request_token(self) -> bool:
        try:
            flow = InstalledAppFlow.from_client_secrets_file(self.client_secrets_file, scopes=GMAIL_SCOPES)
            credentials = flow.run_local_server(port=0, prompt="consent")
        except Exception as e:
            logger.error(f"Gmail consent failed: {e}")
            return False

        self._token = credentials.token
        self.session.headers.update({"Authorization": f"Bearer {self._token}"})
        logger.info("Gmail access token obtained")
        return True

    def _make_request(self, endpoint: str, method: str = "GET",
                      params: Optional[Dict] = None, data: Optional[Dict] = None) -> Dict[str, Any]:
        url = f"{self.BASE_URL}/{endpoint}"
        try:
            response = self.session.request(
                method=method,
                url=url,
                params=params,
                json=data,
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            raise ConnectionError(f"Gmail request failed ({endpoint}): {e}") from e

    def send_message(self, to, bcc, subject, body) -> Optional[str]:
        result = self._make_request(
            "messages/send",
            method="POST",
            data={"raw": build_raw_message(to, bcc, subject, body)},
        )
        return result.get("id")

    def list_messages(self, query, max_results) -> List[Dict[str, Any]]:
        listing = self._make_request("messages", params={"q": query, "maxResults": max_results})
        messages = []
        for ref in listing.get("messages") or []:
            detail = self._make_request(f"messages/{ref['id']}", params={"format": "full"})
            payload = detail.get("payload") or {}
            messages.append({
                "id": detail.get("id", ref["id"]),
                "subject": header_value(payload, "Subject"),
                "snippet": detail.get("snippet", ""),
                "payload": payload,
            })
        return messages
