"""
Mail delivery abstraction for the contact form (Resend HTTP API and in-memory testing).
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Protocol

import requests

RESEND_API_URL = "https://api.resend.com/emails"


class MailerError(Exception):
    """Raised when a message could not be handed to the mail provider."""


@dataclass
class OutgoingMessage:
    sender: str
    recipient: str
    subject: str
    html: str
    reply_to: str | None = None


class Mailer(Protocol):
    def send(self, message: OutgoingMessage) -> str:
        """Deliver a message and return the provider's message id."""
        ...


@dataclass
class InMemoryMailer:
    """Collects messages instead of sending them."""

    outbox: list[OutgoingMessage] = field(default_factory=list)

    def send(self, message: OutgoingMessage) -> str:
        self.outbox.append(message)
        return uuid.uuid4().hex

    def reset(self) -> None:
        self.outbox.clear()


@dataclass
class ResendMailer:
    api_key: str
    timeout: float = 10.0
    api_url: str = RESEND_API_URL

    def send(self, message: OutgoingMessage) -> str:
        payload = {
            "from": message.sender,
            "to": [message.recipient],
            "subject": message.subject,
            "html": message.html,
        }
        if message.reply_to:
            payload["reply_to"] = message.reply_to
        try:
            response = requests.post(
                self.api_url,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            raise MailerError(str(exc)) from exc
        return response.json().get("id", "")
