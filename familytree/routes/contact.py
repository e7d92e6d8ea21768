"""
Contact form endpoint.
"""

from __future__ import annotations

import html
import logging

from fastapi import APIRouter, Depends

from familytree.config import Settings, get_settings
from familytree.dependencies import get_mailer
from familytree.errors import UpstreamFailure
from familytree.mailer import Mailer, MailerError, OutgoingMessage
from familytree.schemas import ContactRequest, ContactResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/contact", tags=["contact"])

SUBJECT = "New Contact From Family Tree Website"


def _render_contact(payload: ContactRequest) -> str:
    message = html.escape(payload.message).replace("\n", "<br>")
    return (
        "<h3>New Contact</h3>"
        f"<p><strong>Email:</strong> {html.escape(payload.email)}</p>"
        f"<p><strong>Message:</strong><br>{message}</p>"
    )


@router.post("", response_model=ContactResponse)
def send_contact(
    payload: ContactRequest,
    mailer: Mailer = Depends(get_mailer),
    settings: Settings = Depends(get_settings),
):
    if not settings.contact_recipient:
        logger.error("CONTACT_RECIPIENT is not configured")
        raise UpstreamFailure("Contact form is not available")
    message = OutgoingMessage(
        sender=settings.contact_sender,
        recipient=settings.contact_recipient,
        subject=SUBJECT,
        html=_render_contact(payload),
        reply_to=payload.email,
    )
    try:
        message_id = mailer.send(message)
    except MailerError as exc:
        logger.error("Contact message delivery failed: %s", exc)
        raise UpstreamFailure("Failed to send message") from exc
    return ContactResponse(success=True, id=message_id)
