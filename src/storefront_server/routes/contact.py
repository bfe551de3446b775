#   Copyright 2026 UCP Authors
#
#   Licensed under the Apache License, Version 2.0 (the "License");
#   you may not use this file except in compliance with the License.
#   You may obtain a copy of the License at
#
#       http://www.apache.org/licenses/LICENSE-2.0
#
#   Unless required by applicable law or agreed to in writing, software
#   distributed under the License is distributed on an "AS IS" BASIS,
#   WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#   See the License for the specific language governing permissions and
#   limitations under the License.

"""Contact form route."""

import logging
from typing import Any

from fastapi import APIRouter
from fastapi import Depends
from fastapi import Request
from storefront_server import config
from storefront_server import dependencies
from storefront_server.exceptions import NotificationError
from storefront_server.models import ContactRequest
from storefront_server.routes.checkout import parse_json_body
from storefront_server.services.notification_service import EmailMessage
from storefront_server.services.notification_service import escape_html
from storefront_server.services.notification_service import NotificationSender

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

SUCCESS_MESSAGE = "Thank you for your message. We'll be in touch soon!"


def build_contact_email(contact: ContactRequest, to: str) -> EmailMessage:
  """Renders a contact submission; all user text is escaped for the HTML."""
  phone = contact.phone or "Not provided"
  text = (
      f"Name: {contact.name}\n"
      f"Email: {contact.email}\n"
      f"Phone: {phone}\n\n"
      f"Message:\n{contact.message}\n"
  )
  message_html = escape_html(contact.message).replace("\n", "<br>")
  html = (
      "<h2>New Contact Form Submission</h2>"
      f"<p><strong>Name:</strong> {escape_html(contact.name)}</p>"
      f"<p><strong>Email:</strong> {escape_html(contact.email)}</p>"
      f"<p><strong>Phone:</strong> {escape_html(phone)}</p>"
      f"<p><strong>Message:</strong></p><p>{message_html}</p>"
  )
  return EmailMessage(
      to=to,
      subject=f"New Contact: {contact.name}",
      text=text,
      html=html,
      reply_to=contact.email,
  )


@router.post(
    "/contact",
    response_model=dict[str, Any],
    operation_id="submit_contact",
    dependencies=[Depends(dependencies.enforce_rate_limit)],
)
async def submit_contact(
    request: Request,
    settings: config.Settings = Depends(dependencies.get_settings),
    notifier: NotificationSender = Depends(
        dependencies.get_notification_sender
    ),
) -> dict[str, Any]:
  """Forwards a visitor's message to the store inbox."""
  contact = await parse_json_body(request, ContactRequest)

  if contact.honeypot:
    logger.warning("Spam detected via honeypot")
    # Looks like success to the bot
    return {"success": True}

  sent = await notifier.send(
      build_contact_email(contact, settings.contact_email)
  )
  if not sent:
    raise NotificationError(
        "Failed to send message. Please try again later."
    )
  return {"success": True, "message": SUCCESS_MESSAGE}
