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

"""Fire-and-forget email notifications.

Senders report success as a boolean and never raise; callers decide whether a
failed send matters to them. Nothing here retries.
"""

import abc
import dataclasses
import html
import logging
from typing import List, Optional

import httpx

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


@dataclasses.dataclass(frozen=True)
class EmailMessage:
  to: str
  subject: str
  text: str
  html: Optional[str] = None
  reply_to: Optional[str] = None


def escape_html(text: str) -> str:
  """Escapes user-supplied text before it is embedded in HTML email."""
  return html.escape(text, quote=True)


class NotificationSender(abc.ABC):
  """Delivers outbound messages."""

  @abc.abstractmethod
  async def send(self, message: EmailMessage) -> bool:
    """Sends `message`; returns False (after logging) on failure."""


class ResendEmailSender(NotificationSender):
  """Sends email through the Resend HTTP API."""

  def __init__(
      self,
      api_key: str,
      sender: str,
      api_url: str = RESEND_API_URL,
      timeout: float = 10.0,
      transport: Optional[httpx.AsyncBaseTransport] = None,
  ):
    self.api_key = api_key
    self.sender = sender
    self.api_url = api_url
    self.timeout = timeout
    self.transport = transport

  async def send(self, message: EmailMessage) -> bool:
    payload = {
        "from": self.sender,
        "to": [message.to],
        "subject": message.subject,
        "text": message.text,
    }
    if message.html:
      payload["html"] = message.html
    if message.reply_to:
      payload["reply_to"] = message.reply_to

    try:
      async with httpx.AsyncClient(
          timeout=self.timeout, transport=self.transport
      ) as client:
        response = await client.post(
            self.api_url,
            json=payload,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
    except httpx.HTTPError as e:
      logger.error("Failed to send email to %s: %s", message.to, e)
      return False

    if response.status_code >= 300:
      logger.error(
          "Email provider rejected message to %s: Status %d %s",
          message.to,
          response.status_code,
          response.text,
      )
      return False
    return True


class LoggingEmailSender(NotificationSender):
  """Logs messages instead of sending them; used when no API key is set."""

  def __init__(self) -> None:
    self.sent: List[EmailMessage] = []

  async def send(self, message: EmailMessage) -> bool:
    logger.info("Email to %s: %s", message.to, message.subject)
    self.sent.append(message)
    return True
