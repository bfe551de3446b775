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

"""Fulfillment service for completed checkouts.

This module encapsulates the side effects of a paid checkout: recording the
order in the logs and notifying the customer and the store. Order-record
persistence and inventory are left to future extensions.
"""

import json
import logging
from typing import List

from storefront_server.models import CompletedCheckoutSession
from storefront_server.services.notification_service import EmailMessage
from storefront_server.services.notification_service import NotificationSender

logger = logging.getLogger(__name__)


def format_amount(amount_minor: int | None, currency: str | None) -> str:
  """Formats a minor-unit amount such as 3500 'usd' as '$35.00'."""
  if amount_minor is None:
    return "n/a"
  major = amount_minor / 100
  if (currency or "usd").lower() == "usd":
    return f"${major:,.2f}"
  return f"{major:,.2f} {currency.upper()}"


def describe_items(metadata: dict[str, str]) -> List[str]:
  """Renders the compact item summary stored in session metadata."""
  if "productId" in metadata:
    return [f"{metadata['productId']} x {metadata.get('quantity', '1')}"]
  try:
    items = json.loads(metadata.get("items", "[]"))
  except ValueError:
    return []
  return [f"{item.get('id')} x {item.get('qty')}" for item in items]


class FulfillmentService:
  """Service for handling fulfillment of paid checkouts."""

  def __init__(self, notifier: NotificationSender, store_email: str):
    self.notifier = notifier
    self.store_email = store_email

  async def handle_checkout_completed(
      self, session: CompletedCheckoutSession
  ) -> None:
    """Records a completed checkout and sends confirmation emails.

    Notification failures are logged and otherwise ignored; any other error
    propagates so the provider redelivers the event.

    Args:
      session: The completed checkout session from the webhook payload.
    """
    total = format_amount(session.amount_total, session.currency)
    lines = describe_items(session.metadata)
    logger.info(
        "Checkout completed: session=%s email=%s total=%s payment_status=%s"
        " items=%s",
        session.id,
        session.email,
        total,
        session.payment_status,
        lines,
    )

    item_text = "\n".join(f"  - {line}" for line in lines) or "  (none)"

    if session.email:
      sent = await self.notifier.send(
          EmailMessage(
              to=session.email,
              subject="Your order is confirmed",
              text=(
                  "Thank you for your order!\n\n"
                  f"Order reference: {session.id}\n"
                  f"Total: {total}\n"
                  f"Items:\n{item_text}\n\n"
                  "We will email you again when your order ships."
              ),
          )
      )
      if not sent:
        logger.warning(
            "Order confirmation not delivered for session %s", session.id
        )
    else:
      logger.warning("Session %s has no customer email", session.id)

    sent = await self.notifier.send(
        EmailMessage(
            to=self.store_email,
            subject=f"New order {session.id}",
            text=(
                f"Session: {session.id}\n"
                f"Customer: {session.email or 'unknown'}\n"
                f"Total: {total}\n"
                f"Payment status: {session.payment_status}\n"
                f"Items:\n{item_text}\n"
            ),
            reply_to=session.email,
        )
    )
    if not sent:
      logger.warning("Order alert not delivered for session %s", session.id)
