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

"""Webhook service for asynchronous payment provider events.

Every delivery goes through the same steps, in order:
1. The signature header must be present and must verify against the raw,
   unparsed request body.
2. The verified body is parsed into a `WebhookEvent`.
3. The event id is claimed in the processed-event ledger. A delivery whose id
   is already claimed is acknowledged without running any side effect.
4. The event is dispatched by type. Unknown types are acknowledged.
5. On success the claim is marked processed. On failure the claim is
   released so the provider's retry runs the handler again.
"""

import datetime
import hashlib
import logging
from typing import Awaitable, Callable, Dict, Optional

import pydantic
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from storefront_server import db
from storefront_server.enums import WebhookEventType
from storefront_server.exceptions import InvalidRequestError
from storefront_server.exceptions import WebhookProcessingError
from storefront_server.exceptions import WebhookSignatureError
from storefront_server.models import CompletedCheckoutSession
from storefront_server.models import WebhookEvent
from storefront_server.services.fulfillment_service import FulfillmentService
from storefront_server.services.payment_provider import PaymentProvider

logger = logging.getLogger(__name__)

# Claims older than this are assumed to belong to a worker that died.
STALE_CLAIM_SECONDS = 600


class WebhookService:
  """Authenticates and idempotently dispatches provider events."""

  def __init__(
      self,
      provider: PaymentProvider,
      fulfillment_service: FulfillmentService,
      transactions_session: AsyncSession,
  ):
    self.provider = provider
    self.fulfillment_service = fulfillment_service
    self.transactions_session = transactions_session
    self._handlers: Dict[str, Callable[[WebhookEvent], Awaitable[None]]] = {
        WebhookEventType.CHECKOUT_SESSION_COMPLETED.value: (
            self._on_checkout_completed
        ),
        WebhookEventType.CHECKOUT_SESSION_EXPIRED.value: (
            self._on_checkout_expired
        ),
        WebhookEventType.PAYMENT_INTENT_SUCCEEDED.value: (
            self._on_payment_succeeded
        ),
        WebhookEventType.PAYMENT_INTENT_FAILED.value: self._on_payment_failed,
    }

  async def handle(self, raw_body: bytes, signature: Optional[str]) -> bool:
    """Processes one webhook delivery.

    Args:
      raw_body: The request body exactly as received.
      signature: The provider's signature header, if any.

    Returns:
      True if the event was dispatched, False if it was a duplicate.

    Raises:
      WebhookSignatureError: The signature is missing or invalid.
      InvalidRequestError: The verified body is not a valid event.
      WebhookProcessingError: The event handler or the event ledger failed.
    """
    if not signature:
      logger.error("Webhook Error: Missing signature header")
      raise WebhookSignatureError("Missing signature")

    self.provider.verify_webhook_signature(raw_body, signature)

    try:
      event = WebhookEvent.model_validate_json(raw_body)
    except pydantic.ValidationError as e:
      logger.error("Verified webhook payload is not a valid event: %s", e)
      raise InvalidRequestError("Invalid payload") from e

    payload_hash = hashlib.sha256(raw_body).hexdigest()
    try:
      claimed = await self._claim(event, payload_hash)
    except SQLAlchemyError as e:
      logger.exception("Could not claim webhook event %s", event.id)
      await self._rollback()
      raise WebhookProcessingError() from e
    if not claimed:
      return False

    try:
      await self._dispatch(event)
    except Exception as e:  # pylint: disable=broad-exception-caught
      logger.exception(
          "Error processing webhook event %s (%s)", event.id, event.type
      )
      await self._release(event.id)
      raise WebhookProcessingError() from e

    try:
      await db.mark_webhook_event_processed(
          self.transactions_session, event.id
      )
      await self.transactions_session.commit()
    except SQLAlchemyError as e:
      # The claim is kept; a redelivery runs only after the stale cutoff.
      logger.exception(
          "Webhook event %s was handled but could not be marked processed",
          event.id,
      )
      await self._rollback()
      raise WebhookProcessingError() from e
    return True

  async def _claim(self, event: WebhookEvent, payload_hash: str) -> bool:
    """Claims the event id; returns False for a duplicate delivery."""
    session = self.transactions_session
    claimed = await db.claim_webhook_event(
        session, event.id, event.type, payload_hash
    )
    if not claimed:
      cutoff = datetime.datetime.now(
          datetime.timezone.utc
      ) - datetime.timedelta(seconds=STALE_CLAIM_SECONDS)
      claimed = await db.reclaim_stale_webhook_event(
          session, event.id, cutoff.isoformat()
      )
      if claimed:
        logger.warning("Reclaimed stale webhook event %s", event.id)
    await session.commit()

    if not claimed:
      existing = await db.get_webhook_event(session, event.id)
      if existing and existing.payload_hash != payload_hash:
        logger.warning(
            "Event %s redelivered with a different payload; ignoring",
            event.id,
        )
      logger.info("Skipping duplicate webhook event %s", event.id)
    return claimed

  async def _release(self, event_id: str) -> None:
    try:
      await db.release_webhook_event(self.transactions_session, event_id)
      await self.transactions_session.commit()
    except SQLAlchemyError:
      logger.exception("Failed to release claim for webhook event %s", event_id)

  async def _rollback(self) -> None:
    try:
      await self.transactions_session.rollback()
    except SQLAlchemyError:
      logger.exception("Failed to roll back the webhook ledger session")

  async def _dispatch(self, event: WebhookEvent) -> None:
    handler = self._handlers.get(event.type)
    if handler is None:
      logger.info("Unhandled event type: %s", event.type)
      return
    await handler(event)

  async def _on_checkout_completed(self, event: WebhookEvent) -> None:
    session = CompletedCheckoutSession.model_validate(event.data.object_)
    await self.fulfillment_service.handle_checkout_completed(session)

  async def _on_checkout_expired(self, event: WebhookEvent) -> None:
    logger.info("Checkout session expired: %s", event.data.object_.get("id"))

  async def _on_payment_succeeded(self, event: WebhookEvent) -> None:
    logger.info("Payment succeeded: %s", event.data.object_.get("id"))

  async def _on_payment_failed(self, event: WebhookEvent) -> None:
    logger.error("Payment failed: %s", event.data.object_.get("id"))
