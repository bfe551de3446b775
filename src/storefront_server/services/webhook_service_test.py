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

"""Tests for webhook verification, deduplication and dispatch."""

import asyncio
import json
import os
import shutil
import tempfile
import time
from typing import Any, Optional
from unittest import mock

from absl.testing import absltest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool
from storefront_server import db
from storefront_server.exceptions import InvalidRequestError
from storefront_server.exceptions import WebhookProcessingError
from storefront_server.exceptions import WebhookSignatureError
from storefront_server.services.fulfillment_service import FulfillmentService
from storefront_server.services.notification_service import LoggingEmailSender
from storefront_server.services.payment_provider import compute_signature_header
from storefront_server.services.payment_provider import FakePaymentProvider
from storefront_server.services.webhook_service import WebhookService

SECRET = "whsec_test_secret"
STORE_EMAIL = "orders@shop.example"


def make_event(
    event_id: str = "evt_1",
    event_type: str = "checkout.session.completed",
    **session_fields: Any,
) -> bytes:
  session = {
      "id": "cs_test_1",
      "object": "checkout.session",
      "customer_details": {"email": "buyer@example.com", "name": "Buyer"},
      "amount_total": 3500,
      "currency": "usd",
      "payment_status": "paid",
      "metadata": {
          "itemCount": "2",
          "items": '[{"id":"prod_a","qty":2},{"id":"prod_b","qty":1}]',
      },
  }
  session.update(session_fields)
  event = {
      "id": event_id,
      "object": "event",
      "type": event_type,
      "created": 1767225600,
      "livemode": False,
      "data": {"object": session},
  }
  return json.dumps(event).encode("utf-8")


class FlakyFulfillmentService(FulfillmentService):
  """Fails the first `failures` calls, then behaves normally."""

  def __init__(self, notifier, store_email, failures=1):
    super().__init__(notifier, store_email)
    self.failures = failures

  async def handle_checkout_completed(self, session):
    if self.failures:
      self.failures -= 1
      raise RuntimeError("order store unavailable")
    await super().handle_checkout_completed(session)


class WebhookServiceTest(absltest.TestCase):
  """Tests for WebhookService against a temporary transactions database."""

  def setUp(self) -> None:
    super().setUp()
    self.test_dir = tempfile.mkdtemp()
    db_path = os.path.join(self.test_dir, "test_transactions.db")
    self.engine = create_async_engine(
        f"sqlite+aiosqlite:///{db_path}", echo=False, poolclass=NullPool
    )
    self.session_factory = sessionmaker(
        self.engine, expire_on_commit=False, class_=AsyncSession
    )

    async def init_schema() -> None:
      async with self.engine.begin() as conn:
        await conn.run_sync(db.TransactionBase.metadata.create_all)

    asyncio.run(init_schema())

    self.provider = FakePaymentProvider(webhook_secret=SECRET)
    self.notifier = LoggingEmailSender()
    self.fulfillment = FulfillmentService(self.notifier, STORE_EMAIL)

  def tearDown(self) -> None:
    asyncio.run(self.engine.dispose())
    shutil.rmtree(self.test_dir)
    super().tearDown()

  def _deliver(
      self,
      body: bytes,
      signature: Optional[str] = None,
      fulfillment: Optional[FulfillmentService] = None,
  ) -> bool:
    if signature is None:
      signature = compute_signature_header(body, SECRET)

    async def run() -> bool:
      async with self.session_factory() as session:
        service = WebhookService(
            self.provider, fulfillment or self.fulfillment, session
        )
        return await service.handle(body, signature)

    return asyncio.run(run())

  def _ledger_entry(self, event_id: str):
    async def run():
      async with self.session_factory() as session:
        return await db.get_webhook_event(session, event_id)

    return asyncio.run(run())

  def test_completed_checkout_triggers_fulfillment(self):
    self.assertTrue(self._deliver(make_event()))

    recipients = [m.to for m in self.notifier.sent]
    self.assertEqual(recipients, ["buyer@example.com", STORE_EMAIL])
    self.assertIn("$35.00", self.notifier.sent[0].text)
    self.assertIn("prod_a x 2", self.notifier.sent[1].text)
    self.assertEqual(self._ledger_entry("evt_1").status, "processed")

  def test_duplicate_delivery_is_dispatched_once(self):
    body = make_event()

    self.assertTrue(self._deliver(body))
    self.assertFalse(self._deliver(body))

    self.assertLen(self.notifier.sent, 2)

  def test_missing_signature_is_rejected(self):
    with self.assertRaises(WebhookSignatureError) as cm:
      self._deliver(make_event(), signature="")
    self.assertEqual(cm.exception.message, "Missing signature")
    self.assertEqual(cm.exception.status_code, 400)

  def test_tampered_body_is_rejected(self):
    body = make_event()
    signature = compute_signature_header(body, SECRET)
    tampered = body.replace(b"3500", b"1")

    with self.assertRaises(WebhookSignatureError) as cm:
      self._deliver(tampered, signature=signature)
    self.assertEqual(cm.exception.message, "Invalid signature")
    self.assertEmpty(self.notifier.sent)
    self.assertIsNone(self._ledger_entry("evt_1"))

  def test_reserialized_body_is_rejected(self):
    body = make_event()
    signature = compute_signature_header(body, SECRET)
    reserialized = json.dumps(json.loads(body), indent=2).encode("utf-8")

    with self.assertRaises(WebhookSignatureError):
      self._deliver(reserialized, signature=signature)

  def test_wrong_secret_is_rejected(self):
    body = make_event()

    with self.assertRaises(WebhookSignatureError):
      self._deliver(body, compute_signature_header(body, "whsec_other"))

  def test_expired_timestamp_is_rejected(self):
    body = make_event()
    signature = compute_signature_header(
        body, SECRET, int(time.time()) - 3600
    )

    with self.assertRaises(WebhookSignatureError):
      self._deliver(body, signature=signature)
    self.assertEmpty(self.notifier.sent)

  def test_unconfigured_secret_rejects_everything(self):
    self.provider = FakePaymentProvider(webhook_secret=None)

    with self.assertRaises(WebhookSignatureError):
      self._deliver(make_event())

  def test_verified_but_malformed_payload(self):
    for body in (b"not json", b'{"id": "evt_1"}'):
      with self.subTest(body=body):
        with self.assertRaises(InvalidRequestError) as cm:
          self._deliver(body)
        self.assertEqual(cm.exception.message, "Invalid payload")

  def test_handler_failure_releases_claim_for_retry(self):
    flaky = FlakyFulfillmentService(self.notifier, STORE_EMAIL)
    body = make_event()

    with self.assertRaises(WebhookProcessingError) as cm:
      self._deliver(body, fulfillment=flaky)
    self.assertEqual(cm.exception.status_code, 500)
    self.assertEqual(cm.exception.message, "Processing error")
    self.assertIsNone(self._ledger_entry("evt_1"))

    self.assertTrue(self._deliver(body, fulfillment=flaky))
    self.assertLen(self.notifier.sent, 2)

  def test_ledger_outage_before_dispatch(self):
    error = OperationalError("INSERT", {}, Exception("disk I/O error"))

    with mock.patch.object(db, "claim_webhook_event", side_effect=error):
      with self.assertRaises(WebhookProcessingError) as cm:
        self._deliver(make_event())

    self.assertEqual(cm.exception.message, "Processing error")
    self.assertEmpty(self.notifier.sent)
    self.assertIsNone(self._ledger_entry("evt_1"))

  def test_ledger_outage_after_dispatch_keeps_claim(self):
    error = OperationalError("UPDATE", {}, Exception("disk I/O error"))
    body = make_event()

    with mock.patch.object(
        db, "mark_webhook_event_processed", side_effect=error
    ):
      with self.assertRaises(WebhookProcessingError):
        self._deliver(body)

    self.assertLen(self.notifier.sent, 2)
    self.assertEqual(self._ledger_entry("evt_1").status, "processing")
    self.assertFalse(self._deliver(body))
    self.assertLen(self.notifier.sent, 2)

  def test_unknown_event_type_is_acknowledged(self):
    self.assertTrue(self._deliver(make_event(event_type="customer.created")))

    self.assertEmpty(self.notifier.sent)
    self.assertEqual(self._ledger_entry("evt_1").event_type, "customer.created")

  def test_informational_events_have_no_side_effects(self):
    for i, event_type in enumerate((
        "checkout.session.expired",
        "payment_intent.succeeded",
        "payment_intent.payment_failed",
    )):
      with self.subTest(event_type=event_type):
        self.assertTrue(
            self._deliver(make_event(f"evt_{i}", event_type=event_type))
        )
    self.assertEmpty(self.notifier.sent)

  def test_completed_checkout_without_email_alerts_store_only(self):
    self._deliver(make_event(customer_details=None, customer_email=None))

    self.assertEqual([m.to for m in self.notifier.sent], [STORE_EMAIL])

  def test_stale_claim_is_taken_over(self):
    async def seed() -> None:
      async with self.session_factory() as session:
        session.add(
            db.ProcessedWebhookEvent(
                event_id="evt_1",
                event_type="checkout.session.completed",
                payload_hash="",
                status="processing",
                received_at="2020-01-01T00:00:00+00:00",
            )
        )
        await session.commit()

    asyncio.run(seed())

    self.assertTrue(self._deliver(make_event()))
    self.assertEqual(self._ledger_entry("evt_1").status, "processed")

  def test_recent_claim_blocks_concurrent_delivery(self):
    async def seed() -> None:
      async with self.session_factory() as session:
        await db.claim_webhook_event(
            session, "evt_1", "checkout.session.completed", ""
        )
        await session.commit()

    asyncio.run(seed())

    self.assertFalse(self._deliver(make_event()))
    self.assertEmpty(self.notifier.sent)


if __name__ == "__main__":
  absltest.main()
