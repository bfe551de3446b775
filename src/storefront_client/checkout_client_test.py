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

"""Tests for the checkout hand-off client."""

from decimal import Decimal
import json
from typing import List

from absl.testing import absltest
import httpx
from storefront_client.cart import CartItem
from storefront_client.cart import CartStore
from storefront_client.checkout_client import CheckoutFailedError
from storefront_client.checkout_client import CheckoutRedirect
from storefront_client.checkout_client import StorefrontClient

ROSE = CartItem(id="rose", name="Red Rose", price=Decimal("10.00"))


class FakeStorefront:
  """Serves canned responses and records requests."""

  def __init__(self) -> None:
    self.requests: List[httpx.Request] = []
    self.checkout_response = httpx.Response(
        200,
        json={"url": "https://pay.example/cs_1", "sessionId": "cs_1"},
    )
    self.payment_status = "unpaid"

  def __call__(self, request: httpx.Request) -> httpx.Response:
    self.requests.append(request)
    if request.url.path == "/api/checkout":
      return self.checkout_response
    if request.url.path == "/api/checkout/sessions/cs_1":
      return httpx.Response(
          200,
          json={
              "sessionId": "cs_1",
              "status": "complete" if self.payment_status == "paid" else "open",
              "paymentStatus": self.payment_status,
          },
      )
    return httpx.Response(404, json={"error": "Checkout session not found"})


class StorefrontClientTest(absltest.TestCase):
  """Tests for StorefrontClient."""

  def setUp(self) -> None:
    super().setUp()
    self.server = FakeStorefront()
    self.http_client = httpx.Client(
        base_url="https://shop.example",
        transport=httpx.MockTransport(self.server),
    )
    self.client = StorefrontClient(self.http_client)
    self.cart = CartStore()
    self.cart.add_item(ROSE, 2)

  def tearDown(self) -> None:
    self.http_client.close()
    super().tearDown()

  def test_begin_checkout_sends_ids_and_quantities_only(self):
    redirect = self.client.begin_checkout(
        self.cart, success_url="https://shop.example/thanks"
    )

    self.assertEqual(
        redirect,
        CheckoutRedirect(url="https://pay.example/cs_1", session_id="cs_1"),
    )
    sent = json.loads(self.server.requests[0].content)
    self.assertEqual(
        sent,
        {
            "items": [{"productId": "rose", "quantity": 2}],
            "successUrl": "https://shop.example/thanks",
        },
    )
    self.assertEqual(self.cart.total_items(), 2)

  def test_failed_checkout_keeps_cart(self):
    self.server.checkout_response = httpx.Response(
        500, json={"error": "Your card was declined."}
    )

    with self.assertRaises(CheckoutFailedError) as cm:
      self.client.begin_checkout(self.cart)

    self.assertEqual(cm.exception.message, "Your card was declined.")
    self.assertEqual(cm.exception.status_code, 500)
    self.assertEqual(self.cart.total_items(), 2)

  def test_throttled_checkout_without_json_body(self):
    self.server.checkout_response = httpx.Response(429, text="slow down")

    with self.assertRaises(CheckoutFailedError) as cm:
      self.client.begin_checkout(self.cart)

    self.assertEqual(cm.exception.status_code, 429)
    self.assertIn("429", cm.exception.message)

  def test_empty_cart_is_not_sent(self):
    with self.assertRaises(CheckoutFailedError):
      self.client.begin_checkout(CartStore())

    self.assertEmpty(self.server.requests)

  def test_unreachable_store(self):
    def refuse(request: httpx.Request) -> httpx.Response:
      raise httpx.ConnectError("connection refused", request=request)

    client = StorefrontClient(
        httpx.Client(
            base_url="https://shop.example",
            transport=httpx.MockTransport(refuse),
        )
    )

    with self.assertRaises(CheckoutFailedError):
      client.begin_checkout(self.cart)

  def test_confirm_unpaid_session_keeps_cart(self):
    self.assertFalse(self.client.confirm_checkout(self.cart, "cs_1"))

    self.assertEqual(self.cart.total_items(), 2)

  def test_confirm_paid_session_clears_cart(self):
    self.server.payment_status = "paid"

    self.assertTrue(self.client.confirm_checkout(self.cart, "cs_1"))

    self.assertEqual(self.cart.total_items(), 0)

  def test_confirm_unknown_session(self):
    with self.assertRaises(CheckoutFailedError) as cm:
      self.client.confirm_checkout(self.cart, "cs_missing")

    self.assertEqual(cm.exception.status_code, 404)
    self.assertEqual(self.cart.total_items(), 2)


if __name__ == "__main__":
  absltest.main()
