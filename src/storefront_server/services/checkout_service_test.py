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

"""Tests for catalog pricing and checkout session creation."""

import asyncio
from decimal import Decimal
import json

from absl.testing import absltest
from absl.testing import parameterized
import pydantic
from storefront_server.exceptions import InvalidRequestError
from storefront_server.exceptions import PaymentProviderError
from storefront_server.exceptions import ResourceNotFoundError
from storefront_server.models import CheckoutRequest
from storefront_server.models import MultiItemOrder
from storefront_server.models import OrderLine
from storefront_server.models import ProductRecord
from storefront_server.models import SingleItemOrder
from storefront_server.services.catalog import StaticCatalog
from storefront_server.services.checkout_service import build_order_metadata
from storefront_server.services.checkout_service import CheckoutService
from storefront_server.services.checkout_service import MAX_METADATA_VALUE_LENGTH
from storefront_server.services.checkout_service import to_minor_units
from storefront_server.services.payment_provider import FakePaymentProvider

PRODUCTS = [
    ProductRecord(
        id="prod_a",
        name="Product A",
        description="The first product",
        price=Decimal("10.00"),
        images=("https://cdn.example/a.jpg",),
    ),
    ProductRecord(id="prod_b", name="Product B", price=Decimal("15.00")),
    ProductRecord(id="prod_c", name="Product C", price=Decimal("24.99")),
    ProductRecord(
        id="retired",
        name="Retired",
        price=Decimal("5.00"),
        available=False,
    ),
]


class CheckoutServiceTest(parameterized.TestCase):
  """Tests for CheckoutService and the checkout request boundary."""

  def setUp(self) -> None:
    super().setUp()
    self.provider = FakePaymentProvider()
    self.service = CheckoutService(
        StaticCatalog(PRODUCTS),
        self.provider,
        "https://shop.example/",
        shipping_countries=("US", "CA"),
    )

  def _order(self, raw: str):
    return CheckoutRequest.model_validate_json(raw).to_order()

  def _create(self, order):
    return asyncio.run(self.service.create_session(order))

  def test_cart_is_priced_from_catalog(self):
    order = self._order(
        json.dumps({
            "items": [
                {"productId": "prod_a", "quantity": 2},
                {"productId": "prod_b", "quantity": 1},
            ]
        })
    )

    session = self._create(order)

    self.assertEqual(
        [(i.name, i.unit_amount, i.quantity) for i in session.line_items],
        [("Product A", 1000, 2), ("Product B", 1500, 1)],
    )
    self.assertTrue(session.redirect_url.endswith(session.session_id))
    self.assertTrue(session.session_id.startswith("cs_test_"))

  def test_client_supplied_prices_are_ignored(self):
    order = self._order(
        json.dumps({
            "items": [
                {"productId": "prod_c", "quantity": 1, "price": 0.01},
            ],
            "price": 0.01,
            "unitAmount": 1,
        })
    )

    session = self._create(order)

    self.assertEqual(session.line_items[0].unit_amount, 2499)

  def test_catalog_data_fills_line_items(self):
    session = self._create(self._order('{"productId": "prod_a"}'))

    item = session.line_items[0]
    self.assertEqual(item.description, "The first product")
    self.assertEqual(item.images, ["https://cdn.example/a.jpg"])
    self.assertEqual(item.currency, "usd")
    self.assertEqual(item.quantity, 1)

  def test_provider_request_settings(self):
    self._create(self._order('{"productId": "prod_b", "quantity": 3}'))

    request = self.provider.requests[0]
    self.assertEqual(request.mode, "payment")
    self.assertTrue(request.collect_customer)
    self.assertEqual(request.shipping_countries, ["US", "CA"])
    self.assertEqual(
        request.success_url,
        "https://shop.example/cart/success?session_id={CHECKOUT_SESSION_ID}",
    )
    self.assertEqual(request.cancel_url, "https://shop.example/cart")
    self.assertEqual(
        request.metadata, {"productId": "prod_b", "quantity": "3"}
    )

  def test_redirect_urls_can_be_overridden(self):
    self._create(
        self._order(
            json.dumps({
                "productId": "prod_b",
                "successUrl": "https://shop.example/thanks",
                "cancelUrl": "https://shop.example/shop",
            })
        )
    )

    request = self.provider.requests[0]
    self.assertEqual(request.success_url, "https://shop.example/thanks")
    self.assertEqual(request.cancel_url, "https://shop.example/shop")

  def test_unknown_cart_lines_are_dropped(self):
    order = MultiItemOrder(
        lines=(
            OrderLine(product_id="missing", quantity=1),
            OrderLine(product_id="prod_b", quantity=2),
            OrderLine(product_id="retired", quantity=1),
        )
    )

    session = self._create(order)

    self.assertLen(session.line_items, 1)
    self.assertEqual(session.line_items[0].name, "Product B")
    self.assertEqual(session.metadata["itemCount"], "1")
    self.assertEqual(session.metadata["items"], '[{"id":"prod_b","qty":2}]')

  def test_cart_without_resolvable_products_is_rejected(self):
    order = MultiItemOrder(
        lines=(
            OrderLine(product_id="missing", quantity=1),
            OrderLine(product_id="retired", quantity=1),
        )
    )

    with self.assertRaises(InvalidRequestError) as cm:
      self._create(order)
    self.assertEqual(cm.exception.message, "No valid products found in cart")
    self.assertEmpty(self.provider.requests)

  @parameterized.parameters("missing", "retired")
  def test_single_product_must_resolve(self, product_id):
    order = SingleItemOrder(line=OrderLine(product_id=product_id, quantity=1))

    with self.assertRaises(ResourceNotFoundError) as cm:
      self._create(order)
    self.assertEqual(cm.exception.status_code, 404)
    self.assertEqual(cm.exception.message, "Product not found")

  def test_provider_error_carries_provider_message(self):
    self.provider.fail_with = "Your card was declined."

    with self.assertRaises(PaymentProviderError) as cm:
      self._create(self._order('{"productId": "prod_a"}'))
    self.assertEqual(cm.exception.message, "Your card was declined.")
    self.assertEqual(cm.exception.status_code, 500)

  def test_session_status(self):
    session = self._create(self._order('{"productId": "prod_a"}'))
    self.provider.mark_paid(session.session_id)

    status = asyncio.run(self.service.get_session_status(session.session_id))

    self.assertEqual(status.payment_status, "paid")
    self.assertEqual(status.status, "complete")

  def test_unknown_session_status(self):
    with self.assertRaises(ResourceNotFoundError):
      asyncio.run(self.service.get_session_status("cs_test_unknown"))

  @parameterized.parameters(
      ("24.99", 2499),
      ("10", 1000),
      ("0.005", 1),
      ("19.995", 2000),
      ("0", 0),
  )
  def test_to_minor_units(self, price, expected):
    self.assertEqual(to_minor_units(Decimal(price)), expected)

  def test_metadata_is_truncated_to_provider_limit(self):
    lines = [
        OrderLine(product_id=f"product-with-a-long-id-{i:03d}", quantity=1)
        for i in range(40)
    ]

    metadata = build_order_metadata(lines)

    self.assertEqual(metadata["itemCount"], "40")
    self.assertEqual(metadata["itemsTruncated"], "true")
    self.assertLessEqual(len(metadata["items"]), MAX_METADATA_VALUE_LENGTH)
    self.assertNotEmpty(json.loads(metadata["items"]))

  def test_short_metadata_is_not_truncated(self):
    metadata = build_order_metadata(
        [OrderLine(product_id="prod_a", quantity=2)]
    )

    self.assertEqual(
        metadata, {"itemCount": "1", "items": '[{"id":"prod_a","qty":2}]'}
    )


class CheckoutRequestTest(parameterized.TestCase):
  """Tests for the shape rules applied at the HTTP boundary."""

  @parameterized.named_parameters(
      ("no_item_source", {}),
      ("empty_items", {"items": []}),
      ("both_sources", {"productId": "a", "items": [{"productId": "b"}]}),
      ("quantity_zero", {"productId": "a", "quantity": 0}),
      ("quantity_above_max", {"items": [{"productId": "a", "quantity": 11}]}),
      ("quantity_not_integer", {"productId": "a", "quantity": "2"}),
      ("quantity_fractional", {"productId": "a", "quantity": 2.5}),
      ("quantity_boolean", {"productId": "a", "quantity": True}),
      ("empty_product_id", {"items": [{"productId": ""}]}),
      ("bad_success_url", {"productId": "a", "successUrl": "not a url"}),
  )
  def test_invalid_requests_are_rejected(self, body):
    with self.assertRaises(pydantic.ValidationError):
      CheckoutRequest.model_validate_json(json.dumps(body))

  def test_single_item_request(self):
    order = CheckoutRequest.model_validate_json(
        '{"productId": "a", "quantity": 3}'
    ).to_order()

    self.assertIsInstance(order, SingleItemOrder)
    self.assertEqual(order.line, OrderLine(product_id="a", quantity=3))

  def test_multi_item_request_defaults_quantity(self):
    order = CheckoutRequest.model_validate_json(
        '{"items": [{"productId": "a"}, {"productId": "b", "quantity": 10}]}'
    ).to_order()

    self.assertIsInstance(order, MultiItemOrder)
    self.assertEqual([line.quantity for line in order.lines], [1, 10])

  def test_whole_number_float_quantity_is_accepted(self):
    order = CheckoutRequest.model_validate_json(
        '{"items": [{"productId": "a", "quantity": 2.0}]}'
    ).to_order()

    self.assertEqual(order.lines[0].quantity, 2)


if __name__ == "__main__":
  absltest.main()
