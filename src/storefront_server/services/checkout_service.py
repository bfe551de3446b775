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

"""Checkout service for turning carts into provider-hosted payment sessions.

This module provides the `CheckoutService` class, which prices a validated
checkout order against the catalog and opens a hosted payment session with the
payment provider.

Key responsibilities include:
- Resolving every requested product through the catalog gateway. Prices,
  names and images always come from the catalog, never from the client.
- Converting catalog prices to integer minor units.
- Summarizing the order in provider metadata within the provider's limits.
- Building redirect URLs for the hosted payment page.
- Reporting session status so clients know when a payment went through.
"""

from decimal import Decimal
from decimal import ROUND_HALF_UP
import json
import logging
from typing import Dict, Optional, Sequence

from storefront_server.exceptions import InvalidRequestError
from storefront_server.exceptions import PaymentProviderError
from storefront_server.exceptions import ResourceNotFoundError
from storefront_server.models import CheckoutOrder
from storefront_server.models import CheckoutSession
from storefront_server.models import CheckoutSessionRequest
from storefront_server.models import OrderLine
from storefront_server.models import ProductRecord
from storefront_server.models import ProviderLineItem
from storefront_server.models import SingleItemOrder
from storefront_server.services.catalog import CatalogGateway
from storefront_server.services.payment_provider import PaymentProvider

logger = logging.getLogger(__name__)

# Stripe caps each metadata value at 500 characters
MAX_METADATA_VALUE_LENGTH = 500

CHECKOUT_SESSION_PLACEHOLDER = "{CHECKOUT_SESSION_ID}"


def to_minor_units(price: Decimal) -> int:
  """Converts a major-unit price to minor units, rounding half up."""
  return int((price * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _compact_json(value) -> str:
  return json.dumps(value, separators=(",", ":"))


def build_order_metadata(lines: Sequence[OrderLine]) -> Dict[str, str]:
  """Summarizes a multi-item order in provider metadata.

  The item list is shortened from the end until it fits a single metadata
  value, in which case `itemsTruncated` is set.
  """
  summary = [{"id": line.product_id, "qty": line.quantity} for line in lines]
  encoded = _compact_json(summary)
  truncated = False
  while len(encoded) > MAX_METADATA_VALUE_LENGTH and summary:
    summary.pop()
    encoded = _compact_json(summary)
    truncated = True

  metadata = {"itemCount": str(len(lines)), "items": encoded}
  if truncated:
    metadata["itemsTruncated"] = "true"
  return metadata


def build_single_item_metadata(line: OrderLine) -> Dict[str, str]:
  return {
      "productId": line.product_id[:MAX_METADATA_VALUE_LENGTH],
      "quantity": str(line.quantity),
  }


class CheckoutService:
  """Service for creating and inspecting checkout sessions."""

  def __init__(
      self,
      catalog: CatalogGateway,
      provider: PaymentProvider,
      base_url: str,
      currency: str = "usd",
      shipping_countries: Sequence[str] = ("US",),
  ):
    self.catalog = catalog
    self.provider = provider
    self.base_url = base_url.rstrip("/")
    self.currency = currency
    self.shipping_countries = list(shipping_countries)

  async def create_session(self, order: CheckoutOrder) -> CheckoutSession:
    """Prices an order from the catalog and opens a hosted payment session.

    Args:
      order: The validated order, either single-item or multi-item.

    Returns:
      The provider session, including the redirect URL.

    Raises:
      ResourceNotFoundError: The single requested product does not resolve.
      InvalidRequestError: None of the requested cart products resolve.
      PaymentProviderError: The provider call failed.
    """
    logger.info("Creating checkout session")

    if isinstance(order, SingleItemOrder):
      product = await self._resolve(order.line.product_id)
      if not product:
        raise ResourceNotFoundError("Product not found")
      line_items = [self._line_item(product, order.line.quantity)]
      metadata = build_single_item_metadata(order.line)
      requested_ids = [order.line.product_id]
    else:
      line_items = []
      resolved_lines = []
      for line in order.lines:
        product = await self._resolve(line.product_id)
        if not product:
          logger.warning(
              "Dropping unknown product %s from checkout", line.product_id
          )
          continue
        line_items.append(self._line_item(product, line.quantity))
        resolved_lines.append(line)

      if not line_items:
        raise InvalidRequestError("No valid products found in cart")
      metadata = build_order_metadata(resolved_lines)
      requested_ids = [line.product_id for line in order.lines]

    request = CheckoutSessionRequest(
        line_items=line_items,
        metadata=metadata,
        success_url=order.success_url or self._default_success_url(),
        cancel_url=order.cancel_url or f"{self.base_url}/cart",
        shipping_countries=self.shipping_countries,
    )

    try:
      session = await self.provider.create_checkout_session(request)
    except PaymentProviderError as e:
      logger.error(
          "Checkout session creation failed for products %s: %s",
          requested_ids,
          e.message,
      )
      raise

    if not session.redirect_url:
      raise PaymentProviderError("Payment provider returned no redirect URL")

    logger.info(
        "Created checkout session %s with %d line items",
        session.session_id,
        len(line_items),
    )
    return session

  async def get_session_status(self, session_id: str) -> CheckoutSession:
    """Retrieves the provider's view of a checkout session."""
    session = await self.provider.retrieve_checkout_session(session_id)
    if not session:
      raise ResourceNotFoundError("Checkout session not found")
    return session

  async def _resolve(self, product_id: str) -> Optional[ProductRecord]:
    """Looks up a purchasable product; unavailable products do not resolve."""
    product = await self.catalog.lookup(product_id)
    if product and not product.available:
      logger.info("Product %s is not available for purchase", product_id)
      return None
    return product

  def _line_item(
      self, product: ProductRecord, quantity: int
  ) -> ProviderLineItem:
    return ProviderLineItem(
        name=product.name,
        description=product.description or None,
        images=list(product.images),
        unit_amount=to_minor_units(product.price),
        quantity=quantity,
        currency=self.currency,
    )

  def _default_success_url(self) -> str:
    return (
        f"{self.base_url}/cart/success"
        f"?session_id={CHECKOUT_SESSION_PLACEHOLDER}"
    )
