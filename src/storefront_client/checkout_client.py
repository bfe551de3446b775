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

"""Hands a cart to the storefront server and confirms the payment outcome.

A typical journey:
1. `begin_checkout` posts the cart's ids and quantities and returns the
   hosted payment page to redirect the shopper to.
2. The shopper pays (or cancels) on the provider's page.
3. On return, `confirm_checkout` asks the server for the session status and
   empties the cart only once the payment is confirmed.
"""

import dataclasses
import logging
from typing import Any, Optional

import httpx
from storefront_client.cart import CartStore

logger = logging.getLogger(__name__)

PAID = "paid"


class CheckoutFailedError(Exception):
  """Raised when the server refuses or fails a checkout call."""

  def __init__(self, message: str, status_code: Optional[int] = None):
    self.message = message
    self.status_code = status_code
    super().__init__(message)


@dataclasses.dataclass(frozen=True)
class CheckoutRedirect:
  url: str
  session_id: str


def _error_text(response: httpx.Response) -> str:
  try:
    body = response.json()
  except ValueError:
    return f"Checkout failed with status {response.status_code}"
  if isinstance(body, dict) and body.get("error"):
    return str(body["error"])
  return f"Checkout failed with status {response.status_code}"


class StorefrontClient:
  """Client for the storefront checkout endpoints."""

  def __init__(self, http_client: httpx.Client):
    self.http_client = http_client

  def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
    try:
      response = self.http_client.request(method, url, **kwargs)
    except httpx.HTTPError as e:
      logger.error("Request to %s failed: %s", url, e)
      raise CheckoutFailedError(f"Could not reach the store: {e}") from e
    if response.status_code != 200:
      raise CheckoutFailedError(_error_text(response), response.status_code)
    return response.json()

  def begin_checkout(
      self,
      cart: CartStore,
      success_url: Optional[str] = None,
      cancel_url: Optional[str] = None,
  ) -> CheckoutRedirect:
    """Opens a payment session for the cart's current contents.

    The cart is left untouched, so a failed or abandoned payment returns the
    shopper to the same cart.

    Args:
      cart: The shopper's cart.
      success_url: Optional override for the post-payment redirect.
      cancel_url: Optional override for the cancel redirect.

    Returns:
      Where to send the shopper to pay.

    Raises:
      CheckoutFailedError: If the cart is empty or the server refuses it.
    """
    items = cart.checkout_items()
    if not items:
      raise CheckoutFailedError("Cart is empty")

    payload: dict[str, Any] = {"items": items}
    if success_url:
      payload["successUrl"] = success_url
    if cancel_url:
      payload["cancelUrl"] = cancel_url

    body = self._request("POST", "/api/checkout", json=payload)
    logger.info("Checkout session %s opened", body["sessionId"])
    return CheckoutRedirect(url=body["url"], session_id=body["sessionId"])

  def confirm_checkout(self, cart: CartStore, session_id: str) -> bool:
    """Clears the cart if the session's payment went through.

    Returns:
      True if the payment is confirmed and the cart was cleared.
    """
    body = self._request("GET", f"/api/checkout/sessions/{session_id}")
    if body.get("paymentStatus") != PAID:
      logger.info(
          "Session %s not paid yet (status=%s, payment=%s)",
          session_id,
          body.get("status"),
          body.get("paymentStatus"),
      )
      return False
    cart.clear_cart()
    return True
