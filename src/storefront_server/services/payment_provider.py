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

"""Payment provider adapters.

`PaymentProvider` is the port the checkout and webhook services depend on.
`StripePaymentProvider` talks to Stripe through the official SDK;
`FakePaymentProvider` keeps sessions in memory for local runs and tests while
verifying webhooks with the same signature scheme.
"""

import abc
import asyncio
import hashlib
import hmac
import logging
import time
from typing import Any, Dict, List, Optional
import uuid

from storefront_server.enums import CheckoutSessionStatus
from storefront_server.enums import PaymentStatus
from storefront_server.exceptions import PaymentProviderError
from storefront_server.exceptions import WebhookSignatureError
from storefront_server.models import CheckoutSession
from storefront_server.models import CheckoutSessionRequest
import stripe

logger = logging.getLogger(__name__)

DEFAULT_WEBHOOK_TOLERANCE_SECONDS = 300


def verify_signature_header(
    payload: bytes,
    header: str,
    secret: Optional[str],
    tolerance: int = DEFAULT_WEBHOOK_TOLERANCE_SECONDS,
) -> None:
  """Verifies a Stripe-style `t=...,v1=...` header over the raw body.

  Args:
    payload: The request body exactly as received.
    header: The signature header value.
    secret: The shared webhook signing secret.
    tolerance: Maximum accepted age of the signed timestamp, in seconds.

  Raises:
    WebhookSignatureError: If the body, header or timestamp do not verify.
  """
  if not secret:
    logger.error("Webhook signing secret is not configured")
    raise WebhookSignatureError()
  try:
    body = payload.decode("utf-8")
  except UnicodeDecodeError as e:
    raise WebhookSignatureError() from e
  try:
    stripe.WebhookSignature.verify_header(body, header, secret, tolerance)
  except stripe.SignatureVerificationError as e:
    logger.warning("Webhook signature verification failed: %s", e)
    raise WebhookSignatureError() from e


def compute_signature_header(
    payload: bytes, secret: str, timestamp: Optional[int] = None
) -> str:
  """Builds the signature header the provider would send for `payload`."""
  timestamp = int(time.time()) if timestamp is None else timestamp
  signed_payload = f"{timestamp}.".encode("utf-8") + payload
  signature = hmac.new(
      secret.encode("utf-8"), signed_payload, hashlib.sha256
  ).hexdigest()
  return f"t={timestamp},v1={signature}"


class PaymentProvider(abc.ABC):
  """Port for the hosted payment provider."""

  def __init__(
      self,
      webhook_secret: Optional[str] = None,
      webhook_tolerance_seconds: int = DEFAULT_WEBHOOK_TOLERANCE_SECONDS,
  ):
    self.webhook_secret = webhook_secret
    self.webhook_tolerance_seconds = webhook_tolerance_seconds

  @abc.abstractmethod
  async def create_checkout_session(
      self, request: CheckoutSessionRequest
  ) -> CheckoutSession:
    """Opens a hosted payment session.

    Raises:
      PaymentProviderError: If the provider call fails or times out.
    """

  @abc.abstractmethod
  async def retrieve_checkout_session(
      self, session_id: str
  ) -> Optional[CheckoutSession]:
    """Fetches a session, or None if the provider does not know it."""

  def verify_webhook_signature(self, payload: bytes, signature: str) -> None:
    """Raises WebhookSignatureError unless `signature` matches `payload`."""
    verify_signature_header(
        payload,
        signature,
        self.webhook_secret,
        self.webhook_tolerance_seconds,
    )


class StripePaymentProvider(PaymentProvider):
  """Stripe Checkout adapter."""

  def __init__(
      self,
      api_key: Optional[str],
      webhook_secret: Optional[str] = None,
      webhook_tolerance_seconds: int = DEFAULT_WEBHOOK_TOLERANCE_SECONDS,
      timeout_seconds: float = 20.0,
  ):
    super().__init__(webhook_secret, webhook_tolerance_seconds)
    self.api_key = api_key
    self.timeout_seconds = timeout_seconds

  def _to_params(self, request: CheckoutSessionRequest) -> Dict[str, Any]:
    line_items = []
    for item in request.line_items:
      product_data: Dict[str, Any] = {"name": item.name}
      # Stripe rejects empty descriptions and image lists
      if item.description:
        product_data["description"] = item.description
      if item.images:
        product_data["images"] = list(item.images)
      line_items.append({
          "price_data": {
              "currency": item.currency,
              "product_data": product_data,
              "unit_amount": item.unit_amount,
          },
          "quantity": item.quantity,
      })

    params: Dict[str, Any] = {
        "mode": request.mode.value,
        "payment_method_types": ["card"],
        "line_items": line_items,
        "shipping_address_collection": {
            "allowed_countries": list(request.shipping_countries)
        },
        "success_url": request.success_url,
        "cancel_url": request.cancel_url,
        "metadata": dict(request.metadata),
    }
    if request.collect_customer:
      params["customer_creation"] = "always"
    return params

  async def _call(self, func, *args, **kwargs):
    if not self.api_key:
      raise PaymentProviderError("Payment provider is not configured")
    try:
      return await asyncio.wait_for(
          asyncio.to_thread(func, *args, api_key=self.api_key, **kwargs),
          timeout=self.timeout_seconds,
      )
    except asyncio.TimeoutError as e:
      raise PaymentProviderError("Payment provider timed out") from e

  async def create_checkout_session(
      self, request: CheckoutSessionRequest
  ) -> CheckoutSession:
    try:
      session = await self._call(
          stripe.checkout.Session.create, **self._to_params(request)
      )
    except stripe.StripeError as e:
      raise PaymentProviderError(e.user_message or str(e)) from e

    return CheckoutSession(
        session_id=session.id,
        redirect_url=getattr(session, "url", None),
        line_items=request.line_items,
        metadata=request.metadata,
        status=getattr(session, "status", None),
        payment_status=getattr(session, "payment_status", None),
    )

  async def retrieve_checkout_session(
      self, session_id: str
  ) -> Optional[CheckoutSession]:
    try:
      session = await self._call(stripe.checkout.Session.retrieve, session_id)
    except stripe.InvalidRequestError as e:
      if e.code == "resource_missing":
        return None
      raise PaymentProviderError(e.user_message or str(e)) from e
    except stripe.StripeError as e:
      raise PaymentProviderError(e.user_message or str(e)) from e

    return CheckoutSession(
        session_id=session.id,
        redirect_url=getattr(session, "url", None),
        status=getattr(session, "status", None),
        payment_status=getattr(session, "payment_status", None),
    )


class FakePaymentProvider(PaymentProvider):
  """In-memory provider for development and tests."""

  def __init__(
      self,
      webhook_secret: Optional[str] = None,
      webhook_tolerance_seconds: int = DEFAULT_WEBHOOK_TOLERANCE_SECONDS,
      base_url: str = "https://checkout.fake.local/pay",
  ):
    super().__init__(webhook_secret, webhook_tolerance_seconds)
    self.base_url = base_url.rstrip("/")
    self.requests: List[CheckoutSessionRequest] = []
    self.sessions: Dict[str, CheckoutSession] = {}
    self.fail_with: Optional[str] = None

  async def create_checkout_session(
      self, request: CheckoutSessionRequest
  ) -> CheckoutSession:
    self.requests.append(request)
    if self.fail_with:
      raise PaymentProviderError(self.fail_with)

    session_id = f"cs_test_{uuid.uuid4().hex}"
    session = CheckoutSession(
        session_id=session_id,
        redirect_url=f"{self.base_url}/{session_id}",
        line_items=request.line_items,
        metadata=request.metadata,
        status=CheckoutSessionStatus.OPEN.value,
        payment_status=PaymentStatus.UNPAID.value,
    )
    self.sessions[session_id] = session
    return session

  async def retrieve_checkout_session(
      self, session_id: str
  ) -> Optional[CheckoutSession]:
    if self.fail_with:
      raise PaymentProviderError(self.fail_with)
    return self.sessions.get(session_id)

  def mark_paid(self, session_id: str) -> None:
    """Simulates the customer completing payment on the hosted page."""
    session = self.sessions[session_id]
    self.sessions[session_id] = session.model_copy(
        update={
            "status": CheckoutSessionStatus.COMPLETE.value,
            "payment_status": PaymentStatus.PAID.value,
        }
    )
