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

"""FastAPI dependencies for the storefront server.

This module contains dependency injection logic for FastAPI endpoints,
including:
- Settings access, so tests can substitute their own configuration.
- Database session management (Catalog and Transactions DBs).
- Service instantiation (CheckoutService, FulfillmentService,
  WebhookService) and their collaborators.
- The admission gate guarding the mutating endpoints.
"""

from typing import AsyncGenerator, Optional

from fastapi import Depends
from fastapi import Request
from fastapi import Response
from sqlalchemy.ext.asyncio import AsyncSession
from storefront_server import config
from storefront_server import db
from storefront_server.enums import PaymentProviderKind
from storefront_server.enums import RateLimitBackend
from storefront_server.exceptions import RateLimitExceededError
from storefront_server.services.catalog import DatabaseCatalog
from storefront_server.services.checkout_service import CheckoutService
from storefront_server.services.fulfillment_service import FulfillmentService
from storefront_server.services.notification_service import LoggingEmailSender
from storefront_server.services.notification_service import NotificationSender
from storefront_server.services.notification_service import ResendEmailSender
from storefront_server.services.payment_provider import FakePaymentProvider
from storefront_server.services.payment_provider import PaymentProvider
from storefront_server.services.payment_provider import StripePaymentProvider
from storefront_server.services.rate_limiter import AdmissionGate
from storefront_server.services.rate_limiter import client_key_from_headers
from storefront_server.services.rate_limiter import DatabaseWindowStore
from storefront_server.services.rate_limiter import InMemoryWindowStore
from storefront_server.services.webhook_service import WebhookService

# Process-wide state: the in-memory window counters must outlive a request,
# and fake sessions must be visible to the status endpoint.
_memory_window_store = InMemoryWindowStore()
_fake_provider: Optional[FakePaymentProvider] = None


def get_settings() -> config.Settings:
  """Dependency provider for the server settings."""
  return config.get_settings()


async def get_catalog_db() -> AsyncGenerator[AsyncSession, None]:
  """Dependency provider for Catalog DB session."""
  async with db.manager.catalog_session_factory() as session:
    yield session


async def get_transactions_db() -> AsyncGenerator[AsyncSession, None]:
  """Dependency provider for Transactions DB session."""
  async with db.manager.transactions_session_factory() as session:
    yield session


def get_payment_provider(
    settings: config.Settings = Depends(get_settings),
) -> PaymentProvider:
  """Dependency provider for the configured payment provider."""
  global _fake_provider
  if settings.payment_provider == PaymentProviderKind.FAKE:
    if _fake_provider is None:
      _fake_provider = FakePaymentProvider(
          webhook_secret=settings.stripe_webhook_secret,
          webhook_tolerance_seconds=settings.webhook_tolerance_seconds,
      )
    return _fake_provider
  return StripePaymentProvider(
      api_key=settings.stripe_secret_key,
      webhook_secret=settings.stripe_webhook_secret,
      webhook_tolerance_seconds=settings.webhook_tolerance_seconds,
      timeout_seconds=settings.provider_timeout_seconds,
  )


def get_notification_sender(
    settings: config.Settings = Depends(get_settings),
) -> NotificationSender:
  """Dependency provider for outbound email."""
  if settings.resend_api_key:
    return ResendEmailSender(settings.resend_api_key, settings.email_from)
  return LoggingEmailSender()


def get_admission_gate(
    settings: config.Settings = Depends(get_settings),
) -> AdmissionGate:
  """Dependency provider for the admission gate."""
  if settings.rate_limit_backend == RateLimitBackend.DATABASE:
    store = DatabaseWindowStore(db.manager.transactions_session_factory)
  else:
    store = _memory_window_store
  return AdmissionGate(
      store,
      limit=settings.rate_limit,
      window_seconds=settings.rate_limit_window_seconds,
      fail_open=settings.rate_limit_fail_open,
  )


async def enforce_rate_limit(
    request: Request,
    response: Response,
    gate: AdmissionGate = Depends(get_admission_gate),
) -> None:
  """Admits the request or raises a 429 carrying the rate limit headers."""
  client_key = client_key_from_headers(
      request.headers.get("x-forwarded-for"),
      request.client.host if request.client else None,
  )
  decision = await gate.admit(client_key)
  headers = decision.headers()
  if not decision.allowed:
    raise RateLimitExceededError(headers)
  response.headers.update(headers)
  # Read back by the exception handler for errors the route raises.
  request.state.rate_limit_headers = headers


def get_checkout_service(
    request: Request,
    settings: config.Settings = Depends(get_settings),
    catalog_session: AsyncSession = Depends(get_catalog_db),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> CheckoutService:
  """Dependency provider for CheckoutService."""
  return CheckoutService(
      DatabaseCatalog(catalog_session),
      provider,
      settings.site_url or str(request.base_url),
      currency=settings.currency,
      shipping_countries=settings.shipping_countries,
  )


def get_fulfillment_service(
    settings: config.Settings = Depends(get_settings),
    notifier: NotificationSender = Depends(get_notification_sender),
) -> FulfillmentService:
  """Dependency provider for FulfillmentService."""
  return FulfillmentService(notifier, settings.contact_email)


def get_webhook_service(
    provider: PaymentProvider = Depends(get_payment_provider),
    fulfillment_service: FulfillmentService = Depends(get_fulfillment_service),
    transactions_session: AsyncSession = Depends(get_transactions_db),
) -> WebhookService:
  """Dependency provider for WebhookService."""
  return WebhookService(provider, fulfillment_service, transactions_session)
