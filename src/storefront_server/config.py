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

"""Shared configuration and startup logic for the storefront server.

Command line flags are the single source of configuration. They are frozen
into a `Settings` model once parsed so that request handlers never read
`FLAGS` directly and tests can substitute their own settings.
"""

import contextlib
import logging
import os
from typing import Optional, Tuple

from absl import flags
from fastapi import FastAPI
from pydantic import BaseModel
from pydantic import ConfigDict
from storefront_server import db
from storefront_server.enums import PaymentProviderKind
from storefront_server.enums import RateLimitBackend

logger = logging.getLogger(__name__)

FLAGS = flags.FLAGS

SERVER_VERSION = "1.0.0"

_SETTINGS_CACHE = None

# Define flags only if they haven't been defined yet (to avoid duplicates
# during tests or re-imports)
try:
  flags.DEFINE_integer("port", None, "Port to run the server on")
  flags.DEFINE_string("catalog_db_path", None, "Path to the catalog DB")
  flags.DEFINE_string(
      "transactions_db_path", None, "Path to the transactions DB"
  )
  flags.DEFINE_string(
      "site_url",
      os.environ.get("SITE_URL"),
      "Public base URL used for checkout redirects. Defaults to the request"
      " base URL.",
  )
  flags.DEFINE_string("currency", "usd", "ISO currency code for line items")
  flags.DEFINE_list(
      "shipping_countries",
      ["US"],
      "Countries accepted for shipping address collection",
  )
  flags.DEFINE_enum_class(
      "payment_provider",
      PaymentProviderKind.STRIPE,
      PaymentProviderKind,
      "Payment provider backing checkout sessions",
  )
  flags.DEFINE_string(
      "stripe_secret_key",
      os.environ.get("STRIPE_SECRET_KEY"),
      "Stripe API secret key",
  )
  flags.DEFINE_string(
      "stripe_webhook_secret",
      os.environ.get("STRIPE_WEBHOOK_SECRET"),
      "Stripe webhook signing secret",
  )
  flags.DEFINE_integer(
      "webhook_tolerance_seconds",
      300,
      "Maximum age of a webhook signature timestamp",
  )
  flags.DEFINE_float(
      "provider_timeout_seconds",
      20.0,
      "Timeout for a single payment provider call",
  )
  flags.DEFINE_integer(
      "rate_limit", 10, "Requests admitted per client per window"
  )
  flags.DEFINE_float(
      "rate_limit_window_seconds", 10.0, "Rate limit window length"
  )
  flags.DEFINE_enum_class(
      "rate_limit_backend",
      RateLimitBackend.MEMORY,
      RateLimitBackend,
      "Where rate limit windows are counted",
  )
  flags.DEFINE_bool(
      "rate_limit_fail_closed",
      False,
      "Reject requests when the rate limit store is unreachable",
  )
  flags.DEFINE_string(
      "resend_api_key",
      os.environ.get("RESEND_API_KEY"),
      "Resend API key. Emails are only logged when unset.",
  )
  flags.DEFINE_string(
      "contact_email",
      os.environ.get("CONTACT_EMAIL", "hello@storefront.example"),
      "Store inbox for contact messages and order alerts",
  )
  flags.DEFINE_string(
      "email_from",
      "Storefront <noreply@storefront.example>",
      "Sender address for outbound email",
  )
except flags.DuplicateFlagError:
  pass


class Settings(BaseModel):
  """Immutable view of the server configuration."""

  model_config = ConfigDict(frozen=True)

  catalog_db_path: Optional[str] = None
  transactions_db_path: Optional[str] = None
  site_url: Optional[str] = None
  currency: str = "usd"
  shipping_countries: Tuple[str, ...] = ("US",)
  payment_provider: PaymentProviderKind = PaymentProviderKind.STRIPE
  stripe_secret_key: Optional[str] = None
  stripe_webhook_secret: Optional[str] = None
  webhook_tolerance_seconds: int = 300
  provider_timeout_seconds: float = 20.0
  rate_limit: int = 10
  rate_limit_window_seconds: float = 10.0
  rate_limit_backend: RateLimitBackend = RateLimitBackend.MEMORY
  rate_limit_fail_open: bool = True
  resend_api_key: Optional[str] = None
  contact_email: str = "hello@storefront.example"
  email_from: str = "Storefront <noreply@storefront.example>"

  @classmethod
  def from_flags(cls) -> "Settings":
    """Builds settings from parsed command line flags."""
    return cls(
        catalog_db_path=FLAGS.catalog_db_path,
        transactions_db_path=FLAGS.transactions_db_path,
        site_url=FLAGS.site_url,
        currency=FLAGS.currency,
        shipping_countries=tuple(FLAGS.shipping_countries),
        payment_provider=FLAGS.payment_provider,
        stripe_secret_key=FLAGS.stripe_secret_key,
        stripe_webhook_secret=FLAGS.stripe_webhook_secret,
        webhook_tolerance_seconds=FLAGS.webhook_tolerance_seconds,
        provider_timeout_seconds=FLAGS.provider_timeout_seconds,
        rate_limit=FLAGS.rate_limit,
        rate_limit_window_seconds=FLAGS.rate_limit_window_seconds,
        rate_limit_backend=FLAGS.rate_limit_backend,
        rate_limit_fail_open=not FLAGS.rate_limit_fail_closed,
        resend_api_key=FLAGS.resend_api_key,
        contact_email=FLAGS.contact_email,
        email_from=FLAGS.email_from,
    )


def get_settings() -> Settings:
  """Returns the cached settings, falling back to defaults before parsing."""
  global _SETTINGS_CACHE
  if _SETTINGS_CACHE:
    return _SETTINGS_CACHE
  if not FLAGS.is_parsed():
    return Settings()
  _SETTINGS_CACHE = Settings.from_flags()
  return _SETTINGS_CACHE


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
  """Shared lifespan manager for initializing databases."""
  del app  # Unused.
  settings = get_settings()
  # In tests the databases are provided through dependency overrides
  if settings.catalog_db_path and settings.transactions_db_path:
    await db.manager.init_dbs(
        settings.catalog_db_path, settings.transactions_db_path
    )
  else:
    logger.warning("Database paths not configured; skipping DB init")
  yield
  await db.manager.close()
