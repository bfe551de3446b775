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

"""Enumerations for the storefront checkout server.

This module defines the enums used to describe provider checkout sessions,
inbound webhook events and the state of the processed-event ledger.
"""

import enum


class CheckoutMode(str, enum.Enum):
  PAYMENT = "payment"


class CheckoutSessionStatus(str, enum.Enum):
  OPEN = "open"
  COMPLETE = "complete"
  EXPIRED = "expired"


class PaymentStatus(str, enum.Enum):
  PAID = "paid"
  UNPAID = "unpaid"
  NO_PAYMENT_REQUIRED = "no_payment_required"


class WebhookEventType(str, enum.Enum):
  CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
  CHECKOUT_SESSION_EXPIRED = "checkout.session.expired"
  PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
  PAYMENT_INTENT_FAILED = "payment_intent.payment_failed"


class WebhookEventStatus(str, enum.Enum):
  PROCESSING = "processing"
  PROCESSED = "processed"


class RateLimitBackend(str, enum.Enum):
  MEMORY = "memory"
  DATABASE = "database"


class PaymentProviderKind(str, enum.Enum):
  STRIPE = "stripe"
  FAKE = "fake"
