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

"""Custom exceptions for the storefront checkout server."""

from typing import Any, Dict, Optional


class StorefrontError(Exception):
  """Base class for all storefront exceptions."""

  def __init__(
      self,
      message: str,
      code: str = "INTERNAL_ERROR",
      status_code: int = 500,
      details: Optional[Any] = None,
      headers: Optional[Dict[str, str]] = None,
  ):
    self.message = message
    self.code = code
    self.status_code = status_code
    self.details = details
    self.headers = headers
    super().__init__(self.message)


class InvalidRequestError(StorefrontError):
  """Raised when the request is invalid (e.g. malformed or missing fields)."""

  def __init__(self, message: str, details: Optional[Any] = None):
    super().__init__(
        message, code="INVALID_REQUEST", status_code=400, details=details
    )


class ResourceNotFoundError(StorefrontError):
  """Raised when a requested resource is not found."""

  def __init__(self, message: str):
    super().__init__(message, code="RESOURCE_NOT_FOUND", status_code=404)


class WebhookSignatureError(StorefrontError):
  """Raised when a webhook signature is missing or does not verify.

  The message is kept generic on purpose; callers must not echo verification
  details back to the sender.
  """

  def __init__(self, message: str = "Invalid signature"):
    super().__init__(message, code="INVALID_SIGNATURE", status_code=400)


class PaymentProviderError(StorefrontError):
  """Raised when the payment provider rejects or fails a call."""

  def __init__(self, message: str, status_code: int = 500):
    super().__init__(message, code="PROVIDER_ERROR", status_code=status_code)


class WebhookProcessingError(StorefrontError):
  """Raised when a verified webhook event fails inside its handler."""

  def __init__(self, message: str = "Processing error"):
    super().__init__(message, code="PROCESSING_ERROR", status_code=500)


class NotificationError(StorefrontError):
  """Raised when a user-initiated notification could not be delivered."""

  def __init__(self, message: str):
    super().__init__(message, code="NOTIFICATION_FAILED", status_code=500)


class RateLimitExceededError(StorefrontError):
  """Raised when the admission gate rejects a request."""

  def __init__(self, headers: Dict[str, str]):
    super().__init__(
        "Too many requests",
        code="RATE_LIMITED",
        status_code=429,
        headers=headers,
    )
