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

"""Payment provider webhook route.

This endpoint is deliberately not behind the admission gate: the provider is
the caller and its retries must never be throttled.
"""

from typing import Any, Optional

from fastapi import APIRouter
from fastapi import Depends
from fastapi import Header
from fastapi import Request
from storefront_server import dependencies
from storefront_server.services.webhook_service import WebhookService

router = APIRouter(prefix="/api")


@router.post(
    "/webhooks/stripe",
    response_model=dict[str, Any],
    operation_id="receive_stripe_webhook",
)
async def receive_stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    webhook_service: WebhookService = Depends(
        dependencies.get_webhook_service
    ),
) -> dict[str, Any]:
  """Verifies and processes one provider event."""
  raw_body = await request.body()
  await webhook_service.handle(raw_body, stripe_signature)
  return {"received": True}
