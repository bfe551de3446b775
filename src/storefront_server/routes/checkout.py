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

"""Checkout routes for the storefront server."""

from typing import Any, Type, TypeVar

from fastapi import APIRouter
from fastapi import Depends
from fastapi import Path
from fastapi import Request
import pydantic
from storefront_server import dependencies
from storefront_server.exceptions import InvalidRequestError
from storefront_server.models import CheckoutRequest
from storefront_server.models import CheckoutResponse
from storefront_server.models import SessionStatusResponse
from storefront_server.services.checkout_service import CheckoutService

router = APIRouter(prefix="/api")

ModelT = TypeVar("ModelT", bound=pydantic.BaseModel)


async def parse_json_body(request: Request, model: Type[ModelT]) -> ModelT:
  """Validates the raw request body against `model`.

  The body is read by hand rather than declared as a parameter so that
  malformed JSON and schema failures map onto distinct 400 responses.

  Raises:
    InvalidRequestError: If the body is not JSON or fails validation.
  """
  body = await request.body()
  try:
    return model.model_validate_json(body)
  except pydantic.ValidationError as e:
    errors = e.errors(
        include_url=False, include_context=False, include_input=False
    )
    if any(error["type"] == "json_invalid" for error in errors):
      raise InvalidRequestError("Invalid JSON in request body") from e
    raise InvalidRequestError("Validation failed", details=errors) from e


@router.post(
    "/checkout",
    response_model=dict[str, Any],
    operation_id="create_checkout",
    dependencies=[Depends(dependencies.enforce_rate_limit)],
)
async def create_checkout(
    request: Request,
    checkout_service: CheckoutService = Depends(
        dependencies.get_checkout_service
    ),
) -> dict[str, Any]:
  """Opens a hosted payment session for a cart or a single product."""
  checkout_request = await parse_json_body(request, CheckoutRequest)
  session = await checkout_service.create_session(checkout_request.to_order())
  return CheckoutResponse(
      url=session.redirect_url, session_id=session.session_id
  ).model_dump(by_alias=True)


@router.get(
    "/checkout/sessions/{id}",
    response_model=dict[str, Any],
    operation_id="get_checkout_session",
)
async def get_checkout_session(
    session_id: str = Path(..., alias="id"),
    checkout_service: CheckoutService = Depends(
        dependencies.get_checkout_service
    ),
) -> dict[str, Any]:
  """Reports the provider's status for a checkout session."""
  session = await checkout_service.get_session_status(session_id)
  return SessionStatusResponse(
      session_id=session.session_id,
      status=session.status,
      payment_status=session.payment_status,
  ).model_dump(by_alias=True)
