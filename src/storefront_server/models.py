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

"""Request, response and provider models for the storefront server.

Inbound JSON uses the camelCase field names the storefront pages send; the
models accept both spellings and serialize with the camelCase aliases.
Checkout requests are resolved once, at the boundary, into either a
`SingleItemOrder` or a `MultiItemOrder`.
"""

from decimal import Decimal
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel
from pydantic import BeforeValidator
from pydantic import ConfigDict
from pydantic import Field
from pydantic import HttpUrl
from pydantic import model_validator
from storefront_server.enums import CheckoutMode

MAX_QUANTITY = 10


def _require_json_number(value: Any) -> Any:
  # Whole floats such as 2.0 pass; strings and booleans do not.
  if isinstance(value, (str, bool)):
    raise ValueError("quantity must be a number")
  return value


Quantity = Annotated[
    int,
    BeforeValidator(_require_json_number),
    Field(ge=1, le=MAX_QUANTITY),
]


class _CamelModel(BaseModel):
  model_config = ConfigDict(populate_by_name=True, extra="ignore")


# --- Checkout ---


class CheckoutItemRequest(_CamelModel):
  """One cart line as sent by the client: an id and a quantity, no price."""

  product_id: str = Field(..., alias="productId", min_length=1)
  quantity: Quantity = 1


class OrderLine(BaseModel):
  model_config = ConfigDict(frozen=True)

  product_id: str
  quantity: int


class SingleItemOrder(BaseModel):
  """Legacy single product checkout."""

  model_config = ConfigDict(frozen=True)

  kind: Literal["single"] = "single"
  line: OrderLine
  success_url: Optional[str] = None
  cancel_url: Optional[str] = None


class MultiItemOrder(BaseModel):
  """Cart checkout with one line per product."""

  model_config = ConfigDict(frozen=True)

  kind: Literal["multi"] = "multi"
  lines: Tuple[OrderLine, ...]
  success_url: Optional[str] = None
  cancel_url: Optional[str] = None


CheckoutOrder = Union[SingleItemOrder, MultiItemOrder]


class CheckoutRequest(_CamelModel):
  """Body of POST /api/checkout.

  Exactly one of `productId` or a non-empty `items` list must be given.
  Unknown fields, including any client-side price, are ignored.
  """

  product_id: Optional[str] = Field(None, alias="productId", min_length=1)
  quantity: Optional[Quantity] = None
  items: Optional[List[CheckoutItemRequest]] = None
  success_url: Optional[HttpUrl] = Field(None, alias="successUrl")
  cancel_url: Optional[HttpUrl] = Field(None, alias="cancelUrl")

  @model_validator(mode="after")
  def _check_item_source(self) -> "CheckoutRequest":
    has_single = self.product_id is not None
    has_items = bool(self.items)
    if not has_single and not has_items:
      raise ValueError("Either productId or items array is required")
    if has_single and has_items:
      raise ValueError("Provide either productId or items, not both")
    return self

  def to_order(self) -> CheckoutOrder:
    """Resolves the request into its tagged order variant."""
    success_url = str(self.success_url) if self.success_url else None
    cancel_url = str(self.cancel_url) if self.cancel_url else None
    if self.product_id is not None:
      return SingleItemOrder(
          line=OrderLine(
              product_id=self.product_id, quantity=self.quantity or 1
          ),
          success_url=success_url,
          cancel_url=cancel_url,
      )
    return MultiItemOrder(
        lines=tuple(
            OrderLine(product_id=item.product_id, quantity=item.quantity)
            for item in self.items
        ),
        success_url=success_url,
        cancel_url=cancel_url,
    )


class CheckoutResponse(_CamelModel):
  url: str
  session_id: str = Field(..., alias="sessionId")


class SessionStatusResponse(_CamelModel):
  session_id: str = Field(..., alias="sessionId")
  status: Optional[str] = None
  payment_status: Optional[str] = Field(None, alias="paymentStatus")


# --- Catalog ---


class ProductRecord(BaseModel):
  """Authoritative product data as read from the catalog."""

  model_config = ConfigDict(frozen=True)

  id: str
  name: str
  description: str = ""
  price: Decimal
  images: Tuple[str, ...] = ()
  available: bool = True


# --- Payment Provider ---


class ProviderLineItem(BaseModel):
  """A priced line item handed to the payment provider."""

  name: str
  description: Optional[str] = None
  images: List[str] = []
  unit_amount: int = Field(..., ge=0)  # Minor units, e.g. cents.
  quantity: int = Field(..., ge=1)
  currency: str = "usd"


class CheckoutSessionRequest(BaseModel):
  """Everything the provider needs to open a hosted payment page."""

  mode: CheckoutMode = CheckoutMode.PAYMENT
  line_items: List[ProviderLineItem]
  metadata: Dict[str, str] = {}
  success_url: str
  cancel_url: str
  shipping_countries: List[str] = ["US"]
  collect_customer: bool = True


class CheckoutSession(BaseModel):
  """A provider-hosted, redirectable payment attempt."""

  session_id: str
  redirect_url: Optional[str] = None
  line_items: List[ProviderLineItem] = []
  metadata: Dict[str, str] = {}
  status: Optional[str] = None
  payment_status: Optional[str] = None


# --- Webhooks ---


class WebhookEventData(BaseModel):
  model_config = ConfigDict(populate_by_name=True, extra="ignore")

  object_: Dict[str, Any] = Field(..., alias="object")


class WebhookEvent(BaseModel):
  """A verified provider event."""

  model_config = ConfigDict(extra="ignore")

  id: str = Field(..., min_length=1)
  type: str
  created: Optional[int] = None
  livemode: bool = False
  data: WebhookEventData


class CustomerDetails(BaseModel):
  model_config = ConfigDict(extra="ignore")

  email: Optional[str] = None
  name: Optional[str] = None


class CompletedCheckoutSession(BaseModel):
  """The fields of a completed checkout session used for fulfillment."""

  model_config = ConfigDict(extra="ignore")

  id: str
  customer_email: Optional[str] = None
  customer_details: Optional[CustomerDetails] = None
  amount_total: Optional[int] = None
  currency: Optional[str] = None
  payment_status: Optional[str] = None
  metadata: Dict[str, str] = {}

  @property
  def email(self) -> Optional[str]:
    if self.customer_details and self.customer_details.email:
      return self.customer_details.email
    return self.customer_email


# --- Contact ---


class ContactRequest(BaseModel):
  """Body of POST /api/contact."""

  model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

  name: str = Field(..., min_length=2, max_length=100)
  email: str = Field(
      ..., max_length=254, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
  )
  phone: Optional[str] = Field(None, max_length=20)
  message: str = Field(..., min_length=10, max_length=2000)
  # Bot trap: real visitors never see or fill this field.
  honeypot: Optional[str] = ""

  @model_validator(mode="after")
  def _normalize(self) -> "ContactRequest":
    self.email = self.email.lower()
    if not self.phone:
      self.phone = None
    return self
