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

"""Client-held shopping cart.

The cart is an immutable `CartState` changed only through the pure
transition functions in this module. `CartStore` owns the current snapshot
for one browsing session, serializes transitions with a lock and writes the
items (never the open/closed flag) to a `CartStorage` after every change.

Prices stored in the cart are a display cache. They are summed for the
subtotal shown to the shopper but never sent to the server; checkout sends
product ids and quantities only.
"""

from decimal import Decimal
import logging
import threading
from typing import Callable, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
import pydantic
from storefront_client.cart_storage import CartStorage
from storefront_client.cart_storage import MemoryCartStorage

logger = logging.getLogger(__name__)

MAX_QUANTITY = 10
DEFAULT_NAMESPACE = "storefront-cart"


class CartItem(BaseModel):
  """One cart line, keyed by product id."""

  model_config = ConfigDict(frozen=True, populate_by_name=True)

  product_id: str = Field(..., alias="id", min_length=1)
  name: str
  unit_price: Decimal = Field(..., alias="price", ge=0)
  image: str = ""
  quantity: int = Field(1, ge=1, le=MAX_QUANTITY)


class CartState(BaseModel):
  model_config = ConfigDict(frozen=True)

  items: Tuple[CartItem, ...] = ()
  is_open: bool = False


class PersistedCart(BaseModel):
  """What survives a reload: the items and nothing else."""

  items: List[CartItem] = []


def _clamp(quantity: int) -> int:
  return min(MAX_QUANTITY, quantity)


# --- Transitions ---


def add_item(state: CartState, item: CartItem, quantity: int = 1) -> CartState:
  """Adds `quantity` of `item`, merging with an existing line.

  The resulting quantity is clamped to MAX_QUANTITY. Adding always opens the
  cart view.

  Raises:
    ValueError: If `quantity` is less than 1.
  """
  if quantity < 1:
    raise ValueError(f"quantity must be at least 1, got {quantity}")

  items = list(state.items)
  for i, existing in enumerate(items):
    if existing.product_id == item.product_id:
      items[i] = existing.model_copy(
          update={"quantity": _clamp(existing.quantity + quantity)}
      )
      break
  else:
    items.append(item.model_copy(update={"quantity": _clamp(quantity)}))
  return CartState(items=tuple(items), is_open=True)


def remove_item(state: CartState, product_id: str) -> CartState:
  items = tuple(i for i in state.items if i.product_id != product_id)
  return state.model_copy(update={"items": items})


def update_quantity(
    state: CartState, product_id: str, quantity: int
) -> CartState:
  """Sets a line's quantity; below 1 removes it, unknown ids are ignored."""
  if quantity < 1:
    return remove_item(state, product_id)
  items = tuple(
      i.model_copy(update={"quantity": _clamp(quantity)})
      if i.product_id == product_id
      else i
      for i in state.items
  )
  return state.model_copy(update={"items": items})


def clear_cart(state: CartState) -> CartState:
  return state.model_copy(update={"items": ()})


def open_cart(state: CartState) -> CartState:
  return state.model_copy(update={"is_open": True})


def close_cart(state: CartState) -> CartState:
  return state.model_copy(update={"is_open": False})


def toggle_cart(state: CartState) -> CartState:
  return state.model_copy(update={"is_open": not state.is_open})


# --- Queries ---


def total_items(state: CartState) -> int:
  """Sum of quantities, not the number of distinct lines."""
  return sum(i.quantity for i in state.items)


def subtotal(state: CartState) -> Decimal:
  """Display subtotal from the prices cached at add time."""
  return sum((i.unit_price * i.quantity for i in state.items), Decimal("0"))


def state_from_items(items: List[CartItem]) -> CartState:
  """Builds a closed cart from persisted lines, merging duplicate ids."""
  merged: Dict[str, CartItem] = {}
  for item in items:
    existing = merged.get(item.product_id)
    if existing:
      item = existing.model_copy(
          update={"quantity": _clamp(existing.quantity + item.quantity)}
      )
    merged[item.product_id] = item
  return CartState(items=tuple(merged.values()), is_open=False)


class CartStore:
  """The cart of one browsing session, persisted after every change."""

  def __init__(
      self,
      storage: Optional[CartStorage] = None,
      key: str = DEFAULT_NAMESPACE,
  ):
    self._lock = threading.RLock()
    self._storage = storage or MemoryCartStorage()
    self._key = key
    self._state = self._restore()

  @property
  def state(self) -> CartState:
    with self._lock:
      return self._state

  def _restore(self) -> CartState:
    try:
      data = self._storage.load(self._key)
    except (OSError, UnicodeDecodeError) as e:
      logger.warning("Could not read saved cart %s: %s", self._key, e)
      return CartState()
    if data is None:
      return CartState()
    try:
      persisted = PersistedCart.model_validate_json(data)
    except pydantic.ValidationError as e:
      logger.warning(
          "Discarding corrupt saved cart %s: %d errors",
          self._key,
          e.error_count(),
      )
      return CartState()
    return state_from_items(persisted.items)

  def _apply(self, transition: Callable[[CartState], CartState]) -> CartState:
    with self._lock:
      new_state = transition(self._state)
      if new_state.items != self._state.items:
        self._persist(new_state)
      # Only a successfully saved state becomes visible.
      self._state = new_state
      return new_state

  def _persist(self, state: CartState) -> None:
    persisted = PersistedCart(items=list(state.items))
    self._storage.save(
        self._key, persisted.model_dump_json(by_alias=True)
    )

  def add_item(self, item: CartItem, quantity: int = 1) -> CartState:
    return self._apply(lambda s: add_item(s, item, quantity))

  def remove_item(self, product_id: str) -> CartState:
    return self._apply(lambda s: remove_item(s, product_id))

  def update_quantity(self, product_id: str, quantity: int) -> CartState:
    return self._apply(lambda s: update_quantity(s, product_id, quantity))

  def clear_cart(self) -> CartState:
    return self._apply(clear_cart)

  def open_cart(self) -> CartState:
    return self._apply(open_cart)

  def close_cart(self) -> CartState:
    return self._apply(close_cart)

  def toggle_cart(self) -> CartState:
    return self._apply(toggle_cart)

  def total_items(self) -> int:
    return total_items(self.state)

  def subtotal(self) -> Decimal:
    return subtotal(self.state)

  def checkout_items(self) -> List[Dict[str, Union[str, int]]]:
    """The cart as the checkout endpoint expects it: ids and quantities."""
    return [
        {"productId": i.product_id, "quantity": i.quantity}
        for i in self.state.items
    ]
