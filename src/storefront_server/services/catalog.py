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

"""Read-only catalog gateway used as the source of truth for prices."""

import abc
from decimal import Decimal
from typing import Dict, Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from storefront_server import db
from storefront_server.models import ProductRecord


class CatalogGateway(abc.ABC):
  """Looks up products by id."""

  @abc.abstractmethod
  async def lookup(self, product_id: str) -> Optional[ProductRecord]:
    """Returns the product record, or None if the id is unknown."""


class DatabaseCatalog(CatalogGateway):
  """Catalog backed by the products table."""

  def __init__(self, session: AsyncSession):
    self.session = session

  async def lookup(self, product_id: str) -> Optional[ProductRecord]:
    product = await db.get_product(self.session, product_id)
    if not product:
      return None
    return ProductRecord(
        id=product.id,
        name=product.name,
        description=product.description or "",
        price=Decimal(product.price),
        images=tuple(product.images or ()),
        available=bool(product.available),
    )


class StaticCatalog(CatalogGateway):
  """Catalog over an in-memory mapping, for fixtures and local runs."""

  def __init__(self, products: Iterable[ProductRecord]):
    self._products: Dict[str, ProductRecord] = {p.id: p for p in products}

  async def lookup(self, product_id: str) -> Optional[ProductRecord]:
    return self._products.get(product_id)
