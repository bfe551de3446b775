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

"""Catalog import script for the storefront server.

This script loads product records from a JSON file into the catalog database.
It clears any existing rows in the 'products' table before populating it.

The file holds a list of objects shaped like:
  {"id": "...", "name": "...", "description": "...", "price": 24.99,
   "images": ["..."], "category": "...", "available": true}

Usage:
  python -m storefront_server.import_catalog --catalog_db_path=catalog.db \
      --products_json=data/products.json
"""

import asyncio
from decimal import Decimal
import json
import logging
from typing import Any, List

from absl import app as absl_app
from absl import flags
from storefront_server import config
from storefront_server import db
from storefront_server.db import Product

FLAGS = flags.FLAGS
flags.DEFINE_string(
    "products_json", "products.json", "JSON file with the product list"
)

logger = logging.getLogger(__name__)


def product_from_record(record: dict[str, Any]) -> Product:
  """Builds a catalog row, rejecting records without an id, name or price."""
  for field in ("id", "name", "price"):
    if record.get(field) in (None, ""):
      raise ValueError(f"Product record is missing '{field}': {record}")
  price = Decimal(str(record["price"]))
  if price < 0:
    raise ValueError(f"Product {record['id']} has a negative price")
  return Product(
      id=str(record["id"]),
      name=record["name"],
      description=record.get("description") or "",
      price=price,
      images=list(record.get("images") or []),
      category=record.get("category"),
      available=bool(record.get("available", True)),
  )


def load_products(path: str) -> List[Product]:
  """Reads and validates the product list from `path`."""
  with open(path, "r", encoding="utf-8") as f:
    records = json.load(f)
  if not isinstance(records, list):
    raise ValueError(f"{path} must contain a JSON list of products")
  return [product_from_record(record) for record in records]


async def import_catalog(catalog_db_path: str, products_json: str) -> int:
  """Replaces the catalog with the products in `products_json`.

  Returns:
    The number of imported products.
  """
  products = load_products(products_json)
  engine, session_factory = await db.open_catalog(catalog_db_path)
  try:
    async with session_factory() as session:
      logger.info("Replacing catalog with %d products...", len(products))
      await db.replace_products(session, products)
      await session.commit()
  finally:
    await engine.dispose()

  logger.info("Catalog populated from %s.", products_json)
  return len(products)


def main(argv) -> None:
  """Main entry point for the catalog import script."""
  del argv
  if not config.FLAGS.catalog_db_path:
    raise absl_app.UsageError("--catalog_db_path must be provided")
  logging.basicConfig(level=logging.INFO)
  asyncio.run(
      import_catalog(config.FLAGS.catalog_db_path, FLAGS.products_json)
  )


def run() -> None:
  """Console script entry point."""
  absl_app.run(main)


if __name__ == "__main__":
  run()
