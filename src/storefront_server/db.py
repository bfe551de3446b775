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

"""Database management and persistence layer for the storefront server.

This module provides the schema definitions, database session management, and
asynchronous data access helpers used by the server. It utilizes SQLAlchemy with
SQLite (via aiosqlite) and separates the read-only product catalog from the
transactional state the server itself writes.

Key features include:
- `DatabaseManager`: Handles asynchronous engine initialization and session
  factory setup for both 'Catalog' and 'Transactions' databases.
- WAL Mode: Automatically enables SQLite Write-Ahead Logging so several
  server workers can share the transactions database.
- Declarative Models: Products, the processed webhook event ledger and the
  rate limit window counters.
- Data Access Helpers: Atomic single-statement helpers for claiming webhook
  events and incrementing rate limit windows.
"""

import datetime
import logging
from typing import Iterable
from typing import Optional

from sqlalchemy import Boolean
from sqlalchemy import Column
from sqlalchemy import delete
from sqlalchemy import Integer
from sqlalchemy import JSON
from sqlalchemy import Numeric
from sqlalchemy import select
from sqlalchemy import String
from sqlalchemy import text
from sqlalchemy import update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker
from storefront_server.enums import WebhookEventStatus

logger = logging.getLogger(__name__)

CatalogBase = declarative_base()
TransactionBase = declarative_base()


class DatabaseManager:
  """Manages database engines and sessions without using global variables."""

  def __init__(self) -> None:
    self.catalog_engine: Optional[AsyncEngine] = None
    self.transactions_engine: Optional[AsyncEngine] = None
    self.catalog_session_factory: Optional[sessionmaker] = None
    self.transactions_session_factory: Optional[sessionmaker] = None

  async def init_dbs(self, catalog_path: str, transactions_path: str) -> None:
    """Initializes database engines and creates tables."""
    self.catalog_engine, self.catalog_session_factory = await _open_engine(
        catalog_path, CatalogBase
    )
    self.transactions_engine, self.transactions_session_factory = (
        await _open_engine(transactions_path, TransactionBase)
    )

  async def close(self) -> None:
    """Closes all database engines."""
    if self.catalog_engine:
      await self.catalog_engine.dispose()
    if self.transactions_engine:
      await self.transactions_engine.dispose()


async def _open_engine(path: str, base) -> tuple[AsyncEngine, sessionmaker]:
  """Creates an engine in WAL mode with its tables and a session factory."""
  engine = create_async_engine(f"sqlite+aiosqlite:///{path}", echo=False)

  async with engine.connect() as conn:
    await conn.execute(text("PRAGMA journal_mode=WAL"))

  async with engine.begin() as conn:
    await conn.run_sync(base.metadata.create_all)

  session_factory = sessionmaker(
      engine, expire_on_commit=False, class_=AsyncSession
  )
  return engine, session_factory


async def open_catalog(path: str) -> tuple[AsyncEngine, sessionmaker]:
  """Opens the catalog database on its own, for offline tooling."""
  return await _open_engine(path, CatalogBase)


# Global manager instance (to be initialized via lifespan)
manager = DatabaseManager()


class Product(CatalogBase):
  __tablename__ = "products"

  id = Column(String, primary_key=True)
  name = Column(String, nullable=False)
  description = Column(String, default="")
  price = Column(Numeric(10, 2), nullable=False)  # Major units, e.g. 24.99
  images = Column(JSON, default=list)  # List of image URLs
  category = Column(String, nullable=True)
  available = Column(Boolean, default=True)


class ProcessedWebhookEvent(TransactionBase):
  __tablename__ = "processed_webhook_events"

  event_id = Column(String, primary_key=True)
  event_type = Column(String)
  payload_hash = Column(String)
  status = Column(String)
  received_at = Column(String)
  processed_at = Column(String, nullable=True)


class RateLimitWindow(TransactionBase):
  __tablename__ = "rate_limit_windows"

  client_key = Column(String, primary_key=True)
  window_index = Column(Integer, primary_key=True)
  count = Column(Integer, default=0, nullable=False)


def _now() -> str:
  return datetime.datetime.now(datetime.timezone.utc).isoformat()


# --- Catalog Helpers ---


async def get_product(
    session: AsyncSession, product_id: str
) -> Optional[Product]:
  """Retrieves a product by ID."""
  return await session.get(Product, product_id)


async def replace_products(
    session: AsyncSession, products: Iterable[Product]
) -> None:
  """Replaces the whole catalog with the given products."""
  await session.execute(delete(Product))
  session.add_all(list(products))


# --- Webhook Ledger Helpers ---


async def claim_webhook_event(
    session: AsyncSession,
    event_id: str,
    event_type: str,
    payload_hash: str,
) -> bool:
  """Atomically records an event as being processed.

  Args:
    session: The transactions database session.
    event_id: The provider-assigned event identifier.
    event_type: The provider event type, kept for auditing.
    payload_hash: SHA-256 of the verified raw payload.

  Returns:
    True if this call created the claim, False if the event id was already
    present in the ledger.
  """
  stmt = (
      sqlite_insert(ProcessedWebhookEvent)
      .values(
          event_id=event_id,
          event_type=event_type,
          payload_hash=payload_hash,
          status=WebhookEventStatus.PROCESSING.value,
          received_at=_now(),
      )
      .on_conflict_do_nothing(index_elements=["event_id"])
  )
  result = await session.execute(stmt)
  return result.rowcount > 0


async def reclaim_stale_webhook_event(
    session: AsyncSession, event_id: str, claimed_before: str
) -> bool:
  """Takes over a claim left in 'processing' since before `claimed_before`.

  A worker that died mid-dispatch never releases its claim; without this the
  event would be skipped on every redelivery.
  """
  result = await session.execute(
      update(ProcessedWebhookEvent)
      .where(ProcessedWebhookEvent.event_id == event_id)
      .where(
          ProcessedWebhookEvent.status == WebhookEventStatus.PROCESSING.value
      )
      .where(ProcessedWebhookEvent.received_at < claimed_before)
      .values(received_at=_now())
  )
  return result.rowcount > 0


async def get_webhook_event(
    session: AsyncSession, event_id: str
) -> Optional[ProcessedWebhookEvent]:
  """Retrieves a ledger entry by event ID."""
  return await session.get(ProcessedWebhookEvent, event_id)


async def mark_webhook_event_processed(
    session: AsyncSession, event_id: str
) -> None:
  """Marks a claimed event as fully processed."""
  await session.execute(
      update(ProcessedWebhookEvent)
      .where(ProcessedWebhookEvent.event_id == event_id)
      .values(status=WebhookEventStatus.PROCESSED.value, processed_at=_now())
  )


async def release_webhook_event(session: AsyncSession, event_id: str) -> None:
  """Drops a claim so that a redelivery of the event is processed again."""
  await session.execute(
      delete(ProcessedWebhookEvent).where(
          ProcessedWebhookEvent.event_id == event_id
      )
  )


# --- Rate Limit Helpers ---


async def get_window_count(
    session: AsyncSession, client_key: str, window_index: int
) -> int:
  """Returns the admitted request count for one fixed window."""
  result = await session.execute(
      select(RateLimitWindow.count).where(
          RateLimitWindow.client_key == client_key,
          RateLimitWindow.window_index == window_index,
      )
  )
  return result.scalar_one_or_none() or 0


async def increment_window_if_below(
    session: AsyncSession,
    client_key: str,
    window_index: int,
    carried: int,
    limit: int,
) -> bool:
  """Atomically increments a window counter unless the limit is reached.

  The guard and the increment are a single UPDATE statement so concurrent
  requests for the same key cannot both pass a stale read.

  Args:
    session: The transactions database session.
    client_key: The client the window belongs to.
    window_index: The fixed window being counted.
    carried: Requests carried over from the weighted previous window.
    limit: Maximum admitted requests across the sliding window.

  Returns:
    True if the request was counted, False if the limit was already reached.
  """
  await session.execute(
      sqlite_insert(RateLimitWindow)
      .values(client_key=client_key, window_index=window_index, count=0)
      .on_conflict_do_nothing(index_elements=["client_key", "window_index"])
  )
  stmt = (
      update(RateLimitWindow)
      .where(RateLimitWindow.client_key == client_key)
      .where(RateLimitWindow.window_index == window_index)
      .where(RateLimitWindow.count + carried < limit)
      .values(count=RateLimitWindow.count + 1)
  )
  result = await session.execute(stmt)
  return result.rowcount > 0


async def prune_windows(
    session: AsyncSession, client_key: str, oldest_kept: int
) -> None:
  """Deletes windows that can no longer influence a sliding window."""
  await session.execute(
      delete(RateLimitWindow).where(
          RateLimitWindow.client_key == client_key,
          RateLimitWindow.window_index < oldest_kept,
      )
  )
