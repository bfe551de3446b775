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

"""Sliding-window admission gate for the mutating storefront endpoints.

The trailing window is approximated with two fixed windows: requests counted
in the current window plus the previous window's count weighted by how much of
it still overlaps the trailing interval. Only admitted requests are counted,
and the check and the increment happen as one atomic step inside the store.

If the store cannot be reached the gate fails open by default: the request is
admitted, the decision is flagged as degraded and the outage is logged. Gates
built with `fail_open=False` reject instead.
"""

import abc
import dataclasses
import logging
import math
import threading
import time
from typing import Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from storefront_server import db

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10
DEFAULT_WINDOW_SECONDS = 10.0


class WindowStoreUnavailableError(Exception):
  """Raised when the window store cannot answer."""


@dataclasses.dataclass(frozen=True)
class WindowCount:
  """Result of one atomic check-and-increment."""

  allowed: bool
  used: int


@dataclasses.dataclass(frozen=True)
class AdmissionDecision:
  """Outcome of `AdmissionGate.admit`."""

  allowed: bool
  limit: int
  remaining: int
  reset_at: float  # Epoch seconds at which the current window closes.
  degraded: bool = False

  def headers(self, now: Optional[float] = None) -> Dict[str, str]:
    """Builds the standard rate limit response headers."""
    headers = {
        "X-RateLimit-Limit": str(self.limit),
        "X-RateLimit-Remaining": str(self.remaining),
        "X-RateLimit-Reset": str(int(self.reset_at * 1000)),
    }
    if not self.allowed:
      now = time.time() if now is None else now
      headers["Retry-After"] = str(max(1, math.ceil(self.reset_at - now)))
    return headers


class WindowStore(abc.ABC):
  """Keyed window counters with an atomic check-and-increment."""

  @abc.abstractmethod
  async def acquire(
      self,
      client_key: str,
      window_index: int,
      previous_weight: float,
      limit: int,
  ) -> WindowCount:
    """Counts one request unless the weighted total already reached `limit`.

    Args:
      client_key: The client being throttled.
      window_index: Index of the current fixed window.
      previous_weight: Fraction of the previous window inside the trailing
        interval, in [0, 1].
      limit: Maximum requests in the trailing interval.

    Returns:
      Whether the request was counted and the weighted usage after the call.
    """


class InMemoryWindowStore(WindowStore):
  """Per-process store: a lock-protected map of window counters."""

  def __init__(self) -> None:
    self._lock = threading.Lock()
    self._windows: Dict[str, Dict[int, int]] = {}
    self._swept_index: Optional[int] = None

  def __len__(self) -> int:
    """Number of client keys currently tracked."""
    with self._lock:
      return len(self._windows)

  def _sweep(self, window_index: int) -> None:
    """Drops windows that can no longer affect a count, and emptied keys."""
    for client_key in list(self._windows):
      windows = self._windows[client_key]
      for index in [i for i in windows if i < window_index - 1]:
        del windows[index]
      if not windows:
        del self._windows[client_key]
    self._swept_index = window_index

  async def acquire(
      self,
      client_key: str,
      window_index: int,
      previous_weight: float,
      limit: int,
  ) -> WindowCount:
    with self._lock:
      # At most one full sweep per window boundary.
      if self._swept_index is None or window_index > self._swept_index:
        self._sweep(window_index)
      windows = self._windows.get(client_key, {})

      carried = math.floor(windows.get(window_index - 1, 0) * previous_weight)
      used = carried + windows.get(window_index, 0)
      if used >= limit:
        return WindowCount(allowed=False, used=used)

      windows[window_index] = windows.get(window_index, 0) + 1
      self._windows[client_key] = windows
      return WindowCount(allowed=True, used=used + 1)


class DatabaseWindowStore(WindowStore):
  """Store shared by every worker through the transactions database."""

  def __init__(self, session_factory: Callable) -> None:
    self._session_factory = session_factory

  async def acquire(
      self,
      client_key: str,
      window_index: int,
      previous_weight: float,
      limit: int,
  ) -> WindowCount:
    if self._session_factory is None:
      raise WindowStoreUnavailableError("Transactions database not initialized")

    try:
      async with self._session_factory() as session:
        previous = await db.get_window_count(
            session, client_key, window_index - 1
        )
        carried = math.floor(previous * previous_weight)
        allowed = await db.increment_window_if_below(
            session, client_key, window_index, carried, limit
        )
        current = await db.get_window_count(session, client_key, window_index)
        if allowed:
          await db.prune_windows(session, client_key, window_index - 1)
        await session.commit()
    except SQLAlchemyError as e:
      raise WindowStoreUnavailableError(str(e)) from e

    return WindowCount(allowed=allowed, used=carried + current)


class AdmissionGate:
  """Decides whether a request from a client may proceed."""

  def __init__(
      self,
      store: WindowStore,
      limit: int = DEFAULT_LIMIT,
      window_seconds: float = DEFAULT_WINDOW_SECONDS,
      fail_open: bool = True,
  ):
    if limit < 1:
      raise ValueError("limit must be at least 1")
    if window_seconds <= 0:
      raise ValueError("window_seconds must be positive")
    self.store = store
    self.limit = limit
    self.window_seconds = window_seconds
    self.fail_open = fail_open

  async def admit(
      self, client_key: str, now: Optional[float] = None
  ) -> AdmissionDecision:
    """Checks and records one request from `client_key`."""
    now = time.time() if now is None else now
    window_index = int(now // self.window_seconds)
    elapsed = now - window_index * self.window_seconds
    previous_weight = 1.0 - elapsed / self.window_seconds
    reset_at = (window_index + 1) * self.window_seconds

    try:
      count = await self.store.acquire(
          client_key, window_index, previous_weight, self.limit
      )
    except WindowStoreUnavailableError as e:
      logger.error(
          "Rate limit store unavailable (fail_open=%s): %s", self.fail_open, e
      )
      return AdmissionDecision(
          allowed=self.fail_open,
          limit=self.limit,
          remaining=self.limit if self.fail_open else 0,
          reset_at=reset_at,
          degraded=True,
      )

    if not count.allowed:
      logger.info("Rate limit exceeded for %s", client_key)

    return AdmissionDecision(
        allowed=count.allowed,
        limit=self.limit,
        remaining=max(0, self.limit - count.used),
        reset_at=reset_at,
    )


def client_key_from_headers(
    forwarded_for: Optional[str], peer_host: Optional[str]
) -> str:
  """Derives the rate limit key from the client IP."""
  if forwarded_for:
    first = forwarded_for.split(",")[0].strip()
    if first:
      return first
  return peer_host or "127.0.0.1"
