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

"""Durable key-value storage for the persisted cart."""

import abc
import os
import re
import tempfile
from typing import Dict, Optional

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


class CartStorage(abc.ABC):
  """Stores one serialized cart per namespace key."""

  @abc.abstractmethod
  def load(self, key: str) -> Optional[str]:
    """Returns the stored text, or None if nothing is stored under `key`."""

  @abc.abstractmethod
  def save(self, key: str, data: str) -> None:
    """Overwrites the text stored under `key`."""


class MemoryCartStorage(CartStorage):
  """Storage that lives as long as the process."""

  def __init__(self) -> None:
    self._data: Dict[str, str] = {}

  def load(self, key: str) -> Optional[str]:
    return self._data.get(key)

  def save(self, key: str, data: str) -> None:
    self._data[key] = data


class FileCartStorage(CartStorage):
  """One JSON file per key inside a directory.

  Writes go to a temporary file in the same directory which then replaces the
  target, so a crash mid-write leaves the previous cart intact.
  """

  def __init__(self, directory: str):
    self.directory = directory
    os.makedirs(directory, exist_ok=True)

  def path_for(self, key: str) -> str:
    if not _KEY_PATTERN.match(key):
      raise ValueError(f"Invalid cart storage key: {key!r}")
    return os.path.join(self.directory, f"{key}.json")

  def load(self, key: str) -> Optional[str]:
    try:
      with open(self.path_for(key), "r", encoding="utf-8") as f:
        return f.read()
    except FileNotFoundError:
      return None

  def save(self, key: str, data: str) -> None:
    path = self.path_for(key)
    fd, tmp_path = tempfile.mkstemp(
        dir=self.directory, prefix=f".{key}.", suffix=".tmp"
    )
    try:
      with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(data)
      os.replace(tmp_path, path)
    except BaseException:
      if os.path.exists(tmp_path):
        os.remove(tmp_path)
      raise
