"""Small TTL cache used as a read-through layer in front of the job repositories."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Generic, TypeVar

V = TypeVar("V")


class TTLCache(Generic[V]):
  """Key/value cache whose entries expire after a fixed number of seconds.

  The cache is a read optimization only. Callers must treat a miss as
  "ask the durable store" and never as "does not exist".
  """

  def __init__(self, ttl_seconds: float = 5.0, *, clock: Callable[[], float] = time.monotonic, max_entries: int = 1024) -> None:
    if ttl_seconds <= 0:
      raise ValueError("ttl_seconds must be positive.")
    self._ttl = ttl_seconds
    self._clock = clock
    self._max_entries = max_entries
    self._entries: dict[str, tuple[float, V]] = {}
    self._lock = threading.Lock()

  def get(self, key: str) -> V | None:
    with self._lock:
      entry = self._entries.get(key)
      if entry is None:
        return None
      expires_at, value = entry
      if self._clock() >= expires_at:
        del self._entries[key]
        return None
      return value

  def set(self, key: str, value: V) -> None:
    with self._lock:
      if len(self._entries) >= self._max_entries and key not in self._entries:
        self._evict_expired()
        # Still full: drop the entry closest to expiry.
        if len(self._entries) >= self._max_entries:
          oldest = min(self._entries, key=lambda item: self._entries[item][0])
          del self._entries[oldest]
      self._entries[key] = (self._clock() + self._ttl, value)

  def invalidate(self, key: str) -> None:
    with self._lock:
      self._entries.pop(key, None)

  def clear(self) -> None:
    with self._lock:
      self._entries.clear()

  def __len__(self) -> int:
    with self._lock:
      self._evict_expired()
      return len(self._entries)

  def _evict_expired(self) -> None:
    now = self._clock()
    for key in [key for key, (expires_at, _) in self._entries.items() if now >= expires_at]:
      del self._entries[key]
