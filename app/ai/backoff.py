"""Retry logic for rate-limited and failing model API calls."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

import openai

T = TypeVar("T")
logger = logging.getLogger(__name__)

MAX_RETRIES = 3
BASE_DELAY_SECONDS = 1.0
DEFAULT_RETRY_AFTER_SECONDS = 5.0


def _retry_after_seconds(exc: openai.APIStatusError) -> float:
  """Read Retry-After from a 429 response, falling back to a fixed pause."""
  raw = exc.response.headers.get("retry-after") if exc.response is not None else None
  try:
    return max(0.0, float(raw)) if raw is not None else DEFAULT_RETRY_AFTER_SECONDS
  except ValueError:
    return DEFAULT_RETRY_AFTER_SECONDS


async def retry_with_backoff(func: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
  """
  Execute a coroutine function, retrying 429 and 5xx responses.

  429 waits for Retry-After (default 5s); 5xx waits 1s, 2s, 4s.
  Other errors are raised immediately.
  """
  for attempt in range(MAX_RETRIES):
    try:
      return await func(*args, **kwargs)
    except openai.APIStatusError as exc:
      if exc.status_code == 429:
        delay = _retry_after_seconds(exc)
      elif exc.status_code >= 500:
        delay = BASE_DELAY_SECONDS * (2**attempt)
      else:
        raise
      logger.warning("Retry attempt %d/%d after status %s. Retrying in %.1fs...", attempt + 1, MAX_RETRIES, exc.status_code, delay)
      await asyncio.sleep(delay)

  # Final attempt
  return await func(*args, **kwargs)
