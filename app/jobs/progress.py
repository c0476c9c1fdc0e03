"""Job progress tracking for chunk-by-chunk document processing."""

from __future__ import annotations

import logging
from typing import Any

from app.jobs.models import ChunkResult, JobState, JobStatus
from app.storage.state_store import JobStateStore

logger = logging.getLogger(__name__)

CREDITS_PER_CHUNK = 1


class JobCanceledError(Exception):
  """Exception raised when a job is canceled by the user."""


class JobProgressTracker:
  """Push per-chunk progress and credit usage into the job state store."""

  def __init__(self, *, job_id: str, store: JobStateStore, starting_credits: int | None = None) -> None:
    self._job_id = job_id
    self._store = store
    self._starting_credits = starting_credits
    self._processed = 0
    self._failed = 0
    self._total = 0

  @property
  def credits_used(self) -> int:
    return self._processed * CREDITS_PER_CHUNK

  def _credits_remaining(self) -> int | None:
    if self._starting_credits is None:
      return None
    return max(0, self._starting_credits - self.credits_used)

  async def _update_job(self, *, status: JobStatus, **fields: Any) -> JobState:
    record = await self._store.write(self._job_id, status=status, **fields)

    if record is None or record.status == "cancelled":
      raise JobCanceledError(f"Job {self._job_id} was canceled.")

    return record

  async def ensure_active(self) -> None:
    """Raise JobCanceledError when the job has been cancelled or removed."""
    state = await self._store.read(self._job_id)
    if state is None or state.status == "cancelled":
      raise JobCanceledError(f"Job {self._job_id} was canceled.")

  async def start(self, total_chunks: int) -> JobState:
    """Record the chunk count and move the job into processing."""
    self._total = total_chunks
    return await self._update_job(status="processing", total_chunks=total_chunks, credits_remaining=self._credits_remaining())

  async def chunk_done(self, result: ChunkResult) -> JobState:
    """Advance progress by one chunk, successful or not."""
    self._processed = min(self._processed + 1, self._total)
    if not result.success:
      self._failed += 1
    return await self._update_job(status="processing", processed_chunks=self._processed, failed_chunks=self._failed, credits_used=self.credits_used, credits_remaining=self._credits_remaining())

  async def complete(self, result: dict[str, Any]) -> JobState:
    logger.info("Job %s complete: %d/%d chunks, %d failed", self._job_id, self._processed, self._total, self._failed)
    return await self._update_job(status="complete", result=result, credits_used=self.credits_used, credits_remaining=self._credits_remaining())

  async def fail(self, message: str) -> JobState:
    """Set the job to an error state."""
    logger.warning("Job %s failed: %s", self._job_id, message)
    return await self._update_job(status="error", error_message=message, credits_used=self.credits_used, credits_remaining=self._credits_remaining())
