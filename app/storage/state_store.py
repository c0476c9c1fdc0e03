"""Single authoritative store for job progress.

Reads go through a short-lived TTL cache and fall back to the durable
repository (file or Firestore). Writes always go to the durable repository
first and then refresh the cache, so the cache can lag but never lead.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import fields, replace
from typing import Any

from app.jobs.models import ALLOWED_TRANSITIONS, JobState, format_timestamp
from app.storage.cache import TTLCache
from app.storage.errors import CancelledElsewhereError, InvalidTransitionError, StaleProgressError
from app.storage.jobs_repo import JobsRepository
from app.storage.outputs import OutputStore, output_name_for

logger = logging.getLogger(__name__)

_IMMUTABLE_FIELDS = frozenset({"job_id", "user_id", "created_at"})
_PATCHABLE_FIELDS = frozenset(item.name for item in fields(JobState)) - _IMMUTABLE_FIELDS - {"updated_at", "last_progress_change", "placeholder"}


def resolve_job_key(user_id: str, job_id: str | None, file_name: str | None) -> str:
  """Return the job key used when a client identifies a job by file name only."""
  if job_id:
    return job_id
  if not file_name:
    raise ValueError("Either job_id or file_name is required.")
  return f"{user_id}-{file_name}"


class JobStateStore:
  """Read, write, cancel and prune job state across cache and durable storage."""

  def __init__(self, repo: JobsRepository, *, cache: TTLCache[JobState] | None = None, outputs: OutputStore | None = None, clock: Callable[[], float] = time.time, prune_after_seconds: float = 3600, placeholder_jobs_enabled: bool = False) -> None:
    self._repo = repo
    self._cache: TTLCache[JobState] = cache if cache is not None else TTLCache(5.0)
    self._outputs = outputs
    self._clock = clock
    self._prune_after_seconds = prune_after_seconds
    self._placeholder_jobs_enabled = placeholder_jobs_enabled
    self._locks: dict[str, asyncio.Lock] = {}

  def _lock_for(self, job_id: str) -> asyncio.Lock:
    return self._locks.setdefault(job_id, asyncio.Lock())

  def _now(self) -> str:
    return format_timestamp(self._clock())

  async def create(self, state: JobState) -> JobState:
    """Persist a new job record, overwriting any record with the same id."""
    async with self._lock_for(state.job_id):
      now = self._now()
      created = replace(state, created_at=state.created_at or now, updated_at=now)
      await self._repo.save_job(created)
      self._cache.set(created.job_id, created)
    logger.info("Created job %s for user %s status=%s", created.job_id, created.user_id, created.status)
    await self.prune(exclude=created.job_id)
    return replace(created)

  async def write(self, job_id: str, **patch: Any) -> JobState | None:
    """Apply a partial update and return the stored record, or None when the job is unknown.

    Fields set to None are treated as not supplied. A lower processed_chunks
    than the stored value raises StaleProgressError and leaves the record
    untouched. Writes against a cancelled job are discarded.
    """
    unknown = set(patch) - _PATCHABLE_FIELDS
    if unknown:
      raise ValueError(f"Unsupported job fields: {sorted(unknown)}")

    async with self._lock_for(job_id):
      current = await self._repo.get_job(job_id)
      if current is None:
        return None

      updated = self._apply_patch(current, {key: value for key, value in patch.items() if value is not None})
      if updated is current:
        return replace(current)

      try:
        await self._repo.save_job(updated)
      except CancelledElsewhereError:
        logger.info("Job %s was cancelled by another writer; dropping update", job_id)
        stored = await self._repo.get_job(job_id)
        if stored is None:
          self._cache.invalidate(job_id)
          return None
        self._cache.set(job_id, stored)
        return replace(stored)
      self._cache.set(job_id, updated)

    await self.prune(exclude=job_id)
    return replace(updated)

  def _apply_patch(self, current: JobState, patch: dict[str, Any]) -> JobState:
    # Cancellation wins over any late write from a still-running pipeline.
    if current.status == "cancelled":
      logger.info("Discarding write to cancelled job %s fields=%s", current.job_id, sorted(patch))
      return current

    requested = patch.get("status")
    if requested is not None and requested != current.status and requested not in ALLOWED_TRANSITIONS[current.status]:
      logger.warning("Rejected transition for job %s: %s -> %s", current.job_id, current.status, requested)
      raise InvalidTransitionError(current.job_id, current.status, requested)

    supplied = patch.get("processed_chunks")
    if supplied is not None and supplied < current.processed_chunks:
      logger.warning("Rejected stale progress for job %s: stored=%s supplied=%s", current.job_id, current.processed_chunks, supplied)
      raise StaleProgressError(current.job_id, current.processed_chunks, supplied)

    updated = replace(current, **patch)
    if updated.total_chunks > 0 and updated.processed_chunks > updated.total_chunks:
      updated.processed_chunks = updated.total_chunks

    # A completed job always reports every chunk as processed.
    if updated.status == "complete":
      if updated.total_chunks <= 0:
        updated.total_chunks = updated.processed_chunks
      updated.processed_chunks = updated.total_chunks

    now = self._now()
    updated.updated_at = now
    if updated.processed_chunks != current.processed_chunks:
      updated.last_progress_change = now
    elif updated.status == "processing" and current.status != "processing":
      # Start the stall window when processing begins.
      updated.last_progress_change = now
    return updated

  async def upsert(self, job_id: str, *, user_id: str, **patch: Any) -> JobState:
    """Write to an existing job or create it from the supplied fields."""
    updated = await self.write(job_id, **patch)
    if updated is not None:
      return updated

    now = self._now()
    values = {key: value for key, value in patch.items() if value is not None}
    values.setdefault("status", "processing")
    state = JobState(job_id=job_id, user_id=user_id, created_at=now, updated_at=now, last_progress_change=now, **values)
    if state.status == "complete":
      state.total_chunks = max(state.total_chunks, state.processed_chunks)
      state.processed_chunks = state.total_chunks
    return await self.create(state)

  async def read(self, job_id: str) -> JobState | None:
    """Return the job from the cache when fresh, else from durable storage."""
    cached = self._cache.get(job_id)
    if cached is not None:
      return replace(cached)

    state = await self._repo.get_job(job_id)
    if state is None:
      return None
    self._cache.set(job_id, state)
    return replace(state)

  async def lookup(self, user_id: str, *, job_id: str | None = None, file_name: str | None = None) -> JobState | None:
    """Find a job by id, or by the user's file name when no id is known."""
    state = await self.read(resolve_job_key(user_id, job_id, file_name))
    if state is None and not job_id and file_name:
      state = await self._repo.find_job(user_id, file_name)
    return state

  def invalidate(self, job_id: str) -> None:
    self._cache.invalidate(job_id)

  async def cancel(self, job_id: str) -> JobState | None:
    """Mark a job cancelled; terminal jobs are returned unchanged."""
    async with self._lock_for(job_id):
      current = await self._repo.get_job(job_id)
      if current is None:
        return None
      if current.is_terminal:
        logger.info("Cancel for job %s is a no-op; status=%s", job_id, current.status)
        self._cache.set(job_id, current)
        return replace(current)

      cancelled = replace(current, status="cancelled", updated_at=self._now())
      await self._repo.save_job(cancelled)
      self._cache.set(job_id, cancelled)

    logger.info("Cancelled job %s", job_id)
    await self.discard_artifacts(cancelled)
    return replace(cancelled)

  async def discard_artifacts(self, state: JobState) -> None:
    """Delete any output artifact written for the job."""
    if self._outputs is None:
      return
    names = {output_name_for(state.job_id, "jsonl"), output_name_for(state.job_id, "csv")}
    if state.result and state.result.get("outputName"):
      names.add(str(state.result["outputName"]))
    for name in names:
      await self._outputs.delete(name)

  async def prune(self, *, exclude: str | None = None) -> int:
    """Delete terminal jobs and split parts not updated within the retention window."""
    cutoff_epoch = self._clock() - self._prune_after_seconds
    if self._outputs is not None:
      await self._outputs.prune_parts(cutoff_epoch)

    cutoff = format_timestamp(cutoff_epoch)
    pruned = 0
    for state in await self._repo.list_stale(cutoff):
      if state.job_id == exclude or not state.is_terminal:
        continue
      await self._repo.delete_job(state.job_id)
      self._cache.invalidate(state.job_id)
      self._locks.pop(state.job_id, None)
      await self.discard_artifacts(state)
      pruned += 1

    if pruned:
      logger.info("Pruned %d stale job records older than %s", pruned, cutoff)
    return pruned

  def placeholder_for(self, user_id: str, *, job_id: str | None = None, file_name: str | None = None) -> JobState | None:
    """Fabricate a fake in-progress job when explicitly enabled for local testing."""
    if not self._placeholder_jobs_enabled:
      return None

    key = resolve_job_key(user_id, job_id, file_name)
    logger.warning("Serving PLACEHOLDER job %s for user %s; disable DSX_PLACEHOLDER_JOBS outside local testing.", key, user_id)
    now = self._now()
    return JobState(job_id=key, user_id=user_id, file_name=file_name, status="processing", processed_chunks=50, total_chunks=100, created_at=now, updated_at=now, last_progress_change=now, placeholder=True)
