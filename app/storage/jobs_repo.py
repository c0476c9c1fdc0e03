"""Storage interfaces for document processing jobs."""

from __future__ import annotations

from typing import Any, Protocol

from app.jobs.models import JobState


class JobsRepository(Protocol):
  """Repository contract for durable job records."""

  async def get_job(self, job_id: str) -> JobState | None:
    """Fetch a job by identifier."""

  async def save_job(self, state: JobState) -> None:
    """Persist the full job record, replacing any previous version."""

  async def delete_job(self, job_id: str) -> None:
    """Remove a job record; missing records are ignored."""

  async def find_job(self, user_id: str, file_name: str) -> JobState | None:
    """Return the most recently updated job for a user and file name."""

  async def list_stale(self, updated_before: str) -> list[JobState]:
    """Return jobs whose updatedAt is older than the given timestamp."""


class BatchProjectsRepository(Protocol):
  """Repository contract for batch project summaries."""

  async def save_batch(self, batch_id: str, record: dict[str, Any]) -> None:
    """Persist a batch summary."""


class InMemoryJobsRepository:
  """Dictionary-backed repository for tests and throwaway local runs."""

  def __init__(self) -> None:
    self._records: dict[str, dict[str, Any]] = {}

  async def get_job(self, job_id: str) -> JobState | None:
    record = self._records.get(job_id)
    if record is None:
      return None
    return JobState.from_record(record)

  async def save_job(self, state: JobState) -> None:
    # Store serialized copies so callers cannot mutate persisted state.
    self._records[state.job_id] = state.to_record()

  async def delete_job(self, job_id: str) -> None:
    self._records.pop(job_id, None)

  async def find_job(self, user_id: str, file_name: str) -> JobState | None:
    matches = [record for record in self._records.values() if record.get("userId") == user_id and record.get("fileName") == file_name]
    if not matches:
      return None
    return JobState.from_record(max(matches, key=lambda record: record.get("updatedAt") or ""))

  async def list_stale(self, updated_before: str) -> list[JobState]:
    return [JobState.from_record(record) for record in self._records.values() if (record.get("updatedAt") or "") < updated_before]


class InMemoryBatchProjectsRepository:
  """Dictionary-backed batch summary repository."""

  def __init__(self) -> None:
    self.records: dict[str, dict[str, Any]] = {}

  async def save_batch(self, batch_id: str, record: dict[str, Any]) -> None:
    self.records[batch_id] = dict(record)
