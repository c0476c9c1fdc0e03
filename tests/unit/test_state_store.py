from __future__ import annotations

import os
from dataclasses import replace

import pytest

from app.jobs.models import JobState, format_timestamp, parse_timestamp
from app.storage.cache import TTLCache
from app.storage.errors import CancelledElsewhereError, InvalidTransitionError, StaleProgressError
from app.storage.jobs_repo import InMemoryJobsRepository
from app.storage.outputs import OutputStore, part_name_for
from app.storage.state_store import JobStateStore, resolve_job_key

BASE_TIME = 1_700_000_000.0


class _Clock:
  def __init__(self, now: float = BASE_TIME) -> None:
    self.now = now

  def __call__(self) -> float:
    return self.now


def _job(job_id: str = "job-1", *, user_id: str = "user-1", status: str = "processing", **fields) -> JobState:
  return JobState(job_id=job_id, user_id=user_id, status=status, created_at="", updated_at="", **fields)


@pytest.fixture
def clock() -> _Clock:
  return _Clock()


@pytest.fixture
def store(jobs_repo: InMemoryJobsRepository, output_store: OutputStore, clock: _Clock) -> JobStateStore:
  return JobStateStore(jobs_repo, cache=TTLCache(5.0, clock=clock), outputs=output_store, clock=clock, prune_after_seconds=3600)


@pytest.mark.anyio
async def test_progress_is_monotonic(store: JobStateStore) -> None:
  await store.create(_job(total_chunks=10))
  await store.write("job-1", processed_chunks=5)

  with pytest.raises(StaleProgressError):
    await store.write("job-1", processed_chunks=3)

  state = await store.read("job-1")
  assert state is not None
  assert state.processed_chunks == 5


@pytest.mark.anyio
async def test_processed_is_clamped_to_total(store: JobStateStore) -> None:
  await store.create(_job(total_chunks=4))
  state = await store.write("job-1", processed_chunks=9)
  assert state is not None
  assert state.processed_chunks == 4
  assert state.progress == 100


@pytest.mark.anyio
async def test_complete_reports_every_chunk_processed(store: JobStateStore) -> None:
  await store.create(_job(total_chunks=8, processed_chunks=6))
  state = await store.write("job-1", status="complete", result={"outputName": "job-1.jsonl"})
  assert state is not None
  assert state.processed_chunks == state.total_chunks == 8
  assert state.progress == 100


@pytest.mark.anyio
async def test_terminal_status_cannot_be_reopened(store: JobStateStore) -> None:
  await store.create(_job(status="complete", total_chunks=1, processed_chunks=1))
  with pytest.raises(InvalidTransitionError):
    await store.write("job-1", status="processing")


@pytest.mark.anyio
async def test_write_unknown_job_returns_none(store: JobStateStore) -> None:
  assert await store.write("missing", processed_chunks=1) is None


@pytest.mark.anyio
async def test_write_rejects_unknown_fields(store: JobStateStore) -> None:
  await store.create(_job())
  with pytest.raises(ValueError):
    await store.write("job-1", user_id="someone-else")


@pytest.mark.anyio
async def test_cancellation_wins_over_late_writes(store: JobStateStore) -> None:
  await store.create(_job(total_chunks=10, processed_chunks=2))
  await store.cancel("job-1")

  state = await store.write("job-1", status="processing", processed_chunks=7)
  assert state is not None
  assert state.status == "cancelled"
  assert state.processed_chunks == 2


@pytest.mark.anyio
async def test_cancel_is_idempotent_and_leaves_terminal_jobs_alone(store: JobStateStore) -> None:
  await store.create(_job("running"))
  await store.create(_job("done", status="complete"))

  first = await store.cancel("running")
  second = await store.cancel("running")
  finished = await store.cancel("done")

  assert first is not None and first.status == "cancelled"
  assert second is not None and second.status == "cancelled"
  assert finished is not None and finished.status == "complete"
  assert await store.cancel("missing") is None


@pytest.mark.anyio
async def test_cancel_deletes_the_artifact(store: JobStateStore, output_store: OutputStore) -> None:
  await store.create(_job())
  await output_store.write("job-1.jsonl", '{"input": "x"}')

  await store.cancel("job-1")

  assert await output_store.read("job-1.jsonl") is None


@pytest.mark.anyio
async def test_read_sees_own_writes(store: JobStateStore) -> None:
  await store.create(_job(total_chunks=3))
  await store.write("job-1", processed_chunks=1)
  state = await store.read("job-1")
  assert state is not None
  assert state.processed_chunks == 1


@pytest.mark.anyio
async def test_cache_may_lag_durable_storage_until_ttl(store: JobStateStore, jobs_repo: InMemoryJobsRepository, clock: _Clock) -> None:
  await store.create(_job(total_chunks=3))
  # Another instance writes directly to durable storage.
  await jobs_repo.save_job(_job(total_chunks=3, processed_chunks=2))

  cached = await store.read("job-1")
  assert cached is not None and cached.processed_chunks == 0

  clock.now += 5
  fresh = await store.read("job-1")
  assert fresh is not None and fresh.processed_chunks == 2


@pytest.mark.anyio
async def test_invalidate_forces_durable_read(store: JobStateStore, jobs_repo: InMemoryJobsRepository) -> None:
  await store.create(_job(total_chunks=3))
  await jobs_repo.save_job(_job(total_chunks=3, processed_chunks=1))
  store.invalidate("job-1")
  state = await store.read("job-1")
  assert state is not None and state.processed_chunks == 1


@pytest.mark.anyio
async def test_last_progress_change_moves_only_with_progress(store: JobStateStore, clock: _Clock) -> None:
  await store.create(_job(status="uploading", total_chunks=5))
  started = await store.write("job-1", status="processing")
  assert started is not None
  assert started.last_progress_change == format_timestamp(BASE_TIME)

  clock.now += 20
  unchanged = await store.write("job-1", credits_used=1)
  assert unchanged is not None
  assert unchanged.last_progress_change == format_timestamp(BASE_TIME)
  assert unchanged.updated_at == format_timestamp(BASE_TIME + 20)

  clock.now += 20
  advanced = await store.write("job-1", processed_chunks=1)
  assert advanced is not None
  assert advanced.last_progress_change == format_timestamp(BASE_TIME + 40)


@pytest.mark.anyio
async def test_stalled_job_is_reported_inactive(store: JobStateStore, clock: _Clock) -> None:
  await store.create(_job(status="uploading", total_chunks=5))
  await store.write("job-1", status="processing", processed_chunks=1)
  state = await store.read("job-1")
  assert state is not None

  assert state.is_active(BASE_TIME + 30, 30)
  assert not state.is_active(BASE_TIME + 31, 30)
  assert parse_timestamp(state.last_progress_change or "") == BASE_TIME


@pytest.mark.anyio
async def test_prune_removes_only_old_terminal_jobs(store: JobStateStore, jobs_repo: InMemoryJobsRepository, clock: _Clock) -> None:
  await store.create(_job("old-done", status="complete"))
  await store.create(_job("old-running"))

  clock.now += 3601
  await store.create(_job("new-job"))

  assert await jobs_repo.get_job("old-done") is None
  assert await jobs_repo.get_job("old-running") is not None
  assert await jobs_repo.get_job("new-job") is not None


@pytest.mark.anyio
async def test_prune_deletes_expired_split_parts(store: JobStateStore, output_store: OutputStore, clock: _Clock) -> None:
  old = await output_store.write_bytes(part_name_for("user-1", "s1_deck_part_1_of_2.pdf"), b"%PDF-old")
  fresh = await output_store.write_bytes(part_name_for("user-2", "s2_deck_part_1_of_2.pdf"), b"%PDF-new")
  os.utime(output_store.path_for(old), (BASE_TIME - 7200, BASE_TIME - 7200))
  os.utime(output_store.path_for(fresh), (BASE_TIME, BASE_TIME))

  await store.prune()

  assert await output_store.read(old) is None
  assert await output_store.read(fresh) == b"%PDF-new"
  assert not output_store.path_for(old).parent.exists()


def test_part_names_stay_inside_the_output_directory(output_store: OutputStore) -> None:
  assert part_name_for("../../etc", "a.pdf") == "parts/_.._etc/a.pdf"
  with pytest.raises(ValueError):
    part_name_for("...", "a.pdf")
  with pytest.raises(ValueError):
    output_store.path_for("../outside.pdf")
  with pytest.raises(ValueError):
    output_store.path_for("")


class _CancelledByOtherInstance(InMemoryJobsRepository):
  """Simulates a second instance cancelling between our read and our save."""

  async def save_job(self, state: JobState) -> None:
    stored = await self.get_job(state.job_id)
    if stored is not None and stored.status == "processing" and state.status != "cancelled":
      await super().save_job(replace(stored, status="cancelled"))
      raise CancelledElsewhereError(state.job_id)
    await super().save_job(state)


@pytest.mark.anyio
async def test_write_yields_to_cancellation_by_another_writer(output_store: OutputStore, clock: _Clock) -> None:
  store = JobStateStore(_CancelledByOtherInstance(), cache=TTLCache(5.0, clock=clock), outputs=output_store, clock=clock)
  await store.create(_job(total_chunks=4))

  state = await store.write("job-1", processed_chunks=2)

  assert state is not None and state.status == "cancelled" and state.processed_chunks == 0
  cached = await store.read("job-1")
  assert cached is not None and cached.status == "cancelled"


@pytest.mark.anyio
async def test_upsert_creates_missing_job_in_processing(store: JobStateStore) -> None:
  state = await store.upsert("job-9", user_id="user-1", file_name="terms.pdf", total_chunks=4, processed_chunks=1)
  assert state.status == "processing"
  assert state.user_id == "user-1"
  assert state.last_progress_change is not None

  again = await store.upsert("job-9", user_id="user-1", processed_chunks=2)
  assert again.processed_chunks == 2
  assert again.file_name == "terms.pdf"


@pytest.mark.anyio
async def test_lookup_by_file_name_falls_back_to_query(store: JobStateStore) -> None:
  await store.create(_job("job-abc", file_name="lease.pdf"))
  state = await store.lookup("user-1", file_name="lease.pdf")
  assert state is not None
  assert state.job_id == "job-abc"
  assert await store.lookup("user-2", file_name="lease.pdf") is None


def test_resolve_job_key_prefers_job_id() -> None:
  assert resolve_job_key("u", "job-1", "a.pdf") == "job-1"
  assert resolve_job_key("u", None, "a.pdf") == "u-a.pdf"
  with pytest.raises(ValueError):
    resolve_job_key("u", None, None)


def test_placeholder_requires_explicit_opt_in(jobs_repo: InMemoryJobsRepository) -> None:
  assert JobStateStore(jobs_repo).placeholder_for("user-1", job_id="job-1") is None

  placeholder = JobStateStore(jobs_repo, placeholder_jobs_enabled=True).placeholder_for("user-1", job_id="job-1")
  assert placeholder is not None
  assert placeholder.placeholder is True
  assert placeholder.progress == 50
