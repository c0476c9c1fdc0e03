"""Build storage components from settings."""

from __future__ import annotations

import logging
from functools import lru_cache

from app.config import Settings, get_settings
from app.core.firebase import get_firestore_client
from app.jobs.models import JobState
from app.storage.cache import TTLCache
from app.storage.file_jobs_repo import FileJobsRepository
from app.storage.firestore_jobs_repo import FirestoreBatchProjectsRepository, FirestoreJobsRepository
from app.storage.jobs_repo import BatchProjectsRepository, InMemoryBatchProjectsRepository, InMemoryJobsRepository, JobsRepository
from app.storage.outputs import OutputStore
from app.storage.state_store import JobStateStore

logger = logging.getLogger(__name__)


def _build_jobs_repo(settings: Settings) -> JobsRepository:
  if settings.job_store == "memory":
    return InMemoryJobsRepository()

  if settings.job_store == "firestore":
    client = get_firestore_client()
    if client is None:
      raise RuntimeError("DSX_JOB_STORE=firestore but Firestore is not configured (set FIREBASE_PROJECT_ID).")
    return FirestoreJobsRepository(client)

  return FileJobsRepository(settings.status_dir)


def build_state_store(settings: Settings) -> JobStateStore:
  """Assemble the job state store for the configured backend."""
  cache: TTLCache[JobState] = TTLCache(settings.cache_ttl_seconds)
  store = JobStateStore(_build_jobs_repo(settings), cache=cache, outputs=build_output_store(settings), prune_after_seconds=settings.prune_after_seconds, placeholder_jobs_enabled=settings.placeholder_jobs_enabled)
  logger.info("Job state store ready backend=%s ttl=%ss", settings.job_store, settings.cache_ttl_seconds)
  return store


def build_output_store(settings: Settings) -> OutputStore:
  return OutputStore(settings.output_dir)


def build_batch_repo(settings: Settings) -> BatchProjectsRepository:
  """Return the Firestore batch repository when Firestore is the job backend."""
  if settings.job_store == "firestore":
    client = get_firestore_client()
    if client is not None:
      return FirestoreBatchProjectsRepository(client)
  return InMemoryBatchProjectsRepository()


@lru_cache(maxsize=1)
def get_state_store() -> JobStateStore:
  """Process-wide store so the cache and per-job locks are shared across requests."""
  return build_state_store(get_settings())


@lru_cache(maxsize=1)
def get_output_store() -> OutputStore:
  return build_output_store(get_settings())


@lru_cache(maxsize=1)
def get_batch_repo() -> BatchProjectsRepository:
  return build_batch_repo(get_settings())
