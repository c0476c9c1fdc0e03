"""Firestore-backed repositories for processing jobs and batch projects."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from google.cloud import firestore
from google.cloud.firestore import Client as FirestoreClient
from google.cloud.firestore_v1.base_query import FieldFilter

from app.jobs.models import JobState
from app.storage.errors import CancelledElsewhereError, StaleProgressError

logger = logging.getLogger(__name__)

JOBS_COLLECTION = "processingJobs"
BATCH_COLLECTION = "batchProjects"


class FirestoreJobsRepository:
  """Persist job records in the processingJobs collection, keyed by job id."""

  def __init__(self, client: FirestoreClient, collection: str = JOBS_COLLECTION) -> None:
    self._client = client
    self._collection = collection

  def _ref(self, job_id: str) -> Any:
    return self._client.collection(self._collection).document(job_id)

  def _get(self, job_id: str) -> JobState | None:
    snapshot = self._ref(job_id).get()
    if not snapshot.exists:
      return None
    return JobState.from_record(snapshot.to_dict() or {})

  def _save(self, state: JobState) -> None:
    record = state.to_record()
    ref = self._ref(state.job_id)

    @firestore.transactional
    def _apply(transaction: Any) -> None:
      # Another instance may have cancelled or advanced the job since it was read.
      snapshot = ref.get(transaction=transaction)
      if snapshot.exists:
        current = snapshot.to_dict() or {}
        if current.get("status") == "cancelled" and record["status"] != "cancelled":
          raise CancelledElsewhereError(state.job_id)
        stored = int(current.get("processedChunks") or 0)
        if record["processedChunks"] < stored:
          raise StaleProgressError(state.job_id, stored, record["processedChunks"])
      transaction.set(ref, record)

    _apply(self._client.transaction())

  def _find(self, user_id: str, file_name: str) -> JobState | None:
    query = self._client.collection(self._collection).where(filter=FieldFilter("userId", "==", user_id)).where(filter=FieldFilter("fileName", "==", file_name))
    records = [snapshot.to_dict() or {} for snapshot in query.stream()]
    if not records:
      return None
    # Sort client side to avoid requiring a composite index.
    return JobState.from_record(max(records, key=lambda record: record.get("updatedAt") or ""))

  def _list_stale(self, updated_before: str) -> list[JobState]:
    query = self._client.collection(self._collection).where(filter=FieldFilter("updatedAt", "<", updated_before))
    return [JobState.from_record(snapshot.to_dict() or {}) for snapshot in query.stream()]

  async def get_job(self, job_id: str) -> JobState | None:
    return await asyncio.to_thread(self._get, job_id)

  async def save_job(self, state: JobState) -> None:
    await asyncio.to_thread(self._save, state)

  async def delete_job(self, job_id: str) -> None:
    await asyncio.to_thread(self._ref(job_id).delete)

  async def find_job(self, user_id: str, file_name: str) -> JobState | None:
    return await asyncio.to_thread(self._find, user_id, file_name)

  async def list_stale(self, updated_before: str) -> list[JobState]:
    return await asyncio.to_thread(self._list_stale, updated_before)


class FirestoreBatchProjectsRepository:
  """Persist batch summaries in the batchProjects collection."""

  def __init__(self, client: FirestoreClient, collection: str = BATCH_COLLECTION) -> None:
    self._client = client
    self._collection = collection

  def _save(self, batch_id: str, record: dict[str, Any]) -> None:
    self._client.collection(self._collection).document(batch_id).set(record)

  async def save_batch(self, batch_id: str, record: dict[str, Any]) -> None:
    await asyncio.to_thread(self._save, batch_id, record)
    logger.info("Saved batch project %s", batch_id)
