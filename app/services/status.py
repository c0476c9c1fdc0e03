import logging
import time

from fastapi import HTTPException, status

from app.api.models import CancelJobRequest, CancelJobResponse, JobStatusResponse, StatusUpdateRequest, StatusUpdateResponse
from app.config import Settings
from app.core.security import ensure_user_access
from app.jobs.models import JobState
from app.storage.state_store import JobStateStore, resolve_job_key

logger = logging.getLogger(__name__)

_JOB_NOT_FOUND_MSG = "Job not found."
_ACCESS_DENIED_MSG = "Access denied."


def _require_identity(user_id: str | None, job_id: str | None, file_name: str | None) -> str:
  """Validate that the request names a user and a job; return the user id."""
  if not user_id:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="userId is required.")
  if not job_id and not file_name:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Either jobId or fileName is required.")
  return user_id


def job_status_from_state(state: JobState, settings: Settings, *, now: float | None = None) -> JobStatusResponse:
  """Convert a stored job into the polling payload, recomputing isActive on every read."""
  now = time.time() if now is None else now
  return JobStatusResponse(
    job_id=state.job_id,
    status=state.status,
    file_name=state.file_name,
    processed_chunks=state.processed_chunks,
    total_chunks=state.total_chunks,
    failed_chunks=state.failed_chunks,
    progress=state.progress,
    is_active=state.is_active(now, settings.stall_after_seconds),
    credits_used=state.credits_used,
    credits_remaining=state.credits_remaining,
    last_progress_change=state.last_progress_change,
    updated_at=state.updated_at,
    result=state.result if state.status == "complete" else None,
    error_message=state.error_message if state.status == "error" else None,
    placeholder=state.placeholder,
  )


async def get_job_status(store: JobStateStore, settings: Settings, *, user_id: str | None, job_id: str | None, file_name: str | None, current_uid: str | None) -> JobStatusResponse:
  """Fetch the latest job state for a polling client."""
  user_id = _require_identity(user_id, job_id, file_name)
  ensure_user_access(user_id, current_uid)

  state = await store.lookup(user_id, job_id=job_id, file_name=file_name)
  if state is None:
    state = store.placeholder_for(user_id, job_id=job_id, file_name=file_name)
  if state is None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail={"status": "not_found", "jobId": job_id, "fileName": file_name})

  # Never reveal another user's job, even when the key was guessed.
  if state.user_id != user_id:
    logger.warning("User %s requested job %s owned by another user", user_id, state.job_id)
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=_ACCESS_DENIED_MSG)

  return job_status_from_state(state, settings)


async def update_job_status(store: JobStateStore, request: StatusUpdateRequest, *, current_uid: str | None) -> StatusUpdateResponse:
  """Apply a progress report, creating the job on first contact."""
  user_id = _require_identity(request.user_id, request.job_id, request.file_name)
  ensure_user_access(user_id, current_uid)
  job_key = resolve_job_key(user_id, request.job_id, request.file_name)

  existing = await store.read(job_key)
  if existing is not None and existing.user_id != user_id:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=_ACCESS_DENIED_MSG)

  # StaleProgressError / InvalidTransitionError surface as 409 via the app exception handler.
  state = await store.upsert(
    job_key,
    user_id=user_id,
    file_name=request.file_name,
    document_id=request.document_id,
    status=request.status,
    processed_chunks=request.processed_chunks,
    total_chunks=request.total_chunks,
    credits_used=request.credits_used,
    credits_remaining=request.credits_remaining,
    result=request.result,
    error_message=request.error_message,
  )
  logger.info("Status update job=%s status=%s progress=%s/%s", state.job_id, state.status, state.processed_chunks, state.total_chunks)
  return StatusUpdateResponse(job_id=state.job_id)


async def cancel_job(store: JobStateStore, request: CancelJobRequest, *, current_uid: str | None) -> CancelJobResponse:
  """Cancel a job; repeated or late cancels succeed without changing a terminal job."""
  if not request.user_id or not request.job_id:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Both jobId and userId are required.")
  ensure_user_access(request.user_id, current_uid)

  existing = await store.read(request.job_id)
  if existing is None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_JOB_NOT_FOUND_MSG)
  if existing.user_id != request.user_id:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=_ACCESS_DENIED_MSG)

  state = await store.cancel(request.job_id)
  if state is None:
    # Pruned between the read and the cancel.
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_JOB_NOT_FOUND_MSG)

  message = "Job cancelled." if state.status == "cancelled" else f"Job already {state.status}; nothing to cancel."
  return CancelJobResponse(job_id=state.job_id, status=state.status, message=message)
