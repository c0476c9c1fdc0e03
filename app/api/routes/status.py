import logging

from fastapi import APIRouter, Depends, Query

from app.api.models import CancelJobRequest, CancelJobResponse, JobStatusResponse, StatusUpdateRequest, StatusUpdateResponse
from app.config import Settings, get_settings
from app.core.security import get_current_uid
from app.services import status as status_service
from app.storage.factory import get_state_store
from app.storage.state_store import JobStateStore

router = APIRouter()
logger = logging.getLogger("app.api.routes.status")


@router.get("/status", response_model=JobStatusResponse)
async def get_status(  # noqa: B008
  user_id: str | None = Query(default=None, alias="userId"),
  job_id: str | None = Query(default=None, alias="jobId"),
  file_name: str | None = Query(default=None, alias="fileName"),
  settings: Settings = Depends(get_settings),  # noqa: B008
  store: JobStateStore = Depends(get_state_store),  # noqa: B008
  current_uid: str | None = Depends(get_current_uid),  # noqa: B008
) -> JobStatusResponse:
  """Poll the progress of a processing job."""
  return await status_service.get_job_status(store, settings, user_id=user_id, job_id=job_id, file_name=file_name, current_uid=current_uid)


@router.post("/status", response_model=StatusUpdateResponse)
async def post_status(  # noqa: B008
  request: StatusUpdateRequest,
  store: JobStateStore = Depends(get_state_store),  # noqa: B008
  current_uid: str | None = Depends(get_current_uid),  # noqa: B008
) -> StatusUpdateResponse:
  """Record a progress update for a job."""
  return await status_service.update_job_status(store, request, current_uid=current_uid)


@router.post("/cancel-job", response_model=CancelJobResponse)
async def cancel_job(  # noqa: B008
  request: CancelJobRequest,
  store: JobStateStore = Depends(get_state_store),  # noqa: B008
  current_uid: str | None = Depends(get_current_uid),  # noqa: B008
) -> CancelJobResponse:
  """Cancel a running job."""
  return await status_service.cancel_job(store, request, current_uid=current_uid)
