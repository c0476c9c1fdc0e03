"""Router for document upload, batch and artifact endpoints."""

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, Query, Response, UploadFile, status

from app.api.deps import get_batch_orchestrator, get_document_pipeline
from app.api.models import AnalyzeDocumentResponse, BatchProcessResponse, OutputFormat, ProcessDocumentResponse, SplitDocumentResponse
from app.config import Settings, get_settings
from app.core.security import get_current_uid
from app.jobs.batch import BatchOrchestrator
from app.jobs.pipeline import DocumentPipeline
from app.services import documents as document_service
from app.storage.factory import get_output_store, get_state_store
from app.storage.outputs import OutputStore
from app.storage.state_store import JobStateStore

router = APIRouter()

# Define file and form defaults once to avoid inline function calls.
FILE_FIELD = File(...)
FILES_FIELD = File(...)
USER_ID_FIELD = Form(None, alias="userId")
JOB_ID_FIELD = Form(None, alias="jobId")
CHUNK_SIZE_FIELD = Form(None, alias="chunkSize")
OVERLAP_FIELD = Form(None)
OUTPUT_FORMAT_FIELD = Form(None, alias="outputFormat")
CLASS_FILTER_FIELD = Form(None, alias="classFilter")
CREDITS_FIELD = Form(None, alias="creditsRemaining", ge=0)
CONCURRENCY_FIELD = Form(None)
NUM_PARTS_FIELD = Form(2, alias="numParts")


@router.post("/process-document", response_model=ProcessDocumentResponse, status_code=status.HTTP_202_ACCEPTED)
async def process_document(  # noqa: B008
  background_tasks: BackgroundTasks,
  file: UploadFile = FILE_FIELD,
  user_id: str | None = USER_ID_FIELD,
  job_id: str | None = JOB_ID_FIELD,
  chunk_size: int | None = CHUNK_SIZE_FIELD,
  overlap: int | None = OVERLAP_FIELD,
  output_format: OutputFormat | None = OUTPUT_FORMAT_FIELD,
  class_filter: str | None = CLASS_FILTER_FIELD,
  credits_remaining: int | None = CREDITS_FIELD,
  settings: Settings = Depends(get_settings),  # noqa: B008
  store: JobStateStore = Depends(get_state_store),  # noqa: B008
  pipeline: DocumentPipeline = Depends(get_document_pipeline),  # noqa: B008
  current_uid: str | None = Depends(get_current_uid),  # noqa: B008
) -> ProcessDocumentResponse:
  """Upload a document and process it in the background."""
  options = document_service.build_options(settings, chunk_size=chunk_size, overlap=overlap, output_format=output_format, class_filter=class_filter)
  data = await file.read()
  return await document_service.start_document_job(
    file_name=file.filename or "document.txt",
    data=data,
    user_id=user_id,
    job_id=job_id,
    options=options,
    credits_remaining=settings.default_credits if credits_remaining is None else credits_remaining,
    store=store,
    pipeline=pipeline,
    background_tasks=background_tasks,
    current_uid=current_uid,
  )


@router.post("/batch-process", response_model=BatchProcessResponse, status_code=status.HTTP_202_ACCEPTED)
async def batch_process(  # noqa: B008
  background_tasks: BackgroundTasks,
  files: list[UploadFile] = FILES_FIELD,
  user_id: str | None = USER_ID_FIELD,
  concurrency: int | None = CONCURRENCY_FIELD,
  chunk_size: int | None = CHUNK_SIZE_FIELD,
  overlap: int | None = OVERLAP_FIELD,
  output_format: OutputFormat | None = OUTPUT_FORMAT_FIELD,
  class_filter: str | None = CLASS_FILTER_FIELD,
  settings: Settings = Depends(get_settings),  # noqa: B008
  orchestrator: BatchOrchestrator = Depends(get_batch_orchestrator),  # noqa: B008
  current_uid: str | None = Depends(get_current_uid),  # noqa: B008
) -> BatchProcessResponse:
  """Upload several documents and process them with a bounded worker pool."""
  options = document_service.build_options(settings, chunk_size=chunk_size, overlap=overlap, output_format=output_format, class_filter=class_filter)
  uploads = [(upload.filename or f"document-{index + 1}.txt", await upload.read()) for index, upload in enumerate(files)]
  return await document_service.start_batch(uploads=uploads, user_id=user_id, concurrency=concurrency, options=options, orchestrator=orchestrator, settings=settings, background_tasks=background_tasks, current_uid=current_uid)


@router.post("/split-document", response_model=SplitDocumentResponse)
async def split_document(  # noqa: B008
  file: UploadFile = FILE_FIELD,
  num_parts: int = NUM_PARTS_FIELD,
  user_id: str | None = USER_ID_FIELD,
  outputs: OutputStore = Depends(get_output_store),  # noqa: B008
  current_uid: str | None = Depends(get_current_uid),  # noqa: B008
) -> SplitDocumentResponse:
  """Split a PDF into roughly equal page ranges stored for the requesting user."""
  data = await file.read()
  return await document_service.split_document(file_name=file.filename or "document.pdf", data=data, num_parts=num_parts, user_id=user_id, outputs=outputs, current_uid=current_uid)


@router.get("/split-parts/{part_file_name}")
async def download_split_part(  # noqa: B008
  part_file_name: str,
  user_id: str | None = Query(default=None, alias="userId"),
  outputs: OutputStore = Depends(get_output_store),  # noqa: B008
  current_uid: str | None = Depends(get_current_uid),  # noqa: B008
) -> Response:
  """Download one PDF part produced by /split-document."""
  return await document_service.download_split_part(part_file_name=part_file_name, user_id=user_id, outputs=outputs, current_uid=current_uid)


@router.post("/analyze-document", response_model=AnalyzeDocumentResponse)
async def analyze_document(file: UploadFile = FILE_FIELD, settings: Settings = Depends(get_settings)) -> AnalyzeDocumentResponse:  # noqa: B008
  """Estimate chunks, credits and time for a document before processing it."""
  data = await file.read()
  return await document_service.analyze_document(file_name=file.filename or "document.txt", data=data, settings=settings)


@router.get("/outputs/{job_id}")
async def download_output(  # noqa: B008
  job_id: str,
  user_id: str | None = Query(default=None, alias="userId"),
  store: JobStateStore = Depends(get_state_store),  # noqa: B008
  outputs: OutputStore = Depends(get_output_store),  # noqa: B008
  current_uid: str | None = Depends(get_current_uid),  # noqa: B008
) -> Response:
  """Download the generated training data of a completed job."""
  return await document_service.download_output(job_id=job_id, user_id=user_id, store=store, outputs=outputs, current_uid=current_uid)
