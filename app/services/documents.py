"""Upload handling for single documents, batches, PDF splitting and estimates."""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import PurePath
from urllib.parse import urlencode

from fastapi import BackgroundTasks, HTTPException, Response, status
from pypdf.errors import PdfReadError

from app.api.models import AnalyzeDocumentResponse, BatchProcessResponse, ProcessDocumentResponse, SplitDocumentResponse, SplitPart
from app.config import Settings
from app.core.security import ensure_user_access
from app.jobs.batch import BatchDocument, BatchOrchestrator
from app.jobs.chunking import split_pdf_bytes, validate_chunk_options
from app.jobs.extraction import UnsupportedDocumentError, count_pdf_pages, estimate_complexity, extract_text, file_extension, require_min_text
from app.jobs.formatters import OUTPUT_FORMATS
from app.jobs.models import JobState, ProcessingOptions, format_timestamp
from app.jobs.pipeline import DocumentPipeline, DocumentProcessingError
from app.jobs.progress import JobCanceledError
from app.storage.outputs import OutputStore, part_name_for, safe_segment
from app.storage.state_store import JobStateStore
from app.utils.ids import generate_batch_id, generate_job_id

logger = logging.getLogger(__name__)

_MEDIA_TYPES = {"csv": "text/csv", "jsonl": "application/x-ndjson"}


def build_options(settings: Settings, *, chunk_size: int | None = None, overlap: int | None = None, output_format: str | None = None, class_filter: str | None = None) -> ProcessingOptions:
  """Merge form values over configured defaults and reject out-of-range values."""
  options = ProcessingOptions(
    chunk_size=settings.chunk_size if chunk_size is None else chunk_size,
    overlap=settings.chunk_overlap if overlap is None else overlap,
    output_format=(output_format or settings.output_format).lower(),
    class_filter=class_filter or settings.class_filter,
    max_variants=settings.max_variants_per_clause,
  )
  try:
    validate_chunk_options(options.chunk_size, options.overlap)
  except ValueError as exc:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
  if options.output_format not in OUTPUT_FORMATS:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unsupported output format: {options.output_format}")
  return options


async def _read_document_text(data: bytes, file_name: str) -> str:
  try:
    text = await asyncio.to_thread(extract_text, data, file_name)
    return require_min_text(text, file_name)
  except UnsupportedDocumentError as exc:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


async def start_document_job(
  *,
  file_name: str,
  data: bytes,
  user_id: str | None,
  job_id: str | None,
  options: ProcessingOptions,
  credits_remaining: int | None,
  store: JobStateStore,
  pipeline: DocumentPipeline,
  background_tasks: BackgroundTasks,
  current_uid: str | None,
) -> ProcessDocumentResponse:
  """Register an upload as a job and schedule its processing."""
  if not user_id:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="userId is required.")
  ensure_user_access(user_id, current_uid)

  text = await _read_document_text(data, file_name)
  job_id = job_id or generate_job_id()
  if await store.read(job_id) is not None:
    raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Job {job_id} already exists.")

  now = format_timestamp(time.time())
  await store.create(JobState(job_id=job_id, user_id=user_id, file_name=file_name, status="uploading", created_at=now, updated_at=now, credits_remaining=credits_remaining))
  background_tasks.add_task(run_document_job, pipeline, store, job_id, text, options, credits_remaining)
  logger.info("Queued job %s for %s (%d chars)", job_id, file_name, len(text))
  return ProcessDocumentResponse(job_id=job_id, status="uploading", estimate=estimate_complexity(text, options.chunk_size))


async def run_document_job(pipeline: DocumentPipeline, store: JobStateStore, job_id: str, text: str, options: ProcessingOptions, starting_credits: int | None = None) -> None:
  """Background entrypoint; the job record carries the outcome."""
  try:
    result = await pipeline.process(job_id, text, options, starting_credits=starting_credits)
  except JobCanceledError:
    logger.info("Job %s stopped after cancellation", job_id)
  except DocumentProcessingError as exc:
    logger.warning("Job %s failed: %s", job_id, exc)
  except Exception as exc:  # noqa: BLE001
    logger.exception("Unexpected failure in job %s", job_id)
    state = await store.read(job_id)
    if state is not None and not state.is_terminal:
      await store.write(job_id, status="error", error_message=f"{type(exc).__name__}: {exc}")
  else:
    logger.info("Job %s complete: %d entries written to %s", job_id, len(result.entries), result.output_name)


async def start_batch(
  *,
  uploads: list[tuple[str, bytes]],
  user_id: str | None,
  concurrency: int | None,
  options: ProcessingOptions,
  orchestrator: BatchOrchestrator,
  settings: Settings,
  background_tasks: BackgroundTasks,
  current_uid: str | None,
) -> BatchProcessResponse:
  """Schedule a batch and return the ids its documents will be tracked under."""
  if not user_id:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="userId is required.")
  if not uploads:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No files provided.")
  ensure_user_access(user_id, current_uid)

  limit = settings.batch_concurrency if concurrency is None else concurrency
  if limit < 1:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="concurrency must be at least 1.")

  batch_id = generate_batch_id()
  documents = [BatchDocument(file_name=name, data=data) for name, data in uploads]
  background_tasks.add_task(run_batch_job, orchestrator, documents, limit, user_id, batch_id, options)
  job_ids = [f"{batch_id}-{index + 1}" for index in range(len(documents))]
  return BatchProcessResponse(batch_id=batch_id, total_documents=len(documents), job_ids=job_ids)


async def run_batch_job(orchestrator: BatchOrchestrator, documents: list[BatchDocument], concurrency: int, user_id: str, batch_id: str, options: ProcessingOptions) -> None:
  try:
    result = await orchestrator.run_batch(documents, concurrency, user_id=user_id, batch_id=batch_id, options=options)
  except Exception:  # noqa: BLE001
    logger.exception("Batch %s aborted", batch_id)
    return
  logger.info("Batch %s produced %s", batch_id, result.output_name or "no output")


async def split_document(*, file_name: str, data: bytes, num_parts: int, user_id: str | None, outputs: OutputStore, current_uid: str | None) -> SplitDocumentResponse:
  """Split a PDF into page ranges and store each part in the user's part folder."""
  if not user_id:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="userId is required.")
  ensure_user_access(user_id, current_uid)
  if file_extension(file_name) != "pdf":
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Only PDF files can be split.")
  if num_parts < 1:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="numParts must be at least 1.")

  # A fresh split id keeps repeated uploads of the same file from replacing each other.
  split_id = generate_batch_id()
  try:
    base_name = f"{split_id}_{safe_segment(PurePath(file_name).stem)}"
    pdf_parts = await asyncio.to_thread(split_pdf_bytes, data, num_parts, base_name)
  except PdfReadError as exc:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Could not read PDF: {exc}") from exc
  except ValueError as exc:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

  parts: list[SplitPart] = []
  for pdf_part in pdf_parts:
    await outputs.write_bytes(part_name_for(user_id, pdf_part.file_name), pdf_part.data)
    # Pages are reported 1-based and inclusive to match what readers show.
    parts.append(
      SplitPart(
        file_name=pdf_part.file_name,
        start_page=pdf_part.part.start_page + 1,
        end_page=pdf_part.part.end_page,
        page_count=pdf_part.part.page_count,
        download_url=f"/api/split-parts/{pdf_part.file_name}?{urlencode({'userId': user_id})}",
      )
    )

  total_pages = sum(part.page_count for part in parts)
  logger.info("Split %s (%d pages) into %d parts split_id=%s user=%s", file_name, total_pages, len(parts), split_id, user_id)
  return SplitDocumentResponse(split_id=split_id, total_pages=total_pages, parts=parts)


async def download_split_part(*, part_file_name: str, user_id: str | None, outputs: OutputStore, current_uid: str | None) -> Response:
  """Return one stored part of an earlier split; users only see their own parts."""
  if not user_id:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="userId is required.")
  ensure_user_access(user_id, current_uid)
  if file_extension(part_file_name) != "pdf" or safe_segment(part_file_name) != part_file_name:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid part name.")

  try:
    content = await outputs.read(part_name_for(user_id, part_file_name))
  except ValueError as exc:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
  if content is None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Part not found.")
  return Response(content=content, media_type="application/pdf", headers={"Content-Disposition": f'attachment; filename="{part_file_name}"'})


async def analyze_document(*, file_name: str, data: bytes, settings: Settings) -> AnalyzeDocumentResponse:
  text = await _read_document_text(data, file_name)
  estimate = estimate_complexity(text, settings.chunk_size)
  pages = await asyncio.to_thread(count_pdf_pages, data) if file_extension(file_name) == "pdf" else None
  return AnalyzeDocumentResponse(
    file_name=file_name,
    characters=estimate["characters"],
    estimated_chunks=estimate["estimatedChunks"],
    estimated_credits=estimate["estimatedCredits"],
    estimated_time_seconds=estimate["estimatedTimeSeconds"],
    pages=pages,
  )


async def download_output(*, job_id: str, user_id: str | None, store: JobStateStore, outputs: OutputStore, current_uid: str | None) -> Response:
  """Return the finished artifact of a completed job."""
  if not user_id:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="userId is required.")
  ensure_user_access(user_id, current_uid)

  state = await store.read(job_id)
  if state is None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found.")
  if state.user_id != user_id:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied.")
  if state.status != "complete" or not state.result:
    raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Job is {state.status}; output is available once it completes.")

  output_name = state.result.get("outputName")
  content = await outputs.read(output_name) if output_name else None
  if content is None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Output not found.")

  media_type = _MEDIA_TYPES.get(file_extension(output_name), "application/octet-stream")
  return Response(content=content, media_type=media_type, headers={"Content-Disposition": f'attachment; filename="{output_name}"'})
