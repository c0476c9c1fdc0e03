"""Run many documents through the pipeline with a bounded worker pool."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from app.jobs.extraction import UnsupportedDocumentError, extract_text, file_extension, require_min_text
from app.jobs.formatters import combine_jsonl, tag_source
from app.jobs.models import DocumentStats, JobState, ProcessingOptions, format_timestamp
from app.jobs.pipeline import DocumentPipeline, DocumentProcessingError
from app.jobs.progress import JobCanceledError
from app.storage.jobs_repo import BatchProjectsRepository
from app.storage.outputs import OutputStore
from app.storage.state_store import JobStateStore
from app.utils.ids import generate_batch_id

logger = logging.getLogger(__name__)

BATCH_FILE_TYPES = frozenset({"txt", "pdf"})


@dataclass(frozen=True)
class BatchDocument:
  """An uploaded file, or pre-extracted text when `text` is set."""

  file_name: str
  data: bytes = b""
  text: str | None = None


@dataclass
class DocumentOutcome:
  file_name: str
  job_id: str
  completed: bool = True
  success: bool = False
  error: str | None = None
  stats: DocumentStats | None = None
  entries: list[dict[str, str]] = field(default_factory=list)

  def to_dict(self) -> dict[str, Any]:
    return {"fileName": self.file_name, "jobId": self.job_id, "completed": self.completed, "success": self.success, "error": self.error, "stats": self.stats.to_dict() if self.stats else None}


@dataclass
class BatchResult:
  batch_id: str
  total_documents: int
  successful_documents: int
  total_variants: int
  outcomes: list[DocumentOutcome]
  stats: DocumentStats
  output_name: str | None = None

  @property
  def processed_files(self) -> int:
    return self.successful_documents

  def to_dict(self) -> dict[str, Any]:
    return {
      "batchId": self.batch_id,
      "totalDocuments": self.total_documents,
      "successfulDocuments": self.successful_documents,
      "totalVariants": self.total_variants,
      "processedFiles": self.processed_files,
      "stats": self.stats.to_dict(),
      "outputName": self.output_name,
      "documents": [outcome.to_dict() for outcome in self.outcomes],
    }


class BatchOrchestrator:
  """Processes documents concurrently; a failed document never stops its siblings."""

  def __init__(self, *, pipeline: DocumentPipeline, store: JobStateStore, outputs: OutputStore, batch_repo: BatchProjectsRepository | None = None, batch_timeout: float = 3600.0) -> None:
    self._pipeline = pipeline
    self._store = store
    self._outputs = outputs
    self._batch_repo = batch_repo
    self._batch_timeout = batch_timeout

  async def run_batch(self, documents: Sequence[BatchDocument], concurrency_limit: int = 3, *, user_id: str, batch_id: str | None = None, options: ProcessingOptions | None = None) -> BatchResult:
    """Process every document and return the aggregated result."""
    if concurrency_limit < 1:
      raise ValueError("concurrency_limit must be at least 1.")

    batch_id = batch_id or generate_batch_id()
    options = options or ProcessingOptions()
    # Semaphore waiters are served in arrival order, so admission stays FIFO.
    semaphore = asyncio.Semaphore(concurrency_limit)
    outcomes = [DocumentOutcome(file_name=document.file_name, job_id=f"{batch_id}-{index + 1}", completed=False) for index, document in enumerate(documents)]
    logger.info("Batch %s started: %d documents, concurrency=%d", batch_id, len(documents), concurrency_limit)

    async def _worker(index: int) -> None:
      async with semaphore:
        await self._process_document(documents[index], outcomes[index], user_id=user_id, batch_id=batch_id, options=options)

    tasks = [asyncio.create_task(_worker(index)) for index in range(len(documents))]
    if tasks:
      _, pending = await asyncio.wait(tasks, timeout=self._batch_timeout)
      for task in pending:
        task.cancel()
      if pending:
        await asyncio.gather(*pending, return_exceptions=True)
        await self._record_timeouts(outcomes)

    result = self._aggregate(batch_id, outcomes)
    if result.successful_documents:
      entries = [entry for outcome in outcomes if outcome.success for entry in tag_source(outcome.entries, outcome.file_name)]
      result.output_name = await self._outputs.write(f"batch-{batch_id}.jsonl", combine_jsonl(entries))

    if self._batch_repo is not None:
      await self._batch_repo.save_batch(batch_id, {**result.to_dict(), "userId": user_id, "createdAt": format_timestamp(time.time())})

    logger.info("Batch %s finished: %d/%d documents succeeded, %d variants", batch_id, result.successful_documents, result.total_documents, result.total_variants)
    return result

  async def _process_document(self, document: BatchDocument, outcome: DocumentOutcome, *, user_id: str, batch_id: str, options: ProcessingOptions) -> None:
    now = format_timestamp(time.time())
    await self._store.create(JobState(job_id=outcome.job_id, user_id=user_id, file_name=document.file_name, batch_id=batch_id, status="uploading", created_at=now, updated_at=now))
    try:
      text = await self._load_text(document)
      result = await self._pipeline.process(outcome.job_id, text, options)
    except (UnsupportedDocumentError, DocumentProcessingError, JobCanceledError) as exc:
      await self._mark_failed(outcome, str(exc) or type(exc).__name__)
      return
    except Exception as exc:  # noqa: BLE001
      logger.exception("Unexpected failure processing %s in batch %s", document.file_name, batch_id)
      await self._mark_failed(outcome, f"{type(exc).__name__}: {exc}")
      return

    outcome.completed = True
    outcome.success = True
    outcome.stats = result.stats
    outcome.entries = result.entries

  async def _load_text(self, document: BatchDocument) -> str:
    if document.text is not None:
      return require_min_text(document.text, document.file_name)
    extension = file_extension(document.file_name)
    if extension not in BATCH_FILE_TYPES:
      raise UnsupportedDocumentError(f"{document.file_name}: batch processing accepts only {sorted(BATCH_FILE_TYPES)} files.")
    # PDF parsing is CPU bound; keep it off the event loop.
    text = await asyncio.to_thread(extract_text, document.data, document.file_name)
    return require_min_text(text, document.file_name)

  async def _mark_failed(self, outcome: DocumentOutcome, message: str) -> None:
    logger.warning("Batch document %s failed: %s", outcome.file_name, message)
    outcome.completed = True
    outcome.success = False
    outcome.error = message
    state = await self._store.read(outcome.job_id)
    # The pipeline records its own failures; only fill in jobs it never reached.
    if state is not None and not state.is_terminal:
      await self._store.write(outcome.job_id, status="error", error_message=message)

  async def _record_timeouts(self, outcomes: list[DocumentOutcome]) -> None:
    message = f"Batch timed out after {self._batch_timeout:g}s"
    for outcome in outcomes:
      if not outcome.completed:
        await self._mark_failed(outcome, message)

  @staticmethod
  def _aggregate(batch_id: str, outcomes: list[DocumentOutcome]) -> BatchResult:
    stats = DocumentStats()
    for outcome in outcomes:
      if outcome.success and outcome.stats is not None:
        stats.merge(outcome.stats)
    successful = sum(1 for outcome in outcomes if outcome.success)
    return BatchResult(batch_id=batch_id, total_documents=len(outcomes), successful_documents=successful, total_variants=stats.generated_variants, outcomes=outcomes, stats=stats)
