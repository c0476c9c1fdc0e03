"""Process one document end to end: chunk, run stages, track progress, save output."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable

from app.ai.stages import PipelineStageCaller
from app.jobs.chunking import split_text
from app.jobs.formatters import format_entries
from app.jobs.models import ChunkResult, DocumentResult, DocumentStats, ProcessingOptions
from app.jobs.progress import JobCanceledError, JobProgressTracker
from app.storage.outputs import OutputStore, output_name_for
from app.storage.state_store import JobStateStore

logger = logging.getLogger(__name__)


class DocumentProcessingError(Exception):
  """The document produced no usable output or ran past its deadline."""

  def __init__(self, message: str, stats: DocumentStats | None = None) -> None:
    super().__init__(message)
    self.stats = stats or DocumentStats()


def summarize(results: Iterable[ChunkResult]) -> DocumentStats:
  stats = DocumentStats()
  for result in results:
    stats.total_chunks += 1
    if not result.success:
      stats.failed_chunks += 1
    stats.extracted_clauses += len(result.clauses)
    stats.classified_clauses += len(result.classifications)
    stats.generated_variants += sum(len(items) for items in result.variants.values())
    for label in result.classifications.values():
      stats.classification_stats[label] = stats.classification_stats.get(label, 0) + 1
  return stats


def build_entries(results: Iterable[ChunkResult]) -> list[dict[str, str]]:
  """Flatten chunk results into {input, classification, output} rows in chunk order."""
  entries: list[dict[str, str]] = []
  for result in sorted(results, key=lambda item: item.index):
    for clause, variants in result.variants.items():
      label = result.classifications.get(clause, "Unclassified")
      entries.extend({"input": clause, "classification": label, "output": variant} for variant in variants)
  return entries


class DocumentPipeline:
  """Runs chunks sequentially through the stage caller and records progress after each one."""

  def __init__(self, *, stage_caller: PipelineStageCaller, store: JobStateStore, outputs: OutputStore, document_timeout: float = 600.0) -> None:
    self._stage_caller = stage_caller
    self._store = store
    self._outputs = outputs
    self._document_timeout = document_timeout

  async def process(self, job_id: str, text: str, options: ProcessingOptions, *, starting_credits: int | None = None) -> DocumentResult:
    """Process a document; raises DocumentProcessingError or JobCanceledError on failure."""
    tracker = JobProgressTracker(job_id=job_id, store=self._store, starting_credits=starting_credits)
    try:
      return await asyncio.wait_for(self._process(job_id, text, options, tracker), timeout=self._document_timeout)
    except TimeoutError as exc:
      message = f"Document processing timed out after {self._document_timeout:g}s"
      await self._record_failure(tracker, message)
      raise DocumentProcessingError(message) from exc

  async def _record_failure(self, tracker: JobProgressTracker, message: str) -> None:
    try:
      await tracker.fail(message)
    except JobCanceledError:
      logger.info("Not recording failure for cancelled job: %s", message)

  async def _process(self, job_id: str, text: str, options: ProcessingOptions, tracker: JobProgressTracker) -> DocumentResult:
    chunks = split_text(text, options.chunk_size, options.overlap)
    if not chunks:
      await tracker.fail("Document contains no text.")
      raise DocumentProcessingError("Document contains no text.")

    await tracker.start(len(chunks))
    logger.info("Job %s split into %d chunks (size=%d overlap=%d)", job_id, len(chunks), options.chunk_size, options.overlap)

    results: list[ChunkResult] = []
    for chunk in chunks:
      # Stop issuing stage calls as soon as a cancel is visible.
      await tracker.ensure_active()
      result = await self._stage_caller.run_pipeline(chunk, options)
      results.append(result)
      await tracker.chunk_done(result)

    stats = summarize(results)
    if stats.failed_chunks == len(chunks):
      message = f"All {len(chunks)} chunks failed; first error: {results[0].error}"
      await tracker.fail(message)
      raise DocumentProcessingError(message, stats)

    entries = build_entries(results)
    output_name = output_name_for(job_id, options.output_format)
    await self._outputs.write(output_name, format_entries(entries, options.output_format))

    summary = {
      "outputName": output_name,
      "format": options.output_format,
      "entryCount": len(entries),
      "stats": stats.to_dict(),
      "chunks": [{"index": item.index, "success": item.success, "error": item.error, "stage": item.stage} for item in results],
    }
    try:
      await tracker.complete(summary)
    except JobCanceledError:
      # Cancellation landed first; the artifact must not outlive the job.
      await self._outputs.delete(output_name)
      raise

    return DocumentResult(job_id=job_id, stats=stats, entries=entries, chunk_results=results, output_name=output_name)
