"""Run a document chunk through the extract, classify and duplicate models."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import TypeVar

from app.ai.prompts import CLASSIFICATION_SCHEMA, CLASSIFIER_SYSTEM_PROMPT, DUPLICATOR_SYSTEM_PROMPT, EXTRACTOR_SYSTEM_PROMPT, classification_request
from app.ai.providers.base import AIModel, StructuredOutputError
from app.config import Settings
from app.jobs.chunking import DocumentChunk
from app.jobs.models import ChunkResult, ProcessingOptions
from app.jobs.quality import filter_clauses

T = TypeVar("T")
logger = logging.getLogger(__name__)

_LABELS = {"critical": "Critical", "important": "Important", "standard": "Standard"}


class StageError(Exception):
  """A model stage failed or exceeded its deadline."""

  def __init__(self, stage: str, message: str) -> None:
    super().__init__(f"{stage} failed: {message}")
    self.stage = stage


@dataclass(frozen=True)
class StageTimeouts:
  """Hard per-call deadlines in seconds."""

  extraction: float = 30.0
  classification: float = 15.0
  variant_generation: float = 20.0
  chunk: float = 120.0

  @classmethod
  def from_settings(cls, settings: Settings) -> StageTimeouts:
    return cls(extraction=settings.extraction_timeout_seconds, classification=settings.classification_timeout_seconds, variant_generation=settings.variant_timeout_seconds, chunk=settings.chunk_timeout_seconds)


def parse_class_filter(raw: str) -> frozenset[str] | None:
  """Return the allowed labels for a filter like 'critical_important', or None for 'all'."""
  normalized = (raw or "all").strip().lower()
  if normalized == "all":
    return None
  return frozenset(part for part in normalized.split("_") if part)


def normalize_classification(raw: object) -> str:
  """Map a model answer onto the fixed taxonomy, defaulting to Unclassified."""
  if not isinstance(raw, str):
    return "Unclassified"
  return _LABELS.get(raw.strip().lower(), "Unclassified")


def parse_extracted_clauses(content: str) -> list[str]:
  """One clause per line; blank lines and repeats are dropped."""
  seen: set[str] = set()
  clauses: list[str] = []
  for line in content.splitlines():
    clause = line.strip()
    if clause and clause not in seen:
      seen.add(clause)
      clauses.append(clause)
  return clauses


class PipelineStageCaller:
  """Calls the three pipeline models for a chunk and reports a ChunkResult."""

  def __init__(self, *, extractor: AIModel, classifier: AIModel, duplicator: AIModel, timeouts: StageTimeouts | None = None) -> None:
    self._extractor = extractor
    self._classifier = classifier
    self._duplicator = duplicator
    self._timeouts = timeouts or StageTimeouts()

  async def _call_stage(self, stage: str, call: Awaitable[T], timeout: float) -> T:
    try:
      return await asyncio.wait_for(call, timeout=timeout)
    except TimeoutError as exc:
      raise StageError(stage, f"timed out after {timeout:g}s") from exc
    except StructuredOutputError:
      raise
    except Exception as exc:  # noqa: BLE001
      logger.warning("Stage %s raised %s: %s", stage, type(exc).__name__, exc)
      raise StageError(stage, f"{type(exc).__name__}: {exc}") from exc

  async def extract(self, chunk: DocumentChunk) -> list[str]:
    response = await self._call_stage("extraction", self._extractor.generate(EXTRACTOR_SYSTEM_PROMPT, chunk.text), self._timeouts.extraction)
    return parse_extracted_clauses(response.content)

  async def classify(self, clause: str) -> str:
    call = self._classifier.generate_structured(CLASSIFIER_SYSTEM_PROMPT, classification_request(clause), CLASSIFICATION_SCHEMA)
    try:
      response = await self._call_stage("classification", call, self._timeouts.classification)
    except StructuredOutputError as exc:
      logger.info("Unparseable classification, using Unclassified: %s", exc)
      return "Unclassified"
    return normalize_classification(response.content.get("classification"))

  async def duplicate(self, clause: str, max_variants: int) -> list[str]:
    response = await self._call_stage("variant_generation", self._duplicator.generate(DUPLICATOR_SYSTEM_PROMPT, clause, n=max_variants), self._timeouts.variant_generation)
    variants: list[str] = []
    for choice in response.choices or [response.content]:
      text = choice.strip()
      if text and text not in variants:
        variants.append(text)
    return variants[:max_variants]

  async def run_pipeline(self, chunk: DocumentChunk, options: ProcessingOptions | None = None) -> ChunkResult:
    """Run all stages for a chunk; failures come back as an unsuccessful ChunkResult."""
    options = options or ProcessingOptions()
    try:
      return await asyncio.wait_for(self._run(chunk, options), timeout=self._timeouts.chunk)
    except TimeoutError:
      logger.warning("Chunk %d exceeded the %gs chunk deadline", chunk.index, self._timeouts.chunk)
      return ChunkResult(index=chunk.index, success=False, error=f"chunk timed out after {self._timeouts.chunk:g}s", stage="chunk")

  async def _run(self, chunk: DocumentChunk, options: ProcessingOptions) -> ChunkResult:
    allowed = parse_class_filter(options.class_filter)
    clauses: list[str] = []
    classifications: dict[str, str] = {}
    variants: dict[str, list[str]] = {}
    try:
      clauses = filter_clauses(await self.extract(chunk)).valid

      for clause in clauses:
        classifications[clause] = await self.classify(clause)

      for clause in clauses:
        if allowed is not None and classifications[clause].lower() not in allowed:
          continue
        variants[clause] = await self.duplicate(clause, options.max_variants)
    except StageError as exc:
      logger.warning("Chunk %d failed at %s: %s", chunk.index, exc.stage, exc)
      return ChunkResult(index=chunk.index, success=False, clauses=clauses, classifications=classifications, variants=variants, error=str(exc), stage=exc.stage)

    return ChunkResult(index=chunk.index, success=True, clauses=clauses, classifications=classifications, variants=variants)
