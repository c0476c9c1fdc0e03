"""Domain models for document processing jobs."""

from __future__ import annotations

import calendar
import time
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Literal

JobStatus = Literal["uploading", "processing", "complete", "error", "cancelled"]
Classification = Literal["Critical", "Important", "Standard", "Unclassified"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"complete", "error", "cancelled"})
CLASSIFICATIONS: tuple[str, ...] = ("Critical", "Important", "Standard", "Unclassified")

# Allowed forward transitions; a status may always be rewritten with itself.
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
  "uploading": frozenset({"processing", "error", "cancelled"}),
  "processing": frozenset({"complete", "error", "cancelled"}),
  "complete": frozenset(),
  "error": frozenset(),
  "cancelled": frozenset(),
}

_DATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def format_timestamp(epoch_seconds: float) -> str:
  """Render an epoch timestamp as a UTC ISO-8601 string."""
  return time.strftime(_DATE_FORMAT, time.gmtime(epoch_seconds))


def parse_timestamp(raw: str) -> float:
  """Parse a timestamp produced by format_timestamp back into epoch seconds."""
  return float(calendar.timegm(time.strptime(raw, _DATE_FORMAT)))


@dataclass
class JobState:
  """Represents one document processing job and its progress."""

  job_id: str
  user_id: str
  status: JobStatus
  created_at: str
  updated_at: str
  file_name: str | None = None
  document_id: str | None = None
  batch_id: str | None = None
  processed_chunks: int = 0
  total_chunks: int = 0
  failed_chunks: int = 0
  credits_used: int = 0
  credits_remaining: int | None = None
  last_progress_change: str | None = None
  result: dict[str, Any] | None = None
  error_message: str | None = None
  placeholder: bool = False

  @property
  def progress(self) -> int:
    """Percentage derived from the chunk counters."""
    if self.total_chunks <= 0:
      return 0
    return round(self.processed_chunks / self.total_chunks * 100)

  @property
  def is_terminal(self) -> bool:
    return self.status in TERMINAL_STATUSES

  def is_active(self, now: float, stall_after_seconds: float) -> bool:
    """Return False when a processing job has not advanced within the stall window."""
    if self.status != "processing":
      return True
    reference = self.last_progress_change or self.updated_at
    return now - parse_timestamp(reference) <= stall_after_seconds

  def to_record(self) -> dict[str, Any]:
    """Serialize into the camelCase shape shared by the file and Firestore records."""
    return {_to_camel(key): value for key, value in asdict(self).items()}

  @classmethod
  def from_record(cls, record: dict[str, Any]) -> JobState:
    """Build a state from a stored record, ignoring unknown keys."""
    known = {item.name for item in fields(cls)}
    values = {_to_snake(key): value for key, value in record.items()}
    return cls(**{key: value for key, value in values.items() if key in known})


@dataclass(frozen=True)
class ChunkResult:
  """Outcome of running one chunk through the three model stages."""

  index: int
  success: bool
  clauses: list[str] = field(default_factory=list)
  classifications: dict[str, str] = field(default_factory=dict)
  variants: dict[str, list[str]] = field(default_factory=dict)
  error: str | None = None
  stage: str | None = None


@dataclass(frozen=True)
class ProcessingOptions:
  """User-selectable options applied to a single document."""

  chunk_size: int = 1000
  overlap: int = 100
  output_format: str = "jsonl"
  class_filter: str = "all"
  max_variants: int = 3


@dataclass
class DocumentStats:
  """Counters reported for a processed document or an entire batch."""

  total_chunks: int = 0
  failed_chunks: int = 0
  extracted_clauses: int = 0
  classified_clauses: int = 0
  generated_variants: int = 0
  classification_stats: dict[str, int] = field(default_factory=lambda: dict.fromkeys(CLASSIFICATIONS, 0))

  def merge(self, other: DocumentStats) -> None:
    """Add another document's counters into this one."""
    self.total_chunks += other.total_chunks
    self.failed_chunks += other.failed_chunks
    self.extracted_clauses += other.extracted_clauses
    self.classified_clauses += other.classified_clauses
    self.generated_variants += other.generated_variants
    for label, count in other.classification_stats.items():
      self.classification_stats[label] = self.classification_stats.get(label, 0) + count

  def to_dict(self) -> dict[str, Any]:
    return {_to_camel(key): value for key, value in asdict(self).items()}


@dataclass
class DocumentResult:
  """Final product of processing one document."""

  job_id: str
  stats: DocumentStats
  entries: list[dict[str, str]]
  chunk_results: list[ChunkResult]
  output_name: str | None = None


def _to_camel(name: str) -> str:
  head, *rest = name.split("_")
  return head + "".join(part.title() for part in rest)


def _to_snake(name: str) -> str:
  return "".join(f"_{char.lower()}" if char.isupper() else char for char in name)
