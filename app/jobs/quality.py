"""Clause quality filters applied between extraction and classification."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field

MIN_CLAUSE_LENGTH = 10
MAX_CLAUSE_LENGTH = 1500
SIMILARITY_THRESHOLD = 0.85

_WORD_SPLIT = re.compile(r"\W+")


def word_set(text: str) -> frozenset[str]:
  return frozenset(word for word in _WORD_SPLIT.split(text.lower()) if word)


def jaccard_similarity(first: str, second: str) -> float:
  """Word-set Jaccard similarity; 0.0 when either side has no words."""
  words_a = word_set(first)
  words_b = word_set(second)
  if not words_a or not words_b:
    return 0.0
  return len(words_a & words_b) / len(words_a | words_b)


@dataclass
class QualityReport:
  valid: list[str] = field(default_factory=list)
  rejected: list[tuple[str, str]] = field(default_factory=list)


def filter_clauses(clauses: Iterable[str], *, min_length: int = MIN_CLAUSE_LENGTH, max_length: int = MAX_CLAUSE_LENGTH, similarity_threshold: float = SIMILARITY_THRESHOLD) -> QualityReport:
  """Drop clauses that are too short, too long, or near-duplicates of an earlier clause."""
  report = QualityReport()
  for raw in clauses:
    clause = raw.strip()
    if len(clause) < min_length:
      report.rejected.append((raw, "too_short"))
      continue
    if len(clause) > max_length:
      report.rejected.append((raw, "too_long"))
      continue

    if any(jaccard_similarity(clause, earlier) > similarity_threshold for earlier in report.valid):
      report.rejected.append((raw, "duplicate"))
      continue

    report.valid.append(clause)
  return report
