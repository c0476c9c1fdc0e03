from __future__ import annotations

from app.jobs.quality import filter_clauses, jaccard_similarity


def test_filter_clauses_enforces_length_bounds() -> None:
  report = filter_clauses(["too short", "x" * 1501, "A clause of reasonable length."])
  assert report.valid == ["A clause of reasonable length."]
  assert [reason for _, reason in report.rejected] == ["too_short", "too_long"]


def test_filter_clauses_drops_near_duplicates() -> None:
  original = "The supplier shall deliver all goods to the buyer within thirty days of the order date"
  near_copy = "The supplier shall deliver all goods to the buyer within thirty days of the order date."
  different = "Payment is due within fourteen days of receiving a valid invoice."
  report = filter_clauses([original, near_copy, different])
  assert report.valid == [original, different]
  assert report.rejected == [(near_copy, "duplicate")]


def test_jaccard_similarity() -> None:
  assert jaccard_similarity("a b c", "a b c") == 1.0
  assert jaccard_similarity("a b", "c d") == 0.0
  assert jaccard_similarity("", "a") == 0.0
  assert jaccard_similarity("a b c d", "a b") == 0.5
