from __future__ import annotations

import msgspec
import pytest
from fakes import CLAUSES, ScriptedModel, build_stage_caller

from app.ai.stages import StageTimeouts
from app.jobs.batch import BatchDocument, BatchOrchestrator
from app.jobs.models import ProcessingOptions
from app.jobs.pipeline import DocumentPipeline
from app.storage.jobs_repo import InMemoryBatchProjectsRepository
from app.storage.outputs import OutputStore
from app.storage.state_store import JobStateStore

TEXT = " ".join(CLAUSES)


def _orchestrator(state_store: JobStateStore, output_store: OutputStore, *, extractor: ScriptedModel | None = None, batch_timeout: float = 3600.0, batch_repo: InMemoryBatchProjectsRepository | None = None) -> BatchOrchestrator:
  pipeline = DocumentPipeline(stage_caller=build_stage_caller(extractor=extractor, timeouts=StageTimeouts()), store=state_store, outputs=output_store)
  return BatchOrchestrator(pipeline=pipeline, store=state_store, outputs=output_store, batch_repo=batch_repo, batch_timeout=batch_timeout)


@pytest.mark.anyio
async def test_failed_document_does_not_stop_its_siblings(state_store: JobStateStore, output_store: OutputStore) -> None:
  repo = InMemoryBatchProjectsRepository()
  orchestrator = _orchestrator(state_store, output_store, batch_repo=repo)
  documents = [
    BatchDocument(file_name="lease.txt", data=TEXT.encode("utf-8")),
    BatchDocument(file_name="policy.docx", data=b"not a txt or pdf"),
    BatchDocument(file_name="terms.txt", text=TEXT),
  ]

  result = await orchestrator.run_batch(documents, 2, user_id="user-1", batch_id="b1", options=ProcessingOptions())

  assert result.total_documents == 3
  assert result.successful_documents == result.processed_files == 2
  assert [outcome.success for outcome in result.outcomes] == [True, False, True]
  assert result.outcomes[1].error and "batch processing accepts only" in result.outcomes[1].error
  assert result.total_variants == result.stats.generated_variants > 0

  failed = await state_store.read("b1-2")
  assert failed is not None and failed.status == "error"
  completed = await state_store.read("b1-1")
  assert completed is not None and completed.status == "complete" and completed.batch_id == "b1"

  assert result.output_name == "batch-b1.jsonl"
  content = await output_store.read("batch-b1.jsonl")
  assert content is not None
  sources = {msgspec.json.decode(line)["sourceFile"] for line in content.splitlines()}
  assert sources == {"lease.txt", "terms.txt"}

  assert repo.records["b1"]["userId"] == "user-1"
  assert repo.records["b1"]["successfulDocuments"] == 2


@pytest.mark.anyio
async def test_too_short_document_fails_alone(state_store: JobStateStore, output_store: OutputStore) -> None:
  orchestrator = _orchestrator(state_store, output_store)
  result = await orchestrator.run_batch([BatchDocument(file_name="tiny.txt", text="short"), BatchDocument(file_name="ok.txt", text=TEXT)], user_id="user-1", batch_id="b2")

  assert [outcome.success for outcome in result.outcomes] == [False, True]


@pytest.mark.anyio
async def test_concurrency_limit_bounds_active_documents(state_store: JobStateStore, output_store: OutputStore) -> None:
  extractor = ScriptedModel("extractor", text="\n".join(CLAUSES), delay=0.02)
  orchestrator = _orchestrator(state_store, output_store, extractor=extractor)
  documents = [BatchDocument(file_name=f"doc-{index}.txt", text=TEXT) for index in range(6)]

  result = await orchestrator.run_batch(documents, 2, user_id="user-1", batch_id="b3")

  assert result.successful_documents == 6
  assert extractor.max_active == 2


@pytest.mark.anyio
async def test_batch_timeout_marks_unfinished_documents_failed(state_store: JobStateStore, output_store: OutputStore) -> None:
  extractor = ScriptedModel("extractor", text="\n".join(CLAUSES), delay=5.0)
  orchestrator = _orchestrator(state_store, output_store, extractor=extractor, batch_timeout=0.05)

  result = await orchestrator.run_batch([BatchDocument(file_name="slow.txt", text=TEXT)], user_id="user-1", batch_id="b4")

  assert result.successful_documents == 0
  assert result.output_name is None
  assert "timed out" in (result.outcomes[0].error or "")
  state = await state_store.read("b4-1")
  assert state is not None and state.status == "error"


@pytest.mark.anyio
async def test_empty_batch_and_invalid_limit(state_store: JobStateStore, output_store: OutputStore) -> None:
  orchestrator = _orchestrator(state_store, output_store)

  result = await orchestrator.run_batch([], user_id="user-1", batch_id="b5")
  assert result.total_documents == 0
  assert result.output_name is None

  with pytest.raises(ValueError):
    await orchestrator.run_batch([], 0, user_id="user-1")


class _FailsOnMarker(ScriptedModel):
  """Raises only for chunks containing the marker text."""

  def __init__(self, name: str, marker: str, **kwargs) -> None:
    super().__init__(name, **kwargs)
    self.marker = marker

  async def generate(self, system_prompt: str, user_content: str, *, n: int = 1):
    if self.marker in user_content:
      self.calls.append(user_content)
      raise RuntimeError("model rejected the document")
    return await super().generate(system_prompt, user_content, n=n)


@pytest.mark.anyio
async def test_document_failing_every_stage_leaves_later_documents_processed(state_store: JobStateStore, output_store: OutputStore) -> None:
  marker = "BROKEN-THIRD-DOCUMENT"
  extractor = _FailsOnMarker("extractor", marker, text="\n".join(CLAUSES))
  orchestrator = _orchestrator(state_store, output_store, extractor=extractor)
  documents = [BatchDocument(file_name=f"doc-{index}.txt", text=f"{marker} {TEXT}" if index == 3 else TEXT) for index in range(1, 6)]

  result = await orchestrator.run_batch(documents, 2, user_id="user-1", batch_id="b6")

  assert result.total_documents == 5
  assert result.successful_documents == 4
  assert [outcome.success for outcome in result.outcomes] == [True, True, False, True, True]
  assert "model rejected the document" in (result.outcomes[2].error or "")
  for index in (4, 5):
    state = await state_store.read(f"b6-{index}")
    assert state is not None and state.status == "complete"
  failed = await state_store.read("b6-3")
  assert failed is not None and failed.status == "error"
