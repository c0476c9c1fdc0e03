"""Shared FastAPI dependencies for storage and the processing pipeline."""

from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, status

from app.ai.providers.openai_provider import OpenAIProvider
from app.ai.stages import PipelineStageCaller, StageTimeouts
from app.config import Settings, get_settings
from app.jobs.batch import BatchOrchestrator
from app.jobs.pipeline import DocumentPipeline
from app.storage.factory import get_batch_repo, get_output_store, get_state_store
from app.storage.jobs_repo import BatchProjectsRepository
from app.storage.outputs import OutputStore
from app.storage.state_store import JobStateStore

logger = logging.getLogger(__name__)


def get_stage_caller(settings: Settings = Depends(get_settings)) -> PipelineStageCaller:  # noqa: B008
  """Build the stage caller from the configured fine-tuned models."""
  try:
    provider = OpenAIProvider(api_key=settings.openai_api_key, base_url=settings.openai_base_url)
  except ValueError as exc:
    logger.error("Model provider unavailable: %s", exc)
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Document processing is not configured.") from exc

  return PipelineStageCaller(extractor=provider.get_model(settings.extractor_model), classifier=provider.get_model(settings.classifier_model), duplicator=provider.get_model(settings.duplicator_model), timeouts=StageTimeouts.from_settings(settings))


def get_document_pipeline(
  settings: Settings = Depends(get_settings),  # noqa: B008
  stage_caller: PipelineStageCaller = Depends(get_stage_caller),  # noqa: B008
  store: JobStateStore = Depends(get_state_store),  # noqa: B008
  outputs: OutputStore = Depends(get_output_store),  # noqa: B008
) -> DocumentPipeline:
  return DocumentPipeline(stage_caller=stage_caller, store=store, outputs=outputs, document_timeout=settings.document_timeout_seconds)


def get_batch_orchestrator(
  settings: Settings = Depends(get_settings),  # noqa: B008
  pipeline: DocumentPipeline = Depends(get_document_pipeline),  # noqa: B008
  store: JobStateStore = Depends(get_state_store),  # noqa: B008
  outputs: OutputStore = Depends(get_output_store),  # noqa: B008
  batch_repo: BatchProjectsRepository = Depends(get_batch_repo),  # noqa: B008
) -> BatchOrchestrator:
  return BatchOrchestrator(pipeline=pipeline, store=store, outputs=outputs, batch_repo=batch_repo, batch_timeout=settings.batch_timeout_seconds)
