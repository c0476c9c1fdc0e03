from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictStr, model_validator

from app.jobs.models import JobStatus


class CamelModel(BaseModel):
  """Accept and emit the camelCase field names used by the web client."""

  model_config = ConfigDict(populate_by_name=True, extra="forbid")


class StatusUpdateRequest(CamelModel):
  """Progress report posted by a worker or client for one job."""

  user_id: StrictStr | None = Field(default=None, alias="userId")
  job_id: StrictStr | None = Field(default=None, alias="jobId")
  file_name: StrictStr | None = Field(default=None, alias="fileName")
  status: JobStatus | None = None
  processed_chunks: int | None = Field(default=None, ge=0, alias="processedChunks")
  total_chunks: int | None = Field(default=None, ge=0, alias="totalChunks")
  credits_used: int | None = Field(default=None, ge=0, alias="creditsUsed")
  credits_remaining: int | None = Field(default=None, ge=0, alias="creditsRemaining")
  result: dict[str, Any] | None = None
  error_message: StrictStr | None = Field(default=None, alias="errorMessage")
  document_id: StrictStr | None = Field(default=None, alias="documentId")

  @model_validator(mode="after")
  def _check_counts(self) -> StatusUpdateRequest:
    if self.processed_chunks is not None and self.total_chunks is not None and self.total_chunks > 0 and self.processed_chunks > self.total_chunks:
      raise ValueError("processedChunks must not exceed totalChunks.")
    return self


class StatusUpdateResponse(CamelModel):
  success: bool = True
  job_id: str = Field(alias="jobId")


class CancelJobRequest(CamelModel):
  user_id: StrictStr | None = Field(default=None, alias="userId")
  job_id: StrictStr | None = Field(default=None, alias="jobId")


class CancelJobResponse(CamelModel):
  success: bool = True
  job_id: str = Field(alias="jobId")
  status: JobStatus
  message: str


class JobStatusResponse(CamelModel):
  """Progress snapshot served to polling clients."""

  job_id: str = Field(alias="jobId")
  status: JobStatus
  file_name: str | None = Field(default=None, alias="fileName")
  processed_chunks: int = Field(alias="processedChunks")
  total_chunks: int = Field(alias="totalChunks")
  failed_chunks: int = Field(default=0, alias="failedChunks")
  progress: int
  is_active: bool = Field(alias="isActive")
  credits_used: int = Field(default=0, alias="creditsUsed")
  credits_remaining: int | None = Field(default=None, alias="creditsRemaining")
  last_progress_change: str | None = Field(default=None, alias="lastProgressChange")
  updated_at: str = Field(alias="updatedAt")
  result: dict[str, Any] | None = None
  error_message: str | None = Field(default=None, alias="errorMessage")
  placeholder: bool = False


class ProcessDocumentResponse(CamelModel):
  success: bool = True
  job_id: str = Field(alias="jobId")
  status: JobStatus
  estimate: dict[str, Any]


class BatchProcessResponse(CamelModel):
  success: bool = True
  batch_id: str = Field(alias="batchId")
  total_documents: int = Field(alias="totalDocuments")
  job_ids: list[str] = Field(alias="jobIds")


class SplitPart(CamelModel):
  file_name: str = Field(alias="fileName")
  start_page: int = Field(alias="startPage")
  end_page: int = Field(alias="endPage")
  page_count: int = Field(alias="pageCount")
  download_url: str = Field(alias="downloadUrl")


class SplitDocumentResponse(CamelModel):
  success: bool = True
  split_id: str = Field(alias="splitId")
  total_pages: int = Field(alias="totalPages")
  parts: list[SplitPart]


class AnalyzeDocumentResponse(CamelModel):
  success: bool = True
  file_name: str = Field(alias="fileName")
  characters: int
  estimated_chunks: int = Field(alias="estimatedChunks")
  estimated_credits: int = Field(alias="estimatedCredits")
  estimated_time_seconds: int = Field(alias="estimatedTimeSeconds")
  pages: int | None = None


OutputFormat = Literal["jsonl", "openai", "mistral", "claude", "falcon", "csv"]
