"""Errors raised when the job state store refuses a write."""

from __future__ import annotations


class JobStoreError(Exception):
  """Base class for rejected job state writes."""


class StaleProgressError(JobStoreError):
  """Raised when a write would move processed_chunks backwards."""

  def __init__(self, job_id: str, stored: int, supplied: int) -> None:
    super().__init__(f"Job {job_id} already at processedChunks={stored}; refusing {supplied}.")
    self.job_id = job_id
    self.stored = stored
    self.supplied = supplied


class InvalidTransitionError(JobStoreError):
  """Raised when a write requests a status change the job lifecycle forbids."""

  def __init__(self, job_id: str, current: str, requested: str) -> None:
    super().__init__(f"Job {job_id} cannot move from {current} to {requested}.")
    self.job_id = job_id
    self.current = current
    self.requested = requested


class CancelledElsewhereError(JobStoreError):
  """Raised by a shared repository when another instance cancelled the job first."""

  def __init__(self, job_id: str) -> None:
    super().__init__(f"Job {job_id} was cancelled; write discarded.")
    self.job_id = job_id
