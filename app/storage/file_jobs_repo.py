"""File-backed job repository: one JSON document per job under a status directory."""

from __future__ import annotations

import asyncio
import logging
import os
import re
from pathlib import Path

import msgspec

from app.jobs.models import JobState

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def job_file_name(job_id: str) -> str:
  """Map a job id onto a file name that cannot escape the status directory."""
  safe = _UNSAFE_CHARS.sub("_", job_id).lstrip(".")
  if not safe:
    raise ValueError("Job id is empty after sanitising.")
  return f"{safe}.json"


class FileJobsRepository:
  """Persist job records as JSON files written atomically."""

  def __init__(self, status_dir: str | Path) -> None:
    self._dir = Path(status_dir)
    self._dir.mkdir(parents=True, exist_ok=True)

  def _path(self, job_id: str) -> Path:
    return self._dir / job_file_name(job_id)

  def _read(self, path: Path) -> JobState | None:
    try:
      raw = path.read_bytes()
    except FileNotFoundError:
      return None
    try:
      return JobState.from_record(msgspec.json.decode(raw))
    except (msgspec.DecodeError, TypeError) as exc:
      logger.warning("Ignoring unreadable job file %s: %s", path, exc)
      return None

  def _write(self, state: JobState) -> None:
    path = self._path(state.job_id)
    tmp_path = path.with_suffix(".json.tmp")
    tmp_path.write_bytes(msgspec.json.encode(state.to_record()))
    # Rename is atomic so pollers never observe a half-written file.
    os.replace(tmp_path, path)

  def _scan(self) -> list[JobState]:
    states: list[JobState] = []
    for path in sorted(self._dir.glob("*.json")):
      state = self._read(path)
      if state is not None:
        states.append(state)
    return states

  async def get_job(self, job_id: str) -> JobState | None:
    return await asyncio.to_thread(self._read, self._path(job_id))

  async def save_job(self, state: JobState) -> None:
    await asyncio.to_thread(self._write, state)

  async def delete_job(self, job_id: str) -> None:
    await asyncio.to_thread(self._path(job_id).unlink, missing_ok=True)

  async def find_job(self, user_id: str, file_name: str) -> JobState | None:
    states = await asyncio.to_thread(self._scan)
    matches = [state for state in states if state.user_id == user_id and state.file_name == file_name]
    if not matches:
      return None
    return max(matches, key=lambda state: state.updated_at)

  async def list_stale(self, updated_before: str) -> list[JobState]:
    states = await asyncio.to_thread(self._scan)
    return [state for state in states if state.updated_at < updated_before]
