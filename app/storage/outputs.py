"""Local storage for generated training-data artifacts and split PDF parts."""

from __future__ import annotations

import asyncio
import logging
import os
import re
from pathlib import Path, PurePosixPath

from app.storage.file_jobs_repo import job_file_name

logger = logging.getLogger(__name__)

PARTS_DIR = "parts"
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def output_name_for(job_id: str, output_format: str) -> str:
  """Return the artifact file name for a job."""
  extension = "csv" if output_format == "csv" else "jsonl"
  return job_file_name(job_id).removesuffix(".json") + f".{extension}"


def safe_segment(value: str) -> str:
  """Reduce a user id or file stem to characters that are safe in one path segment."""
  safe = _UNSAFE_CHARS.sub("_", value).lstrip(".")
  if not safe:
    raise ValueError(f"'{value}' is empty after sanitising.")
  return safe


def part_name_for(user_id: str, part_file_name: str) -> str:
  """Split parts live under parts/<user>/ so users never share a namespace."""
  return f"{PARTS_DIR}/{safe_segment(user_id)}/{part_file_name}"


class OutputStore:
  """Write, read and delete artifacts under a single output directory."""

  def __init__(self, output_dir: str | Path) -> None:
    self._dir = Path(output_dir)
    self._dir.mkdir(parents=True, exist_ok=True)

  def path_for(self, name: str) -> Path:
    root = self._dir.resolve()
    path = (root / PurePosixPath(name)).resolve()
    if path == root or not path.is_relative_to(root):
      raise ValueError(f"Artifact name escapes the output directory: {name}")
    return path

  def _write(self, name: str, content: bytes) -> None:
    path = self.path_for(name)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    tmp_path.write_bytes(content)
    os.replace(tmp_path, path)

  def _read(self, name: str) -> bytes | None:
    path = self.path_for(name)
    if not path.is_file():
      return None
    return path.read_bytes()

  def _prune_parts(self, cutoff: float) -> int:
    parts_root = self._dir / PARTS_DIR
    if not parts_root.is_dir():
      return 0
    removed = 0
    for path in parts_root.rglob("*.pdf"):
      if path.stat().st_mtime < cutoff:
        path.unlink(missing_ok=True)
        removed += 1
    for directory in sorted(parts_root.iterdir()):
      if directory.is_dir() and not any(directory.iterdir()):
        directory.rmdir()
    return removed

  async def write(self, name: str, content: str) -> str:
    await asyncio.to_thread(self._write, name, content.encode("utf-8"))
    logger.info("Wrote artifact %s (%d chars)", name, len(content))
    return name

  async def write_bytes(self, name: str, content: bytes) -> str:
    await asyncio.to_thread(self._write, name, content)
    logger.info("Wrote binary artifact %s (%d bytes)", name, len(content))
    return name

  async def read(self, name: str) -> bytes | None:
    return await asyncio.to_thread(self._read, name)

  async def delete(self, name: str) -> None:
    await asyncio.to_thread(self.path_for(name).unlink, missing_ok=True)

  async def prune_parts(self, cutoff: float) -> int:
    """Delete split parts last written before `cutoff` (epoch seconds)."""
    removed = await asyncio.to_thread(self._prune_parts, cutoff)
    if removed:
      logger.info("Pruned %d expired split parts", removed)
    return removed
