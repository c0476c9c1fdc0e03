"""Read DSX_* and provider settings from a local .env file."""

from __future__ import annotations

import os
from pathlib import Path

_QUOTES = ("'", '"')


def default_env_path() -> Path:
  return Path(__file__).resolve().parents[2] / ".env"


def parse_env_text(text: str) -> dict[str, str]:
  """Parse KEY=value lines; comments, blank lines and malformed lines are skipped."""
  values: dict[str, str] = {}
  for raw_line in text.splitlines():
    line = raw_line.strip().removeprefix("export ").strip()
    if not line or line.startswith("#") or "=" not in line:
      continue
    key, _, value = line.partition("=")
    key, value = key.strip(), value.strip()
    if not key:
      continue
    if len(value) >= 2 and value[0] == value[-1] and value[0] in _QUOTES:
      value = value[1:-1]
    values[key] = value
  return values


def load_env_file(path: Path, *, override: bool = False) -> dict[str, str]:
  """Copy values from `path` into os.environ and return the ones that were applied."""
  if not path.is_file():
    return {}

  applied: dict[str, str] = {}
  for key, value in parse_env_text(path.read_text(encoding="utf-8")).items():
    # Real environment variables win unless override is requested.
    if override or key not in os.environ:
      os.environ[key] = value
      applied[key] = value
  return applied
