"""Recover JSON payloads from chatty model replies."""

from __future__ import annotations

import json
import re
from typing import Any

_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_OPENER_RE = re.compile(r"[{\[]")
_DECODER = json.JSONDecoder()


def parse_json_with_fallback(raw: str) -> Any:
  """Parse `raw` as JSON, else decode the first object or array embedded in it.

  Prose before or after the payload is ignored, and trailing commas are
  tolerated. When nothing decodes, the error from the plain parse is raised.
  """
  text = raw.strip()
  try:
    return json.loads(text)
  except json.JSONDecodeError as exc:
    first_error = exc

  for match in _OPENER_RE.finditer(text):
    candidate = text[match.start() :]
    for attempt in (candidate, _TRAILING_COMMA_RE.sub(r"\1", candidate)):
      try:
        value, _end = _DECODER.raw_decode(attempt)
      except json.JSONDecodeError:
        continue
      return value

  raise first_error
