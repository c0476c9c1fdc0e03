"""Custom JSON handling."""

from __future__ import annotations

import json
from datetime import date, datetime
from typing import Any

from fastapi.responses import JSONResponse


class FirestoreJSONEncoder(json.JSONEncoder):
  """JSON encoder that handles timestamp values returned by Firestore."""

  def default(self, obj: Any) -> Any:
    # DatetimeWithNanoseconds subclasses datetime.
    if isinstance(obj, datetime | date):
      return obj.isoformat()
    return super().default(obj)


class FirestoreJSONResponse(JSONResponse):
  """Custom JSONResponse that uses FirestoreJSONEncoder."""

  def render(self, content: Any) -> bytes:
    return json.dumps(content, ensure_ascii=False, allow_nan=False, indent=None, separators=(",", ":"), cls=FirestoreJSONEncoder).encode("utf-8")
