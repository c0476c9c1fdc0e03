"""Unit tests for API exception sanitization behavior."""

from __future__ import annotations

import json
from types import SimpleNamespace

from app.core.exceptions import _error_response, _strip_inputs


def test_strip_inputs_removes_input_and_serializes_exception_ctx() -> None:
  """Validation errors stay JSON-serializable and never echo the request payload."""
  errors = [{"type": "value_error", "loc": ("body",), "msg": "Value error, processedChunks must not exceed totalChunks.", "input": {"processedChunks": 9, "totalChunks": 2}, "ctx": {"error": ValueError("processedChunks must not exceed totalChunks."), "input": {"processedChunks": 9}}}]
  cleaned = _strip_inputs(errors)
  assert "input" not in cleaned[0]
  assert cleaned[0]["ctx"]["error"] == "ValueError: processedChunks must not exceed totalChunks."
  assert "input" not in cleaned[0]["ctx"]
  assert cleaned[0]["loc"] == ["body"]


def test_error_response_includes_request_id_when_known() -> None:
  with_id = SimpleNamespace(state=SimpleNamespace(request_id="req-1"))
  response = _error_response(with_id, 404, "Job not found.")
  assert response.status_code == 404
  assert json.loads(response.body) == {"success": False, "detail": "Job not found.", "requestId": "req-1"}

  without_id = SimpleNamespace(state=SimpleNamespace())
  assert json.loads(_error_response(without_id, 404, "Job not found.").body) == {"success": False, "detail": "Job not found."}
