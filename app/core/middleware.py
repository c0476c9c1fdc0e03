import json
import logging
import time
import uuid
from typing import Any

from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from app.config import get_settings

logger = logging.getLogger("app.core.middleware")

_SENSITIVE_KEYS = frozenset({"password", "token", "idtoken", "key", "apikey", "authorization", "cookie", "secret", "email"})
_TEXTUAL_TYPES = ("application/json", "application/x-www-form-urlencoded", "application/x-ndjson")
_STRIPPED_HEADERS = ("x-powered-by", "server")


def _redact_sensitive_keys(data: Any) -> Any:
  """Mask values whose key looks like a credential, at any depth."""
  if isinstance(data, list):
    return [_redact_sensitive_keys(item) for item in data]
  if not isinstance(data, dict):
    return data
  redacted: dict[str, Any] = {}
  for key, value in data.items():
    redacted[key] = "***" if key.lower() in _SENSITIVE_KEYS else _redact_sensitive_keys(value)
  return redacted


def _header(scope: Scope, name: bytes) -> str | None:
  return next((value.decode("latin-1") for key, value in scope.get("headers", []) if key.lower() == name), None)


def _request_target(scope: Scope) -> str:
  query = scope.get("query_string", b"").decode("latin-1")
  path = scope.get("path", "")
  return f"{path}?{query}" if query else path


def _is_textual(content_type: str | None) -> bool:
  kind = (content_type or "").lower()
  if not kind:
    return False
  return kind.startswith("text/") or kind.endswith("+json") or any(textual in kind for textual in _TEXTUAL_TYPES)


def _format_body_for_log(body: bytes, content_type: str | None, max_bytes: int) -> str:
  """Render a body for the log: uploads summarized, long text cut, JSON credentials masked."""
  if not body:
    return "<empty>"
  if not _is_textual(content_type):
    return f"<non-text body {len(body)} bytes>"
  if len(body) > max_bytes:
    return f"{body[:max_bytes].decode('utf-8', errors='replace')}...(truncated)"

  text = body.decode("utf-8", errors="replace")
  kind = (content_type or "").lower()
  if "json" not in kind or "ndjson" in kind:
    return text
  try:
    payload = json.loads(text)
  except json.JSONDecodeError:
    return text
  return json.dumps(_redact_sensitive_keys(payload), ensure_ascii=True)


async def _drain_body(receive: Receive) -> bytes:
  parts: list[bytes] = []
  while True:
    message = await receive()
    if message.get("type") != "http.request":
      break
    parts.append(message.get("body", b""))
    if not message.get("more_body", False):
      break
  return b"".join(parts)


def _replay(body: bytes) -> Receive:
  """Hand a drained request body back to the app as a single message."""
  pending = [{"type": "http.request", "body": body, "more_body": False}]

  async def receive() -> Message:
    if pending:
      return pending.pop()
    return {"type": "http.request", "body": b"", "more_body": False}

  return receive


class RequestLoggingMiddleware:
  """Tag each request with an x-request-id and log it, optionally with bodies."""

  def __init__(self, app: ASGIApp) -> None:
    self.app = app

  async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
    if scope["type"] != "http":
      await self.app(scope, receive, send)
      return

    settings = get_settings()
    request_id = _header(scope, b"x-request-id") or str(uuid.uuid4())
    scope.setdefault("state", {})["request_id"] = request_id
    started = time.perf_counter()
    logger.info("Incoming request request_id=%s %s %s", request_id, scope.get("method", "UNKNOWN"), _request_target(scope))

    if settings.log_http_bodies:
      request_body = await _drain_body(receive)
      receive = _replay(request_body)
      logger.info("Request body request_id=%s body=%s", request_id, _format_body_for_log(request_body, _header(scope, b"content-type"), settings.log_http_body_bytes))

    response: dict[str, Any] = {"status": 0, "content_type": None, "body": []}

    async def send_wrapper(message: Message) -> None:
      if message["type"] == "http.response.start":
        headers = MutableHeaders(scope=message)
        headers.setdefault("x-request-id", request_id)
        response["status"] = message.get("status", 0)
        response["content_type"] = headers.get("content-type")
      elif message["type"] == "http.response.body" and settings.log_http_bodies:
        response["body"].append(message.get("body", b""))
      await send(message)

    await self.app(scope, receive, send_wrapper)

    status_code = response["status"]
    level = logging.WARNING if status_code >= 400 and settings.log_http_4xx else logging.INFO
    logger.log(level, "Response request_id=%s status=%s (took %.2fms)", request_id, status_code, (time.perf_counter() - started) * 1000)
    if settings.log_http_bodies:
      logger.info("Response body request_id=%s body=%s", request_id, _format_body_for_log(b"".join(response["body"]), response["content_type"], settings.log_http_body_bytes))


class SecurityHeadersMiddleware:
  """Drop server fingerprint headers and forbid MIME sniffing."""

  def __init__(self, app: ASGIApp) -> None:
    self.app = app

  async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
    if scope["type"] != "http":
      await self.app(scope, receive, send)
      return

    async def send_wrapper(message: Message) -> None:
      if message["type"] == "http.response.start":
        headers = MutableHeaders(scope=message)
        for name in _STRIPPED_HEADERS:
          if name in headers:
            del headers[name]
        headers["x-content-type-options"] = "nosniff"
      await send(message)

    await self.app(scope, receive, send_wrapper)
