"""Exception handlers that turn failures into {"success": false, "detail": ...} bodies."""

import logging
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError

from app.config import get_settings
from app.core.json import FirestoreJSONResponse
from app.storage.errors import JobStoreError

logger = logging.getLogger("uvicorn.error")

_SCALARS = (type(None), bool, int, float, str)


def _json_safe(value: Any) -> Any:
  if isinstance(value, _SCALARS):
    return value
  if isinstance(value, dict):
    return {str(key): _json_safe(item) for key, item in value.items()}
  if isinstance(value, list | tuple | set):
    return [_json_safe(item) for item in value]
  if isinstance(value, BaseException):
    message = str(value)
    return f"{type(value).__name__}: {message}" if message else type(value).__name__
  return str(value)


def _request_id(request: Request) -> str | None:
  return getattr(request.state, "request_id", None)


def _error_response(request: Request, status_code: int, detail: Any, headers: dict[str, str] | None = None) -> FirestoreJSONResponse:
  body: dict[str, Any] = {"success": False, "detail": detail}
  request_id = _request_id(request)
  if request_id:
    body["requestId"] = request_id
  return FirestoreJSONResponse(status_code=status_code, content=body, headers=headers)


def _strip_inputs(errors: list[dict[str, Any]]) -> list[dict[str, Any]]:
  """Drop echoed client input (top level and ctx) from pydantic errors."""
  cleaned: list[dict[str, Any]] = []
  for error in errors:
    entry = {key: value for key, value in error.items() if key != "input"}
    ctx = entry.get("ctx")
    if isinstance(ctx, dict):
      entry["ctx"] = {key: value for key, value in ctx.items() if key != "input"}
    cleaned.append(_json_safe(entry))
  return cleaned


async def global_exception_handler(request: Request, exc: Exception) -> FirestoreJSONResponse:
  logger.error("Unhandled error request_id=%s path=%s error_type=%s", _request_id(request), request.url.path, type(exc).__name__, exc_info=True)
  return _error_response(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error")


async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> FirestoreJSONResponse:
  errors = _strip_inputs(exc.errors())
  logger.warning("Request validation failed request_id=%s method=%s path=%s errors=%s", _request_id(request), request.method, request.url.path, errors)
  return _error_response(request, status.HTTP_422_UNPROCESSABLE_ENTITY, errors)


async def http_exception_handler(request: Request, exc: HTTPException) -> FirestoreJSONResponse:
  """Pass details through, except for 500s whose detail is logged and replaced."""
  if exc.status_code >= 500:
    logger.error("HTTP %s request_id=%s path=%s detail=%s", exc.status_code, _request_id(request), request.url.path, exc.detail)
    # 503 details name the missing dependency and are meant for the client.
    if exc.status_code != status.HTTP_503_SERVICE_UNAVAILABLE:
      return _error_response(request, exc.status_code, "Internal Server Error")

  if get_settings().log_http_4xx:
    logger.warning("HTTP %s request_id=%s path=%s detail=%s", exc.status_code, _request_id(request), request.url.path, exc.detail)

  # A dict detail is the whole response body, e.g. the not_found status payload.
  if isinstance(exc.detail, dict):
    return FirestoreJSONResponse(status_code=exc.status_code, content=exc.detail, headers=exc.headers)
  return _error_response(request, exc.status_code, exc.detail, exc.headers)


async def job_store_exception_handler(request: Request, exc: JobStoreError) -> FirestoreJSONResponse:
  """Writes the job store refused to apply are conflicts."""
  logger.warning("Job store rejected write request_id=%s path=%s error=%s", _request_id(request), request.url.path, exc)
  return _error_response(request, status.HTTP_409_CONFLICT, str(exc))
