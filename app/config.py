"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from app.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)

_JOB_STORES = {"file", "firestore", "memory"}
_OUTPUT_FORMATS = {"jsonl", "openai", "mistral", "claude", "falcon", "csv"}


@dataclass(frozen=True)
class Settings:
  """Typed settings for the Data Synthetix service."""

  environment: str
  debug: bool
  allowed_origins: tuple[str, ...]
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  log_http_bodies: bool
  log_http_body_bytes: int
  status_dir: str
  output_dir: str
  job_store: str
  cache_ttl_seconds: float
  stall_after_seconds: int
  prune_after_seconds: int
  placeholder_jobs_enabled: bool
  require_auth: bool
  firebase_project_id: str | None
  firebase_service_account_json_path: str | None
  openai_api_key: str | None
  openai_base_url: str | None
  extractor_model: str
  classifier_model: str
  duplicator_model: str
  extraction_timeout_seconds: float
  classification_timeout_seconds: float
  variant_timeout_seconds: float
  chunk_timeout_seconds: float
  document_timeout_seconds: float
  chunk_size: int
  chunk_overlap: int
  output_format: str
  class_filter: str
  max_variants_per_clause: int
  batch_concurrency: int
  batch_timeout_seconds: float
  default_credits: int


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  if not raw:
    return ("http://localhost:3000",)

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if not origins:
    raise ValueError("DSX_ALLOWED_ORIGINS must include at least one origin.")

  if "*" in origins:
    raise ValueError("DSX_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_bool(raw: str | None) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return False

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _parse_positive_int(name: str, default: int) -> int:
  value = int(os.getenv(name, str(default)))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


def _parse_positive_float(name: str, default: float) -> float:
  value = float(os.getenv(name, str(default)))
  if value <= 0:
    raise ValueError(f"{name} must be a positive number.")
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("DSX_ENV", "development").lower()

  # Toggle verbose error output and diagnostics in non-production environments.
  debug = _parse_bool(os.getenv("DSX_DEBUG"))

  log_max_bytes = _parse_positive_int("DSX_LOG_MAX_BYTES", 5242880)  # 5MB default
  log_backup_count = int(os.getenv("DSX_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("DSX_LOG_BACKUP_COUNT must be zero or a positive integer.")

  # Allow opt-in logging of 4xx HTTPExceptions for diagnostics.
  log_http_4xx = _parse_bool(os.getenv("DSX_LOG_HTTP_4XX"))
  # Allow opt-in logging of HTTP request/response bodies with a size cap.
  log_http_bodies = _parse_bool(os.getenv("DSX_LOG_HTTP_BODIES"))
  log_http_body_bytes = _parse_positive_int("DSX_LOG_HTTP_BODY_BYTES", 2048)

  job_store = (os.getenv("DSX_JOB_STORE") or "file").strip().lower()
  if job_store not in _JOB_STORES:
    raise ValueError(f"DSX_JOB_STORE must be one of {sorted(_JOB_STORES)}.")

  # Chunk bounds mirror what the upload form allows.
  chunk_size = int(os.getenv("DSX_CHUNK_SIZE", "1000"))
  if not 500 <= chunk_size <= 2000:
    raise ValueError("DSX_CHUNK_SIZE must be between 500 and 2000.")

  chunk_overlap = int(os.getenv("DSX_CHUNK_OVERLAP", "100"))
  if not 0 <= chunk_overlap <= 200:
    raise ValueError("DSX_CHUNK_OVERLAP must be between 0 and 200.")

  output_format = (os.getenv("DSX_OUTPUT_FORMAT") or "jsonl").strip().lower()
  if output_format not in _OUTPUT_FORMATS:
    raise ValueError(f"DSX_OUTPUT_FORMAT must be one of {sorted(_OUTPUT_FORMATS)}.")

  # Placeholder jobs are a local debugging aid; refuse them in production.
  placeholder_jobs_enabled = _parse_bool(os.getenv("DSX_PLACEHOLDER_JOBS"))
  if placeholder_jobs_enabled and environment in {"production", "prod"}:
    raise ValueError("DSX_PLACEHOLDER_JOBS must not be enabled in production.")

  return Settings(
    environment=environment,
    debug=debug,
    allowed_origins=_parse_origins(os.getenv("DSX_ALLOWED_ORIGINS")),
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_http_4xx=log_http_4xx,
    log_http_bodies=log_http_bodies,
    log_http_body_bytes=log_http_body_bytes,
    status_dir=(os.getenv("DSX_STATUS_DIR") or "./data/status").strip(),
    output_dir=(os.getenv("DSX_OUTPUT_DIR") or "./data/outputs").strip(),
    job_store=job_store,
    cache_ttl_seconds=_parse_positive_float("DSX_CACHE_TTL_SECONDS", 5.0),
    stall_after_seconds=_parse_positive_int("DSX_STALL_AFTER_SECONDS", 30),
    prune_after_seconds=_parse_positive_int("DSX_PRUNE_AFTER_SECONDS", 3600),
    placeholder_jobs_enabled=placeholder_jobs_enabled,
    require_auth=_parse_bool(os.getenv("DSX_REQUIRE_AUTH")),
    firebase_project_id=_optional_str(os.getenv("FIREBASE_PROJECT_ID")),
    firebase_service_account_json_path=_optional_str(os.getenv("FIREBASE_SERVICE_ACCOUNT_JSON_PATH")),
    openai_api_key=_optional_str(os.getenv("OPENAI_API_KEY")),
    openai_base_url=_optional_str(os.getenv("OPENAI_BASE_URL")),
    extractor_model=os.getenv("DSX_EXTRACTOR_MODEL", "ft:gpt-4o-mini-2024-07-18:personal:clause-extractor:BJoJl5pB"),
    classifier_model=os.getenv("DSX_CLASSIFIER_MODEL", "ft:gpt-4o-mini-2024-07-18:personal:classifier:BKXRNBJy"),
    duplicator_model=os.getenv("DSX_DUPLICATOR_MODEL", "ft:gpt-4o-mini-2024-07-18:personal:clause-duplicator:BK81g7rc"),
    extraction_timeout_seconds=_parse_positive_float("DSX_EXTRACTION_TIMEOUT_SECONDS", 30.0),
    classification_timeout_seconds=_parse_positive_float("DSX_CLASSIFICATION_TIMEOUT_SECONDS", 15.0),
    variant_timeout_seconds=_parse_positive_float("DSX_VARIANT_TIMEOUT_SECONDS", 20.0),
    chunk_timeout_seconds=_parse_positive_float("DSX_CHUNK_TIMEOUT_SECONDS", 120.0),
    document_timeout_seconds=_parse_positive_float("DSX_DOCUMENT_TIMEOUT_SECONDS", 600.0),
    chunk_size=chunk_size,
    chunk_overlap=chunk_overlap,
    output_format=output_format,
    class_filter=(os.getenv("DSX_CLASS_FILTER") or "all").strip().lower(),
    max_variants_per_clause=_parse_positive_int("DSX_MAX_VARIANTS_PER_CLAUSE", 3),
    batch_concurrency=_parse_positive_int("DSX_BATCH_CONCURRENCY", 3),
    batch_timeout_seconds=_parse_positive_float("DSX_BATCH_TIMEOUT_SECONDS", 3600.0),
    default_credits=_parse_positive_int("DSX_DEFAULT_CREDITS", 100),
  )


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value
