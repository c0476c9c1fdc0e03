"""Process-wide logging: console plus a rotating file under ./logs."""

import logging
import logging.handlers
import sys
import time
import traceback
from pathlib import Path
from types import TracebackType

from app.config import Settings

LOG_LINE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%H:%M:%S"
LOG_DIR = Path(__file__).resolve().parents[2] / "logs"

# Loggers that would otherwise install their own handlers or flood DEBUG output.
_SERVER_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi")
_QUIET_LOGGERS = ("httpx", "httpcore", "openai", "google", "urllib3", "multipart")

_log_file_path: Path | None = None


class TruncatedFormatter(logging.Formatter):
  """Console formatter that keeps the exception header and the innermost frames."""

  def __init__(self, *args, tail_lines: int = 5, **kwargs) -> None:
    super().__init__(*args, **kwargs)
    self._tail_lines = tail_lines

  # ruff: noqa: N802
  def formatException(self, ei: tuple[type[BaseException] | None, BaseException | None, TracebackType | None]) -> str:
    lines = traceback.format_exception(*ei)
    if len(lines) <= self._tail_lines + 1:
      return "".join(lines)
    return "".join([lines[0], "    ...\n", *lines[-self._tail_lines :]])


def _backup_namer(default_name: str) -> str:
  """Name rotated files dsx_app.log-1 instead of dsx_app.log.1."""
  stem, _, suffix = default_name.rpartition(".")
  return f"{stem}-{suffix}" if stem and suffix.isdigit() else default_name


def _file_handler(settings: Settings, log_dir: Path) -> tuple[logging.Handler, Path]:
  try:
    log_dir.mkdir(parents=True, exist_ok=True)
  except OSError as exc:
    raise RuntimeError(f"Cannot create log directory {log_dir}: {exc}") from exc

  log_path = log_dir / f"dsx_app_{time.strftime('%Y%m%d_%H%M%S')}.log"
  handler = logging.handlers.RotatingFileHandler(log_path, encoding="utf-8", maxBytes=settings.log_max_bytes, backupCount=settings.log_backup_count, delay=False)
  handler.namer = _backup_namer
  handler.setFormatter(logging.Formatter(LOG_LINE_FORMAT, datefmt=LOG_DATE_FORMAT))
  return handler, log_path


def setup_logging(settings: Settings, *, log_dir: Path = LOG_DIR) -> Path:
  """Route root, uvicorn and fastapi loggers to stdout and the rotating log file."""
  console = logging.StreamHandler(sys.stdout)
  console.setFormatter(TruncatedFormatter(LOG_LINE_FORMAT, datefmt=LOG_DATE_FORMAT))
  file_handler, log_path = _file_handler(settings, log_dir)

  logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO, handlers=[console, file_handler], force=True)
  for name in _SERVER_LOGGERS:
    server_logger = logging.getLogger(name)
    server_logger.handlers = [console, file_handler]
    server_logger.propagate = False
  for name in _QUIET_LOGGERS:
    logging.getLogger(name).setLevel(logging.WARNING)
  return log_path


def initialize_logging(settings: Settings) -> Path:
  """Configure logging once per process and report where the log file lives."""
  global _log_file_path
  if _log_file_path is not None:
    return _log_file_path

  _log_file_path = setup_logging(settings)
  logger = logging.getLogger("app.core.logging")
  logger.info("Logging initialized. Writing to %s", _log_file_path)
  logger.info("Job store=%s status_dir=%s output_dir=%s placeholder_jobs=%s", settings.job_store, settings.status_dir, settings.output_dir, settings.placeholder_jobs_enabled)
  return _log_file_path
