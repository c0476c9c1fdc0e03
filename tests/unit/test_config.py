from __future__ import annotations

import pytest

from app.config import get_settings


@pytest.fixture
def fresh_settings():
  get_settings.cache_clear()
  yield get_settings
  get_settings.cache_clear()


def test_defaults(monkeypatch, fresh_settings) -> None:
  for name in ("DSX_CHUNK_SIZE", "DSX_CHUNK_OVERLAP", "DSX_PLACEHOLDER_JOBS", "DSX_CACHE_TTL_SECONDS", "DSX_STALL_AFTER_SECONDS"):
    monkeypatch.delenv(name, raising=False)
  settings = fresh_settings()
  assert settings.chunk_size == 1000
  assert settings.chunk_overlap == 100
  assert settings.cache_ttl_seconds == 5.0
  assert settings.stall_after_seconds == 30
  assert settings.placeholder_jobs_enabled is False
  assert settings.batch_concurrency == 3


@pytest.mark.parametrize(("name", "value"), [("DSX_CHUNK_SIZE", "400"), ("DSX_CHUNK_OVERLAP", "250"), ("DSX_JOB_STORE", "redis"), ("DSX_OUTPUT_FORMAT", "xml"), ("DSX_BATCH_CONCURRENCY", "0"), ("DSX_ALLOWED_ORIGINS", "*")])
def test_invalid_values_fail_at_load(monkeypatch, fresh_settings, name: str, value: str) -> None:
  monkeypatch.setenv(name, value)
  with pytest.raises(ValueError):
    fresh_settings()


def test_placeholder_jobs_refused_in_production(monkeypatch, fresh_settings) -> None:
  monkeypatch.setenv("DSX_ENV", "production")
  monkeypatch.setenv("DSX_PLACEHOLDER_JOBS", "true")
  with pytest.raises(ValueError):
    fresh_settings()


def test_env_file_values_do_not_override_real_environment(monkeypatch, tmp_path) -> None:
  from app.utils.env import load_env_file, parse_env_text

  assert parse_env_text("# comment\nexport DSX_A='1'\nDSX_B = \"two\"\nbroken line\n=missing\n") == {"DSX_A": "1", "DSX_B": "two"}

  env_file = tmp_path / ".env"
  env_file.write_text("DSX_TEST_KEEP=file\nDSX_TEST_NEW=file\n", encoding="utf-8")
  monkeypatch.setenv("DSX_TEST_KEEP", "real")
  monkeypatch.delenv("DSX_TEST_NEW", raising=False)
  applied = load_env_file(env_file)
  assert applied == {"DSX_TEST_NEW": "file"}
  monkeypatch.delenv("DSX_TEST_NEW")
  assert load_env_file(tmp_path / "missing.env") == {}
