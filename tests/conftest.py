"""Shared fixtures for the storage, pipeline and API tests."""

from __future__ import annotations

import os
import tempfile

# Keep the imported app on throwaway storage before settings are cached.
_TEST_DATA_DIR = tempfile.mkdtemp(prefix="dsx-tests-")
os.environ.setdefault("DSX_JOB_STORE", "memory")
os.environ.setdefault("DSX_STATUS_DIR", os.path.join(_TEST_DATA_DIR, "status"))
os.environ.setdefault("DSX_OUTPUT_DIR", os.path.join(_TEST_DATA_DIR, "outputs"))

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from app.main import app  # noqa: E402
from app.storage.factory import get_output_store, get_state_store  # noqa: E402
from app.storage.jobs_repo import InMemoryJobsRepository  # noqa: E402
from app.storage.outputs import OutputStore  # noqa: E402
from app.storage.state_store import JobStateStore  # noqa: E402


@pytest.fixture
def anyio_backend():
  return "asyncio"


@pytest.fixture
def output_store(tmp_path) -> OutputStore:
  return OutputStore(tmp_path / "outputs")


@pytest.fixture
def jobs_repo() -> InMemoryJobsRepository:
  return InMemoryJobsRepository()


@pytest.fixture
def state_store(jobs_repo, output_store) -> JobStateStore:
  return JobStateStore(jobs_repo, outputs=output_store)


@pytest.fixture
async def async_client(state_store, output_store):
  app.dependency_overrides[get_state_store] = lambda: state_store
  app.dependency_overrides[get_output_store] = lambda: output_store
  async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
    yield client
  app.dependency_overrides.clear()
