import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.config import get_settings
from app.core.firebase import initialize_firebase
from app.core.logging import initialize_logging
from app.storage.factory import get_state_store


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Set up logging and Firebase, then clear out expired job records."""
  settings = get_settings()
  logger = logging.getLogger("app.core.lifespan")

  initialize_logging(settings)
  logger.info("Startup complete - logging verified. environment=%s job_store=%s", settings.environment, settings.job_store)

  # Firebase is only needed for Firestore storage or token verification.
  if settings.job_store == "firestore" or settings.require_auth:
    initialize_firebase()

  # Records left by a previous run are pruned once before serving requests.
  try:
    removed = await get_state_store().prune()
    if removed:
      logger.info("Pruned %d expired job records at startup.", removed)
  except OSError:
    logger.warning("Startup prune of job records failed; continuing.", exc_info=True)

  yield

  logger.info("Shutdown complete.")
