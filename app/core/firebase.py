"""Firebase Admin access for Firestore job storage and ID token checks."""

import logging
from typing import Any

import firebase_admin
from firebase_admin import auth, credentials, firestore
from google.cloud.firestore import Client as FirestoreClient

from app.config import get_settings

logger = logging.getLogger(__name__)


def _default_app() -> firebase_admin.App | None:
  try:
    return firebase_admin.get_app()
  except ValueError:
    return None


def initialize_firebase() -> firebase_admin.App | None:
  """Initialize the default Firebase app from settings; returns None when unconfigured."""
  existing = _default_app()
  if existing is not None:
    return existing

  settings = get_settings()
  if not settings.firebase_project_id:
    logger.warning("FIREBASE_PROJECT_ID is not set; Firestore storage and token checks are unavailable.")
    return None

  options = {"projectId": settings.firebase_project_id}
  try:
    # Without a key file, Application Default Credentials are used.
    cred = credentials.Certificate(settings.firebase_service_account_json_path) if settings.firebase_service_account_json_path else None
    app = firebase_admin.initialize_app(cred, options)
  except (ValueError, OSError) as exc:
    logger.error("Firebase initialization failed for project %s: %s", settings.firebase_project_id, exc)
    return None

  logger.info("Firebase initialized for project %s", settings.firebase_project_id)
  return app


def get_firestore_client() -> FirestoreClient | None:
  """Return the Firestore client of the default app, initializing it on first use."""
  app = initialize_firebase()
  if app is None:
    return None
  try:
    return firestore.client(app)
  except (ValueError, RuntimeError) as exc:
    logger.error("Firestore client unavailable: %s", exc)
    return None


def verify_id_token(id_token: str) -> dict[str, Any] | None:
  """Return the decoded claims of a Firebase ID token, or None if it does not verify."""
  app = initialize_firebase()
  if app is None:
    return None
  try:
    return auth.verify_id_token(id_token, app=app)
  except (ValueError, auth.InvalidIdTokenError, auth.ExpiredIdTokenError, auth.RevokedIdTokenError, auth.CertificateFetchError) as exc:
    logger.warning("Token verification failed: %s", exc)
    return None
