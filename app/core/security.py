from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.concurrency import run_in_threadpool

from app.config import Settings, get_settings
from app.core.firebase import verify_id_token

# auto_error is off so local deployments can run without Firebase auth.
security_scheme = HTTPBearer(auto_error=False)


async def get_current_uid(token: Annotated[HTTPAuthorizationCredentials | None, Depends(security_scheme)], settings: Settings = Depends(get_settings)) -> str | None:  # noqa: B008
  """Verify the Firebase ID token and return its uid, or None when auth is disabled."""
  if not settings.require_auth:
    return None

  if token is None:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated", headers={"WWW-Authenticate": "Bearer"})

  # Verification does blocking network I/O for key refreshes.
  decoded_claims = await run_in_threadpool(verify_id_token, token.credentials)
  if not decoded_claims:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid authentication credentials", headers={"WWW-Authenticate": "Bearer"})

  firebase_uid = decoded_claims.get("uid")
  if not firebase_uid:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token claims")

  return str(firebase_uid)


def ensure_user_access(user_id: str, current_uid: str | None) -> None:
  """Reject requests whose userId does not match the authenticated caller."""
  if current_uid is not None and current_uid != user_id:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied.")
