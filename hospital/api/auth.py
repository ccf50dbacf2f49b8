"""HTTP Basic Auth for the staff scheduling API.

One shared password from SECURITY API_PASSWORD; the username is recorded
as the actor on every audit event the request produces.
"""

from __future__ import annotations

import secrets

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from hospital.config import settings

security = HTTPBasic()


async def verify_staff(
    credentials: HTTPBasicCredentials = Depends(security),  # noqa: B008
) -> str:
    """FastAPI dependency — returns the caller's username, 401 on a bad password."""
    expected = settings.security.api_password
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="API_PASSWORD not configured",
        )

    if not secrets.compare_digest(credentials.password.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Basic"},
        )

    return credentials.username
