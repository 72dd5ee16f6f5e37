"""Access-token issuing."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import jwt

from clinic.config import settings


def create_access_token(
    user_id: uuid.UUID,
    *,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Sign an HS256 access token whose subject is the user id."""
    expires_delta = expires_delta or timedelta(hours=settings.JWT_EXPIRY_HOURS)
    payload = {
        "sub": str(user_id),
        "type": "access",
        "iat": datetime.now(timezone.utc),
        "exp": datetime.now(timezone.utc) + expires_delta,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
