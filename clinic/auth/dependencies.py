"""Request authentication (bearer JWT) and role checks for the leave API."""

from __future__ import annotations

import uuid
from typing import Callable, Optional

from fastapi import Depends
from fastapi.exceptions import HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clinic.common.constants import UserRole
from clinic.common.exceptions import ForbiddenException
from clinic.config import settings
from clinic.database import get_db
from clinic.directory.models import User

_bearer = HTTPBearer(auto_error=False)

# Admins pass every role check; doctors and staff only their own
_GRANTS: dict[UserRole, frozenset[UserRole]] = {
    UserRole.admin: frozenset(UserRole),
    UserRole.doctor: frozenset({UserRole.doctor}),
    UserRole.staff: frozenset({UserRole.staff}),
}


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=401, detail=detail, headers={"WWW-Authenticate": "Bearer"},
    )


def decode_access_token(token: str) -> uuid.UUID:
    """Return the user id an access token was issued for, or raise 401."""
    try:
        claims = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except ExpiredSignatureError:
        raise _unauthorized("Token has expired.")
    except JWTError:
        raise _unauthorized("Invalid token.")

    if claims.get("type") != "access":
        raise _unauthorized("Invalid token type.")
    try:
        return uuid.UUID(claims["sub"])
    except (KeyError, ValueError):
        raise _unauthorized("Invalid token subject.")


def is_admin(user: User) -> bool:
    return user.role == UserRole.admin


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
    db: AsyncSession = Depends(get_db),
) -> User:
    """The active user behind the request's bearer token."""
    if credentials is None:
        raise _unauthorized("Missing or invalid Authorization header.")

    user_id = decode_access_token(credentials.credentials)
    user = (
        await db.execute(select(User).where(User.id == user_id, User.is_active.is_(True)))
    ).scalars().first()
    if user is None:
        raise _unauthorized("User account is inactive or not found.")
    return user


def require_role(*allowed: UserRole) -> Callable:
    """Dependency factory: the current user, provided their role grants one of ``allowed``."""
    wanted = frozenset(allowed)

    async def _check(user: User = Depends(get_current_user)) -> User:
        if not _GRANTS.get(user.role, frozenset({user.role})) & wanted:
            raise ForbiddenException(
                f"Role '{user.role.value}' is not permitted. "
                f"Required: {sorted(r.value for r in allowed)}."
            )
        return user

    return _check
