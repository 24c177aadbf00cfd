"""FastAPI authentication dependencies."""

from __future__ import annotations

import jwt
from fastapi import Depends, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from rankquest.auth.jwt import verify_token
from rankquest.auth.service import get_user_by_id
from rankquest.database import get_session
from rankquest.db.models import User
from rankquest.errors import AuthenticationRequired, Forbidden

_bearer = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
    db: AsyncSession = Depends(get_session),
) -> User:
    """
    Extract and verify JWT, return User model.

    Raises 401 on a missing or invalid token, 403 for inactive accounts.
    """
    if credentials is None:
        raise AuthenticationRequired("Authentication required")
    try:
        payload = verify_token(credentials.credentials, expected_type="access")
    except jwt.InvalidTokenError as e:
        raise AuthenticationRequired(str(e)) from e

    try:
        user_id = int(payload["sub"])
    except (KeyError, ValueError) as e:
        raise AuthenticationRequired("Invalid token subject") from e

    user = await get_user_by_id(db, user_id)
    if user is None:
        raise AuthenticationRequired("User not found")
    if user.status != "active":
        raise Forbidden("Account is not active")
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    """Same as get_current_user but additionally requires the admin role."""
    if user.role != "admin":
        raise Forbidden("Admin access required")
    return user
