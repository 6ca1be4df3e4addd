"""Shared FastAPI dependencies for authenticated check-in routes."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.db.session import get_session
from app.models.users import User

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

SESSION_DEP = Depends(get_session)
BEARER_DEP = Depends(HTTPBearer(auto_error=False))


async def require_user(
    credentials: HTTPAuthorizationCredentials | None = BEARER_DEP,
    session: AsyncSession = SESSION_DEP,
) -> User:
    """Resolve the bearer token to its user or reject with 401."""
    token = credentials.credentials.strip() if credentials is not None else ""
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "unauthorized", "message": "Missing bearer token"},
        )
    user = await User.objects.filter_by(auth_token=token).first(session)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "unauthorized", "message": "Invalid token"},
        )
    return user
