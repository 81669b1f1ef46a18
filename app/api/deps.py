"""FastAPI dependency injection utilities."""

from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.security import Actor, actor_from_claims, decode_access_token
from app.db.session import get_db

# Security scheme
security = HTTPBearer(auto_error=False)


async def get_current_token(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> dict | None:
    """Extract and decode the current JWT token.

    Args:
        credentials: Bearer token credentials

    Returns:
        Decoded token payload or None
    """
    if not credentials:
        return None

    payload = decode_access_token(credentials.credentials)
    return payload


async def get_current_actor(
    token: Annotated[dict | None, Depends(get_current_token)],
) -> Actor:
    """Get the authenticated caller.

    Args:
        token: Decoded JWT token

    Returns:
        Actor built from the token claims

    Raises:
        HTTPException: If not authenticated or the claims are unusable
    """
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    actor = actor_from_claims(token)
    if actor is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token claims",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return actor


async def require_system(
    actor: Annotated[Actor, Depends(get_current_actor)],
) -> Actor:
    """Allow only trusted back-office callers."""
    if not actor.is_system:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="System authentication required",
        )
    return actor


# Type aliases for cleaner dependency injection
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
SystemActor = Annotated[Actor, Depends(require_system)]
DbSession = Annotated[AsyncSession, Depends(get_db)]
