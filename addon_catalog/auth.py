from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from addon_catalog import crud
from addon_catalog.database import get_db
from addon_catalog.schemas import Actor
from addon_catalog.settings import settings

DEFAULT_TOKEN_EXPIRY_HOURS = 24


def create_user_jwt(user_id: int, expires_hours: int = DEFAULT_TOKEN_EXPIRY_HOURS) -> str:
    """Create an access token for a user (dev tooling and tests; production tokens come from the auth service)"""
    now = datetime.now(timezone.utc)
    payload = {
        "id": user_id,
        "exp": now + timedelta(hours=expires_hours),
        "iat": now,
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def verify_user_jwt(token: str) -> Optional[Dict[str, Any]]:
    """Verify and decode a user access token"""
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


async def resolve_actor(db: AsyncSession, token: str) -> Optional[Actor]:
    """Map a bearer token to the acting user. The role is always read from the database."""
    if not token:
        return None
    payload = verify_user_jwt(token)
    if not payload:
        return None

    user_id = payload.get("id")
    if not isinstance(user_id, int):
        return None

    user = await crud.get_user(db, user_id)
    if user is None:
        return None
    return Actor(id=user.id, role=user.role or "user")


security = HTTPBearer(auto_error=True)


async def require_actor(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> Actor:
    actor = await resolve_actor(db, credentials.credentials)
    if actor is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    return actor
