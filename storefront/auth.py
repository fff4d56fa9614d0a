"""
Bearer-token authentication.

Each user holds at most one API token. Only the SHA-256 hash is stored; the
raw token is returned once, when issued.
"""

import hashlib
import secrets
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .database import get_db
from .errors import Unauthenticated
from .models import User

TOKEN_PREFIX = "sf_"


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


async def issue_token(db: AsyncSession, user: User) -> str:
    """Generate a new token for a user, replacing any previous one."""
    token = TOKEN_PREFIX + secrets.token_urlsafe(32)
    user.token_hash = hash_token(token)
    await db.flush()
    return token


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


async def get_user_by_token(db: AsyncSession, token: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.token_hash == hash_token(token)))
    return result.scalar_one_or_none()


async def get_current_user(request: Request, db: AsyncSession = Depends(get_db)) -> User:
    """FastAPI dependency: the authenticated user, or 401."""
    token = _bearer_token(request)
    if token is None:
        raise Unauthenticated()
    user = await get_user_by_token(db, token)
    if user is None:
        raise Unauthenticated()
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    """FastAPI dependency: the authenticated admin, or 401."""
    if user.role != "admin":
        raise Unauthenticated()
    return user
