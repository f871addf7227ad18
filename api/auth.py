"""
Authentication and Authorization Module for the billing API

This module provides:
- JWT token management
- Loading the requesting user from the database
- Authorization gates shared by the routes
"""

import logging
import os
import secrets
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel

import queries
from db_pool import get_connection
from errors import AuthorizationError, NotFoundError
from models import User

logger = logging.getLogger("billing.auth")

_jwt_env = os.getenv("JWT_SECRET_KEY", "")
if not _jwt_env:
    _jwt_env = secrets.token_urlsafe(48)
    logger.warning(
        "JWT_SECRET_KEY not set, generated a random ephemeral key. "
        "Tokens will be invalidated on every restart."
    )
JWT_SECRET_KEY = _jwt_env
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("JWT_ACCESS_TOKEN_EXPIRE_MINUTES", "480"))

security = HTTPBearer(auto_error=False)


class TokenData(BaseModel):
    username: Optional[str] = None


# JWT Token Management
def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    """Create JWT access token"""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=JWT_ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire, "iat": datetime.utcnow()})
    return jwt.encode(to_encode, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def verify_token(token: str) -> Optional[TokenData]:
    """Verify and decode JWT token"""
    try:
        payload = jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
        username: str = payload.get("sub")
        if username is None:
            return None
        return TokenData(username=username)
    except JWTError:
        return None


def _load_user(username: str) -> Optional[User]:
    with get_connection() as conn:
        return queries.select_user_by_name(conn, username)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Optional[User]:
    """Get current authenticated user"""
    if not credentials:
        return None

    token_data = verify_token(credentials.credentials)
    if not token_data:
        return None

    user = _load_user(token_data.username)
    if user is None or not user.is_active:
        logger.info("Rejected token for unknown or inactive user %s", token_data.username)
        return None
    return user


async def require_authentication(user: Optional[User] = Depends(get_current_user)) -> User:
    """Require authenticated user"""
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


# Authorization gates
def require_admin_user(user: User) -> None:
    if not user.is_staff:
        raise AuthorizationError("Requesting user is not an admin")


def require_master_user_or_return_not_found(user: User, project_id: int) -> None:
    """Admins, or masters of ``project_id``; anyone else must not learn it exists."""
    if user.is_staff:
        return
    if user.is_master and user.project == project_id:
        return
    raise NotFoundError()


def require_user_or_project_master_or_not_found(
    user: User, user_id: int, project_id: int,
) -> None:
    if user.is_staff or user.id == user_id:
        return
    if user.is_master and user.project == project_id:
        return
    raise NotFoundError()
