"""
Auth utilities for the flashdeck API.

Issues and validates HS256 JWTs and extracts the caller's user id from the
Authorization header. Passwords are stored as bcrypt hashes.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
import logging

import bcrypt
import jwt
from fastapi import Request

from flashdeck.core.config import settings
from flashdeck.core.errors import AuthenticationError

logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def _secret() -> str:
    if not settings.JWT_SECRET:
        raise RuntimeError("JWT_SECRET is not configured")
    return settings.JWT_SECRET


def create_access_token(user_id: int, role_id: int, *, expires_minutes: Optional[int] = None) -> str:
    now = datetime.now(timezone.utc)
    minutes = expires_minutes if expires_minutes is not None else settings.JWT_EXPIRES_MINUTES
    payload = {
        "sub": str(user_id),
        "role": role_id,
        "iat": now,
        "exp": now + timedelta(minutes=minutes),
    }
    return jwt.encode(payload, _secret(), algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    """
    Verify a bearer token and return its claims.

    Raises:
        AuthenticationError: expired, malformed or badly signed token
    """
    try:
        payload = jwt.decode(token, _secret(), algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired")
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid token: {e}")
        raise AuthenticationError("Invalid token")

    sub = payload.get("sub")
    if sub is None or not str(sub).isdigit():
        raise AuthenticationError("Invalid token")
    payload["user_id"] = int(sub)
    return payload


def _bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        return token or None
    return None


async def get_optional_user_id(request: Request) -> Optional[int]:
    """
    Caller's user id, or None for anonymous requests.

    A present but invalid token is still rejected with 401 rather than
    silently downgraded to anonymous.
    """
    token = _bearer_token(request)
    if token is None:
        return None
    user_id = decode_access_token(token)["user_id"]
    request.state.user_id = user_id
    return user_id


async def get_current_user_id(request: Request) -> int:
    """Caller's user id; 401 when the request is unauthenticated."""
    user_id = await get_optional_user_id(request)
    if user_id is None:
        raise AuthenticationError("Missing Authorization (Bearer JWT) header")
    return user_id
