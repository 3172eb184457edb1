"""Shared FastAPI dependencies."""

from typing import Optional

from fastapi import Depends, Request
from sqlalchemy import select

from flashdeck.core.auth import get_current_user_id
from flashdeck.core.cache import CacheStore
from flashdeck.core.database import ROLE_ADMIN, get_db_session, users
from flashdeck.core.errors import PermissionError
from flashdeck.features.access.service import SetAccessService


def get_cache(request: Request) -> Optional[CacheStore]:
    """The process cache built in the app lifespan (None disables caching)."""
    return getattr(request.app.state, "cache", None)


def get_access_service(request: Request) -> SetAccessService:
    service = getattr(request.app.state, "access_service", None)
    return service or SetAccessService()


def require_admin(user_id: int = Depends(get_current_user_id)) -> int:
    with get_db_session() as session:
        role_id = session.execute(select(users.c.role_id).where(users.c.id == user_id)).scalar()
    if role_id != ROLE_ADMIN:
        raise PermissionError("Admin access required")
    return user_id
