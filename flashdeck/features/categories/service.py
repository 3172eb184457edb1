"""Category service. Reads are cached; writes are admin-only and evict Category and Set."""

from typing import Any, Dict, Mapping, Optional
import logging

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.exc import IntegrityError

from flashdeck.core.cache import CacheStore, cache_key_for, invalidate, read_through
from flashdeck.core.database import ROLE_ADMIN, categories, get_db_session, sets, users
from flashdeck.core.errors import ConflictError, NotFoundError, PermissionError, ValidationError
from flashdeck.core.fields import to_camel_key
from flashdeck.features.access.service import parse_positive_int
from flashdeck.features.pagination.service import ListQueryConfig, paginate, text_search_filter
from flashdeck.features.sets.transform import json_safe_row


logger = logging.getLogger(__name__)

RESOURCE = "Category"

CATEGORY_LIST_CONFIG = ListQueryConfig(
    resource=RESOURCE,
    table=categories,
    allowed_sort_fields=frozenset({"name", "created_at"}),
    default_sort="name",
    default_order="ASC",
    default_limit=50,
)


class CategoryIn(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel_key, populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None


class CategoryPatch(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel_key, populate_by_name=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None


def _require_admin(user_id: int) -> None:
    with get_db_session() as session:
        role_id = session.execute(select(users.c.role_id).where(users.c.id == user_id)).scalar()
    if role_id != ROLE_ADMIN:
        raise PermissionError("Admin access required")


def _require_id(category_id: Any) -> int:
    parsed = parse_positive_int(category_id)
    if parsed is None:
        raise ValidationError("Invalid category ID")
    return parsed


def list_categories(query: Mapping[str, Any], *, cache: Optional[CacheStore] = None) -> Dict[str, Any]:
    params = {k: v for k, v in query.items() if v not in (None, "")}

    def load() -> Dict[str, Any]:
        where = []
        search = text_search_filter([categories.c.name], params.get("search"))
        if search is not None:
            where.append(search)
        result = paginate(CATEGORY_LIST_CONFIG, params, where=where)
        return {
            "items": [json_safe_row(row) for row in result.items],
            "pagination": result.pagination.to_dict(),
        }

    return read_through(cache, cache_key_for(RESOURCE, "list", params), load)


def get_category(category_id: Any, *, cache: Optional[CacheStore] = None) -> Dict[str, Any]:
    parsed = _require_id(category_id)

    def load() -> Dict[str, Any]:
        with get_db_session() as session:
            row = session.execute(select(categories).where(categories.c.id == parsed)).mappings().first()
            if row is None:
                raise NotFoundError("Category not found")
            set_count = session.execute(
                select(func.count(sets.c.id))
                .where(sets.c.category_id == parsed)
                .where(sets.c.hidden == False)  # noqa: E712
            ).scalar() or 0
        data = json_safe_row(dict(row))
        data["setCount"] = set_count
        return data

    return read_through(cache, cache_key_for(RESOURCE, "get", {"id": parsed}), load)


def create_category(payload: CategoryIn, user_id: int, *, cache: Optional[CacheStore] = None) -> Dict[str, Any]:
    _require_admin(user_id)
    name = payload.name.strip()
    try:
        with get_db_session() as session:
            new_id = session.execute(
                insert(categories).values(name=name, description=payload.description)
            ).inserted_primary_key[0]
    except IntegrityError:
        raise ConflictError(f"Category already exists: {name}")

    invalidate(cache, RESOURCE, "Set")
    logger.info("[categories] created", extra={"category_id": new_id, "user_id": user_id})
    return {"id": new_id, "name": name, "description": payload.description}


def update_category(category_id: Any, payload: CategoryPatch, user_id: int, *, cache: Optional[CacheStore] = None) -> Dict[str, Any]:
    parsed = _require_id(category_id)
    _require_admin(user_id)
    changes = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
    if "name" in changes:
        changes["name"] = changes["name"].strip()
    try:
        with get_db_session() as session:
            found = session.execute(select(categories.c.id).where(categories.c.id == parsed)).scalar()
            if found is None:
                raise NotFoundError("Category not found")
            if changes:
                session.execute(update(categories).where(categories.c.id == parsed).values(**changes))
    except IntegrityError:
        raise ConflictError("Category name already in use")

    invalidate(cache, RESOURCE, "Set")
    return {"id": parsed, "updated": True}


def delete_category(category_id: Any, user_id: int, *, cache: Optional[CacheStore] = None) -> Dict[str, Any]:
    parsed = _require_id(category_id)
    _require_admin(user_id)
    with get_db_session() as session:
        found = session.execute(select(categories.c.id).where(categories.c.id == parsed)).scalar()
        if found is None:
            raise NotFoundError("Category not found")
        # Sets fall back to "Uncategorized"
        session.execute(update(sets).where(sets.c.category_id == parsed).values(category_id=None))
        session.execute(delete(categories).where(categories.c.id == parsed))

    invalidate(cache, RESOURCE, "Set")
    logger.info("[categories] deleted", extra={"category_id": parsed, "user_id": user_id})
    return {"id": parsed, "deleted": True}
