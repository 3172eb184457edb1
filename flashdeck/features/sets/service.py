"""
Flashcard set service.

Listing and summaries are public, access-free and cached under "Set:".
Viewing a set goes through the access engine every time and is never cached.
Every write evicts the whole "Set:" prefix before returning.
"""

from typing import Any, Dict, List, Mapping, Optional
import logging

from sqlalchemy import and_, delete, func, insert, select, update
from sqlalchemy.orm import Session

from flashdeck.core.cache import CacheStore, cache_key_for, invalidate, read_through
from flashdeck.core.config import settings
from flashdeck.core.database import (
    ROLE_ADMIN,
    cards,
    categories,
    get_db_session,
    purchases,
    set_tags,
    sets,
    tags,
    user_likes,
    users,
    view_history,
)
from flashdeck.core.errors import AuthenticationError, NotFoundError, PermissionError, ValidationError
from flashdeck.features.access.service import (
    AccessError,
    AccessErrorCode,
    AccessVerdict,
    SetAccessService,
    parse_positive_int,
)
from flashdeck.features.history.service import log_view
from flashdeck.features.pagination.service import (
    Join,
    JoinFilter,
    ListQueryConfig,
    load_joins,
    paginate,
    resolve_page_request,
    text_search_filter,
)
from flashdeck.features.sets.transform import (
    transform_locked_set,
    transform_set_detail,
    transform_set_summary,
)
from flashdeck.models.set import CardIn, SetCreate, SetUpdate


logger = logging.getLogger(__name__)

RESOURCE = "Set"

CATEGORY_JOIN = Join(name="category", target=categories, columns=("id", "name"), local_key="category_id", remote_key="id")
EDUCATOR_JOIN = Join(name="educator", target=users, columns=("id", "name", "image"), local_key="educator_id", remote_key="id")
TAGS_JOIN = Join(
    name="tags",
    target=tags,
    columns=("name", "id"),
    local_key="id",
    remote_key="id",
    many=True,
    through=set_tags,
    through_local="set_id",
    through_remote="tag_id",
)
LIKES_JOIN = Join(
    name="likes",
    target=user_likes,
    columns=("user_id",),
    local_key="id",
    remote_key="set_id",
    many=True,
)

SET_JOINS = (CATEGORY_JOIN, EDUCATOR_JOIN, TAGS_JOIN)

SET_LIST_CONFIG = ListQueryConfig(
    resource=RESOURCE,
    table=sets,
    allowed_sort_fields=frozenset({"created_at", "title", "price", "featured"}),
    default_sort="featured",
    named_filters={"educatorId": "educator_id", "categoryId": "category_id", "featured": "featured"},
    base_filter=(sets.c.hidden == False,),  # noqa: E712
    projection=(
        "id",
        "title",
        "description",
        "educator_id",
        "category_id",
        "price",
        "is_subscriber_only",
        "featured",
        "thumbnail",
        "created_at",
        "updated_at",
    ),
    joins=SET_JOINS,
    default_limit=settings.PAGINATION_DEFAULT_LIMIT,
    max_limit=settings.PAGINATION_MAX_LIMIT,
)

# sortOrder values that stand for a whole ordering
SORT_PRESETS = {
    "featured": ("featured", "DESC"),
    "newest": ("createdAt", "DESC"),
    "oldest": ("createdAt", "ASC"),
}

SET_TYPE_FILTERS = {
    "free": lambda: and_(sets.c.price == 0, sets.c.is_subscriber_only == False),  # noqa: E712
    "premium": lambda: and_(sets.c.price > 0, sets.c.is_subscriber_only == False),  # noqa: E712
    "subscriber": lambda: sets.c.is_subscriber_only == True,  # noqa: E712
}


def _truthy(raw: Any) -> bool:
    return str(raw).strip().lower() in {"1", "true", "yes", "on"}


def _apply_sort_preset(query: Dict[str, Any]) -> Dict[str, Any]:
    order = query.get("sortOrder")
    if isinstance(order, str) and order.strip().lower() in SORT_PRESETS:
        sort_by, sort_order = SORT_PRESETS[order.strip().lower()]
        query["sortBy"] = sort_by
        query["sortOrder"] = sort_order
    return query


def _category_id_by_name(name: str) -> int:
    with get_db_session() as session:
        category_id = session.execute(
            select(categories.c.id).where(func.lower(categories.c.name) == name.strip().lower())
        ).scalar()
    if category_id is None:
        raise NotFoundError(f"Category not found: {name}")
    return category_id


def _list_sets_uncached(query: Dict[str, Any], user_id: Optional[int]) -> Dict[str, Any]:
    where = []
    join_filters: List[JoinFilter] = []

    category = query.get("category")
    if category:
        where.append(sets.c.category_id == _category_id_by_name(str(category)))

    set_type = query.get("setType")
    if set_type:
        factory = SET_TYPE_FILTERS.get(str(set_type).strip().lower())
        if factory is None:
            raise ValidationError(f"Invalid setType: {set_type}")
        where.append(factory())

    search = text_search_filter([sets.c.title, sets.c.description], query.get("search"))
    if search is not None:
        where.append(search)

    tag = query.get("tag")
    if tag:
        join_filters.append(JoinFilter(TAGS_JOIN, tags.c.name == str(tag).strip().lower()))

    if _truthy(query.get("liked", "")):
        join_filters.append(JoinFilter(LIKES_JOIN, user_likes.c.user_id == user_id))

    result = paginate(SET_LIST_CONFIG, query, where=where, join_filters=join_filters)
    return {
        "items": [transform_set_summary(row) for row in result.items],
        "pagination": result.pagination.to_dict(),
    }


def list_sets(query: Mapping[str, Any], *, user_id: Optional[int] = None, cache: Optional[CacheStore] = None) -> Dict[str, Any]:
    """
    Public set listing.

    Supports page, limit, sortBy, sortOrder (incl. featured/newest/oldest),
    educatorId, categoryId, category (by name), setType, search, tag and
    liked. liked=true requires a caller and keys the cache entry by user.
    """
    params = _apply_sort_preset({k: v for k, v in query.items() if v not in (None, "")})
    # Reject bad sort params before any lookup or cache traffic
    resolve_page_request(SET_LIST_CONFIG, params)
    if _truthy(params.get("liked", "")):
        if user_id is None:
            raise AuthenticationError("Sign in to list liked sets")
        params["userId"] = user_id
    else:
        params.pop("liked", None)
        params.pop("userId", None)

    key = cache_key_for(RESOURCE, "list", params)
    return read_through(cache, key, lambda: _list_sets_uncached(params, user_id))


def _load_set_row(session: Session, set_id: int) -> Optional[Dict[str, Any]]:
    row = session.execute(select(sets).where(sets.c.id == set_id)).mappings().first()
    if row is None:
        return None
    data = dict(row)
    load_joins(session, SET_JOINS, [data])
    return data


def _user_exists(session: Session, user_id: int) -> bool:
    return session.execute(select(users.c.id).where(users.c.id == user_id)).first() is not None


def _require_set_id(set_id: Any) -> int:
    parsed = parse_positive_int(set_id)
    if parsed is None:
        raise ValidationError("Invalid set ID")
    return parsed


def get_set_summary(set_id: Any, *, cache: Optional[CacheStore] = None) -> Dict[str, Any]:
    """Public metadata for one visible set. No card content."""
    parsed = _require_set_id(set_id)

    def load() -> Dict[str, Any]:
        with get_db_session() as session:
            row = _load_set_row(session, parsed)
        if row is None or row["hidden"]:
            raise NotFoundError("Set not found")
        return transform_set_summary(row)

    return read_through(cache, cache_key_for(RESOURCE, "get", {"id": parsed}), load)


def view_set(
    set_id: Any,
    user_id: Optional[int] = None,
    *,
    access_service: Optional[SetAccessService] = None,
) -> Dict[str, Any]:
    """
    Full set content when the caller has access, a locked payload otherwise.

    Raises AccessError for malformed ids and for missing or hidden sets.
    """
    access = access_service or SetAccessService()
    try:
        verdict: AccessVerdict = access.check_access(set_id, user_id)
    except AccessError as exc:
        if exc.reason is not AccessErrorCode.USER_NOT_FOUND:
            raise
        # A token for a removed account reads as anonymous
        user_id = None
        verdict = access.check_access(set_id, None)

    with get_db_session() as session:
        row = _load_set_row(session, verdict.set_id)
        if row is None:
            raise NotFoundError("Set not found")
        if user_id is not None and not _user_exists(session, user_id):
            user_id = None
        if verdict.has_access:
            card_rows = [
                dict(c)
                for c in session.execute(
                    select(cards).where(cards.c.set_id == verdict.set_id).order_by(cards.c.id)
                ).mappings()
            ]
        else:
            card_count = session.execute(
                select(func.count(cards.c.id)).where(cards.c.set_id == verdict.set_id)
            ).scalar() or 0

    if not verdict.has_access:
        return transform_locked_set(row, card_count, verdict.to_dict())

    if user_id is not None:
        log_view(int(user_id), verdict.set_id)
    return transform_set_detail(row, card_rows, verdict.to_dict())


def check_set_access(set_id: Any, user_id: Optional[int] = None, *, access_service: Optional[SetAccessService] = None) -> Dict[str, Any]:
    access = access_service or SetAccessService()
    return access.check_access(set_id, user_id).to_dict()


def _is_admin(session: Session, user_id: int) -> bool:
    role_id = session.execute(select(users.c.role_id).where(users.c.id == user_id)).scalar()
    return role_id == ROLE_ADMIN


def _load_for_write(session: Session, set_id: int, user_id: int) -> Dict[str, Any]:
    """Load a set the caller may modify: its owner or an admin."""
    row = session.execute(select(sets).where(sets.c.id == set_id)).mappings().first()
    if row is None:
        raise NotFoundError("Set not found")
    if row["educator_id"] == user_id or _is_admin(session, user_id):
        return dict(row)
    # Hidden sets stay indistinguishable from missing ones for everybody else
    if row["hidden"]:
        raise NotFoundError("Set not found")
    raise PermissionError("Only the set owner can modify this set")


def _ensure_category(session: Session, category_id: Optional[int]) -> None:
    if category_id is None:
        return
    found = session.execute(select(categories.c.id).where(categories.c.id == category_id)).scalar()
    if found is None:
        raise ValidationError(f"Unknown category: {category_id}")


def _tag_ids(session: Session, names: List[str]) -> List[int]:
    """Get-or-create tags by name."""
    if not names:
        return []
    existing = {
        r.name: r.id
        for r in session.execute(select(tags.c.id, tags.c.name).where(tags.c.name.in_(names)))
    }
    for name in names:
        if name not in existing:
            existing[name] = session.execute(insert(tags).values(name=name)).inserted_primary_key[0]
    return [existing[name] for name in names]


def _replace_tags(session: Session, set_id: int, names: List[str]) -> None:
    session.execute(delete(set_tags).where(set_tags.c.set_id == set_id))
    for tag_id in _tag_ids(session, names):
        session.execute(insert(set_tags).values(set_id=set_id, tag_id=tag_id))


def _replace_cards(session: Session, set_id: int, new_cards: List[CardIn]) -> None:
    session.execute(delete(cards).where(cards.c.set_id == set_id))
    for card in new_cards:
        session.execute(insert(cards).values(set_id=set_id, **card.model_dump()))


def create_set(payload: SetCreate, user_id: int, *, cache: Optional[CacheStore] = None) -> Dict[str, Any]:
    with get_db_session() as session:
        _ensure_category(session, payload.category_id)
        set_id = session.execute(
            insert(sets).values(
                title=payload.title,
                description=payload.description,
                educator_id=user_id,
                category_id=payload.category_id,
                price=payload.price,
                is_subscriber_only=payload.is_subscriber_only,
                featured=payload.featured,
                hidden=payload.hidden,
                thumbnail=payload.thumbnail,
            )
        ).inserted_primary_key[0]
        _replace_tags(session, set_id, payload.tags)
        _replace_cards(session, set_id, payload.cards)

    invalidate(cache, RESOURCE, "Tag")
    logger.info("[sets] created", extra={"set_id": set_id, "user_id": user_id})
    return {"id": set_id, "title": payload.title, "cardCount": len(payload.cards)}


def update_set(set_id: Any, payload: SetUpdate, user_id: int, *, cache: Optional[CacheStore] = None) -> Dict[str, Any]:
    parsed = _require_set_id(set_id)
    changes = payload.model_dump(exclude_unset=True, exclude={"tags", "cards"})
    changes = {k: v for k, v in changes.items() if v is not None or k in {"category_id", "thumbnail"}}

    with get_db_session() as session:
        _load_for_write(session, parsed, user_id)
        if "category_id" in changes:
            _ensure_category(session, changes["category_id"])
        changes["updated_at"] = func.now()
        session.execute(update(sets).where(sets.c.id == parsed).values(**changes))
        if payload.tags is not None:
            _replace_tags(session, parsed, payload.tags)
        if payload.cards is not None:
            _replace_cards(session, parsed, payload.cards)

    # Purchase and sales lists embed set title and price
    invalidate(cache, RESOURCE, "Tag", "Purchase")
    logger.info("[sets] updated", extra={"set_id": parsed, "user_id": user_id})
    return {"id": parsed, "updated": True}


def delete_set(set_id: Any, user_id: int, *, cache: Optional[CacheStore] = None) -> Dict[str, Any]:
    parsed = _require_set_id(set_id)
    with get_db_session() as session:
        _load_for_write(session, parsed, user_id)
        # Children go first; SQLite does not enforce ON DELETE by default
        for child in (cards, set_tags, user_likes, view_history, purchases):
            session.execute(delete(child).where(child.c.set_id == parsed))
        session.execute(delete(sets).where(sets.c.id == parsed))

    invalidate(cache, RESOURCE, "Tag", "Purchase")
    logger.info("[sets] deleted", extra={"set_id": parsed, "user_id": user_id})
    return {"id": parsed, "deleted": True}


def toggle_hidden(set_id: Any, user_id: int, *, cache: Optional[CacheStore] = None) -> Dict[str, Any]:
    parsed = _require_set_id(set_id)
    with get_db_session() as session:
        row = _load_for_write(session, parsed, user_id)
        hidden = not row["hidden"]
        session.execute(update(sets).where(sets.c.id == parsed).values(hidden=hidden, updated_at=func.now()))

    invalidate(cache, RESOURCE)
    return {"id": parsed, "hidden": hidden}


def _visible_set_id(session: Session, set_id: int) -> int:
    hidden = session.execute(select(sets.c.hidden).where(sets.c.id == set_id)).first()
    if hidden is None or hidden[0]:
        raise NotFoundError("Set not found")
    return set_id


def _like_count(session: Session, set_id: int) -> int:
    return session.execute(
        select(func.count(user_likes.c.id)).where(user_likes.c.set_id == set_id)
    ).scalar() or 0


def toggle_like(set_id: Any, user_id: int, *, cache: Optional[CacheStore] = None) -> Dict[str, Any]:
    parsed = _require_set_id(set_id)
    with get_db_session() as session:
        _visible_set_id(session, parsed)
        existing = session.execute(
            select(user_likes.c.id)
            .where(user_likes.c.set_id == parsed)
            .where(user_likes.c.user_id == user_id)
        ).first()
        if existing:
            session.execute(delete(user_likes).where(user_likes.c.id == existing.id))
            liked = False
        else:
            session.execute(insert(user_likes).values(user_id=user_id, set_id=parsed))
            liked = True
        session.flush()
        count = _like_count(session, parsed)

    invalidate(cache, RESOURCE)
    return {"setId": parsed, "liked": liked, "likes": count}


def like_count(set_id: Any, *, cache: Optional[CacheStore] = None) -> Dict[str, Any]:
    parsed = _require_set_id(set_id)

    def load() -> Dict[str, Any]:
        with get_db_session() as session:
            _visible_set_id(session, parsed)
            return {"setId": parsed, "likes": _like_count(session, parsed)}

    return read_through(cache, cache_key_for(RESOURCE, "likes", {"id": parsed}), load)
