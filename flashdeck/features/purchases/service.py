"""
Purchases.

One row per (user, set). Recording is idempotent: Stripe may deliver the same
checkout event more than once and the unique constraint settles races.
"""

from typing import Any, Dict, Mapping, Optional
import logging

from sqlalchemy import insert, select
from sqlalchemy.exc import IntegrityError

from flashdeck.core.cache import CacheStore, cache_key_for, invalidate, read_through
from flashdeck.core.database import get_db_session, purchases, sets, users
from flashdeck.core.errors import NotFoundError, ValidationError
from flashdeck.features.access.service import parse_positive_int
from flashdeck.features.pagination.service import (
    Join,
    JoinFilter,
    ListQueryConfig,
    date_range_filter,
    paginate,
)
from flashdeck.features.sets.transform import json_safe_row


logger = logging.getLogger(__name__)

RESOURCE = "Purchase"

PURCHASED_SET_JOIN = Join(
    name="set",
    target=sets,
    columns=("id", "title", "price", "thumbnail", "educator_id"),
    local_key="set_id",
    remote_key="id",
)
BUYER_JOIN = Join(name="buyer", target=users, columns=("id", "name"), local_key="user_id", remote_key="id")

PURCHASE_LIST_CONFIG = ListQueryConfig(
    resource=RESOURCE,
    table=purchases,
    allowed_sort_fields=frozenset({"date"}),
    default_sort="date",
    named_filters={"setId": "set_id"},
    projection=("id", "user_id", "set_id", "date"),
    joins=(PURCHASED_SET_JOIN,),
)

SALES_LIST_CONFIG = ListQueryConfig(
    resource=RESOURCE,
    table=purchases,
    allowed_sort_fields=frozenset({"date"}),
    default_sort="date",
    named_filters={"setId": "set_id"},
    projection=("id", "user_id", "set_id", "date"),
    joins=(PURCHASED_SET_JOIN, BUYER_JOIN),
)


def record_purchase(
    user_id: int,
    set_id: Any,
    *,
    stripe_session_id: Optional[str] = None,
    cache: Optional[CacheStore] = None,
) -> Dict[str, Any]:
    """
    Persist that user_id bought set_id.

    Returns:
        {"id", "userId", "setId", "created"}; created is False when the
        purchase already existed.

    Raises:
        ValidationError: malformed id or a set that is not for sale
        NotFoundError: set does not exist
    """
    parsed = parse_positive_int(set_id)
    if parsed is None:
        raise ValidationError("Invalid set ID")

    with get_db_session() as session:
        set_row = session.execute(select(sets.c.id, sets.c.price).where(sets.c.id == parsed)).first()
        if set_row is None:
            raise NotFoundError("Set not found")
        if not set_row.price or set_row.price <= 0:
            raise ValidationError("Set is not for sale")

        existing = session.execute(
            select(purchases.c.id)
            .where(purchases.c.user_id == user_id)
            .where(purchases.c.set_id == parsed)
        ).scalar()

    created = False
    if existing is None:
        try:
            with get_db_session() as session:
                existing = session.execute(
                    insert(purchases).values(user_id=user_id, set_id=parsed, stripe_session_id=stripe_session_id)
                ).inserted_primary_key[0]
            created = True
        except IntegrityError:
            # Concurrent delivery of the same purchase
            with get_db_session() as session:
                existing = session.execute(
                    select(purchases.c.id)
                    .where(purchases.c.user_id == user_id)
                    .where(purchases.c.set_id == parsed)
                ).scalar()

    if created:
        invalidate(cache, RESOURCE)
        logger.info("[purchases] recorded", extra={"user_id": user_id, "set_id": parsed})
    return {"id": existing, "userId": user_id, "setId": parsed, "created": created}


def _page(config: ListQueryConfig, params: Dict[str, Any], where, join_filters=()) -> Dict[str, Any]:
    result = paginate(config, params, where=where, join_filters=join_filters)
    return {
        "items": [json_safe_row(row) for row in result.items],
        "pagination": result.pagination.to_dict(),
    }


def list_purchases(user_id: int, query: Mapping[str, Any], *, cache: Optional[CacheStore] = None) -> Dict[str, Any]:
    """The caller's purchases, newest first. Cache key carries the user id."""
    params = {k: v for k, v in query.items() if v not in (None, "")}
    params["userId"] = user_id

    def load() -> Dict[str, Any]:
        where = [purchases.c.user_id == user_id]
        where.extend(date_range_filter(purchases.c.date, params.get("from"), params.get("to")))
        return _page(PURCHASE_LIST_CONFIG, params, where)

    return read_through(cache, cache_key_for(RESOURCE, "list", params), load)


def list_sales(educator_id: int, query: Mapping[str, Any], *, cache: Optional[CacheStore] = None) -> Dict[str, Any]:
    """Purchases of sets owned by educator_id."""
    params = {k: v for k, v in query.items() if v not in (None, "")}
    params["educatorId"] = educator_id

    def load() -> Dict[str, Any]:
        where = date_range_filter(purchases.c.date, params.get("from"), params.get("to"))
        owned = JoinFilter(PURCHASED_SET_JOIN, sets.c.educator_id == educator_id)
        return _page(SALES_LIST_CONFIG, params, where, [owned])

    return read_through(cache, cache_key_for(RESOURCE, "sales", params), load)
