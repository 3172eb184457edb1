"""
Educator subscriptions.

A subscription unlocks every subscriber-only set of one educator. Rows are
unique per (user, educator); subscribe is idempotent.
"""

from typing import Any, Dict, Mapping, Optional
import logging

from sqlalchemy import delete, insert, select
from sqlalchemy.exc import IntegrityError

from flashdeck.core.cache import CacheStore, cache_key_for, invalidate, read_through
from flashdeck.core.database import get_db_session, subscriptions, users
from flashdeck.core.errors import NotFoundError, ValidationError
from flashdeck.features.access.service import parse_positive_int
from flashdeck.features.pagination.service import Join, ListQueryConfig, paginate
from flashdeck.features.sets.transform import json_safe_row


logger = logging.getLogger(__name__)

RESOURCE = "Subscription"

SUBSCRIPTION_LIST_CONFIG = ListQueryConfig(
    resource=RESOURCE,
    table=subscriptions,
    allowed_sort_fields=frozenset({"date"}),
    default_sort="date",
    projection=("id", "educator_id", "date"),
    joins=(
        Join(name="educator", target=users, columns=("id", "name", "image"), local_key="educator_id", remote_key="id"),
    ),
)


def _require_educator(educator_id: Any) -> int:
    parsed = parse_positive_int(educator_id)
    if parsed is None:
        raise ValidationError("Invalid educator ID")
    with get_db_session() as session:
        found = session.execute(select(users.c.id).where(users.c.id == parsed)).scalar()
    if found is None:
        raise NotFoundError("Educator not found")
    return parsed


def subscribe(
    user_id: int,
    educator_id: Any,
    *,
    stripe_subscription_id: Optional[str] = None,
    cache: Optional[CacheStore] = None,
) -> Dict[str, Any]:
    parsed = _require_educator(educator_id)
    if parsed == user_id:
        raise ValidationError("You cannot subscribe to yourself")

    created = False
    try:
        with get_db_session() as session:
            existing = session.execute(
                select(subscriptions.c.id)
                .where(subscriptions.c.user_id == user_id)
                .where(subscriptions.c.educator_id == parsed)
            ).scalar()
            if existing is None:
                existing = session.execute(
                    insert(subscriptions).values(
                        user_id=user_id,
                        educator_id=parsed,
                        stripe_subscription_id=stripe_subscription_id,
                    )
                ).inserted_primary_key[0]
                created = True
    except IntegrityError:
        with get_db_session() as session:
            existing = session.execute(
                select(subscriptions.c.id)
                .where(subscriptions.c.user_id == user_id)
                .where(subscriptions.c.educator_id == parsed)
            ).scalar()
        created = False

    if created:
        invalidate(cache, RESOURCE)
        logger.info("[subscriptions] subscribed", extra={"user_id": user_id, "educator_id": parsed})
    return {"id": existing, "educatorId": parsed, "subscribed": True, "created": created}


def unsubscribe(user_id: int, educator_id: Any, *, cache: Optional[CacheStore] = None) -> Dict[str, Any]:
    parsed = parse_positive_int(educator_id)
    if parsed is None:
        raise ValidationError("Invalid educator ID")
    with get_db_session() as session:
        removed = session.execute(
            delete(subscriptions)
            .where(subscriptions.c.user_id == user_id)
            .where(subscriptions.c.educator_id == parsed)
        ).rowcount
    if not removed:
        raise NotFoundError("Subscription not found")

    invalidate(cache, RESOURCE)
    logger.info("[subscriptions] unsubscribed", extra={"user_id": user_id, "educator_id": parsed})
    return {"educatorId": parsed, "subscribed": False}


def cancel_by_stripe_id(stripe_subscription_id: str, *, cache: Optional[CacheStore] = None) -> int:
    """Remove the row for a cancelled Stripe subscription. Returns rows removed."""
    with get_db_session() as session:
        removed = session.execute(
            delete(subscriptions).where(subscriptions.c.stripe_subscription_id == stripe_subscription_id)
        ).rowcount
    if removed:
        invalidate(cache, RESOURCE)
    return removed


def is_subscribed(user_id: int, educator_id: int) -> bool:
    with get_db_session() as session:
        return session.execute(
            select(subscriptions.c.id)
            .where(subscriptions.c.user_id == user_id)
            .where(subscriptions.c.educator_id == educator_id)
        ).first() is not None


def list_subscriptions(user_id: int, query: Mapping[str, Any], *, cache: Optional[CacheStore] = None) -> Dict[str, Any]:
    params = {k: v for k, v in query.items() if v not in (None, "")}
    params["userId"] = user_id

    def load() -> Dict[str, Any]:
        result = paginate(SUBSCRIPTION_LIST_CONFIG, params, where=[subscriptions.c.user_id == user_id])
        return {
            "items": [json_safe_row(row) for row in result.items],
            "pagination": result.pagination.to_dict(),
        }

    return read_through(cache, cache_key_for(RESOURCE, "list", params), load)
