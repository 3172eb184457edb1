"""
View history.

A row per (user, set) visit. Only sets the caller can actually open are
recorded; listing is always scoped to the caller.
"""

from typing import Any, Dict, Mapping, Optional
import logging

from sqlalchemy import insert

from flashdeck.core.database import get_db_session, sets, view_history
from flashdeck.core.errors import PermissionError
from flashdeck.features.access.service import SetAccessService
from flashdeck.features.pagination.service import Join, ListQueryConfig, paginate
from flashdeck.features.sets.transform import json_safe_row


logger = logging.getLogger(__name__)

HISTORY_LIST_CONFIG = ListQueryConfig(
    resource="History",
    table=view_history,
    allowed_sort_fields=frozenset({"viewed_at", "num_cards_viewed"}),
    default_sort="viewed_at",
    named_filters={"setId": "set_id", "completed": "completed"},
    joins=(
        Join(name="set", target=sets, columns=("id", "title", "thumbnail"), local_key="set_id", remote_key="id"),
    ),
)


def log_view(user_id: int, set_id: int, *, completed: bool = False, num_cards_viewed: int = 0) -> None:
    """Insert a history row. Callers must have resolved access already."""
    with get_db_session() as session:
        session.execute(
            insert(view_history).values(
                user_id=user_id,
                set_id=set_id,
                completed=completed,
                num_cards_viewed=max(0, num_cards_viewed),
            )
        )
    logger.debug("[history] view recorded", extra={"user_id": user_id, "set_id": set_id})


def record_view(
    user_id: int,
    set_id: Any,
    *,
    completed: bool = False,
    num_cards_viewed: int = 0,
    access_service: Optional[SetAccessService] = None,
) -> Dict[str, Any]:
    access = access_service or SetAccessService()
    verdict = access.check_access(set_id, user_id)
    if not verdict.has_access:
        raise PermissionError(verdict.message or "Access denied")
    log_view(user_id, verdict.set_id, completed=completed, num_cards_viewed=num_cards_viewed)
    return {"recorded": True, "setId": verdict.set_id}


def list_history(user_id: int, query: Mapping[str, Any]) -> Dict[str, Any]:
    # Never cached: per-user and written on every view
    result = paginate(HISTORY_LIST_CONFIG, query, where=[view_history.c.user_id == user_id])
    items = []
    for row in result.items:
        row.pop("user_id", None)
        items.append(json_safe_row(row))
    return {"items": items, "pagination": result.pagination.to_dict()}
