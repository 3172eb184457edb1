"""Tag listing. Tags are created implicitly by set writes, which evict "Tag:"."""

from typing import Any, Dict, Optional

from sqlalchemy import func, select

from flashdeck.core.cache import CacheStore, cache_key_for, read_through
from flashdeck.core.database import get_db_session, set_tags, sets, tags

RESOURCE = "Tag"


def list_tags(*, cache: Optional[CacheStore] = None) -> Dict[str, Any]:
    """All tags with the number of visible sets carrying each, by name."""

    def load() -> Dict[str, Any]:
        visible_sets = func.count(sets.c.id)
        stmt = (
            select(tags.c.id, tags.c.name, visible_sets.label("set_count"))
            .select_from(
                tags.outerjoin(set_tags, set_tags.c.tag_id == tags.c.id).outerjoin(
                    sets, (sets.c.id == set_tags.c.set_id) & (sets.c.hidden == False)  # noqa: E712
                )
            )
            .group_by(tags.c.id, tags.c.name)
            .order_by(tags.c.name)
        )
        with get_db_session() as session:
            rows = session.execute(stmt).all()
        return {"items": [{"id": r.id, "name": r.name, "setCount": r.set_count} for r in rows]}

    return read_through(cache, cache_key_for(RESOURCE, "list"), load)
