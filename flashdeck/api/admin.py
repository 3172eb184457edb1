"""Admin-only operational routes for the read-through cache."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends

from flashdeck.api.deps import get_cache, require_admin
from flashdeck.core.cache import CacheStore, invalidate
from flashdeck.core.errors import ValidationError


logger = logging.getLogger("flashdeck")

router = APIRouter(prefix="/admin", tags=["admin"])

EVICTABLE_RESOURCES = ("Set", "Category", "Tag", "Purchase", "Subscription")


@router.get("/cache-stats")
def cache_stats(admin_id: int = Depends(require_admin), cache: Optional[CacheStore] = Depends(get_cache)):
    if cache is None:
        return {"enabled": False}
    return {"enabled": True, **cache.stats()}


@router.post("/cache/clear")
def clear_cache(
    resource: Optional[str] = None,
    admin_id: int = Depends(require_admin),
    cache: Optional[CacheStore] = Depends(get_cache),
):
    """Clear everything, or only one resource's entries when ?resource= is given."""
    if cache is None:
        return {"cleared": False}
    if resource:
        if resource not in EVICTABLE_RESOURCES:
            raise ValidationError(f"Unknown cache resource: {resource}")
        invalidate(cache, resource)
    else:
        cache.clear()
    logger.info("[admin] cache cleared", extra={"user_id": admin_id, "resource": resource or "*"})
    return {"cleared": True, "resource": resource}
