"""Category API routes. Reads are public and cached; writes require an admin."""
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response

from flashdeck.api.deps import get_cache
from flashdeck.core.auth import get_current_user_id
from flashdeck.core.cache import CacheStore
from flashdeck.core.http_cache import CACHE_DURATIONS, apply_cache_headers
from flashdeck.features.categories import service
from flashdeck.features.categories.service import CategoryIn, CategoryPatch


router = APIRouter(prefix="/categories", tags=["categories"])


@router.get("")
def list_categories(request: Request, response: Response, cache: Optional[CacheStore] = Depends(get_cache)):
    payload = service.list_categories(dict(request.query_params), cache=cache)
    apply_cache_headers(response, CACHE_DURATIONS["LONG"], payload)
    return payload


@router.get("/{category_id}")
def get_category(category_id: str, response: Response, cache: Optional[CacheStore] = Depends(get_cache)):
    payload = service.get_category(category_id, cache=cache)
    apply_cache_headers(response, CACHE_DURATIONS["LONG"], payload)
    return payload


@router.post("", status_code=201)
def create_category(
    payload: CategoryIn,
    user_id: int = Depends(get_current_user_id),
    cache: Optional[CacheStore] = Depends(get_cache),
):
    return service.create_category(payload, user_id, cache=cache)


@router.patch("/{category_id}")
def update_category(
    category_id: str,
    payload: CategoryPatch,
    user_id: int = Depends(get_current_user_id),
    cache: Optional[CacheStore] = Depends(get_cache),
):
    return service.update_category(category_id, payload, user_id, cache=cache)


@router.delete("/{category_id}")
def delete_category(
    category_id: str,
    user_id: int = Depends(get_current_user_id),
    cache: Optional[CacheStore] = Depends(get_cache),
):
    return service.delete_category(category_id, user_id, cache=cache)
