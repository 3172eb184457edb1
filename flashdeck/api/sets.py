"""
Set API routes.

- GET    /api/sets                       public listing (cached)
- GET    /api/sets/{id}                  access-checked view (never cached)
- GET    /api/sets/{id}/summary          public metadata (cached)
- GET    /api/sets/{id}/access           access verdict
- POST   /api/sets                       create
- PATCH  /api/sets/{id}                  update (owner/admin)
- DELETE /api/sets/{id}                  delete (owner/admin)
- POST   /api/sets/{id}/toggle-hidden    hide/unhide (owner/admin)
- POST   /api/sets/{id}/like             like toggle
- GET    /api/sets/{id}/likes            like count
"""
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response

from flashdeck.api.deps import get_access_service, get_cache
from flashdeck.core.auth import get_current_user_id, get_optional_user_id
from flashdeck.core.cache import CacheStore
from flashdeck.core.http_cache import CACHE_DURATIONS, apply_cache_headers
from flashdeck.features.access.service import SetAccessService
from flashdeck.features.sets import service
from flashdeck.models.set import SetCreate, SetUpdate


router = APIRouter(prefix="/sets", tags=["sets"])


@router.get("")
def list_sets(
    request: Request,
    response: Response,
    user_id: Optional[int] = Depends(get_optional_user_id),
    cache: Optional[CacheStore] = Depends(get_cache),
):
    query = dict(request.query_params)
    payload = service.list_sets(query, user_id=user_id, cache=cache)
    # Liked lists are per caller
    private = "liked" in query
    apply_cache_headers(response, CACHE_DURATIONS["SHORT"], payload, private=private)
    return payload


@router.get("/{set_id}")
def view_set(
    set_id: str,
    response: Response,
    user_id: Optional[int] = Depends(get_optional_user_id),
    access: SetAccessService = Depends(get_access_service),
):
    response.headers["Cache-Control"] = "private, no-store"
    return service.view_set(set_id, user_id, access_service=access)


@router.get("/{set_id}/summary")
def set_summary(set_id: str, response: Response, cache: Optional[CacheStore] = Depends(get_cache)):
    payload = service.get_set_summary(set_id, cache=cache)
    apply_cache_headers(response, CACHE_DURATIONS["MEDIUM"], payload)
    return payload


@router.get("/{set_id}/access")
def set_access(
    set_id: str,
    user_id: Optional[int] = Depends(get_optional_user_id),
    access: SetAccessService = Depends(get_access_service),
):
    return service.check_set_access(set_id, user_id, access_service=access)


@router.post("", status_code=201)
def create_set(
    payload: SetCreate,
    user_id: int = Depends(get_current_user_id),
    cache: Optional[CacheStore] = Depends(get_cache),
):
    return service.create_set(payload, user_id, cache=cache)


@router.patch("/{set_id}")
def update_set(
    set_id: str,
    payload: SetUpdate,
    user_id: int = Depends(get_current_user_id),
    cache: Optional[CacheStore] = Depends(get_cache),
):
    return service.update_set(set_id, payload, user_id, cache=cache)


@router.delete("/{set_id}")
def delete_set(
    set_id: str,
    user_id: int = Depends(get_current_user_id),
    cache: Optional[CacheStore] = Depends(get_cache),
):
    return service.delete_set(set_id, user_id, cache=cache)


@router.post("/{set_id}/toggle-hidden")
def toggle_hidden(
    set_id: str,
    user_id: int = Depends(get_current_user_id),
    cache: Optional[CacheStore] = Depends(get_cache),
):
    return service.toggle_hidden(set_id, user_id, cache=cache)


@router.post("/{set_id}/like")
def toggle_like(
    set_id: str,
    user_id: int = Depends(get_current_user_id),
    cache: Optional[CacheStore] = Depends(get_cache),
):
    return service.toggle_like(set_id, user_id, cache=cache)


@router.get("/{set_id}/likes")
def like_count(set_id: str, cache: Optional[CacheStore] = Depends(get_cache)):
    return service.like_count(set_id, cache=cache)
