"""
Caller-scoped and catalogue routes.

- GET    /api/tags
- GET    /api/purchases                 caller's purchases
- GET    /api/purchases/sales           purchases of the caller's sets
- GET    /api/subscriptions             caller's subscriptions
- GET    /api/subscriptions/{educator}  subscription status
- POST   /api/subscriptions/{educator}  subscribe
- DELETE /api/subscriptions/{educator}  unsubscribe
- GET    /api/history                   caller's view history
- POST   /api/history/{set_id}          record progress on a set
"""
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, ConfigDict, Field

from flashdeck.api.deps import get_access_service, get_cache
from flashdeck.core.auth import get_current_user_id
from flashdeck.core.cache import CacheStore
from flashdeck.core.errors import ValidationError
from flashdeck.core.fields import to_camel_key
from flashdeck.core.http_cache import CACHE_DURATIONS, apply_cache_headers
from flashdeck.features.access.service import SetAccessService, parse_positive_int
from flashdeck.features.history import service as history
from flashdeck.features.purchases import service as purchases
from flashdeck.features.subscriptions import service as subscriptions
from flashdeck.features.tags import service as tags


router = APIRouter(tags=["library"])


class ViewProgress(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel_key, populate_by_name=True)

    completed: bool = False
    num_cards_viewed: int = Field(default=0, ge=0)


@router.get("/tags")
def list_tags(response: Response, cache: Optional[CacheStore] = Depends(get_cache)):
    payload = tags.list_tags(cache=cache)
    apply_cache_headers(response, CACHE_DURATIONS["MEDIUM"], payload)
    return payload


@router.get("/purchases")
def list_purchases(
    request: Request,
    user_id: int = Depends(get_current_user_id),
    cache: Optional[CacheStore] = Depends(get_cache),
):
    return purchases.list_purchases(user_id, dict(request.query_params), cache=cache)


@router.get("/purchases/sales")
def list_sales(
    request: Request,
    user_id: int = Depends(get_current_user_id),
    cache: Optional[CacheStore] = Depends(get_cache),
):
    return purchases.list_sales(user_id, dict(request.query_params), cache=cache)


@router.get("/subscriptions")
def list_subscriptions(
    request: Request,
    user_id: int = Depends(get_current_user_id),
    cache: Optional[CacheStore] = Depends(get_cache),
):
    return subscriptions.list_subscriptions(user_id, dict(request.query_params), cache=cache)


@router.get("/subscriptions/{educator_id}")
def subscription_status(educator_id: str, user_id: int = Depends(get_current_user_id)):
    parsed = parse_positive_int(educator_id)
    if parsed is None:
        raise ValidationError("Invalid educator ID")
    return {"educatorId": parsed, "subscribed": subscriptions.is_subscribed(user_id, parsed)}


@router.post("/subscriptions/{educator_id}", status_code=201)
def subscribe(
    educator_id: str,
    user_id: int = Depends(get_current_user_id),
    cache: Optional[CacheStore] = Depends(get_cache),
):
    return subscriptions.subscribe(user_id, educator_id, cache=cache)


@router.delete("/subscriptions/{educator_id}")
def unsubscribe(
    educator_id: str,
    user_id: int = Depends(get_current_user_id),
    cache: Optional[CacheStore] = Depends(get_cache),
):
    return subscriptions.unsubscribe(user_id, educator_id, cache=cache)


@router.get("/history")
def list_history(request: Request, user_id: int = Depends(get_current_user_id)):
    return history.list_history(user_id, dict(request.query_params))


@router.post("/history/{set_id}", status_code=201)
def record_view(
    set_id: str,
    progress: ViewProgress,
    user_id: int = Depends(get_current_user_id),
    access: SetAccessService = Depends(get_access_service),
):
    return history.record_view(
        user_id,
        set_id,
        completed=progress.completed,
        num_cards_viewed=progress.num_cards_viewed,
        access_service=access,
    )
