"""
Single camelCase <-> snake_case field table.

Request parameters arrive camelCase, storage columns are snake_case. Sort
resolution in the paginator and response shaping in the services both go
through this module so the two directions cannot drift apart.
"""

import re
from typing import Any, Dict

# Explicit pairs win over the generic conversion in both directions
FIELD_MAP: Dict[str, str] = {
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "userId": "user_id",
    "setId": "set_id",
    "categoryId": "category_id",
    "educatorId": "educator_id",
    "purchaseId": "purchase_id",
    "cardId": "card_id",
    "tagId": "tag_id",
    "roleId": "role_id",
    "isSubscriberOnly": "is_subscriber_only",
    "frontImage": "front_image",
    "backImage": "back_image",
    "viewedAt": "viewed_at",
    "numCardsViewed": "num_cards_viewed",
    "totalPages": "total_pages",
    "hasMore": "has_more",
    "sortBy": "sort_by",
    "sortOrder": "sort_order",
}

REVERSE_FIELD_MAP: Dict[str, str] = {snake: camel for camel, snake in FIELD_MAP.items()}

_CAMEL_BOUNDARY = re.compile(r"(?<!^)([A-Z])")
_SNAKE_SEGMENT = re.compile(r"_([a-z0-9])")


def to_snake_key(key: str) -> str:
    if key in FIELD_MAP:
        return FIELD_MAP[key]
    return _CAMEL_BOUNDARY.sub(r"_\1", key).lower()


def to_camel_key(key: str) -> str:
    if key in REVERSE_FIELD_MAP:
        return REVERSE_FIELD_MAP[key]
    return _SNAKE_SEGMENT.sub(lambda m: m.group(1).upper(), key)


def to_snake(value: Any) -> Any:
    """Recursively convert mapping keys to snake_case."""
    if isinstance(value, list):
        return [to_snake(v) for v in value]
    if isinstance(value, dict):
        return {to_snake_key(str(k)): to_snake(v) for k, v in value.items()}
    return value


def to_camel(value: Any) -> Any:
    """Recursively convert mapping keys to camelCase."""
    if isinstance(value, list):
        return [to_camel(v) for v in value]
    if isinstance(value, dict):
        return {to_camel_key(str(k)): to_camel(v) for k, v in value.items()}
    return value
