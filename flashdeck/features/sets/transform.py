"""Row -> response shaping for sets. Output is camelCase and JSON-safe."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from flashdeck.core.fields import to_camel

DEFAULT_SET_IMAGE = "/images/default-set.png"


def _json_safe(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _json_safe(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_json_safe(v) for v in value]
    return value


def transform_set_summary(row: Dict[str, Any]) -> Dict[str, Any]:
    """Public listing shape: metadata only, never card content."""
    category = row.get("category")
    educator = row.get("educator")
    tags: List[Dict[str, Any]] = row.get("tags") or []
    out = {
        "id": row["id"],
        "title": row.get("title"),
        "description": row.get("description"),
        "categoryId": row.get("category_id"),
        "category": category["name"] if category else "Uncategorized",
        "educatorId": row.get("educator_id"),
        "educatorName": educator["name"] if educator else "Unknown",
        "educator": (
            {"id": educator["id"], "name": educator["name"], "image": educator.get("image")}
            if educator
            else None
        ),
        "image": row.get("thumbnail") or DEFAULT_SET_IMAGE,
        "price": float(row.get("price") or 0),
        "isSubscriberOnly": bool(row.get("is_subscriber_only")),
        "featured": bool(row.get("featured")),
        "tags": [t["name"] for t in tags],
        "createdAt": row.get("created_at"),
        "updatedAt": row.get("updated_at"),
    }
    return _json_safe(out)


def transform_card(row: Dict[str, Any]) -> Dict[str, Any]:
    return _json_safe(to_camel(dict(row)))


def transform_set_detail(row: Dict[str, Any], cards: List[Dict[str, Any]], access: Dict[str, Any]) -> Dict[str, Any]:
    detail = transform_set_summary(row)
    detail["hidden"] = bool(row.get("hidden"))
    detail["locked"] = False
    detail["access"] = access
    detail["cards"] = [transform_card(c) for c in cards]
    detail["cardCount"] = len(cards)
    return detail


def transform_locked_set(row: Dict[str, Any], card_count: int, access: Dict[str, Any]) -> Dict[str, Any]:
    """Discoverable-but-locked shape: price and title stay visible, cards do not."""
    locked = transform_set_summary(row)
    locked["locked"] = True
    locked["access"] = access
    locked["cards"] = []
    locked["cardCount"] = card_count
    return locked


def json_safe_row(row: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    return _json_safe(to_camel(dict(row)))
