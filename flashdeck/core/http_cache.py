"""HTTP Cache-Control / ETag helpers for cacheable read endpoints."""

import hashlib
import json
from typing import Any, Optional

from starlette.responses import Response

CACHE_DURATIONS = {
    "SHORT": 60,  # frequently changing listings
    "MEDIUM": 300,
    "LONG": 3600,
    "STATIC": 86400,
}


def cache_control_header(
    seconds: int,
    *,
    private: bool = False,
    no_store: bool = False,
    must_revalidate: bool = False,
    stale_while_revalidate: bool = False,
) -> str:
    if no_store:
        return "no-store"
    directives = ["private" if private else "public", f"max-age={seconds}"]
    if must_revalidate:
        directives.append("must-revalidate")
    if stale_while_revalidate:
        directives.append("stale-while-revalidate=3600")
    return ", ".join(directives)


def etag_for(payload: Any) -> Optional[str]:
    try:
        body = json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
    except (TypeError, ValueError):
        return None
    return f'W/"{hashlib.sha1(body).hexdigest()[:16]}"'


def apply_cache_headers(response: Response, seconds: int, payload: Any = None, **options) -> None:
    response.headers["Cache-Control"] = cache_control_header(seconds, **options)
    if payload is not None and not options.get("private") and not options.get("no_store"):
        tag = etag_for(payload)
        if tag:
            response.headers["ETag"] = tag
