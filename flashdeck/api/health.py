"""
Health endpoints for operational monitoring. No secrets are exposed.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from flashdeck.core.database import check_connection

logger = logging.getLogger("flashdeck")

router = APIRouter(tags=["health"])


@router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@router.get("/health")
def health(request: Request):
    """Readiness: DB connectivity plus cache backend."""
    db_ok = check_connection()
    cache = getattr(request.app.state, "cache", None)
    body = {
        "ok": db_ok,
        "db": {"connected": db_ok},
        "cache": {"backend": cache.stats().get("backend") if cache is not None else None},
        "computed_at": datetime.now(timezone.utc).isoformat(),
    }
    if not db_ok:
        logger.warning("health.degraded", extra={"status": 503})
        return JSONResponse(status_code=503, content=body)
    return body
