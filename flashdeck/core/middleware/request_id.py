import logging
import time
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware

from flashdeck.core.logging import bind_request_id, latency_bucket, reset_request_id

logger = logging.getLogger("flashdeck.request")


class RequestIdMiddleware(BaseHTTPMiddleware):
    """
    Correlate every request with an id.

    A caller-supplied x-request-id is reused so ids can span services;
    otherwise a fresh uuid4 is minted. The id is echoed on the response and
    stamped on every log line and error body produced while serving.
    """

    def __init__(self, app, header_name: str = "x-request-id"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request, call_next):
        rid = request.headers.get(self.header_name) or uuid4().hex
        request.state.request_id = rid
        token = bind_request_id(rid)

        started = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            reset_request_id(token)
        elapsed_ms = (time.perf_counter() - started) * 1000

        response.headers[self.header_name] = rid
        status = response.status_code
        logger.log(
            logging.WARNING if status >= 500 else logging.INFO,
            "request.complete",
            extra={
                "request_id": rid,
                "method": request.method,
                "path": request.url.path,
                "status": status,
                "latency_bucket": latency_bucket(elapsed_ms),
            },
        )
        return response
