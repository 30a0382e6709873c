"""
partyplanner/core/middleware/request_id.py

Request correlation for the Party Planner API.

Every request gets an x-request-id (client supplied or generated), bound to
the logging context for the duration of the call and echoed on the
response. The completion log carries the caller from X-User-Id and, for
event-scoped routes, the event id so one party's traffic can be followed
across requests.
"""
import logging
import time
from typing import Optional
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware

from partyplanner.core.logging import request_id_ctx_var, latency_bucket_ms

logger = logging.getLogger("partyplanner")

USER_HEADER = "x-user-id"
_EVENT_PATH_PREFIX = "/api/events/"


def event_id_from_path(path: str) -> Optional[str]:
    """'/api/events/<id>/...' -> '<id>'; None for any other route."""
    if not path.startswith(_EVENT_PATH_PREFIX):
        return None
    segment = path[len(_EVENT_PATH_PREFIX):].split("/", 1)[0]
    return segment or None


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Attach a request_id to each request and log completion."""

    def __init__(self, app, header_name: str = "x-request-id"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request, call_next):
        rid = request.headers.get(self.header_name) or str(uuid4())
        request.state.request_id = rid
        token = request_id_ctx_var.set(rid)

        start = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            request_id_ctx_var.reset(token)
        duration_ms = (time.perf_counter() - start) * 1000

        response.headers[self.header_name] = rid

        extra = {
            "request_id": rid,
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "latency_bucket": latency_bucket_ms(duration_ms),
            "user_id": (request.headers.get(USER_HEADER) or "").strip() or None,
        }
        event_id = event_id_from_path(request.url.path)
        if event_id:
            extra["event_id"] = event_id
        logger.info("[http] request complete", extra=extra)
        return response
