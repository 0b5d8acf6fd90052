import logging
import time
import uuid
from typing import Callable

from fastapi import Request, Response

from searchpulse.core.logging_config import log_event
from searchpulse.core.metrics import http_request_duration_seconds, http_requests_total


logger = logging.getLogger("searchpulse.api")


async def request_context_middleware(request: Request, call_next: Callable) -> Response:
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    started = time.perf_counter()
    log_event(logger, "request.started", request_id=request_id, method=request.method, path=request.url.path)
    response = await call_next(request)
    duration_seconds = time.perf_counter() - started
    route = request.scope.get("route")
    path_label = getattr(route, "path", request.url.path)
    http_requests_total.labels(method=request.method, path=path_label, status=str(response.status_code)).inc()
    http_request_duration_seconds.labels(method=request.method, path=path_label).observe(duration_seconds)
    response.headers["X-Request-ID"] = request_id
    log_event(
        logger,
        "request.finished",
        request_id=request_id,
        status_code=response.status_code,
        duration_ms=int(duration_seconds * 1000),
    )
    return response
