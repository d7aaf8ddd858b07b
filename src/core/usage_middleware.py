"""Usage logging middleware for integration requests."""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from src.models.db.base import utcnow
from src.services.usage_accountant import RequestEvent

logger = logging.getLogger(__name__)


class UsageLoggingMiddleware(BaseHTTPMiddleware):
    """Records one usage log entry per request authenticated by an API key.

    The API key dependency leaves the validated key id and caller IP on
    request.state. Requests without them (admin, health, rejected keys)
    are not recorded. Recording is a non-blocking enqueue.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        started_at = utcnow()
        start = time.perf_counter()

        response = await call_next(request)

        duration_ms = round((time.perf_counter() - start) * 1000, 2)
        response.headers["X-Request-Duration-Ms"] = str(duration_ms)

        api_key_id = getattr(request.state, "api_key_id", None)
        accountant = getattr(request.app.state, "usage_accountant", None)
        if api_key_id is None or accountant is None:
            return response

        accountant.record_request(
            RequestEvent(
                api_key_id=api_key_id,
                request_timestamp=started_at,
                ip_address=getattr(request.state, "client_ip", None),
                endpoint=request.url.path,
                http_method=request.method,
                status_code=response.status_code,
                response_time_ms=int(duration_ms),
            )
        )

        logger.debug(
            "integration request: %s %s %d (%.1fms)",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
        )

        return response
