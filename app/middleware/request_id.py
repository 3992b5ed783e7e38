"""
Request ID middleware for FastAPI.

Every request gets a request_id: the caller's X-Request-ID when it looks
sane, a fresh UUID4 otherwise. It is stored on request.state and set in the
logging context so datasource and connection test logs carry it. The
response echoes it back as X-Request-ID.
"""

import time
import uuid

from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.core.logging_config import clear_request_id, set_request_id

REQUEST_ID_HEADER = "X-Request-ID"
MAX_REQUEST_ID_LENGTH = 128

# Polled by load balancers; not worth a log line per call
QUIET_PATHS = ("/health",)


def resolve_request_id(incoming: str | None) -> str:
    if incoming and len(incoming) <= MAX_REQUEST_ID_LENGTH and incoming.isprintable():
        return incoming
    return str(uuid.uuid4())


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        set_request_id(request_id)

        quiet = request.url.path in QUIET_PATHS
        started = time.perf_counter()
        try:
            response: Response = await call_next(request)
        except Exception as e:
            logger.error(f"{request.method} {request.url.path} - Request failed: {e}")
            raise
        else:
            response.headers[REQUEST_ID_HEADER] = request_id
            if not quiet:
                elapsed_ms = (time.perf_counter() - started) * 1000
                logger.info(
                    f"{request.method} {request.url.path} - {response.status_code} "
                    f"in {elapsed_ms:.1f}ms"
                )
            return response
        finally:
            clear_request_id()
