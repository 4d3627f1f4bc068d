"""Request ID middleware for the credit rating API.

Every request gets a request ID, echoed in the X-Request-Id response header
and included in error envelopes and activity log lines.
"""

import uuid
from collections.abc import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

REQUEST_ID_HEADER = "X-Request-Id"
MAX_REQUEST_ID_LENGTH = 128


def _accept_request_id(raw: str | None) -> str | None:
    """Return a caller-supplied request ID if it is usable."""
    if not raw:
        return None
    candidate = raw.strip()
    if not candidate or len(candidate) > MAX_REQUEST_ID_LENGTH or not candidate.isprintable():
        return None
    return candidate


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Attach a request ID to request.state and the response.

    A non-empty, printable X-Request-Id of at most 128 characters is reused;
    otherwise a uuid4 is generated.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        request_id = _accept_request_id(request.headers.get(REQUEST_ID_HEADER))
        if request_id is None:
            request_id = str(uuid.uuid4())

        request.state.request_id = request_id

        response: Response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
