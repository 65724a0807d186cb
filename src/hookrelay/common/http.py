"""Request context utilities."""

from __future__ import annotations

import uuid

import structlog

from starlette.requests import Request
from starlette.responses import Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

# Slack marks redeliveries with these headers; they are safe to log
RETRY_NUM_HEADER = "X-Slack-Retry-Num"
RETRY_REASON_HEADER = "X-Slack-Retry-Reason"


def set_request_id(value: str) -> None:
    """Bind the request id into the log context."""
    structlog.contextvars.bind_contextvars(request_id=value)


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Attach a request id to each request/response and the log context."""

    def __init__(self, app: ASGIApp, header_name: str = "X-Request-ID") -> None:
        super().__init__(app)
        self._header_name = header_name

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(self._header_name) or uuid.uuid4().hex
        request.state.request_id = request_id
        set_request_id(request_id)

        retry_num = request.headers.get(RETRY_NUM_HEADER)
        if retry_num is not None:
            structlog.contextvars.bind_contextvars(
                slack_retry_num=retry_num,
                slack_retry_reason=request.headers.get(RETRY_REASON_HEADER),
            )

        try:
            response = await call_next(request)
            response.headers.setdefault(self._header_name, request_id)
            return response
        finally:
            structlog.contextvars.clear_contextvars()
