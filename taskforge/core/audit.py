from __future__ import annotations

import hashlib
from time import perf_counter
from typing import Iterable
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from starlette.types import ASGIApp

from .logging import get_logger, log_context

REQUEST_ID_HEADER = "X-Request-ID"


class AuditLoggingMiddleware(BaseHTTPMiddleware):
    """Emit one audit event per API request and tag its logs with a request id.

    A caller-supplied ``X-Request-ID`` is reused; otherwise one is generated.
    The id is echoed on the response and bound to every event logged while
    the request is handled, so task creation and approval logs can be traced
    back to the call that triggered them.
    """

    def __init__(self, app: ASGIApp, *, include_prefixes: Iterable[str] = ("/api/",)) -> None:
        super().__init__(app)
        self._prefixes = tuple(include_prefixes)
        self._logger = get_logger(name="audit")

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        if self._prefixes and not any(request.url.path.startswith(prefix) for prefix in self._prefixes):
            return await call_next(request)

        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
        started = perf_counter()
        body = b""
        if request.method in {"POST", "PUT", "PATCH", "DELETE"}:
            body = await request.body()

        with log_context(request_id=request_id):
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id
            self._logger.info(
                "audit_log",
                method=request.method,
                path=request.url.path,
                status=response.status_code,
                payload_sha256=hashlib.sha256(body).hexdigest() if body else None,
                content_length=len(body),
                client_ip=(request.client.host if request.client else None),
                duration_ms=round((perf_counter() - started) * 1000, 3),
            )
        return response


__all__ = ["REQUEST_ID_HEADER", "AuditLoggingMiddleware"]
