# backend/app/middleware/request_id.py
from __future__ import annotations

import re
import uuid
from contextvars import ContextVar
from typing import Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"

# ids from callers end up in every log line of the request
_SAFE_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")

request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def get_request_id() -> Optional[str]:
    return request_id_ctx.get()


def resolve_request_id(incoming: Optional[str]) -> str:
    """Caller's id if it is a short token, otherwise a fresh one."""
    candidate = (incoming or "").strip()
    if candidate and _SAFE_ID.match(candidate):
        return candidate
    return uuid.uuid4().hex


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Binds a request id for the JSON log formatter and echoes it back."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # starlette headers are case-insensitive
        rid = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        token = request_id_ctx.set(rid)
        try:
            resp = await call_next(request)
        finally:
            request_id_ctx.reset(token)
        resp.headers[REQUEST_ID_HEADER] = rid
        return resp
