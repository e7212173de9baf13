"""Middleware binding a request id to request.state and the response headers."""

from __future__ import annotations

import re
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from app.api.request_id import REQUEST_ID_ATTR

# ids echoed from clients end up in logs and headers
_CLIENT_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def resolve_request_id(header_value: str | None) -> str:
    if header_value and _CLIENT_ID_PATTERN.match(header_value):
        return header_value
    return str(uuid.uuid4())


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        rid = resolve_request_id(request.headers.get("X-Request-Id"))
        setattr(request.state, REQUEST_ID_ATTR, rid)
        response = await call_next(request)
        response.headers["X-Request-Id"] = rid
        return response
