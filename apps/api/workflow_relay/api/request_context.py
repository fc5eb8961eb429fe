"""Per-request id, attached by middleware and echoed in errors and headers."""

from __future__ import annotations

import time
from uuid import uuid4

from fastapi import Request


REQUEST_ID_HEADER = "X-Request-ID"


def new_request_id() -> str:
    return f"req-{int(time.time() * 1000)}-{uuid4().hex[:6]}"


def get_request_id(request: Request) -> str:
    """Dependency returning the id assigned to the current request."""
    request_id = getattr(request.state, "request_id", None)
    if not request_id:
        request_id = new_request_id()
        request.state.request_id = request_id
    return request_id
