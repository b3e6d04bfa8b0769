"""Request ids for tracing a call across logs and error payloads.

Every response carries ``X-Request-ID``. A client-supplied id is reused when
it looks like an opaque token; anything else is replaced so log lines never
carry attacker-shaped text.
"""

import re
import uuid

from asgi_correlation_id import CorrelationIdMiddleware
from asgi_correlation_id.context import correlation_id
from fastapi import FastAPI

REQUEST_ID_HEADER = "X-Request-ID"

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{8,128}$")


def is_acceptable_request_id(value: str) -> bool:
    return bool(_REQUEST_ID_RE.match(value))


def setup_correlation_middleware(app: FastAPI) -> None:
    app.add_middleware(
        CorrelationIdMiddleware,
        header_name=REQUEST_ID_HEADER,
        generator=lambda: uuid.uuid4().hex,
        validator=is_acceptable_request_id,
        update_request_header=True,
    )


def get_correlation_id() -> str | None:
    """Current request id, or None outside a request."""
    return correlation_id.get()
