"""JSON / JSONP response helpers for browser clients."""

from __future__ import annotations

import json
import re
from typing import Any

from fastapi.responses import JSONResponse, Response

from .errors import RouteValidationError

JSONP_MEDIA_TYPE = "application/javascript"

# Plain or dotted JS identifiers only (e.g. "cb", "jQuery123_456", "app.onRoute").
_CALLBACK_RE = re.compile(r"^[A-Za-z_$][\w$]*(?:\.[A-Za-z_$][\w$]*)*$")
_CALLBACK_MAX_LEN = 128


def validate_callback(callback: str | None) -> str | None:
    if callback is None:
        return None
    name = callback.strip()
    if not name:
        return None
    if len(name) > _CALLBACK_MAX_LEN or not _CALLBACK_RE.match(name):
        raise RouteValidationError(
            reason_code="invalid_callback",
            message="Invalid callback name",
            details={"callback": name[:_CALLBACK_MAX_LEN]},
        )
    return name


def jsonp_body(callback: str, payload: Any) -> str:
    # Leading comment blocks content-sniffing tricks on the callback prefix.
    return f"/**/{callback}({json.dumps(payload, ensure_ascii=False)});"


def render(payload: Any, *, status_code: int = 200, callback: str | None = None) -> Response:
    """Render ``payload`` as JSON, or as a JSONP call when ``callback`` is set.

    JSONP always answers 200: script-tag loaders drop non-2xx bodies.
    """
    if callback:
        return Response(
            content=jsonp_body(callback, payload),
            status_code=200,
            media_type=JSONP_MEDIA_TYPE,
            headers={"X-Content-Type-Options": "nosniff"},
        )
    return JSONResponse(content=payload, status_code=status_code)
