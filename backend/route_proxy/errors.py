from __future__ import annotations

from dataclasses import dataclass
from typing import Any

FROZEN_REASON_CODES: frozenset[str] = frozenset(
    {
        "missing_parameter",
        "invalid_parameter",
        "invalid_callback",
        "upstream_unreachable",
        "upstream_timeout",
        "upstream_http_error",
        "upstream_bad_payload",
        "upstream_rejected",
        "upstream_debug_disabled",
        "internal_error",
    }
)


@dataclass
class RouteProxyError(Exception):
    reason_code: str
    message: str
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        return self.message


class RouteValidationError(RouteProxyError):
    """Query rejected before touching the cache or the network."""


class UpstreamError(RouteProxyError):
    """Directions provider failed (after retries, when raised by the client)."""


def normalize_reason_code(reason_code: str, *, default: str = "internal_error") -> str:
    code = str(reason_code or "").strip()
    if code in FROZEN_REASON_CODES:
        return code
    return default


def missing_parameter(name: str) -> RouteValidationError:
    return RouteValidationError(
        reason_code="missing_parameter",
        message=f"Missing required parameter: {name}",
        details={"parameter": name},
    )


def invalid_parameter(name: str, value: Any, expected: str) -> RouteValidationError:
    return RouteValidationError(
        reason_code="invalid_parameter",
        message=f"Invalid value for {name}: expected {expected}",
        details={"parameter": name, "value": str(value)},
    )
