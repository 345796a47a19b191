"""Map backend HTTP responses onto the core error taxonomy."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple, Type

import requests

from ..errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    TransportError,
    ValidationError,
)

RequestsJSONDecodeError: Type[Exception] = getattr(
    requests.exceptions, "JSONDecodeError", ValueError
)

LOGGER = logging.getLogger(__name__)

__all__ = [
    "classify_response_status",
    "extract_error",
    "extract_field_errors",
]


def classify_response_status(
    response: requests.Response,
    context: str,
    *,
    attempt: int,
    backoff: float,
    can_retry: bool,
) -> Tuple[str, Optional[Exception]]:
    """Return action for a response status: ok, retry, or raise."""

    status = response.status_code
    detail = extract_error(response)

    def with_detail(message: str) -> str:
        return f"{message} | {detail}" if detail else message

    if status == 429 and can_retry:
        LOGGER.warning(
            "%s rate limited (429) attempt=%s; sleeping %.1fs",
            context,
            attempt,
            backoff,
        )
        return "retry", None

    if 500 <= status < 600 and can_retry:
        LOGGER.warning(
            "%s server error %s attempt=%s; retrying in %.1fs",
            context,
            status,
            attempt,
            backoff,
        )
        return "retry", None

    if status in (400, 422):
        message = detail or f"{context} rejected the submitted data"
        LOGGER.info("%s validation failed: %s", context, message)
        return "raise", ValidationError(message, extract_field_errors(response))

    if status in (401, 403):
        message = with_detail(f"{context} not allowed")
        LOGGER.warning(message)
        return "raise", AuthorizationError(message)

    if status == 404:
        message = with_detail(f"{context} not found")
        LOGGER.info(message)
        return "raise", NotFoundError(message)

    if status in (409, 410):
        message = detail or f"{context} conflicts with the current state"
        LOGGER.info("%s conflict: %s", context, message)
        return "raise", ConflictError(message)

    if 400 <= status < 600:
        message = with_detail(f"{context} request failed (status {status})")
        LOGGER.error(message)
        return "raise", TransportError(message)

    return "ok", None


def extract_error(resp: Optional[requests.Response]) -> Optional[str]:
    """Return the server's error message, or a trimmed text body."""

    if resp is None:
        return None
    data = _safe_json(resp)
    if data is None:
        return _extract_error_text(resp)
    if not isinstance(data, dict):
        return None
    message = data.get("message") or data.get("detail") or data.get("error")
    return str(message) if message else None


def extract_field_errors(resp: requests.Response) -> Dict[str, str]:
    """Return ``{"field": "message"}`` from an ``errors`` object, if present."""

    data = _safe_json(resp)
    if not isinstance(data, dict):
        return {}
    errors = data.get("errors")
    if isinstance(errors, dict):
        return {str(k): str(v) for k, v in errors.items()}
    if isinstance(errors, list):
        fields: Dict[str, str] = {}
        for err in errors:
            if isinstance(err, dict) and err.get("field"):
                fields[str(err["field"])] = str(err.get("message") or err.get("code") or "")
        return fields
    return {}


def _safe_json(resp: requests.Response) -> Optional[Any]:
    try:
        return resp.json()
    except (ValueError, RequestsJSONDecodeError) as exc:
        LOGGER.debug("Failed to decode JSON from %s: %s", getattr(resp, "url", "?"), exc)
        return None


def _extract_error_text(resp: requests.Response) -> Optional[str]:
    text = getattr(resp, "text", "")
    if not isinstance(text, str):
        return None
    trimmed = text.strip()
    if not trimmed:
        return None
    return (trimmed[:297] + "...") if len(trimmed) > 300 else trimmed
