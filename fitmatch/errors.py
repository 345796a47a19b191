"""Central error types used across the application."""

from __future__ import annotations

from typing import Dict, Mapping


class FitMatchError(RuntimeError):
    """Base error for every failure surfaced by the core."""


class ValidationError(FitMatchError):
    """Raised when submitted data is incomplete or invalid.

    ``errors`` maps field names to human readable messages so callers can
    re-prompt for exactly the fields that failed.
    """

    def __init__(self, message: str, errors: Mapping[str, str] | None = None):
        super().__init__(message)
        self.errors: Dict[str, str] = dict(errors or {})


class ConflictError(FitMatchError):
    """Raised when an operation clashes with current state (full, already joined, deleted)."""


class NotFoundError(FitMatchError):
    """Raised when the target activity, chat, user or event no longer exists."""


class TransportError(FitMatchError):
    """Raised when the backend could not be reached or kept failing after retries."""


class AuthorizationError(FitMatchError):
    """Raised when the acting user is not allowed to perform the operation."""


__all__ = [
    "FitMatchError",
    "ValidationError",
    "ConflictError",
    "NotFoundError",
    "TransportError",
    "AuthorizationError",
]
