"""Utilities for comparing free-form catalog labels (activity types, levels)."""

from __future__ import annotations

from typing import Any, Iterable

__all__ = ["normalize_label", "canonical_label"]


def normalize_label(value: Any) -> str | None:
    """Return a lowercase, whitespace-collapsed label or ``None`` when blank.

    Users type labels such as ``"easy  run"`` while the catalog stores
    ``"Easy Run"``. Normalising once keeps comparisons deterministic.
    """

    if value is None:
        return None
    normalized = " ".join(str(value).split()).lower()
    return normalized or None


def canonical_label(value: Any, allowed: Iterable[str]) -> str | None:
    """Return the catalog spelling of ``value`` or ``None`` when it is unknown."""

    normalized = normalize_label(value)
    if normalized is None:
        return None
    for item in allowed:
        if normalize_label(item) == normalized:
            return item
    return None
