"""Utility helpers for string normalization and XML text escaping."""

from __future__ import annotations

import datetime as dt
import re

SLUG_PATTERN = re.compile(r"[^a-z0-9]+")

_XML_ESCAPES = (
    ("&", "&amp;"),
    ("<", "&lt;"),
    (">", "&gt;"),
    ('"', "&quot;"),
    ("'", "&apos;"),
)


def slugify(value: str, fallback: str = "article") -> str:
    """Generate a filesystem-friendly slug using ASCII characters only."""
    normalized = value.encode("ascii", "ignore").decode("ascii")
    normalized = normalized.lower()
    normalized = SLUG_PATTERN.sub("-", normalized).strip("-")
    return normalized or fallback


def xml_escape(value: str) -> str:
    """Escape the five XML special characters in free text."""
    for plain, entity in _XML_ESCAPES:
        value = value.replace(plain, entity)
    return value


def utc_timestamp(moment: dt.datetime) -> str:
    """Render ``moment`` as ``YYYY-MM-DDThh:mm:ssZ``; naive values are UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=dt.timezone.utc)
    return (
        moment.astimezone(dt.timezone.utc)
        .replace(microsecond=0)
        .isoformat()
        .replace("+00:00", "Z")
    )
