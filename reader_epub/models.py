"""Data models used throughout the export pipeline."""

from __future__ import annotations

import datetime as dt
import uuid
import zipfile
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional

CONVERSION_PASSTHROUGH = "passthrough"
CONVERSION_TRANSCODED = "transcoded"
CONVERSION_ORIGINAL_KEPT = "original-kept"


@dataclass(frozen=True)
class ArticleInput:
    """An extracted article, read-only for the duration of one export."""

    id: str
    title: str
    body_html: str
    source_url: str
    extracted_at: dt.datetime
    byline: Optional[str] = None
    plain_text: str = ""
    word_count: int = 0
    excerpt: Optional[str] = None
    site_name: Optional[str] = None

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ArticleInput":
        """Build an article from snake_case keys or a Readability.js result."""

        def pick(*keys: str) -> Any:
            for key in keys:
                value = payload.get(key)
                if value is not None:
                    return value
            return None

        plain_text = pick("plain_text", "textContent") or ""
        word_count = pick("word_count", "length")
        if word_count is None:
            word_count = len(plain_text.split())

        return cls(
            id=str(pick("id") or uuid.uuid4()),
            title=pick("title") or "Untitled",
            body_html=pick("body_html", "content") or "",
            source_url=pick("source_url", "url") or "",
            extracted_at=_parse_timestamp(pick("extracted_at", "dateExtracted")),
            byline=pick("byline"),
            plain_text=plain_text,
            word_count=int(word_count),
            excerpt=pick("excerpt"),
            site_name=pick("site_name", "siteName"),
        )


def _parse_timestamp(value: Any) -> dt.datetime:
    if value is None:
        return dt.datetime.now(dt.timezone.utc)
    if isinstance(value, dt.datetime):
        return value
    if isinstance(value, (int, float)):
        return dt.datetime.fromtimestamp(value, dt.timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return dt.datetime.fromisoformat(text)


@dataclass
class ImageReference:
    """One ``<img>`` occurrence discovered by the markup scan."""

    index: int
    src_start: int
    src_end: int
    src: str
    absolute_url: Optional[str] = None
    quoted: bool = True


@dataclass
class ImageOutcome:
    """Result of resolving a single reference: either image bytes or a skip."""

    reference: ImageReference
    data: Optional[bytes] = None
    mime_type: Optional[str] = None
    conversion: Optional[str] = None
    skip_reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.data is not None and self.skip_reason is None

    @classmethod
    def skipped(cls, reference: ImageReference, reason: str) -> "ImageOutcome":
        return cls(reference=reference, skip_reason=reason)


@dataclass
class ImageResource:
    """An image embedded in the package under ``OEBPS/images``."""

    filename: str
    data: bytes
    mime_type: str

    @property
    def href(self) -> str:
        return f"images/{self.filename}"


@dataclass
class EpubEntry:
    """A single archive member."""

    path: str
    data: bytes
    compress_type: int = zipfile.ZIP_DEFLATED


@dataclass
class EpubPackage:
    """Ordered archive entries for one export, mimetype first."""

    entries: List[EpubEntry] = field(default_factory=list)
    images: List[ImageResource] = field(default_factory=list)

    @property
    def paths(self) -> List[str]:
        return [entry.path for entry in self.entries]
