"""Error kinds surfaced by the export pipeline."""

from __future__ import annotations

from typing import Optional


class ReaderEpubError(Exception):
    """Base class for reader_epub errors."""


class InvalidArticleError(ReaderEpubError, ValueError):
    """The article cannot be exported (for example, it has no body HTML)."""


class ExportError(ReaderEpubError, RuntimeError):
    """Writing the EPUB archive failed; ``cause`` holds the underlying error."""

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


class ExportCancelled(ReaderEpubError):
    """The export was cancelled before it completed."""
