"""High-level orchestration for exporting an article as an EPUB."""

from __future__ import annotations

import asyncio
import logging
import tempfile
import threading
import time
import uuid
from pathlib import Path
from typing import List, Optional

import requests

from .config import ExportConfig
from .documents import build_documents
from .errors import ExportCancelled, InvalidArticleError
from .images import raise_if_cancelled, resolve_images
from .models import ArticleInput, EpubPackage
from .packager import assemble_package, package, package_bytes
from .sanitize import sanitize
from .utils import slugify

logger = logging.getLogger("reader_epub")


def validate_article(article: ArticleInput) -> None:
    """Reject articles that would produce an empty book."""
    if not article.body_html or not article.body_html.strip():
        raise InvalidArticleError(f"Article {article.id!r} has no body HTML to export")


def output_path_for(article: ArticleInput, config: ExportConfig) -> Path:
    """Pick a collision-free archive path for one export."""
    directory = config.output_dir or Path(tempfile.gettempdir())
    slug = slugify(article.title)[:60].strip("-") or "article"
    return directory / f"{slug}-{uuid.uuid4().hex}.epub"


def build_package(
    article: ArticleInput,
    config: Optional[ExportConfig] = None,
    session: Optional[requests.Session] = None,
    cancel_event: Optional[threading.Event] = None,
) -> EpubPackage:
    """Resolve images, sanitize the body and assemble the archive entries."""
    config = config or ExportConfig()
    validate_article(article)
    logger.info("Exporting %r from %s", article.title, article.source_url or "(no URL)")

    body_html, images = resolve_images(
        article.body_html,
        article.source_url or None,
        config,
        session=session,
        cancel_event=cancel_event,
    )
    body_html = sanitize(body_html)
    raise_if_cancelled(cancel_event)
    documents = build_documents(article, body_html, images, config.language)
    return assemble_package(documents, images)


def export_article(
    article: ArticleInput,
    config: Optional[ExportConfig] = None,
    session: Optional[requests.Session] = None,
    cancel_event: Optional[threading.Event] = None,
) -> Path:
    """Export ``article`` to a new EPUB file and return its path.

    The caller owns the returned file and is responsible for deleting it.
    """
    config = config or ExportConfig()
    start = time.perf_counter()
    epub = build_package(article, config, session=session, cancel_event=cancel_event)
    raise_if_cancelled(cancel_event)

    output_path = package(epub, output_path_for(article, config))
    if cancel_event is not None and cancel_event.is_set():
        output_path.unlink(missing_ok=True)
        raise ExportCancelled("Export cancelled")

    logger.info(
        "Exported %r in %.2fs (%d image(s))",
        article.title,
        time.perf_counter() - start,
        len(epub.images),
    )
    return output_path


def export_article_bytes(
    article: ArticleInput,
    config: Optional[ExportConfig] = None,
    session: Optional[requests.Session] = None,
) -> bytes:
    """Export ``article`` and return the EPUB archive as bytes."""
    return package_bytes(build_package(article, config, session=session))


async def export_article_async(
    article: ArticleInput,
    config: Optional[ExportConfig] = None,
    session: Optional[requests.Session] = None,
) -> Path:
    """Run :func:`export_article` off the event loop.

    Cancelling the awaiting task stops pending image fetches and no archive
    is left behind, even when the worker finished just before the cancel.
    """
    cancel_event = threading.Event()
    handoff = threading.Lock()
    produced: List[Path] = []

    def run() -> Path:
        output_path = export_article(article, config, session=session, cancel_event=cancel_event)
        with handoff:
            if cancel_event.is_set():
                output_path.unlink(missing_ok=True)
                raise ExportCancelled("Export cancelled")
            produced.append(output_path)
        return output_path

    loop = asyncio.get_running_loop()
    try:
        return await loop.run_in_executor(None, run)
    except asyncio.CancelledError:
        with handoff:
            cancel_event.set()
            for output_path in produced:
                output_path.unlink(missing_ok=True)
        raise
