"""ZIP assembly for EPUB containers."""

from __future__ import annotations

import io
import logging
import os
import tempfile
import zipfile
from pathlib import Path
from typing import BinaryIO, Iterable, List, Sequence

from .errors import ExportError
from .models import EpubEntry, EpubPackage, ImageResource

logger = logging.getLogger("reader_epub")

MIMETYPE_PATH = "mimetype"
MIMETYPE = b"application/epub+zip"
IMAGE_DIR = "OEBPS/images"


def assemble_package(
    documents: Iterable[EpubEntry],
    images: Sequence[ImageResource],
) -> EpubPackage:
    """Order archive entries: mimetype, then documents, then images.

    A ``mimetype`` entry supplied by the caller is discarded; the packager
    always writes its own, first and uncompressed.
    """
    entries: List[EpubEntry] = [
        EpubEntry(path=MIMETYPE_PATH, data=MIMETYPE, compress_type=zipfile.ZIP_STORED)
    ]
    for document in documents:
        if document.path == MIMETYPE_PATH:
            logger.debug("Ignoring caller-supplied mimetype entry")
            continue
        entries.append(
            EpubEntry(path=document.path, data=document.data, compress_type=zipfile.ZIP_DEFLATED)
        )
    for image in images:
        entries.append(
            EpubEntry(
                path=f"{IMAGE_DIR}/{image.filename}",
                data=image.data,
                compress_type=zipfile.ZIP_DEFLATED,
            )
        )
    return EpubPackage(entries=entries, images=list(images))


def write_archive(fileobj: BinaryIO, epub: EpubPackage) -> None:
    """Write ``epub`` as a ZIP stream to ``fileobj``."""
    with zipfile.ZipFile(fileobj, mode="w", compression=zipfile.ZIP_DEFLATED) as archive:
        archive.writestr(MIMETYPE_PATH, MIMETYPE, compress_type=zipfile.ZIP_STORED)
        for entry in epub.entries:
            if entry.path == MIMETYPE_PATH:
                continue
            archive.writestr(entry.path, entry.data, compress_type=entry.compress_type)


def package_bytes(epub: EpubPackage) -> bytes:
    """Return the archive for ``epub`` as bytes."""
    buffer = io.BytesIO()
    write_archive(buffer, epub)
    return buffer.getvalue()


def package(epub: EpubPackage, destination: Path) -> Path:
    """Write ``epub`` to ``destination`` atomically.

    The archive is written to a temporary sibling first and renamed into
    place, so ``destination`` only ever appears complete. Any I/O failure is
    raised as :class:`ExportError`.
    """
    destination = Path(destination)
    tmp_name = None
    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            mode="wb",
            dir=destination.parent,
            prefix=".reader-epub-",
            suffix=".partial",
            delete=False,
        ) as handle:
            tmp_name = handle.name
            write_archive(handle, epub)
        os.replace(tmp_name, destination)
    except (OSError, zipfile.BadZipFile, zipfile.LargeZipFile) as exc:
        if tmp_name is not None:
            _discard(Path(tmp_name))
        raise ExportError(f"Failed to write EPUB to {destination}: {exc}", cause=exc) from exc
    logger.info("Wrote EPUB to %s (%d entries)", destination, len(epub.entries))
    return destination


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("Could not remove partial archive %s: %s", path, exc)
