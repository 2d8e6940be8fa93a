"""Image discovery, downloading and transcoding for EPUB export."""

from __future__ import annotations

import io
import logging
import mimetypes
import threading
import time
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from html import unescape
from typing import Dict, List, Optional, Tuple
from urllib.parse import urljoin, urlparse

import requests
from filetype import guess
from PIL import Image
from urllib3.exceptions import HTTPError, ReadTimeoutError

from .config import ExportConfig
from .errors import ExportCancelled
from .models import (
    CONVERSION_ORIGINAL_KEPT,
    CONVERSION_PASSTHROUGH,
    CONVERSION_TRANSCODED,
    ImageOutcome,
    ImageReference,
    ImageResource,
)
from .sanitize import IMG_TAG_PATTERN, iter_attributes, strip_image_attributes
from .utils import slugify

logger = logging.getLogger("reader_epub")

ALLOWED_MIME_TYPES = {"image/jpeg", "image/png", "image/gif"}
MIME_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/svg+xml": "svg",
}
EXTENSION_MIME_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "svg": "image/svg+xml",
}
LOCAL_PREFIXES = ("images/", "data:")
FETCHABLE_SCHEMES = ("http", "https")
CHUNK_SIZE = 64 * 1024
MIN_READ_TIMEOUT = 0.01
SVG_MIME_TYPE = "image/svg+xml"


@dataclass
class FetchResult:
    """Downloaded (and transcoded) bytes for one distinct URL, or a skip."""

    url: str
    data: Optional[bytes] = None
    mime_type: Optional[str] = None
    conversion: Optional[str] = None
    skip_reason: Optional[str] = None


def raise_if_cancelled(cancel_event: Optional[threading.Event]) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise ExportCancelled("Export cancelled")


def resolve_reference(src: str, base_url: Optional[str]) -> Optional[str]:
    """Return the absolute URL to fetch for ``src``, or None to leave it alone."""
    value = unescape(src).strip()
    if not value or value.startswith(LOCAL_PREFIXES):
        return None
    scheme = urlparse(value).scheme.lower()
    if scheme in FETCHABLE_SCHEMES:
        return value
    if scheme or not base_url:
        return None
    absolute = urljoin(base_url, value)
    if urlparse(absolute).scheme.lower() not in FETCHABLE_SCHEMES:
        return None
    return absolute


def find_image_references(html: str, base_url: Optional[str]) -> List[ImageReference]:
    """Scan ``html`` for ``<img src=...>`` occurrences in document order."""
    references: List[ImageReference] = []
    for tag_match in IMG_TAG_PATTERN.finditer(html):
        tag = tag_match.group(0)
        for attribute in iter_attributes(tag):
            if attribute.group(1).lower() != "src":
                continue
            group = next(
                (idx for idx in (2, 3, 4) if attribute.group(idx) is not None), None
            )
            if group is None:
                break
            start, end = attribute.span(group)
            src = attribute.group(group)
            references.append(
                ImageReference(
                    index=len(references),
                    src_start=tag_match.start() + start,
                    src_end=tag_match.start() + end,
                    src=src,
                    absolute_url=resolve_reference(src, base_url),
                    quoted=group != 4,
                )
            )
            break
    return references


def declared_mime_type(content_type: Optional[str]) -> Optional[str]:
    if not content_type:
        return None
    mime = content_type.split(";")[0].strip().lower()
    return mime or None


def mime_type_from_url(url: str) -> Optional[str]:
    """Guess an image type from the URL path's file extension."""
    path = urlparse(url).path
    if "." not in path.rsplit("/", 1)[-1]:
        return None
    extension = path.rsplit(".", 1)[-1].lower()
    return EXTENSION_MIME_TYPES.get(extension)


def sniff_mime_type(data: bytes) -> Optional[str]:
    """Detect the image type from the file signature using filetype."""
    kind = guess(data)
    if kind and kind.mime.startswith("image/"):
        return kind.mime
    return None


def extension_for(mime_type: str) -> str:
    if mime_type in MIME_EXTENSIONS:
        return MIME_EXTENSIONS[mime_type]
    guessed = mimetypes.guess_extension(mime_type)
    if guessed:
        return guessed.lstrip(".")
    return slugify(mime_type.split("/")[-1], fallback="img")


def _flatten_onto_white(image: Image.Image) -> Image.Image:
    if image.mode in ("RGBA", "LA") or (
        image.mode == "P" and "transparency" in image.info
    ):
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    if image.mode != "RGB":
        return image.convert("RGB")
    return image


def convert_raster(data: bytes, image_format: str, quality: Optional[int] = None) -> bytes:
    """Decode raster bytes with Pillow and re-encode them as ``image_format``."""
    with Image.open(io.BytesIO(data)) as image:
        image.load()
        if image_format == "JPEG":
            image = _flatten_onto_white(image)
        elif image.mode not in ("1", "L", "LA", "P", "RGB", "RGBA", "I"):
            image = image.convert("RGBA")
        output = io.BytesIO()
        save_params = {"quality": quality} if quality is not None else {}
        image.save(output, format=image_format, **save_params)
    return output.getvalue()


def rasterize_svg(data: bytes, canvas: Tuple[int, int]) -> bytes:
    """Render SVG bytes to a PNG of exactly ``canvas`` pixels."""
    import cairosvg

    width, height = canvas
    return cairosvg.svg2png(bytestring=data, output_width=width, output_height=height)


def transcode_image(
    data: bytes,
    mime_type: str,
    config: ExportConfig,
) -> Tuple[bytes, str, str]:
    """Normalize image bytes to JPEG, PNG or GIF.

    Returns ``(data, mime_type, conversion)``. When decoding or encoding
    fails the original bytes and type are returned with the
    ``original-kept`` conversion so the caller can still embed them.
    """
    if mime_type in ALLOWED_MIME_TYPES:
        return data, mime_type, CONVERSION_PASSTHROUGH
    try:
        if mime_type == SVG_MIME_TYPE:
            converted = rasterize_svg(data, config.svg_canvas)
            target = "image/png"
        elif mime_type == "image/webp":
            converted = convert_raster(data, "JPEG", quality=config.jpeg_quality)
            target = "image/jpeg"
        else:
            converted = convert_raster(data, "PNG")
            target = "image/png"
    except Exception as exc:  # noqa: BLE001 - decoder failures keep the original
        logger.warning("Keeping original %s image; transcoding failed: %s", mime_type, exc)
        return data, mime_type, CONVERSION_ORIGINAL_KEPT
    logger.debug("Transcoded %s (%d bytes) to %s", mime_type, len(data), target)
    return converted, target, CONVERSION_TRANSCODED


def _bound_next_read(raw, seconds: float) -> None:
    """Cap the next socket read at ``seconds``, whatever the session timeout was."""
    sock = getattr(getattr(raw, "connection", None), "sock", None)
    if sock is not None:
        sock.settimeout(max(seconds, MIN_READ_TIMEOUT))


def looks_like_image(data: bytes, mime_type: str, sniffed: Optional[str]) -> bool:
    """Check that the payload really is the image its headers claim."""
    if sniffed is not None:
        return True
    if mime_type == SVG_MIME_TYPE:
        return b"<svg" in data.lower()
    return False


def fetch_image(
    session: requests.Session,
    url: str,
    config: ExportConfig,
    cancel_event: Optional[threading.Event] = None,
) -> FetchResult:
    """Download one image, honouring the size cap and the fetch deadline.

    The body is read with ``read1`` so each call returns after a single
    socket read, and every read is capped at the time left before the
    deadline. A server trickling bytes cannot stretch a fetch past
    ``fetch_timeout``.
    """
    raise_if_cancelled(cancel_event)
    deadline = time.monotonic() + config.fetch_timeout
    timed_out = FetchResult(url, skip_reason=f"timed out after {config.fetch_timeout}s")
    buffer = bytearray()
    try:
        with session.get(
            url,
            timeout=config.fetch_timeout,
            stream=True,
            headers={"User-Agent": config.user_agent, "Accept": "image/*,*/*;q=0.8"},
        ) as resp:
            resp.raise_for_status()
            content_type = resp.headers.get("Content-Type", "")
            mime_type = declared_mime_type(content_type) or mime_type_from_url(url)
            if not mime_type or not mime_type.startswith("image/"):
                return FetchResult(
                    url,
                    skip_reason=f"not an image (Content-Type={content_type or 'missing'})",
                )

            declared_length = resp.headers.get("Content-Length", "")
            if declared_length.isdigit() and int(declared_length) > config.max_image_bytes:
                return FetchResult(
                    url, skip_reason=f"larger than {config.max_image_bytes} bytes"
                )

            while True:
                raise_if_cancelled(cancel_event)
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return timed_out
                _bound_next_read(resp.raw, remaining)
                chunk = resp.raw.read1(CHUNK_SIZE, decode_content=True)
                if not chunk:
                    break
                buffer.extend(chunk)
                if len(buffer) > config.max_image_bytes:
                    return FetchResult(
                        url, skip_reason=f"larger than {config.max_image_bytes} bytes"
                    )
    except (requests.Timeout, ReadTimeoutError):
        return timed_out
    except (requests.RequestException, HTTPError) as exc:
        return FetchResult(url, skip_reason=f"request failed: {exc}")

    if not buffer:
        return FetchResult(url, skip_reason="empty response")
    data = bytes(buffer)
    sniffed = sniff_mime_type(data)
    if not looks_like_image(data, mime_type, sniffed):
        return FetchResult(
            url, skip_reason=f"not an image (declared {mime_type}, content unrecognized)"
        )
    if sniffed and sniffed != mime_type:
        logger.debug("%s declared %s but contains %s", url, mime_type, sniffed)
        mime_type = sniffed
    logger.debug("Fetched %s (%d bytes, %s)", url, len(data), mime_type)
    return FetchResult(url, data=data, mime_type=mime_type)


def _fetch_and_transcode(
    session: requests.Session,
    url: str,
    config: ExportConfig,
    cancel_event: Optional[threading.Event],
) -> FetchResult:
    result = fetch_image(session, url, config, cancel_event)
    if result.data is None or result.mime_type is None:
        return result
    raise_if_cancelled(cancel_event)
    data, mime_type, conversion = transcode_image(result.data, result.mime_type, config)
    return FetchResult(url, data=data, mime_type=mime_type, conversion=conversion)


def download_all(
    session: requests.Session,
    urls: List[str],
    config: ExportConfig,
    cancel_event: Optional[threading.Event] = None,
) -> Dict[str, FetchResult]:
    """Fetch each URL on a bounded worker pool; results keyed by URL."""
    if not urls:
        return {}
    workers = max(1, min(config.max_workers, len(urls)))
    with ThreadPoolExecutor(
        max_workers=workers, thread_name_prefix="reader-epub-fetch"
    ) as executor:
        futures = {
            url: executor.submit(_fetch_and_transcode, session, url, config, cancel_event)
            for url in urls
        }
        try:
            return {url: future.result() for url, future in futures.items()}
        except BaseException:
            for future in futures.values():
                future.cancel()
            raise


def _outcome_for(reference: ImageReference, result: FetchResult) -> ImageOutcome:
    if result.data is None or result.mime_type is None:
        return ImageOutcome.skipped(reference, result.skip_reason or "unknown failure")
    return ImageOutcome(
        reference=reference,
        data=result.data,
        mime_type=result.mime_type,
        conversion=result.conversion,
    )


def resolve_images(
    html: str,
    base_url: Optional[str],
    config: Optional[ExportConfig] = None,
    session: Optional[requests.Session] = None,
    cancel_event: Optional[threading.Event] = None,
) -> Tuple[str, List[ImageResource]]:
    """Embed remote images referenced by ``html``.

    Returns the rewritten HTML, whose resolved ``src`` values point at
    ``images/imageN.<ext>``, and the image resources in document order.
    References that cannot be fetched keep their original URL.
    """
    config = config or ExportConfig()
    references = find_image_references(html, base_url)
    remote = [ref for ref in references if ref.absolute_url]
    for ref in references:
        if not ref.absolute_url:
            logger.debug("Leaving image reference %r untouched", ref.src[:80])

    owns_session = session is None
    if session is None:
        session = requests.Session()
    try:
        urls = list(dict.fromkeys(ref.absolute_url for ref in remote if ref.absolute_url))
        results = download_all(session, urls, config, cancel_event)
    finally:
        if owns_session:
            session.close()

    images: List[ImageResource] = []
    conversions: Counter = Counter()
    pieces: List[str] = []
    position = 0
    for ref in remote:
        outcome = _outcome_for(ref, results[ref.absolute_url])
        if not outcome.ok:
            logger.warning("Skipping image %s: %s", ref.absolute_url, outcome.skip_reason)
            continue
        filename = f"image{len(images) + 1}.{extension_for(outcome.mime_type)}"
        resource = ImageResource(filename=filename, data=outcome.data, mime_type=outcome.mime_type)
        images.append(resource)
        conversions[outcome.conversion] += 1
        logger.debug("%s -> %s (%s)", ref.absolute_url, filename, outcome.conversion)
        pieces.append(html[position : ref.src_start])
        pieces.append(resource.href if ref.quoted else f'"{resource.href}"')
        position = ref.src_end
    pieces.append(html[position:])

    if remote:
        logger.info(
            "Embedded %d of %d remote image(s) (%d transcoded, %d kept in original format)",
            len(images),
            len(remote),
            conversions[CONVERSION_TRANSCODED],
            conversions[CONVERSION_ORIGINAL_KEPT],
        )
    return strip_image_attributes("".join(pieces)), images
