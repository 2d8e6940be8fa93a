"""Configuration objects and constants for EPUB export."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Tuple, TypeVar

logger = logging.getLogger("reader_epub")

DEFAULT_FETCH_TIMEOUT = 12.0
DEFAULT_MAX_IMAGE_BYTES = 8_000_000
DEFAULT_MAX_WORKERS = 4
DEFAULT_JPEG_QUALITY = 90
DEFAULT_SVG_CANVAS = (1024, 768)
DEFAULT_USER_AGENT = "reader-epub/0.1 (+offline article export)"

_T = TypeVar("_T")


@dataclass
class ExportConfig:
    """Settings that bound image resolution and control where archives land."""

    output_dir: Optional[Path] = None
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT
    max_image_bytes: int = DEFAULT_MAX_IMAGE_BYTES
    max_workers: int = DEFAULT_MAX_WORKERS
    jpeg_quality: int = DEFAULT_JPEG_QUALITY
    svg_canvas: Tuple[int, int] = DEFAULT_SVG_CANVAS
    user_agent: str = DEFAULT_USER_AGENT
    language: str = "en"

    @classmethod
    def from_env(cls) -> "ExportConfig":
        """Build a config, applying READER_EPUB_* environment overrides."""
        config = cls()
        output_dir = os.getenv("READER_EPUB_OUTPUT_DIR")
        if output_dir:
            config.output_dir = Path(output_dir).expanduser()
        config.fetch_timeout = _env_override(
            "READER_EPUB_FETCH_TIMEOUT", float, config.fetch_timeout
        )
        config.max_image_bytes = _env_override(
            "READER_EPUB_MAX_IMAGE_BYTES", int, config.max_image_bytes
        )
        config.max_workers = _env_override(
            "READER_EPUB_MAX_WORKERS", int, config.max_workers
        )
        return config


def _env_override(name: str, parse: Callable[[str], _T], default: _T) -> _T:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = parse(raw)
    except ValueError:
        logger.warning("%s=%r is not valid; falling back to %s", name, raw, default)
        return default
    if value <= 0:  # type: ignore[operator]
        logger.warning("%s must be positive; falling back to %s", name, default)
        return default
    return value
