"""Command-line entry point for exporting articles to EPUB."""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Iterable, Sequence

import requests

from .config import ExportConfig
from .errors import ReaderEpubError
from .exporter import export_article
from .models import ArticleInput
from .sanitize import sanitize

logger = logging.getLogger("reader_epub.cli")


def _ensure_command_prefix(argv: Sequence[str], commands: Iterable[str]) -> Sequence[str]:
    if not argv:
        return argv
    first = argv[0]
    if first in commands or first.startswith("-"):
        return argv
    return ("export", *argv)


def _add_export_arguments(parser: argparse.ArgumentParser) -> None:
    defaults = ExportConfig.from_env()
    parser.add_argument(
        "articles",
        nargs="+",
        type=Path,
        help="JSON files holding extracted articles (snake_case or Readability.js keys)",
    )
    parser.add_argument(
        "--output",
        default=defaults.output_dir,
        type=Path,
        help="Directory where EPUB files should be written (default: system temp dir)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=defaults.fetch_timeout,
        help="Seconds allowed for each image download",
    )
    parser.add_argument(
        "--max-image-bytes",
        type=int,
        default=defaults.max_image_bytes,
        help="Skip images whose payload exceeds this many bytes",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=defaults.max_workers,
        help="Number of concurrent image downloads per article",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )


def _add_sanitize_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("path", type=Path, help="HTML fragment to sanitize")


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Package extracted web articles as EPUB 3 books with embedded images.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    export_parser = subparsers.add_parser(
        "export", help="Export article JSON files to EPUB"
    )
    _add_export_arguments(export_parser)

    sanitize_parser = subparsers.add_parser(
        "sanitize", help="Print the XHTML-sanitized form of an HTML fragment"
    )
    _add_sanitize_arguments(sanitize_parser)

    argv = list(sys.argv[1:] if argv is None else argv)
    argv = list(_ensure_command_prefix(argv, subparsers.choices.keys()))
    return parser.parse_args(argv)


def load_article(path: Path) -> ArticleInput:
    payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError(f"{path} does not contain a JSON object")
    return ArticleInput.from_dict(payload)


def _run_export(args: argparse.Namespace) -> int:
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )

    config = ExportConfig(
        output_dir=Path(args.output).resolve() if args.output else None,
        fetch_timeout=args.timeout,
        max_image_bytes=args.max_image_bytes,
        max_workers=args.workers,
    )

    overall_start = time.perf_counter()
    failures = 0
    with requests.Session() as session:
        for path in args.articles:
            try:
                article = load_article(path)
                output_path = export_article(article, config, session=session)
            except (OSError, ValueError, ReaderEpubError) as exc:
                failures += 1
                logger.error("Failed to export %s: %s", path, exc)
                continue
            sys.stdout.write(f"{output_path}\n")
    sys.stdout.flush()

    total = len(args.articles)
    logger.info(
        "Finished in %.2fs (%d/%d succeeded, %d failed)",
        time.perf_counter() - overall_start,
        total - failures,
        total,
        failures,
    )
    return 1 if failures else 0


def _run_sanitize(args: argparse.Namespace) -> int:
    sys.stdout.write(sanitize(args.path.read_text(encoding="utf-8")))
    sys.stdout.flush()
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    if args.command == "export":
        return _run_export(args)
    return _run_sanitize(args)


if __name__ == "__main__":
    sys.exit(main())
