"""MCP server exposing the EPUB export as a tool."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from mcp.server.fastmcp import FastMCP

from .config import ExportConfig
from .exporter import export_article_async
from .models import ArticleInput

logger = logging.getLogger("reader_epub.mcp")
logger.setLevel(logging.ERROR)

mcp = FastMCP(name="reader-epub")


@mcp.tool()
async def export_epub(
    article_json: str,
    output_dir: str | None = None,
) -> str:
    """Package an extracted article (JSON object) as an EPUB and return its path."""

    payload = json.loads(article_json)
    if not isinstance(payload, dict):
        raise ValueError("article_json must be a JSON object")
    article = ArticleInput.from_dict(payload)

    config = ExportConfig.from_env()
    if output_dir:
        config.output_dir = Path(output_dir).expanduser()
    output_path = await export_article_async(article, config)
    return str(output_path)


def main() -> None:
    """Entry point for running the MCP server."""
    logging.basicConfig(level=logging.ERROR)
    mcp.run()


if __name__ == "__main__":
    main()
