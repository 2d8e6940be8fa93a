"""Builders for the XML documents that make up an EPUB 3 package."""

from __future__ import annotations

import datetime as dt
from typing import List, Sequence

from .models import ArticleInput, EpubEntry, ImageResource
from .utils import utc_timestamp, xml_escape

CONTAINER_PATH = "META-INF/container.xml"
PACKAGE_PATH = "OEBPS/content.opf"
STYLESHEET_PATH = "OEBPS/style.css"
NAVIGATION_PATH = "OEBPS/nav.xhtml"
CONTENT_PATH = "OEBPS/index.xhtml"

CONTAINER_XML = """<?xml version="1.0" encoding="UTF-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="OEBPS/content.opf" media-type="application/oebps-package+xml" />
  </rootfiles>
</container>
"""

STYLESHEET = """body {
  font-family: Georgia, "Times New Roman", serif;
  font-size: 1.1em;
  line-height: 1.65;
  color: #111;
  background: #fff;
  margin: 0;
  padding: 1.5em 1.1em 3em;
}
h1, h2, h3, h4, h5, h6 {
  font-family: -apple-system, "Helvetica Neue", Arial, sans-serif;
  font-weight: 700;
  line-height: 1.25;
  margin: 1.2em 0 0.4em;
}
h1 { font-size: 1.8em; }
h2 { font-size: 1.45em; }
h3 { font-size: 1.25em; }
p { margin: 0 0 1em; }
a { color: #1d4ed8; text-decoration: none; }
img {
  display: block;
  max-width: 100%;
  height: auto;
  margin: 1.4em auto;
}
figure { margin: 1.4em 0; }
figcaption {
  font-size: 0.9em;
  font-style: italic;
  color: #555;
  text-align: center;
  margin-top: 0.4em;
}
blockquote {
  margin: 1.2em 0;
  padding: 0.8em 1.2em;
  border-left: 4px solid #ccc;
  background: #f7f7f7;
  color: #333;
}
ul, ol { margin: 1em 0; padding-left: 1.8em; }
li { margin-bottom: 0.4em; }
code, pre {
  font-family: Menlo, Consolas, "Courier New", monospace;
  font-size: 0.9em;
  background: #f3f3f3;
}
code { padding: 0.1em 0.3em; }
pre { padding: 1em; overflow-x: auto; white-space: pre-wrap; }
pre code { padding: 0; background: transparent; }
table { width: 100%; border-collapse: collapse; margin: 1.2em 0; }
th, td { border: 1px solid #ddd; padding: 0.5em 0.7em; text-align: left; }
th { background: #f3f3f3; }
.article-header { margin-bottom: 1.6em; }
.article-header .site-name {
  font-size: 0.8em;
  letter-spacing: 0.08em;
  text-transform: uppercase;
  color: #2563eb;
  margin-bottom: 0.3em;
}
.article-header .meta { font-size: 0.9em; color: #666; margin: 0 0 0.3em; }
"""


def format_extracted_date(moment: dt.datetime) -> str:
    return f"{moment:%B} {moment.day}, {moment.year}"


def format_word_count(count: int) -> str:
    return f"{count:,} word" + ("" if count == 1 else "s")


def build_content_document(article: ArticleInput, body_html: str, language: str = "en") -> str:
    """Render the XHTML content document around an already sanitized body."""
    title = xml_escape(article.title)
    header_lines = ['    <header class="article-header">']
    if article.site_name:
        header_lines.append(f'      <p class="site-name">{xml_escape(article.site_name)}</p>')
    header_lines.append(f"      <h1>{title}</h1>")
    if article.byline:
        header_lines.append(f'      <p class="meta byline">{xml_escape(article.byline)}</p>')
    header_lines.append(
        f'      <p class="meta">{format_word_count(article.word_count)} · '
        f"{format_extracted_date(article.extracted_at)}</p>"
    )
    header_lines.append("    </header>")

    lines = [
        '<?xml version="1.0" encoding="utf-8"?>',
        "<!DOCTYPE html>",
        f'<html xmlns="http://www.w3.org/1999/xhtml" xml:lang="{language}" lang="{language}">',
        "  <head>",
        '    <meta charset="utf-8" />',
        f"    <title>{title}</title>",
        '    <link rel="stylesheet" type="text/css" href="style.css" />',
        "  </head>",
        "  <body>",
        *header_lines,
        "    <article>",
        body_html,
        "    </article>",
        "  </body>",
        "</html>",
    ]
    return "\n".join(lines) + "\n"


def build_package_document(
    article: ArticleInput,
    images: Sequence[ImageResource],
    language: str = "en",
) -> str:
    """Render the OPF package document: metadata, manifest and spine."""
    metadata = [
        f'    <dc:identifier id="pub-id">{xml_escape(article.id)}</dc:identifier>',
        f"    <dc:title>{xml_escape(article.title)}</dc:title>",
        f"    <dc:creator>{xml_escape(article.byline or '')}</dc:creator>",
        f"    <dc:language>{language}</dc:language>",
    ]
    if article.source_url:
        metadata.append(f"    <dc:source>{xml_escape(article.source_url)}</dc:source>")
    if article.site_name:
        metadata.append(f"    <dc:publisher>{xml_escape(article.site_name)}</dc:publisher>")
    if article.excerpt:
        metadata.append(f"    <dc:description>{xml_escape(article.excerpt)}</dc:description>")
    metadata.append(
        f'    <meta property="dcterms:modified">{utc_timestamp(article.extracted_at)}</meta>'
    )

    manifest = [
        '    <item id="index" href="index.xhtml" media-type="application/xhtml+xml" />',
        '    <item id="style" href="style.css" media-type="text/css" />',
        '    <item id="nav" href="nav.xhtml" media-type="application/xhtml+xml" properties="nav" />',
    ]
    for idx, image in enumerate(images, start=1):
        manifest.append(
            f'    <item id="img{idx}" href="{xml_escape(image.href)}" '
            f'media-type="{xml_escape(image.mime_type)}" />'
        )

    lines = [
        '<?xml version="1.0" encoding="utf-8"?>',
        '<package xmlns="http://www.idpf.org/2007/opf" unique-identifier="pub-id" version="3.0">',
        '  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/" '
        'xmlns:dcterms="http://purl.org/dc/terms/">',
        *metadata,
        "  </metadata>",
        "  <manifest>",
        *manifest,
        "  </manifest>",
        "  <spine>",
        '    <itemref idref="index" />',
        "  </spine>",
        "</package>",
    ]
    return "\n".join(lines) + "\n"


def build_navigation_document(title: str, language: str = "en") -> str:
    """Render the EPUB 3 navigation document with a single TOC entry."""
    safe_title = xml_escape(title)
    lines = [
        '<?xml version="1.0" encoding="utf-8"?>',
        "<!DOCTYPE html>",
        '<html xmlns="http://www.w3.org/1999/xhtml" '
        f'xmlns:epub="http://www.idpf.org/2007/ops" xml:lang="{language}" lang="{language}">',
        "  <head>",
        '    <meta charset="utf-8" />',
        "    <title>Table of Contents</title>",
        "  </head>",
        "  <body>",
        '    <nav epub:type="toc" id="toc">',
        "      <ol>",
        f'        <li><a href="index.xhtml">{safe_title}</a></li>',
        "      </ol>",
        "    </nav>",
        "  </body>",
        "</html>",
    ]
    return "\n".join(lines) + "\n"


def build_documents(
    article: ArticleInput,
    body_html: str,
    images: Sequence[ImageResource],
    language: str = "en",
) -> List[EpubEntry]:
    """Return the non-image archive entries in their archive order."""
    documents = [
        (CONTAINER_PATH, CONTAINER_XML),
        (PACKAGE_PATH, build_package_document(article, images, language)),
        (STYLESHEET_PATH, STYLESHEET),
        (NAVIGATION_PATH, build_navigation_document(article.title, language)),
        (CONTENT_PATH, build_content_document(article, body_html, language)),
    ]
    return [EpubEntry(path=path, data=text.encode("utf-8")) for path, text in documents]
