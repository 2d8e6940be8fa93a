"""Targeted HTML-to-XHTML fixes for article bodies.

The body comes from a readability extraction and is assumed to be mostly
well-formed. Rather than round-tripping it through a tree parser, these
helpers rewrite only the constructs strict EPUB readers reject and leave
every other byte as it was.
"""

from __future__ import annotations

import re
from html.entities import name2codepoint
from typing import Iterator

# Attribute text inside a tag, skipping over quoted values that contain ">".
TAG_BODY = r"""(?:"[^"]*"|'[^']*'|[^'">])*"""
# Lookahead ending a tag name, so "<img" does not match "<img-viewer".
NAME_END = r"(?=[\s/>])"

IMG_TAG_PATTERN = re.compile(r"<img" + NAME_END + TAG_BODY + ">", re.IGNORECASE)

VOID_ELEMENTS = (
    "img",
    "br",
    "hr",
    "meta",
    "link",
    "source",
    "track",
    "input",
    "area",
    "base",
    "col",
    "embed",
    "param",
    "wbr",
)

XML_PREDEFINED_ENTITIES = {"amp", "lt", "gt", "quot", "apos"}

_PICTURE_PATTERN = re.compile(r"</?picture" + NAME_END + TAG_BODY + ">", re.IGNORECASE)
_SOURCE_PATTERN = re.compile(
    r"<source" + NAME_END + TAG_BODY + r">|</source\s*>", re.IGNORECASE
)
_ENTITY_PATTERN = re.compile(r"&([A-Za-z][A-Za-z0-9]*);")
_TAG_NAME_PATTERN = re.compile(r"<[^\s/>]+")
_ATTRIBUTE_PATTERN = re.compile(
    r"""\s+([^\s"'=<>/]+)(?:\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s"'>]+)))?"""
)

RESPONSIVE_IMAGE_ATTRIBUTES = {"srcset", "sizes", "loading", "decoding"}

_VOID_CLOSE_PATTERNS = {
    tag: re.compile(rf"</{tag}\s*>", re.IGNORECASE) for tag in VOID_ELEMENTS
}
_VOID_OPEN_PATTERNS = {
    tag: re.compile(rf"<{tag}{NAME_END}{TAG_BODY}>", re.IGNORECASE) for tag in VOID_ELEMENTS
}


def strip_structural_wrappers(html: str) -> str:
    """Drop ``<picture>`` wrappers and ``<source>`` elements, keeping ``<img>``."""
    html = _PICTURE_PATTERN.sub("", html)
    return _SOURCE_PATTERN.sub("", html)


def _self_close(match: re.Match) -> str:
    tag = match.group(0)
    if tag.endswith("/>"):
        return tag
    return tag[:-1].rstrip() + " />"


def close_void_elements(html: str) -> str:
    """Remove stray ``</img>``-style closers and self-close void elements."""
    for tag in VOID_ELEMENTS:
        html = _VOID_CLOSE_PATTERNS[tag].sub("", html)
        html = _VOID_OPEN_PATTERNS[tag].sub(_self_close, html)
    return html


def _numeric_entity(match: re.Match) -> str:
    name = match.group(1)
    if name in XML_PREDEFINED_ENTITIES:
        return match.group(0)
    codepoint = name2codepoint.get(name)
    if codepoint is None:
        return match.group(0)
    return f"&#{codepoint};"


def numericalize_entities(html: str) -> str:
    """Replace named entities XML does not predefine with numeric references."""
    return _ENTITY_PATTERN.sub(_numeric_entity, html)


def sanitize(html: str) -> str:
    """Normalize an article body into XHTML that strict readers accept."""
    html = strip_structural_wrappers(html)
    html = close_void_elements(html)
    return numericalize_entities(html)


def iter_attributes(tag: str) -> Iterator[re.Match]:
    """Yield one match per attribute of a start tag, in source order.

    Group 1 is the attribute name; the value, when present, is in group 2
    (double-quoted), 3 (single-quoted) or 4 (unquoted).
    """
    head = _TAG_NAME_PATTERN.match(tag)
    if head is None:
        return
    pos = head.end()
    while True:
        attribute = _ATTRIBUTE_PATTERN.match(tag, pos)
        if attribute is None:
            return
        yield attribute
        pos = attribute.end()


def _is_responsive_attribute(name: str) -> bool:
    name = name.lower()
    return name in RESPONSIVE_IMAGE_ATTRIBUTES or name.startswith("data-")


def _strip_tag_attributes(match: re.Match) -> str:
    tag = match.group(0)
    pieces = []
    pos = 0
    for attribute in iter_attributes(tag):
        if _is_responsive_attribute(attribute.group(1)):
            pieces.append(tag[pos : attribute.start()])
            pos = attribute.end()
    pieces.append(tag[pos:])
    return "".join(pieces)


def strip_image_attributes(html: str) -> str:
    """Remove srcset, sizes, loading, decoding and data-* from ``<img>`` tags."""
    return IMG_TAG_PATTERN.sub(_strip_tag_attributes, html)
