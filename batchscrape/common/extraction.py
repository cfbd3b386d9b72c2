"""Extract a fragment from a fetched HTML document.

Selection uses lxml's built-in cssselect(). Extraction only selects, then
returns text or markup.
"""

from __future__ import annotations

import html
import re

import lxml.html
from cssselect import SelectorError
from lxml.etree import ParserError
from lxml.html import HtmlElement

from batchscrape.common.exceptions import (
    BatchValidationError,
    SelectorNotFoundFailure,
)
from batchscrape.data_types import OutputFormat

NO_CONTENT = "No content found"

# Elements dropped from whole-page text extraction
_BOILERPLATE_SELECTOR = "script, style, nav, footer, header"

_WHITESPACE = re.compile(r"\s+")


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def inner_html(element: HtmlElement) -> str:
    """Serialize the children of an element, without the element's own tag."""
    parts = [html.escape(element.text, quote=False)] if element.text else []
    parts.extend(
        lxml.html.tostring(child, encoding="unicode") for child in element
    )
    return "".join(parts)


def extract_content(
    document: str | bytes,
    url: str,
    selector: str | None = None,
    output_format: OutputFormat = OutputFormat.TEXT,
    encoding: str | None = None,
) -> str:
    """Extract text or HTML from a document.

    Args:
        document: Raw HTML, either the response body bytes or decoded text.
            Text is re-encoded as UTF-8 before parsing, so it may carry an
            XML encoding declaration.
        url: URL the document came from, used in error messages.
        selector: Optional CSS selector. When given, only matching elements
            are extracted.
        output_format: TEXT or HTML.
        encoding: Character encoding of ``document`` when it is bytes, such
            as the charset from the response headers. When omitted, lxml
            detects it from the document.

    Returns:
        The extracted content, or ``NO_CONTENT`` if it is empty.

    Raises:
        SelectorNotFoundFailure: If the selector matches nothing.
        BatchValidationError: If output_format is SCREENSHOT, which a
            static document cannot produce.
    """
    if output_format is OutputFormat.SCREENSHOT:
        raise BatchValidationError(
            "screenshots require the browser executor", field="format"
        )

    if not document.strip():
        if selector:
            raise SelectorNotFoundFailure(selector=selector, url=url)
        return NO_CONTENT

    if isinstance(document, str):
        document, encoding = document.encode("utf-8"), "utf-8"
    parser = lxml.html.HTMLParser(encoding=encoding) if encoding else None

    try:
        root = lxml.html.document_fromstring(document, parser=parser)
    except ParserError:
        if selector:
            raise SelectorNotFoundFailure(selector=selector, url=url)
        return NO_CONTENT

    if selector:
        result = _extract_selected(root, selector, url, output_format)
    elif output_format is OutputFormat.HTML:
        result = lxml.html.tostring(root, encoding="unicode")
    else:
        for element in root.cssselect(_BOILERPLATE_SELECTOR):
            element.drop_tree()
        body = root.find("body")
        source = body if body is not None else root
        result = collapse_whitespace(source.text_content())

    return result or NO_CONTENT


def _extract_selected(
    root: HtmlElement,
    selector: str,
    url: str,
    output_format: OutputFormat,
) -> str:
    try:
        elements = root.cssselect(selector)
    except SelectorError as e:
        raise SelectorNotFoundFailure(selector=selector, url=url) from e

    if not elements:
        raise SelectorNotFoundFailure(selector=selector, url=url)

    if output_format is OutputFormat.HTML:
        return inner_html(elements[0])
    return "".join(element.text_content() for element in elements).strip()
