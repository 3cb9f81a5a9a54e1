"""Watermark text stored in VML ``v:textpath`` elements of headers and footers."""
from __future__ import annotations

import re
from typing import Callable, List

from docx_templater.renderer.tag_scanner import OPEN_DELIMITER
from docx_templater.utils.text_normalizer import TextNormalizer

WATERMARK_PATTERN = re.compile(r'(<v:textpath[^>]*\sstring=")([^"]*)("[^>]*>)')


def extract_watermarks(xml: str) -> List[str]:
    """Return the decoded text of every watermark in ``xml``."""
    return [TextNormalizer.unescape_entities(match.group(2)) for match in WATERMARK_PATTERN.finditer(xml)]


def replace_watermark(xml: str, old_text: str, new_text: str) -> str:
    """Replace watermarks whose text is exactly ``old_text``."""

    def substitute(match: "re.Match[str]") -> str:
        if TextNormalizer.unescape_entities(match.group(2)) != old_text:
            return match.group(0)
        return match.group(1) + TextNormalizer.escape_entities(new_text) + match.group(3)

    return WATERMARK_PATTERN.sub(substitute, xml)


def process_watermarks(xml: str, render: Callable[[str], str]) -> str:
    """Run ``render`` over each watermark text that contains a tag.

    ``render`` receives and returns the attribute value in its escaped form.
    """

    def substitute(match: "re.Match[str]") -> str:
        text = match.group(2)
        if OPEN_DELIMITER not in text:
            return match.group(0)
        return match.group(1) + render(text) + match.group(3)

    return WATERMARK_PATTERN.sub(substitute, xml)
