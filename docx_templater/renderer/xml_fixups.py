"""Passes over WordprocessingML text run before and after template execution."""
from __future__ import annotations

import re
from typing import Optional

from lxml import etree

from docx_templater.errors import ExecutionError
from docx_templater.model.document_model import DocumentBody
from docx_templater.renderer.fragment_merger import RAW_TEXT_NODE_PATTERN
from docx_templater.renderer.tag_scanner import extract_tag_content, find_all_tags, is_block_tag
from docx_templater.utils.logger import get_logger
from docx_templater.utils.text_normalizer import LINE_BREAK_XML, TextNormalizer
from docx_templater.utils.xml_utils import parse_xml, qn

LOGGER = get_logger(__name__)

TEMPLATE_TAG_PATTERN = re.compile(r"\{\{.*?\}\}", re.DOTALL)
EMPTY_TEXT_PATTERN = re.compile(r"<w:t(?:\s[^>]*)?(?<!/)></w:t>")
EMPTY_RUN_PATTERN = re.compile(
    r"<w:r(?:\s[^>]*)?(?<!/)>(?:<w:rPr\s*/>|<w:rPr>(?:(?!</w:rPr>).)*</w:rPr>)?</w:r>",
    re.DOTALL,
)
NEWLINE_PATTERN = re.compile(r"\r\n|\r|\n")


# ----------------------------------------------------------------------
# Before execution


def decode_entities_in_tags(xml: str) -> str:
    """Decode XML entities inside ``{{ }}`` so string literals reach the engine intact."""
    return TEMPLATE_TAG_PATTERN.sub(lambda match: TextNormalizer.unescape_entities(match.group(0)), xml)


def collapse_control_rows(body: DocumentBody) -> int:
    """Replace table rows holding nothing but one block control tag by that tag.

    ``{{range .Rows}}`` alone in a row then repeats the rows that follow it,
    and ``{{if ...}}`` toggles them, instead of leaving empty rows behind.
    """
    collapsed = 0
    for row in list(body.body.iter(qn("w:tr"))):
        text = "".join(node.text or "" for node in row.iter(qn("w:t")))
        tags = find_all_tags(text)
        if len(tags) != 1 or text.replace(tags[0], "").strip():
            continue
        if not is_block_tag(extract_tag_content(tags[0])):
            continue
        _replace_with_text(row, tags[0])
        collapsed += 1
    if collapsed:
        LOGGER.debug("Collapsed %d table row(s) holding control tags", collapsed)
    return collapsed


def _replace_with_text(element: etree._Element, text: str) -> None:
    parent = element.getparent()
    if parent is None:
        return
    trailing = text + (element.tail or "")
    previous = element.getprevious()
    if previous is not None:
        previous.tail = (previous.tail or "") + trailing
    else:
        parent.text = (parent.text or "") + trailing
    parent.remove(element)


# ----------------------------------------------------------------------
# After execution


def break_text_newlines(xml: str) -> str:
    """Turn newlines that template text left inside ``w:t`` nodes into line breaks."""

    def substitute(match: "re.Match[str]") -> str:
        if not NEWLINE_PATTERN.search(match.group(2)):
            return match.group(0)
        return match.group(1) + NEWLINE_PATTERN.sub(LINE_BREAK_XML, match.group(2)) + match.group(3)

    return RAW_TEXT_NODE_PATTERN.sub(substitute, xml)


def cleanup_rendered_xml(xml: str) -> str:
    """Break literal newlines, then drop text nodes and runs left empty by merging and tag replacement."""
    xml = break_text_newlines(xml)
    xml = EMPTY_TEXT_PATTERN.sub("", xml)
    return EMPTY_RUN_PATTERN.sub("", xml)


def ensure_well_formed(xml: str, location: Optional[str] = None) -> None:
    try:
        parse_xml(xml)
    except etree.XMLSyntaxError as exc:
        raise ExecutionError(
            f"rendered XML is not well-formed: {exc}",
            location=location,
            cause=exc,
            suggestions=[
                "Place image and link placeholders inside a text run",
                "Check that block tags ({{if}}, {{range}}) open and close within matching XML elements",
            ],
        ) from exc
