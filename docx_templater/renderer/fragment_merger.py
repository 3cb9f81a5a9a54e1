"""Repair placeholders split across several text runs.

Word happily splits ``{{.FirstName}}`` into ``{{.First`` and ``Name}}`` when
the author edits part of the tag.  The merger walks the text nodes of a
container in order and moves the text of every fragment into the node that
opened the tag, leaving the donor nodes empty but in place.
"""
from __future__ import annotations

import re
from typing import List, Optional, Set, Tuple

from lxml import etree

from docx_templater.errors import unclosed_tag, unmatched_end
from docx_templater.model.document_model import DocumentBody
from docx_templater.model.elements import MergeReport
from docx_templater.renderer.tag_scanner import CLOSE_DELIMITER, TagScanner
from docx_templater.utils.logger import get_logger

LOGGER = get_logger(__name__)

RAW_TEXT_NODE_PATTERN = re.compile(r"(<w:t(?:\s[^>]*)?(?<!/)>)(.*?)(</w:t>)", re.DOTALL)
_XML_SPACE_ATTR = 'xml:space="preserve"'


class FragmentMerger:
    """Coalesces fragmented ``{{ }}`` tags so each lies in a single text node."""

    def __init__(self, scanner: Optional[TagScanner] = None) -> None:
        self._scanner = scanner or TagScanner()

    # ------------------------------------------------------------------
    # Core algorithm on a plain list of texts
    def coalesce(self, texts: List[str], location: Optional[str] = None) -> Tuple[List[str], Set[int]]:
        """Return re-anchored texts and the indices of anchors that absorbed text.

        The concatenation of the result always equals the concatenation of
        ``texts``.
        """
        merged = list(texts)
        anchors: Set[int] = set()
        anchor: Optional[int] = None
        buffer = ""

        for index, text in enumerate(texts):
            if anchor is not None:
                if not text:
                    continue
                pending = self._scanner.scan(buffer)
                if pending.balance == 0 and not text.startswith("{"):
                    # A lone trailing "{" that did not become a delimiter.
                    anchor = None
                else:
                    buffer += text
                    merged[anchor] = buffer
                    merged[index] = ""
                    anchors.add(anchor)
                    result = self._scanner.scan(buffer)
                    self._check_orphan(buffer, result.orphan_close, location)
                    if not result.needs_more_text:
                        anchor = None
                    continue

            result = self._scanner.scan(text)
            self._check_orphan(text, result.orphan_close, location)
            if result.needs_more_text:
                anchor = index
                buffer = text

        if anchor is not None:
            result = self._scanner.scan(buffer)
            if result.balance > 0:
                start = result.first_open() or 0
                raise unclosed_tag(location=location, placeholder=buffer[start:])
        return merged, anchors

    # ------------------------------------------------------------------
    # Tree variant
    def merge_paragraph(self, paragraph: etree._Element, location: Optional[str] = None) -> int:
        """Merge fragments inside one paragraph; return the number of emptied nodes."""
        nodes = DocumentBody.text_nodes(paragraph)
        texts = [node.text or "" for node in nodes]
        merged, anchors = self.coalesce(texts, location)
        absorbed = 0
        for index, (node, before, after) in enumerate(zip(nodes, texts, merged)):
            if before == after:
                continue
            if index in anchors:
                DocumentBody.set_text(node, after)
            else:
                node.text = after
                absorbed += 1
        return absorbed

    def merge_body(self, body: DocumentBody, location: str = "document body") -> MergeReport:
        report = MergeReport()
        for paragraph in body.iter_paragraphs():
            report.paragraphs += 1
            absorbed = self.merge_paragraph(paragraph, location)
            if absorbed:
                report.merged_paragraphs += 1
                report.absorbed_nodes += absorbed
        LOGGER.debug(
            "Merged %d fragment(s) across %d of %d paragraph(s) in %s",
            report.absorbed_nodes,
            report.merged_paragraphs,
            report.paragraphs,
            location,
        )
        return report

    # ------------------------------------------------------------------
    # Raw-string variant for parts without a maintained model
    def merge_raw_xml(self, xml: str, location: Optional[str] = None) -> str:
        """Coalesce fragmented tags across ``<w:t>`` elements of a raw XML string."""
        matches = list(RAW_TEXT_NODE_PATTERN.finditer(xml))
        if not matches:
            return xml
        texts = [match.group(2) for match in matches]
        merged, anchors = self.coalesce(texts, location)
        if merged == texts:
            return xml

        pieces: List[str] = []
        cursor = 0
        for index, match in enumerate(matches):
            open_tag = match.group(1)
            if index in anchors and _XML_SPACE_ATTR not in open_tag:
                open_tag = open_tag[:-1] + " " + _XML_SPACE_ATTR + ">"
            pieces.append(xml[cursor:match.start()])
            pieces.append(open_tag + merged[index] + match.group(3))
            cursor = match.end()
        pieces.append(xml[cursor:])
        return "".join(pieces)

    @staticmethod
    def _check_orphan(text: str, position: Optional[int], location: Optional[str]) -> None:
        if position is None:
            return
        start = max(0, position - 20)
        raise unmatched_end(text[start:position + len(CLOSE_DELIMITER)], location=location)
