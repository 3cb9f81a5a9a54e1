"""In-memory body model of ``word/document.xml``."""
from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Iterator, List

from lxml import etree

from docx_templater.utils.xml_utils import parse_xml, qn, serialize_xml

XML_SPACE = "{http://www.w3.org/XML/1998/namespace}space"


@dataclass(slots=True)
class DocumentBody:
    """Parsed main document part with paragraph and run level access."""

    tree: etree._ElementTree

    @property
    def root(self) -> etree._Element:
        return self.tree.getroot()

    @property
    def body(self) -> etree._Element:
        body = self.root.find(qn("w:body"))
        if body is None:
            raise ValueError("document.xml missing body element")
        return body

    # ------------------------------------------------------------------
    # Traversal
    def iter_paragraphs(self) -> Iterator[etree._Element]:
        """Yield every paragraph in document order, including table cells and text boxes."""
        yield from self.body.iter(qn("w:p"))

    @staticmethod
    def text_nodes(paragraph: etree._Element) -> List[etree._Element]:
        """Return the ``w:t`` elements that belong to ``paragraph`` itself.

        Text inside a nested paragraph (a text box within a run) belongs to
        that inner paragraph and is excluded.
        """
        paragraph_tag = qn("w:p")
        nodes = []
        for node in paragraph.iter(qn("w:t")):
            owner = next(node.iterancestors(paragraph_tag), None)
            if owner is paragraph:
                nodes.append(node)
        return nodes

    @classmethod
    def paragraph_text(cls, paragraph: etree._Element) -> str:
        return "".join(node.text or "" for node in cls.text_nodes(paragraph))

    def text(self) -> str:
        """Visible text of the body, one line per paragraph."""
        return "\n".join(self.paragraph_text(p) for p in self.iter_paragraphs())

    def max_drawing_id(self) -> int:
        """Highest numeric ``wp:docPr/@id`` already used in the body."""
        highest = 0
        for node in self.root.iter(qn("wp:docPr")):
            value = node.get("id", "")
            if value.isdigit():
                highest = max(highest, int(value))
        return highest

    # ------------------------------------------------------------------
    # Mutation
    @staticmethod
    def set_text(node: etree._Element, text: str) -> None:
        """Replace a run's text payload, preserving leading and trailing spaces."""
        node.text = text
        if text and (text[0].isspace() or text[-1].isspace()):
            node.set(XML_SPACE, "preserve")

    def to_xml(self) -> str:
        """Serialise the whole document part so every namespace stays declared."""
        return serialize_xml(self.tree).decode("utf-8")

    def to_bytes(self) -> bytes:
        return serialize_xml(self.tree)

    def replace_body_from_xml(self, xml: str) -> None:
        """Parse a full ``w:document`` and swap its body in place of the current one."""
        new_root = parse_xml(xml).getroot()
        new_body = new_root.find(qn("w:body"))
        if new_body is None:
            raise ValueError("rendered document has no body element")
        old_body = self.body
        self.root.replace(old_body, new_body)

    def copy(self) -> "DocumentBody":
        return DocumentBody(copy.deepcopy(self.tree))

