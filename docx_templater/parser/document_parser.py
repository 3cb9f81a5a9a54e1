"""Parse document.xml into the editable body model."""
from __future__ import annotations

import copy
from collections import Counter

from docx_templater.errors import file_parse_error
from docx_templater.model.document_model import DocumentBody
from docx_templater.parser.docx_loader import DocxPackage
from docx_templater.utils.logger import get_logger
from docx_templater.utils.xml_utils import local_name, qn

LOGGER = get_logger(__name__)


class DocumentParser:
    """Builds a :class:`DocumentBody` from the main document part of a package."""

    def __init__(self, package: DocxPackage) -> None:
        self._package = package

    def parse(self) -> DocumentBody:
        document_tree = copy.deepcopy(self._package.require_document_xml())
        root = document_tree.getroot()
        if root.find(qn("w:body")) is None:
            error = file_parse_error(self._package.source_name)
            error.message = "document.xml missing body element"
            raise error

        blocks = Counter(local_name(child.tag) for child in root.find(qn("w:body")))
        LOGGER.debug(
            "Parsed body of %s: %d paragraph(s), %d table(s)",
            self._package.source_name,
            blocks.get("p", 0),
            blocks.get("tbl", 0),
        )
        return DocumentBody(document_tree)
