"""DOCX package loader responsible for unpacking XML parts and media."""
from __future__ import annotations

import io
import zipfile
import zlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Dict, List, Optional, Union

from lxml import etree

from docx_templater.errors import ReadError, file_not_found, file_parse_error
from docx_templater.model.elements import PartKind, PeripheralPart
from docx_templater.parser.content_types import CONTENT_TYPES_PART, ContentTypes
from docx_templater.parser.rels_parser import DOCUMENT_RELS_PART, Relationships
from docx_templater.utils.logger import get_logger
from docx_templater.utils.xml_utils import parse_xml

LOGGER = get_logger(__name__)

PACKAGE_REL_PATH = "_rels/.rels"
DOCUMENT_XML_PATH = "word/document.xml"
MEDIA_PREFIX = "word/media/"


@dataclass(slots=True)
class DocxPackage:
    """Container for the parts extracted from a DOCX archive, in archive order."""

    raw_parts: Dict[str, bytes]
    source_name: str = "<memory>"

    document_xml: Optional[etree._ElementTree] = None
    content_types: ContentTypes = field(default_factory=ContentTypes)
    relationships: Relationships = field(default_factory=Relationships)
    has_document_rels: bool = False
    peripheral_parts: List[PeripheralPart] = field(default_factory=list)
    media: Dict[str, bytes] = field(default_factory=dict)

    @classmethod
    def load(cls, docx_path: Union[str, Path]) -> "DocxPackage":
        """Open a DOCX archive on disk and populate its parts."""
        docx_path = Path(docx_path)
        try:
            data = docx_path.read_bytes()
        except FileNotFoundError as exc:
            raise file_not_found(str(docx_path), exc) from exc
        except OSError as exc:
            raise ReadError(f"failed to read template: {docx_path}", cause=exc) from exc
        return cls.from_bytes(data, source_name=docx_path.name)

    @classmethod
    def from_stream(cls, stream: BinaryIO, source_name: str = "<stream>") -> "DocxPackage":
        try:
            data = stream.read()
        except OSError as exc:
            raise ReadError("failed to read template stream", cause=exc) from exc
        return cls.from_bytes(data, source_name=source_name)

    @classmethod
    def from_bytes(cls, data: bytes, source_name: str = "<memory>") -> "DocxPackage":
        try:
            with zipfile.ZipFile(io.BytesIO(data)) as docx_zip:
                parts = {info.filename: docx_zip.read(info) for info in docx_zip.infolist() if not info.is_dir()}
        except (zipfile.BadZipFile, zipfile.LargeZipFile, zlib.error, EOFError, ValueError) as exc:
            raise file_parse_error(source_name, exc) from exc

        LOGGER.debug("Loaded %d parts from %s", len(parts), source_name)
        return cls.from_parts(parts, source_name=source_name)

    @classmethod
    def from_parts(cls, parts: Dict[str, bytes], source_name: str = "<memory>") -> "DocxPackage":
        """Build a package from part names mapped to their bytes, in archive order."""
        package = cls(raw_parts=dict(parts), source_name=source_name)
        package._initialize()
        return package

    # ------------------------------------------------------------------
    # Public helpers
    def require_document_xml(self) -> etree._ElementTree:
        if self.document_xml is None:
            raise file_parse_error(self.source_name)
        return self.document_xml

    def part_names(self) -> List[str]:
        return list(self.raw_parts)

    # ------------------------------------------------------------------
    # Internal bootstrap
    def _initialize(self) -> None:
        document = self.raw_parts.get(DOCUMENT_XML_PATH)
        if document is None:
            error = file_parse_error(self.source_name)
            error.message = f"{DOCUMENT_XML_PATH} not found in {self.source_name}"
            raise error
        try:
            self.document_xml = parse_xml(document)
            self.content_types = ContentTypes.from_xml(self.raw_parts.get(CONTENT_TYPES_PART))
            rels = self.raw_parts.get(DOCUMENT_RELS_PART)
            self.has_document_rels = rels is not None
            self.relationships = Relationships.from_xml(DOCUMENT_RELS_PART, rels)
        except etree.XMLSyntaxError as exc:
            raise file_parse_error(self.source_name, exc) from exc

        self.peripheral_parts = self._collect_peripheral_parts()
        self.media = {name: data for name, data in self.raw_parts.items() if name.startswith(MEDIA_PREFIX)}

    def _collect_peripheral_parts(self) -> List[PeripheralPart]:
        collected: List[PeripheralPart] = []
        for name, data in self.raw_parts.items():
            kind = PartKind.classify(name)
            if kind is None:
                continue
            try:
                content = data.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise file_parse_error(name, exc) from exc
            collected.append(PeripheralPart(name=name, kind=kind, content=content))
        return collected
