"""Document handle: parse a DOCX template, render it against data, save it."""
from __future__ import annotations

import io
import re
from pathlib import Path
from typing import Any, BinaryIO, Dict, List, Mapping, Optional, Union

from docx_templater.errors import WriteError
from docx_templater.model.document_model import DocumentBody
from docx_templater.model.elements import PartKind, PeripheralPart
from docx_templater.parser.content_types import CONTENT_TYPES_PART, ContentTypes
from docx_templater.parser.docx_loader import DOCUMENT_XML_PATH, PACKAGE_REL_PATH, DocxPackage
from docx_templater.parser.document_parser import DocumentParser
from docx_templater.parser.rels_parser import RELTYPE_OFFICE_DOCUMENT, Relationships
from docx_templater.renderer.data_normalizer import DataNormalizer
from docx_templater.renderer.fragment_merger import RAW_TEXT_NODE_PATTERN, FragmentMerger
from docx_templater.renderer.hyperlinks import HyperlinkRegistry
from docx_templater.renderer.inline_image import ImageRegistry, InlineImage
from docx_templater.renderer.package_writer import PackageWriter
from docx_templater.renderer.placeholder_processor import BODY_LOCATION, PlaceholderProcessor
from docx_templater.renderer.tag_scanner import find_all_tags
from docx_templater.renderer.template_engine import DEFAULT_FUNCTIONS, HelperFunction, TemplateEngine, validate_function
from docx_templater.renderer.watermarks import extract_watermarks, replace_watermark
from docx_templater.utils.logger import get_logger
from docx_templater.utils.text_normalizer import TextNormalizer

LOGGER = get_logger(__name__)

_DOC_PR_ID_PATTERN = re.compile(r"<wp:docPr\b[^>]*\sid=\"(\d+)\"")

EMPTY_DOCUMENT_XML = (
    '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>\n'
    '<w:document xmlns:w="http://schemas.openxmlformats.org/wordprocessingml/2006/main"'
    ' xmlns:r="http://schemas.openxmlformats.org/officeDocument/2006/relationships">'
    "<w:body><w:p/><w:sectPr/></w:body></w:document>"
)


def _new_package_parts() -> Dict[str, bytes]:
    root_rels = Relationships("")
    root_rels.add(RELTYPE_OFFICE_DOCUMENT, DOCUMENT_XML_PATH)
    return {
        CONTENT_TYPES_PART: ContentTypes.minimal().to_xml(),
        PACKAGE_REL_PATH: root_rels.to_xml(),
        DOCUMENT_XML_PATH: EMPTY_DOCUMENT_XML.encode("utf-8"),
    }


class DocxTemplate:
    """A parsed template together with the tables a render updates.

    The handle is meant for one render: ``render`` replaces the placeholders
    in place, and saving writes the rendered state. A failed render leaves
    the handle exactly as it was.
    """

    def __init__(self, package: DocxPackage) -> None:
        self._package = package
        self._body: DocumentBody = DocumentParser(package).parse()
        self._parts: List[PeripheralPart] = [
            PeripheralPart(part.name, part.kind, part.content) for part in package.peripheral_parts
        ]
        self._content_types = package.content_types.copy()
        self._relationships = package.relationships.copy()
        self._hyperlinks = HyperlinkRegistry(self._relationships.ids())
        self._functions: Dict[str, HelperFunction] = dict(DEFAULT_FUNCTIONS)
        self._media: Dict[str, bytes] = {}
        self._last_drawing_id = self._max_drawing_id()

    # ------------------------------------------------------------------
    # Construction
    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "DocxTemplate":
        return cls(DocxPackage.load(path))

    @classmethod
    def from_bytes(cls, data: bytes) -> "DocxTemplate":
        return cls(DocxPackage.from_bytes(data))

    @classmethod
    def from_stream(cls, stream: BinaryIO) -> "DocxTemplate":
        return cls(DocxPackage.from_stream(stream, getattr(stream, "name", "<stream>")))

    @classmethod
    def new(cls) -> "DocxTemplate":
        """Create a handle over a minimal package with one empty paragraph."""
        return cls(DocxPackage.from_parts(_new_package_parts(), source_name="<new>"))

    @property
    def source_name(self) -> str:
        return self._package.source_name

    @property
    def body(self) -> DocumentBody:
        return self._body

    @property
    def peripheral_parts(self) -> List[PeripheralPart]:
        return list(self._parts)

    # ------------------------------------------------------------------
    # Helper table
    def register_function(self, name: str, function: HelperFunction) -> None:
        validate_function(name, function)
        self._functions[name] = function

    def register_functions(self, functions: Mapping[str, HelperFunction]) -> None:
        for name, function in functions.items():
            self.register_function(name, function)

    def registered_functions(self) -> Dict[str, HelperFunction]:
        return {"link": self._hyperlinks.link, **self._functions}

    # ------------------------------------------------------------------
    # Rendering
    def render(self, data: Any) -> None:
        """Execute every placeholder against ``data``.

        Work happens on staged copies of the body, peripheral parts and side
        tables; they replace the handle state only when every part rendered.
        """
        LOGGER.info("Rendering %s", self.source_name)
        body = self._body.copy()
        parts = [PeripheralPart(part.name, part.kind, part.content) for part in self._parts]
        content_types = self._content_types.copy()
        relationships = self._relationships.copy()
        hyperlinks = self._hyperlinks.copy()
        media = dict(self._media)
        images = self._image_registry(relationships, content_types, media)

        engine = TemplateEngine({"link": hyperlinks.link, **self._functions})
        processor = PlaceholderProcessor(engine, DataNormalizer(image_handler=images.add))
        processor.process(body, parts, data)

        self._body = body
        self._parts = parts
        self._content_types = content_types
        self._relationships = relationships
        self._hyperlinks = hyperlinks
        self._media = media
        self._last_drawing_id = images.last_drawing_id
        LOGGER.info(
            "Rendered %s: %d hyperlink(s), %d new media part(s)",
            self.source_name,
            len(hyperlinks),
            len(media),
        )

    def add_inline_image(self, image: InlineImage) -> str:
        """Register ``image`` with this document and return its drawing markup."""
        images = self._image_registry(self._relationships, self._content_types, self._media)
        snippet = images.add(image)
        self._last_drawing_id = images.last_drawing_id
        return snippet

    def _image_registry(
        self, relationships: Relationships, content_types: ContentTypes, media: Dict[str, bytes]
    ) -> ImageRegistry:
        return ImageRegistry(
            relationships,
            content_types,
            media,
            existing_parts=self._package.part_names(),
            last_drawing_id=self._last_drawing_id,
        )

    def _max_drawing_id(self) -> int:
        highest = self._body.max_drawing_id()
        for part in self._parts:
            for match in _DOC_PR_ID_PATTERN.finditer(part.content):
                highest = max(highest, int(match.group(1)))
        return highest

    # ------------------------------------------------------------------
    # Inspection
    def get_placeholders(self) -> List[str]:
        """Unique placeholders in document order, body first."""
        merger = FragmentMerger()
        body = self._body.copy()
        merger.merge_body(body, BODY_LOCATION)
        found: List[str] = []
        for paragraph in body.iter_paragraphs():
            found.extend(find_all_tags(body.paragraph_text(paragraph)))
        for part in self._parts:
            if part.kind is PartKind.PROPERTIES:
                found.extend(find_all_tags(part.content))
                continue
            merged = merger.merge_raw_xml(part.content, part.name)
            for match in RAW_TEXT_NODE_PATTERN.finditer(merged):
                found.extend(find_all_tags(match.group(2)))

        unique: Dict[str, None] = {}
        for tag in found:
            unique.setdefault(TextNormalizer.unescape_entities(tag), None)
        return list(unique)

    def get_watermarks(self) -> List[str]:
        watermarks: List[str] = []
        for part in self._parts:
            if part.has_watermarks:
                watermarks.extend(extract_watermarks(part.content))
        return watermarks

    def replace_watermark(self, old_text: str, new_text: str) -> int:
        """Replace watermark text in headers and footers; return the number of parts changed."""
        changed = 0
        for part in self._parts:
            if not part.has_watermarks:
                continue
            updated = replace_watermark(part.content, old_text, new_text)
            if updated != part.content:
                part.content = updated
                changed += 1
        return changed

    # ------------------------------------------------------------------
    # Saving
    def save(self, stream: BinaryIO) -> None:
        PackageWriter(self._package).write(
            stream,
            body=self._body,
            parts=self._parts,
            content_types=self._content_types,
            relationships=self._relationships,
            hyperlinks=self._hyperlinks,
            media=self._media,
        )

    def save_to_file(self, path: Union[str, Path]) -> Path:
        path = Path(path)
        LOGGER.info("Saving %s to %s", self.source_name, path)
        try:
            with path.open("wb") as handle:
                self.save(handle)
        except OSError as exc:
            raise WriteError(f"failed to write {path}", cause=exc) from exc
        return path

    def to_bytes(self) -> bytes:
        buffer = io.BytesIO()
        self.save(buffer)
        return buffer.getvalue()
