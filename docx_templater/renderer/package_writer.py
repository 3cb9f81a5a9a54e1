"""Writes a rendered package back into a DOCX archive."""
from __future__ import annotations

import zipfile
from typing import BinaryIO, Dict, Iterable, Optional

from docx_templater.errors import WriteError
from docx_templater.model.document_model import DocumentBody
from docx_templater.model.elements import PeripheralPart
from docx_templater.parser.content_types import (
    CONTENT_TYPES_PART,
    DEFAULT_ENTRIES,
    DOCUMENT_CONTENT_TYPE,
    IMAGE_CONTENT_TYPES,
    ContentTypes,
)
from docx_templater.parser.docx_loader import DOCUMENT_XML_PATH, MEDIA_PREFIX, DocxPackage
from docx_templater.parser.rels_parser import DOCUMENT_RELS_PART, Relationships
from docx_templater.renderer.hyperlinks import HyperlinkRegistry
from docx_templater.utils.logger import get_logger

LOGGER = get_logger(__name__)

RELS_DEFAULT_ENTRY = DEFAULT_ENTRIES[0]


def ensure_media_defaults(content_types: ContentTypes, media_names: Iterable[str]) -> None:
    """Give every image extension used under ``word/media`` a content-type default."""
    for name in media_names:
        extension = name.rsplit(".", 1)[-1].lower() if "." in name else ""
        content_type = IMAGE_CONTENT_TYPES.get(extension)
        if content_type and content_types.content_type_for(name) is None:
            content_types.add_default(extension, content_type)


class PackageWriter:
    """Streams every part of ``package`` to a new archive with rendered substitutes.

    Entries keep their original order; parts that did not exist in the
    source (new media, a new relationships part) are appended at the end.
    """

    def __init__(self, package: DocxPackage) -> None:
        self.package = package

    def build_parts(
        self,
        *,
        body: DocumentBody,
        parts: Iterable[PeripheralPart],
        content_types: ContentTypes,
        relationships: Relationships,
        hyperlinks: Optional[HyperlinkRegistry] = None,
        media: Optional[Dict[str, bytes]] = None,
    ) -> Dict[str, bytes]:
        """Return the ordered part table of the output archive."""
        media = dict(media or {})
        relationships = relationships.copy()
        if hyperlinks is not None:
            added = hyperlinks.apply_to(relationships)
            if added:
                LOGGER.debug("Added %d hyperlink relationship(s)", added)

        content_types = content_types.copy()
        if CONTENT_TYPES_PART not in self.package.raw_parts:
            for extension, content_type in DEFAULT_ENTRIES:
                content_types.add_default(extension, content_type)
            content_types.add_override(DOCUMENT_XML_PATH, DOCUMENT_CONTENT_TYPE)
        ensure_media_defaults(content_types, [*self.package.media, *media])

        replacements: Dict[str, bytes] = {DOCUMENT_XML_PATH: body.to_bytes()}
        for part in parts:
            replacements[part.name] = part.content.encode("utf-8")
        if self.package.has_document_rels or len(relationships):
            replacements[DOCUMENT_RELS_PART] = relationships.to_xml()
            content_types.add_default(*RELS_DEFAULT_ENTRY)
        replacements.update(media)
        replacements[CONTENT_TYPES_PART] = content_types.to_xml()

        ordered: Dict[str, bytes] = {}
        if CONTENT_TYPES_PART not in self.package.raw_parts:
            ordered[CONTENT_TYPES_PART] = replacements[CONTENT_TYPES_PART]
        for name, data in self.package.raw_parts.items():
            ordered[name] = replacements.get(name, data)
        for name, data in replacements.items():
            if name not in ordered:
                ordered[name] = data
        return ordered

    def write(self, stream: BinaryIO, **state) -> None:
        """Write the archive to ``stream``; keyword arguments as for :meth:`build_parts`."""
        ordered = self.build_parts(**state)
        try:
            with zipfile.ZipFile(stream, "w", compression=zipfile.ZIP_DEFLATED) as docx_zip:
                for name, data in ordered.items():
                    docx_zip.writestr(name, data)
        except (OSError, zipfile.LargeZipFile, ValueError) as exc:
            raise WriteError(f"failed to write document: {exc}", cause=exc) from exc
        new_media = sum(1 for name in ordered if name.startswith(MEDIA_PREFIX) and name not in self.package.raw_parts)
        LOGGER.debug("Wrote %d part(s), %d new media part(s)", len(ordered), new_media)
