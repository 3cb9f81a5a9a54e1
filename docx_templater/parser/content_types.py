"""Reader and writer for the ``[Content_Types].xml`` catalogue."""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Union

from lxml import etree

from docx_templater.utils.xml_utils import Namespaces, parse_xml, serialize_xml

CONTENT_TYPES_PART = "[Content_Types].xml"

IMAGE_CONTENT_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
}

DEFAULT_ENTRIES = (
    ("rels", "application/vnd.openxmlformats-package.relationships+xml"),
    ("xml", "application/xml"),
)
DOCUMENT_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document.main+xml"


@dataclass(frozen=True)
class DefaultEntry:
    extension: str
    content_type: str


@dataclass(frozen=True)
class OverrideEntry:
    part_name: str
    content_type: str


class ContentTypes:
    """Ordered extension defaults and part-name overrides of a package."""

    def __init__(
        self,
        defaults: Optional[List[DefaultEntry]] = None,
        overrides: Optional[List[OverrideEntry]] = None,
    ) -> None:
        self.defaults: List[DefaultEntry] = list(defaults or [])
        self.overrides: List[OverrideEntry] = list(overrides or [])

    @classmethod
    def from_xml(cls, data: Union[bytes, str, None]) -> "ContentTypes":
        if not data:
            return cls()
        root = parse_xml(data).getroot()
        ns = Namespaces.CONTENT_TYPES
        defaults = [
            DefaultEntry(node.get("Extension", ""), node.get("ContentType", ""))
            for node in root.findall("ct:Default", ns)
        ]
        overrides = [
            OverrideEntry(node.get("PartName", ""), node.get("ContentType", ""))
            for node in root.findall("ct:Override", ns)
        ]
        return cls(defaults, overrides)

    @classmethod
    def minimal(cls) -> "ContentTypes":
        """Catalogue for a freshly created single-part document."""
        catalogue = cls([DefaultEntry(ext, ct) for ext, ct in DEFAULT_ENTRIES])
        catalogue.add_override("/word/document.xml", DOCUMENT_CONTENT_TYPE)
        return catalogue

    def has_default(self, extension: str) -> bool:
        wanted = extension.lower().lstrip(".")
        return any(entry.extension.lower() == wanted for entry in self.defaults)

    def add_default(self, extension: str, content_type: str) -> None:
        """Register an extension default; a second call for the same extension is a no-op."""
        extension = extension.lstrip(".")
        if not self.has_default(extension):
            self.defaults.append(DefaultEntry(extension, content_type))

    def add_override(self, part_name: str, content_type: str) -> None:
        """Register an override, replacing any existing entry for ``part_name``."""
        if not part_name.startswith("/"):
            part_name = "/" + part_name
        for index, entry in enumerate(self.overrides):
            if entry.part_name == part_name:
                self.overrides[index] = OverrideEntry(part_name, content_type)
                return
        self.overrides.append(OverrideEntry(part_name, content_type))

    def content_type_for(self, part_name: str) -> Optional[str]:
        """Resolve the content type of a part the way a consumer would."""
        absolute = part_name if part_name.startswith("/") else "/" + part_name
        for entry in self.overrides:
            if entry.part_name == absolute:
                return entry.content_type
        extension = absolute.rsplit(".", 1)[-1].lower() if "." in absolute else ""
        for entry in self.defaults:
            if entry.extension.lower() == extension:
                return entry.content_type
        return None

    def to_xml(self) -> bytes:
        ns = Namespaces.CONTENT_TYPES["ct"]
        root = etree.Element(f"{{{ns}}}Types", nsmap={None: ns})
        for entry in self.defaults:
            etree.SubElement(root, f"{{{ns}}}Default", Extension=entry.extension, ContentType=entry.content_type)
        for entry in self.overrides:
            etree.SubElement(root, f"{{{ns}}}Override", PartName=entry.part_name, ContentType=entry.content_type)
        return serialize_xml(root)

    def copy(self) -> "ContentTypes":
        return ContentTypes(self.defaults, self.overrides)
