"""Helper functions to work with XML namespaces, parsing and serialisation."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Union

from lxml import etree


@dataclass(frozen=True)
class Namespaces:
    """Common OpenXML namespace prefixes used across parsers and writers."""

    WORD: Dict[str, str] = None  # type: ignore[assignment]
    RELS: Dict[str, str] = None  # type: ignore[assignment]
    DRAWING: Dict[str, str] = None  # type: ignore[assignment]
    CONTENT_TYPES: Dict[str, str] = None  # type: ignore[assignment]

    def __post_init__(self) -> None:  # pragma: no cover
        raise RuntimeError("Namespaces should not be instantiated")


Namespaces.WORD = {  # type: ignore[attr-defined]
    "w": "http://schemas.openxmlformats.org/wordprocessingml/2006/main",
    "r": "http://schemas.openxmlformats.org/officeDocument/2006/relationships",
}
Namespaces.RELS = {  # type: ignore[attr-defined]
    "rel": "http://schemas.openxmlformats.org/package/2006/relationships",
}
Namespaces.DRAWING = {  # type: ignore[attr-defined]
    "a": "http://schemas.openxmlformats.org/drawingml/2006/main",
    "wp": "http://schemas.openxmlformats.org/drawingml/2006/wordprocessingDrawing",
    "pic": "http://schemas.openxmlformats.org/drawingml/2006/picture",
}
Namespaces.CONTENT_TYPES = {  # type: ignore[attr-defined]
    "ct": "http://schemas.openxmlformats.org/package/2006/content-types",
}

_ALL_PREFIXES: Dict[str, str] = {
    **Namespaces.WORD,
    **Namespaces.DRAWING,
    "rel": Namespaces.RELS["rel"],
    "ct": Namespaces.CONTENT_TYPES["ct"],
}

_PARSER = etree.XMLParser(remove_blank_text=False, resolve_entities=False, huge_tree=True)


def qn(name: str) -> str:
    """Expand a ``prefix:local`` name into Clark notation (``{uri}local``)."""
    prefix, local = name.split(":", 1)
    return f"{{{_ALL_PREFIXES[prefix]}}}{local}"


def local_name(tag: object) -> str:
    """Return the tag name without its namespace, or ``""`` for comments and PIs."""
    if not isinstance(tag, str):
        return ""
    return tag.split("}", 1)[-1]


def parse_xml(data: Union[bytes, str]) -> etree._ElementTree:
    """Parse XML from raw bytes or text, keeping every namespace declaration."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return etree.ElementTree(etree.fromstring(data, _PARSER))


def serialize_xml(node: Union[etree._Element, etree._ElementTree]) -> bytes:
    """Serialise an element tree as a standalone UTF-8 XML part."""
    return etree.tostring(node, xml_declaration=True, encoding="UTF-8", standalone=True)
