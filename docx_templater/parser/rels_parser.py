"""Utilities for reading and writing Open Packaging Convention relationship parts."""
from __future__ import annotations

import posixpath
import re
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Dict, Iterable, List, Optional, Set, Tuple, Union

from lxml import etree

from docx_templater.utils.logger import get_logger
from docx_templater.utils.xml_utils import Namespaces, parse_xml, serialize_xml

LOGGER = get_logger(__name__)

WORD_REL_NS = "http://schemas.openxmlformats.org/officeDocument/2006/relationships"

RELTYPE_IMAGE = f"{WORD_REL_NS}/image"
RELTYPE_HYPERLINK = f"{WORD_REL_NS}/hyperlink"
RELTYPE_HEADER = f"{WORD_REL_NS}/header"
RELTYPE_FOOTER = f"{WORD_REL_NS}/footer"
RELTYPE_OFFICE_DOCUMENT = f"{WORD_REL_NS}/officeDocument"

MAIN_DOCUMENT_PART = "word/document.xml"
DOCUMENT_RELS_PART = "word/_rels/document.xml.rels"
TARGET_MODE_EXTERNAL = "External"

_NUMERIC_ID_PATTERN = re.compile(r"^rId(\d+)$")


@dataclass(frozen=True)
class Relationship:
    """Represents a single OPC relationship."""

    source_part: str
    r_id: str
    target: str
    rel_type: str
    is_external: bool = False
    resolved_target: Optional[str] = None


class Relationships:
    """Ordered relationship catalogue of one source part."""

    def __init__(self, source_part: str = MAIN_DOCUMENT_PART, records: Optional[Iterable[Relationship]] = None) -> None:
        self.source_part = source_part
        self._records: Dict[str, Relationship] = {}
        for record in records or []:
            self._records[record.r_id] = record

    @classmethod
    def from_xml(cls, rels_part: str, data: Union[bytes, str, None]) -> "Relationships":
        """Parse a ``.rels`` part; ``data=None`` yields an empty catalogue."""
        source, base_dir = cls._source_and_base_from_rel_part(rels_part)
        catalogue = cls(source)
        if not data:
            return catalogue
        tree = parse_xml(data)
        for rel_el in tree.findall(".//rel:Relationship", Namespaces.RELS):
            r_id = rel_el.get("Id")
            if not r_id:
                LOGGER.warning("Skipping relationship without Id in %s", rels_part)
                continue
            target = rel_el.get("Target", "")
            is_external = rel_el.get("TargetMode") == TARGET_MODE_EXTERNAL
            catalogue._records[r_id] = Relationship(
                source_part=source,
                r_id=r_id,
                target=target,
                rel_type=rel_el.get("Type", ""),
                is_external=is_external,
                resolved_target=cls._resolve_target_path(base_dir, target, is_external),
            )
        return catalogue

    # ------------------------------------------------------------------
    # Queries
    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, r_id: object) -> bool:
        return r_id in self._records

    def find(self, r_id: str) -> Optional[Relationship]:
        return self._records.get(r_id)

    def ids(self) -> Set[str]:
        return set(self._records)

    def by_type(self, rel_type: str) -> Dict[str, Relationship]:
        return {r_id: rel for r_id, rel in self._records.items() if rel.rel_type == rel_type}

    def find_by_target(self, rel_type: str, target: str) -> Optional[Relationship]:
        for rel in self._records.values():
            if rel.rel_type == rel_type and rel.target == target:
                return rel
        return None

    # ------------------------------------------------------------------
    # Mutation
    def next_id(self) -> str:
        """Return ``rId{n}`` with ``n`` above every numeric id already present."""
        return f"rId{max(numeric_ids(self._records), default=0) + 1}"

    def add(self, rel_type: str, target: str, *, external: bool = False, r_id: Optional[str] = None) -> Relationship:
        """Append a relationship and return it."""
        r_id = r_id or self.next_id()
        if r_id in self._records:
            raise ValueError(f"Relationship id already in use: {r_id}")
        base_dir = PurePosixPath(self.source_part).parent
        record = Relationship(
            source_part=self.source_part,
            r_id=r_id,
            target=target,
            rel_type=rel_type,
            is_external=external,
            resolved_target=self._resolve_target_path(base_dir, target, external),
        )
        self._records[r_id] = record
        return record

    def to_xml(self) -> bytes:
        ns = Namespaces.RELS["rel"]
        root = etree.Element(f"{{{ns}}}Relationships", nsmap={None: ns})
        for rel in self._records.values():
            node = etree.SubElement(root, f"{{{ns}}}Relationship", Id=rel.r_id, Type=rel.rel_type, Target=rel.target)
            if rel.is_external:
                node.set("TargetMode", TARGET_MODE_EXTERNAL)
        return serialize_xml(root)

    def copy(self) -> "Relationships":
        return Relationships(self.source_part, self._records.values())

    # ------------------------------------------------------------------
    # Path helpers
    @staticmethod
    def rels_part_for(source_part: str) -> str:
        """Return the ``.rels`` part path that holds relationships of ``source_part``."""
        folder, _, name = source_part.rpartition("/")
        return f"{folder}/_rels/{name}.rels" if folder else f"_rels/{name}.rels"

    @staticmethod
    def _source_and_base_from_rel_part(rel_part: str) -> Tuple[str, PurePosixPath]:
        if rel_part == "_rels/.rels":
            return "", PurePosixPath("")
        if "/_rels/" in rel_part:
            folder, suffix = rel_part.split("/_rels/", 1)
            base = suffix[:-5]
            return f"{folder}/{base}", PurePosixPath(folder)
        if rel_part.startswith("_rels/"):
            base = rel_part[len("_rels/") : -5]
            return base, PurePosixPath("")
        return rel_part[:-5], PurePosixPath(rel_part).parent

    @staticmethod
    def _resolve_target_path(base_dir: PurePosixPath, target: str, is_external: bool) -> Optional[str]:
        if not target:
            return None
        if is_external:
            return target
        if target.startswith("/"):
            return target.lstrip("/")
        return posixpath.normpath(base_dir.joinpath(target).as_posix())


def numeric_ids(ids: Iterable[str]) -> List[int]:
    """Numeric suffixes of every ``rId{n}`` style id in ``ids``."""
    return [int(match.group(1)) for match in map(_NUMERIC_ID_PATTERN.match, ids) if match]
