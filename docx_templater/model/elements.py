"""Small value types shared by the scanner, merger and render pipeline."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

HEADER_PART_PATTERN = re.compile(r"^word/header[0-9]+\.xml$")
FOOTER_PART_PATTERN = re.compile(r"^word/footer[0-9]+\.xml$")
NOTES_PARTS = ("word/footnotes.xml", "word/endnotes.xml")
PROPERTIES_PART_PATTERN = re.compile(r"^docProps/(core|app)\.xml$")


class PartKind(str, Enum):
    """Role of a peripheral XML part during rendering."""

    HEADER = "header"
    FOOTER = "footer"
    NOTES = "notes"
    PROPERTIES = "properties"

    @classmethod
    def classify(cls, name: str) -> Optional["PartKind"]:
        """Return the kind for a part path, or ``None`` when it is not templated."""
        if HEADER_PART_PATTERN.match(name):
            return cls.HEADER
        if FOOTER_PART_PATTERN.match(name):
            return cls.FOOTER
        if name in NOTES_PARTS:
            return cls.NOTES
        if PROPERTIES_PART_PATTERN.match(name):
            return cls.PROPERTIES
        return None


@dataclass(slots=True)
class PeripheralPart:
    """Header, footer, note or document-properties part kept as raw XML text."""

    name: str
    kind: PartKind
    content: str

    @property
    def has_watermarks(self) -> bool:
        return self.kind in (PartKind.HEADER, PartKind.FOOTER)


class DelimiterKind(str, Enum):
    OPEN = "open"
    CLOSE = "close"
    ORPHAN_CLOSE = "orphan_close"


@dataclass(slots=True)
class DelimiterToken:
    """A single ``{{`` or ``}}`` occurrence found by the tag scanner."""

    kind: DelimiterKind
    position: int
    trim: bool = False
    depth: int = 0


@dataclass(slots=True)
class ScanResult:
    """Outcome of scanning one character stream for delimiters."""

    tokens: List[DelimiterToken] = field(default_factory=list)
    balance: int = 0
    orphan_close: Optional[int] = None
    pending_open_brace: bool = False

    @property
    def is_balanced(self) -> bool:
        return self.balance == 0 and self.orphan_close is None

    @property
    def needs_more_text(self) -> bool:
        """True when an opened tag (or a lone trailing ``{``) awaits more text."""
        return self.balance > 0 or self.pending_open_brace

    def first_open(self) -> Optional[int]:
        for token in self.tokens:
            if token.kind is DelimiterKind.OPEN:
                return token.position
        return None


@dataclass(slots=True)
class MergeReport:
    """Counts gathered while repairing fragmented tags in one container."""

    paragraphs: int = 0
    merged_paragraphs: int = 0
    absorbed_nodes: int = 0
