"""
Text normalization utilities for template data.

Turns caller-supplied strings into text that can be spliced verbatim into a
WordprocessingML ``<w:t>`` element: XML-illegal characters are dropped, the
five predefined entities are escaped and newlines become inline breaks.
"""

import re

# Closes the current text node, emits a break and reopens a text node in the same run.
LINE_BREAK_XML = '</w:t><w:br/><w:t xml:space="preserve">'

XML_ENTITIES = (
    ("&", "&amp;"),
    ("<", "&lt;"),
    (">", "&gt;"),
    ('"', "&quot;"),
    ("'", "&apos;"),
)
_NAMED_ENTITIES = {entity[1:-1]: char for char, entity in XML_ENTITIES}


def _decode_entity(match: "re.Match[str]") -> str:
    name = match.group(1)
    if name.startswith("#x"):
        return chr(int(name[2:], 16))
    if name.startswith("#"):
        return chr(int(name[1:]))
    return _NAMED_ENTITIES[name]


class TextNormalizer:
    """Normalizes data strings before they reach the template engine."""

    # XML 1.0 forbids C0 controls other than tab, newline and carriage return
    ILLEGAL_XML_CHARS_PATTERN = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\ufffe\uffff]")

    NEWLINE_PATTERN = re.compile(r"\r\n|\r|\n")

    ENTITY_PATTERN = re.compile(r"&(#x[0-9a-fA-F]+|#[0-9]+|amp|lt|gt|quot|apos);")

    def __init__(self, line_break: str = LINE_BREAK_XML):
        """Initialize text normalizer.

        Args:
            line_break: Markup emitted in place of each newline character.
        """
        self.line_break = line_break

    def normalize_text(self, text: str) -> str:
        """Return ``text`` escaped for use inside a run's text node."""
        if not text:
            return text

        normalized = self.ILLEGAL_XML_CHARS_PATTERN.sub("", text)
        normalized = self.escape_entities(normalized)
        return self.NEWLINE_PATTERN.sub(self.line_break, normalized)

    @staticmethod
    def escape_entities(text: str) -> str:
        """Escape the five XML predefined entities."""
        for char, entity in XML_ENTITIES:
            text = text.replace(char, entity)
        return text

    @classmethod
    def unescape_entities(cls, text: str) -> str:
        """Decode predefined entities and numeric character references."""
        return cls.ENTITY_PATTERN.sub(_decode_entity, text)

