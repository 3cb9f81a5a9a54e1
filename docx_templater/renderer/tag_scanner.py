"""Delimiter scanning for ``{{ ... }}`` placeholders.

The scanner treats delimiters literally and never looks at what a tag
contains; interpreting the action is the template engine's job.
"""
from __future__ import annotations

import re
from typing import List

from docx_templater.model.elements import DelimiterKind, DelimiterToken, ScanResult

OPEN_DELIMITER = "{{"
CLOSE_DELIMITER = "}}"
TRIM_MARKER = "-"

TAG_PATTERN = re.compile(r"\{\{-?\s*.*?\s*-?\}\}", re.DOTALL)

BLOCK_KEYWORDS = ("range", "if", "with", "else", "end")
_BLOCK_TAG_PATTERN = re.compile(r"^(?:" + "|".join(BLOCK_KEYWORDS) + r")\b")


class TagScanner:
    """Single-pass delimiter scanner maintaining a depth counter."""

    def scan(self, text: str) -> ScanResult:
        result = ScanResult()
        depth = 0
        index = 0
        length = len(text)
        while index < length:
            if text.startswith(OPEN_DELIMITER, index):
                depth += 1
                trim = text.startswith(TRIM_MARKER, index + len(OPEN_DELIMITER))
                result.tokens.append(DelimiterToken(DelimiterKind.OPEN, index, trim, depth))
                index += len(OPEN_DELIMITER)
                continue
            if text.startswith(CLOSE_DELIMITER, index):
                trim = index > 0 and text[index - 1] == TRIM_MARKER
                if depth == 0:
                    result.tokens.append(DelimiterToken(DelimiterKind.ORPHAN_CLOSE, index, trim, 0))
                    if result.orphan_close is None:
                        result.orphan_close = index
                else:
                    result.tokens.append(DelimiterToken(DelimiterKind.CLOSE, index, trim, depth))
                    depth -= 1
                index += len(CLOSE_DELIMITER)
                continue
            if index == length - 1 and text[index] == "{":
                result.pending_open_brace = True
            index += 1
        result.balance = depth
        return result

    def balance(self, text: str) -> int:
        """Return the number of opened but not yet closed delimiters in ``text``."""
        return self.scan(text).balance


def find_all_tags(text: str) -> List[str]:
    """Return every complete ``{{ ... }}`` tag in ``text`` in order of appearance."""
    return TAG_PATTERN.findall(text)


def extract_tag_content(tag: str) -> str:
    """Strip delimiters, trim markers and surrounding whitespace from a tag."""
    content = tag
    if content.startswith(OPEN_DELIMITER):
        content = content[len(OPEN_DELIMITER):]
    if content.endswith(CLOSE_DELIMITER):
        content = content[: -len(CLOSE_DELIMITER)]
    if content.startswith(TRIM_MARKER):
        content = content[1:]
    if content.endswith(TRIM_MARKER):
        content = content[:-1]
    return content.strip()


def is_block_tag(content: str) -> bool:
    """True for control actions that open, switch or close a block."""
    return bool(_BLOCK_TAG_PATTERN.match(content.strip()))


def has_trim_left(tag: str) -> bool:
    return tag.startswith(OPEN_DELIMITER + TRIM_MARKER)


def has_trim_right(tag: str) -> bool:
    return tag.endswith(TRIM_MARKER + CLOSE_DELIMITER)
