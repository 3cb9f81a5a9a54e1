"""Hyperlink registry backing the ``link`` template helper."""
from __future__ import annotations

from typing import Dict, Iterable, Optional

from docx_templater.parser.rels_parser import RELTYPE_HYPERLINK, WORD_REL_NS, Relationships
from docx_templater.renderer.template_functions import format_output
from docx_templater.utils.logger import get_logger
from docx_templater.utils.text_normalizer import TextNormalizer

LOGGER = get_logger(__name__)

HYPERLINK_ID_PREFIX = "rIdLink"

# Closes the enclosing text node and run, emits the hyperlink run and reopens a plain run.
HYPERLINK_RUN_TEMPLATE = (
    "</w:t></w:r>"
    '<w:hyperlink xmlns:r="' + WORD_REL_NS + '" r:id="{r_id}" w:history="1">'
    "<w:r><w:rPr>"
    '<w:rStyle w:val="Hyperlink"/><w:color w:val="0563C1"/><w:u w:val="single"/>'
    "</w:rPr>"
    '<w:t xml:space="preserve">{text}</w:t>'
    "</w:r></w:hyperlink>"
    '<w:r><w:t xml:space="preserve">'
)


class HyperlinkRegistry:
    """Maps target URLs to relationship ids of the main document part."""

    def __init__(self, reserved_ids: Iterable[str] = ()) -> None:
        self._reserved = set(reserved_ids)
        self._links: Dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._links)

    def register(self, url: str) -> str:
        """Return the id for ``url``, allocating ``rIdLink{n}`` on first use."""
        existing = self._links.get(url)
        if existing is not None:
            return existing
        used = self._reserved | set(self._links.values())
        index = 1
        while f"{HYPERLINK_ID_PREFIX}{index}" in used:
            index += 1
        r_id = f"{HYPERLINK_ID_PREFIX}{index}"
        self._links[url] = r_id
        LOGGER.debug("Registered hyperlink %s -> %s", r_id, url)
        return r_id

    def link(self, url: Optional[str], text: Optional[str] = None) -> str:
        """Template helper emitting a hyperlink run for ``url``.

        ``url`` and ``text`` arrive already XML-escaped when they come from
        template data; the relationship stores the decoded URL.
        """
        url_text = format_output(url)
        target = TextNormalizer.unescape_entities(url_text)
        r_id = self.register(target)
        display = format_output(text) or TextNormalizer.escape_entities(target)
        return HYPERLINK_RUN_TEMPLATE.format(r_id=r_id, text=display)

    def find(self, url: str) -> Optional[str]:
        return self._links.get(url)

    def apply_to(self, relationships: Relationships) -> int:
        """Append an external hyperlink relationship for every registered URL missing from ``relationships``."""
        added = 0
        for url, r_id in self._links.items():
            if r_id in relationships:
                continue
            relationships.add(RELTYPE_HYPERLINK, url, external=True, r_id=r_id)
            added += 1
        return added

    def copy(self) -> "HyperlinkRegistry":
        clone = HyperlinkRegistry(self._reserved)
        clone._links = dict(self._links)
        return clone
