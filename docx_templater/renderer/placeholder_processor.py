"""Drives fragment merging and template execution over every templated part."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from docx_templater.errors import TemplateError
from docx_templater.model.document_model import DocumentBody
from docx_templater.model.elements import PartKind, PeripheralPart
from docx_templater.renderer.data_normalizer import DataNormalizer
from docx_templater.renderer.fragment_merger import FragmentMerger
from docx_templater.renderer.template_engine import TemplateEngine
from docx_templater.renderer.watermarks import process_watermarks
from docx_templater.renderer.xml_fixups import (
    cleanup_rendered_xml,
    collapse_control_rows,
    decode_entities_in_tags,
    ensure_well_formed,
)
from docx_templater.utils.logger import get_logger
from docx_templater.utils.text_normalizer import LINE_BREAK_XML

LOGGER = get_logger(__name__)

BODY_LOCATION = "document body"
BRACE_ENTITY = "&#123;"


class PlaceholderProcessor:
    """Renders the document body first, then each peripheral part in order."""

    def __init__(
        self,
        engine: TemplateEngine,
        normalizer: DataNormalizer,
        merger: Optional[FragmentMerger] = None,
    ) -> None:
        self.engine = engine
        self.normalizer = normalizer
        self.merger = merger or FragmentMerger()

    def process(self, body: DocumentBody, parts: List[PeripheralPart], data: Any) -> None:
        """Render ``body`` and ``parts`` in place against ``data``.

        The caller owns transactionality: on error the objects passed in
        are left partially rendered.
        """
        self.merger.merge_body(body, BODY_LOCATION)
        collapse_control_rows(body)
        tree = self.normalizer.normalize(data)

        self.process_body(body, tree)
        for part in parts:
            part.content = self.process_part(part, tree)

    def process_body(self, body: DocumentBody, tree: Dict[str, Any]) -> None:
        xml = decode_entities_in_tags(body.to_xml())
        rendered = cleanup_rendered_xml(self._execute(xml, tree, BODY_LOCATION))
        ensure_well_formed(rendered, BODY_LOCATION)
        body.replace_body_from_xml(rendered)

    def process_part(self, part: PeripheralPart, tree: Dict[str, Any]) -> str:
        """Return the rendered XML text of one peripheral part."""
        if part.kind is PartKind.PROPERTIES:
            rendered = self._execute(decode_entities_in_tags(part.content), tree, part.name)
            # Property values are plain element text, so breaks go back to newlines.
            rendered = rendered.replace(LINE_BREAK_XML, "\n")
        else:
            xml = self.merger.merge_raw_xml(part.content, part.name)
            if part.has_watermarks:
                xml = process_watermarks(xml, lambda text: self._render_watermark(text, tree, part.name))
            rendered = cleanup_rendered_xml(self._execute(decode_entities_in_tags(xml), tree, part.name))
        ensure_well_formed(rendered, part.name)
        LOGGER.debug("Rendered %s part %s", part.kind.value, part.name)
        return rendered

    def _render_watermark(self, text: str, tree: Dict[str, Any], location: str) -> str:
        # Attribute values cannot hold break markup.
        rendered = self._execute(decode_entities_in_tags(text), tree, location).replace(LINE_BREAK_XML, " ")
        # The whole part is executed next; braces from data must stay literal.
        return rendered.replace("{", BRACE_ENTITY)

    def _execute(self, text: str, tree: Dict[str, Any], location: str) -> str:
        try:
            return self.engine.execute(text, tree)
        except TemplateError as exc:
            if exc.location is None:
                exc.with_location(location)
            raise
