"""Entry-point for the docx templating pipeline."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping, Optional, Union

from docx_templater.errors import TemplateError
from docx_templater.renderer.template_engine import HelperFunction
from docx_templater.template import DocxTemplate
from docx_templater.utils.logger import get_logger

LOGGER = get_logger(__name__)


def parse_template(template_path: Union[str, Path]) -> DocxTemplate:
    """Load a DOCX template from disk."""
    return DocxTemplate.from_file(template_path)


def render_docx(
    template_path: Union[str, Path],
    data: Any,
    output_path: Union[str, Path],
    functions: Optional[Mapping[str, HelperFunction]] = None,
) -> Path:
    """Run the parse -> register -> render -> save pipeline and return the output path."""
    template_path = Path(template_path).resolve()
    LOGGER.info("Rendering template %s", template_path.name)

    template = parse_template(template_path)
    if functions:
        template.register_functions(functions)
    try:
        template.render(data)
    except TemplateError as exc:
        LOGGER.error("Rendering %s failed: %s", template_path.name, exc)
        raise

    return template.save_to_file(Path(output_path).resolve())
