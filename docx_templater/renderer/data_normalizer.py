"""Conversion of caller data into the tree the template engine consumes."""
from __future__ import annotations

import dataclasses
import inspect
import types
from collections.abc import Mapping
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Set

from docx_templater.errors import DataConversionError
from docx_templater.renderer.inline_image import ImageHandler, InlineImage, is_image_path
from docx_templater.utils.logger import get_logger
from docx_templater.utils.text_normalizer import TextNormalizer

LOGGER = get_logger(__name__)


def _is_namedtuple(value: Any) -> bool:
    return isinstance(value, tuple) and hasattr(value, "_asdict") and hasattr(value, "_fields")


def _public_fields(value: Any) -> Dict[str, Any]:
    if dataclasses.is_dataclass(value):
        return {
            field.name: getattr(value, field.name)
            for field in dataclasses.fields(value)
            if not field.name.startswith("_")
        }
    return {name: item for name, item in vars(value).items() if not name.startswith("_")}


class DataNormalizer:
    """Builds the canonical data tree: mappings, lists and escaped leaves.

    String leaves are XML-escaped with newlines turned into inline breaks.
    Strings naming an existing image file, and :class:`InlineImage` values,
    are handed to ``image_handler`` which returns drawing markup.
    """

    def __init__(
        self,
        image_handler: Optional[ImageHandler] = None,
        text_normalizer: Optional[TextNormalizer] = None,
    ) -> None:
        self.image_handler = image_handler
        self.text_normalizer = text_normalizer or TextNormalizer()

    def normalize(self, data: Any) -> Dict[str, Any]:
        """Normalise top-level ``data``; the result is always a mapping."""
        if data is None:
            raise DataConversionError(
                "template data must not be None",
                suggestions=["Pass a mapping, a dataclass or an object with attributes"],
            )
        tree = self._convert(data, set(), "data")
        if not isinstance(tree, dict):
            raise DataConversionError(
                f"template data must be a mapping or a record, got {type(data).__name__}",
                suggestions=["Wrap sequences and scalars in a mapping, e.g. {'Items': [...]}"],
            )
        return tree

    def _convert(self, value: Any, visiting: Set[int], path: str) -> Any:
        if value is None:
            return None
        if isinstance(value, Enum):
            return self._convert(value.value, visiting, path)
        if isinstance(value, (bool, int, float, Decimal)):
            return value
        if isinstance(value, str):
            return self._convert_string(value, path)
        if isinstance(value, (bytes, bytearray)):
            try:
                return self._convert_string(bytes(value).decode("utf-8"), path)
            except UnicodeDecodeError as exc:
                raise DataConversionError(f"bytes at {path} are not valid UTF-8", cause=exc) from exc
        if isinstance(value, (datetime, date, time)):
            return value.isoformat()
        if isinstance(value, InlineImage):
            return self._convert_image(value, path)
        if callable(value) or inspect.isgenerator(value) or isinstance(value, types.ModuleType):
            raise DataConversionError(
                f"unsupported value of type {type(value).__name__} at {path}",
                suggestions=["Call functions before rendering or register them as template helpers"],
            )

        marker = id(value)
        if marker in visiting:
            raise DataConversionError(
                f"cyclic reference detected at {path}",
                suggestions=["Template data must be a tree; break the reference cycle"],
            )
        visiting.add(marker)
        try:
            return self._convert_composite(value, visiting, path)
        finally:
            visiting.discard(marker)

    def _convert_composite(self, value: Any, visiting: Set[int], path: str) -> Any:
        if isinstance(value, Mapping):
            return {
                str(key): self._convert(item, visiting, f"{path}.{key}")
                for key, item in value.items()
            }
        if dataclasses.is_dataclass(value):
            return self._convert_fields(_public_fields(value), visiting, path)
        if _is_namedtuple(value):
            return self._convert_fields(value._asdict(), visiting, path)
        if isinstance(value, (list, tuple)):
            return [self._convert(item, visiting, f"{path}[{index}]") for index, item in enumerate(value)]
        if isinstance(value, (set, frozenset)):
            return [self._convert(item, visiting, f"{path}[]") for item in sorted(value, key=str)]
        if hasattr(value, "__dict__"):
            return self._convert_fields(_public_fields(value), visiting, path)
        raise DataConversionError(f"unsupported value of type {type(value).__name__} at {path}")

    def _convert_fields(self, fields: Dict[str, Any], visiting: Set[int], path: str) -> Dict[str, Any]:
        return {name: self._convert(item, visiting, f"{path}.{name}") for name, item in fields.items()}

    def _convert_string(self, value: str, path: str) -> str:
        if self.image_handler is not None and is_image_path(value):
            LOGGER.debug("Treating %s as an image path", path)
            return self._convert_image(InlineImage.from_file(value), path)
        return self.text_normalizer.normalize_text(value)

    def _convert_image(self, image: InlineImage, path: str) -> str:
        if self.image_handler is None:
            raise DataConversionError(
                f"image at {path} cannot be inserted outside a document render",
            )
        return self.image_handler(image)

