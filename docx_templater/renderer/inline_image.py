"""Inline images: probing, resizing and DrawingML emission."""
from __future__ import annotations

import io
import os
from enum import Enum
from fractions import Fraction
from pathlib import Path, PurePosixPath
from typing import Any, Callable, Dict, Iterable, Optional, Tuple, Union
from urllib.parse import urlparse

import httpx
from lxml import etree
from PIL import ExifTags, Image, UnidentifiedImageError

from docx_templater.errors import ImageError, image_load_error
from docx_templater.parser.content_types import ContentTypes
from docx_templater.parser.rels_parser import RELTYPE_IMAGE, Relationships
from docx_templater.utils.logger import get_logger
from docx_templater.utils.units import DEFAULT_DPI, pixels_to_emu

LOGGER = get_logger(__name__)

SUPPORTED_EXTENSIONS = (".png", ".jpg", ".jpeg")
DEFAULT_URL_TIMEOUT = 30.0

JPEG_MAGIC = b"\xff\xd8\xff"
PNG_MAGIC = b"\x89PNG"

MEDIA_PART_TEMPLATE = "word/media/templated_image{index}.{extension}"

_WP_NS = "http://schemas.openxmlformats.org/drawingml/2006/wordprocessingDrawing"
_A_NS = "http://schemas.openxmlformats.org/drawingml/2006/main"
_PIC_NS = "http://schemas.openxmlformats.org/drawingml/2006/picture"
_R_NS = "http://schemas.openxmlformats.org/officeDocument/2006/relationships"
_W_NS = "http://schemas.openxmlformats.org/wordprocessingml/2006/main"
_DRAWING_NSMAP = {"w": _W_NS, "wp": _WP_NS, "a": _A_NS, "pic": _PIC_NS, "r": _R_NS}

_X_RESOLUTION_TAG = 282
_Y_RESOLUTION_TAG = 283


class ImageFormat(str, Enum):
    JPEG = "jpeg"
    PNG = "png"

    @property
    def extension(self) -> str:
        return "jpg" if self is ImageFormat.JPEG else "png"

    @property
    def content_type(self) -> str:
        return f"image/{self.value}"

    @property
    def pillow_format(self) -> str:
        return self.value.upper()

    @property
    def content_type_defaults(self) -> Tuple[Tuple[str, str], ...]:
        if self is ImageFormat.JPEG:
            return (("jpg", self.content_type), ("jpeg", self.content_type))
        return (("png", self.content_type),)


def detect_format(data: bytes) -> ImageFormat:
    """Identify the image format from its magic bytes."""
    if data.startswith(JPEG_MAGIC):
        return ImageFormat.JPEG
    if data.startswith(PNG_MAGIC):
        return ImageFormat.PNG
    raise ImageError(
        "unsupported image format",
        suggestions=["Only JPEG and PNG images can be inserted"],
    )


def has_supported_extension(path: str) -> bool:
    return path.lower().endswith(SUPPORTED_EXTENSIONS)


def is_image_path(value: str) -> bool:
    """True for strings naming an existing file with a supported image extension."""
    return has_supported_extension(value) and os.path.isfile(value)


def parse_resolution(value: Any) -> Optional[float]:
    """Read an EXIF resolution given as a rational, a ``num/den`` string or a number."""
    try:
        if isinstance(value, tuple) and len(value) == 2:
            resolution = float(Fraction(int(value[0]), int(value[1])))
        elif isinstance(value, (str, bytes)):
            text = value.decode("ascii") if isinstance(value, bytes) else value
            resolution = float(Fraction(text.strip()))
        else:
            resolution = float(value)
    except (ValueError, TypeError, ZeroDivisionError):
        return None
    if resolution != resolution or resolution <= 0:
        return None
    return resolution


class InlineImage:
    """Image bytes in a canonical format, ready to be placed inline in a run."""

    def __init__(self, data: bytes, *, source: str = "<memory>") -> None:
        self.data = data
        self.format = detect_format(data)
        self.source = source

    def __repr__(self) -> str:
        return f"InlineImage(source={self.source!r}, format={self.format.value})"

    # ------------------------------------------------------------------
    # Constructors
    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "InlineImage":
        path_text = str(path)
        if not has_supported_extension(path_text):
            raise ImageError(f"unsupported image extension: {path_text}", suggestions=["Use a .png, .jpg or .jpeg file"])
        try:
            data = Path(path).read_bytes()
        except OSError as exc:
            raise image_load_error(path_text, exc) from exc
        return cls(data, source=path_text)

    @classmethod
    def from_bytes(cls, data: bytes, extension: str = "") -> "InlineImage":
        if extension and "." + extension.lower().lstrip(".") not in SUPPORTED_EXTENSIONS:
            raise ImageError(f"unsupported image extension: {extension}")
        return cls(bytes(data))

    @classmethod
    def from_url(cls, url: str, timeout: float = DEFAULT_URL_TIMEOUT) -> "InlineImage":
        """Download an image; the URL path must end in a supported extension."""
        if not has_supported_extension(PurePosixPath(urlparse(url).path).name):
            raise ImageError(f"unsupported image extension in URL: {url}")
        try:
            with httpx.Client(timeout=timeout, follow_redirects=True) as client:
                response = client.get(url)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise image_load_error(url, exc) from exc
        LOGGER.debug("Downloaded %d bytes from %s", len(response.content), url)
        return cls(response.content, source=url)

    # ------------------------------------------------------------------
    # Probing
    def _open(self) -> Image.Image:
        try:
            return Image.open(io.BytesIO(self.data))
        except (UnidentifiedImageError, OSError) as exc:
            raise image_load_error(self.source, exc) from exc

    def pixel_size(self) -> Tuple[int, int]:
        with self._open() as image:
            return image.size

    def exif_data(self) -> Dict[str, Any]:
        """EXIF tags of the image keyed by their names."""
        with self._open() as image:
            exif = image.getexif()
            return {ExifTags.TAGS.get(tag, str(tag)): value for tag, value in exif.items()}

    def resolution(self) -> Tuple[float, float]:
        """Horizontal and vertical DPI from EXIF, defaulting to 72."""
        with self._open() as image:
            exif = image.getexif()
            raw_x = exif.get(_X_RESOLUTION_TAG)
            raw_y = exif.get(_Y_RESOLUTION_TAG)
        x_dpi = parse_resolution(raw_x) if raw_x is not None else None
        y_dpi = parse_resolution(raw_y) if raw_y is not None else None
        if (raw_x is not None and x_dpi is None) or (raw_y is not None and y_dpi is None):
            LOGGER.warning("Ignoring malformed EXIF resolution %r/%r in %s", raw_x, raw_y, self.source)
        return (x_dpi or DEFAULT_DPI, y_dpi or DEFAULT_DPI)

    def size_emu(self) -> Tuple[int, int]:
        width, height = self.pixel_size()
        x_dpi, y_dpi = self.resolution()
        return pixels_to_emu(width, x_dpi), pixels_to_emu(height, y_dpi)

    # ------------------------------------------------------------------
    # Editing
    def resize(self, width: int, height: int) -> "InlineImage":
        """Scale to ``width`` x ``height`` pixels with nearest-neighbour sampling."""
        if width <= 0 or height <= 0:
            raise ImageError(f"invalid image size {width}x{height}")
        with self._open() as image:
            resized = image.resize((width, height), Image.Resampling.NEAREST)
        if self.format is ImageFormat.JPEG and resized.mode not in ("RGB", "L", "CMYK"):
            resized = resized.convert("RGB")
        buffer = io.BytesIO()
        resized.save(buffer, format=self.format.pillow_format)
        self.data = buffer.getvalue()
        return self

    # ------------------------------------------------------------------
    # Emission
    def drawing_xml(self, r_id: str, drawing_id: int, name: str) -> str:
        """Return a ``w:drawing`` element embedding the image relationship ``r_id``."""
        cx, cy = self.size_emu()
        drawing = etree.Element(f"{{{_W_NS}}}drawing", nsmap=_DRAWING_NSMAP)
        inline = etree.SubElement(drawing, f"{{{_WP_NS}}}inline", distT="0", distB="0", distL="0", distR="0")
        etree.SubElement(inline, f"{{{_WP_NS}}}extent", cx=str(cx), cy=str(cy))
        etree.SubElement(inline, f"{{{_WP_NS}}}effectExtent", l="0", t="0", r="0", b="0")
        etree.SubElement(inline, f"{{{_WP_NS}}}docPr", id=str(drawing_id), name=f"Picture {drawing_id}")
        frame = etree.SubElement(inline, f"{{{_WP_NS}}}cNvGraphicFramePr")
        etree.SubElement(frame, f"{{{_A_NS}}}graphicFrameLocks", noChangeAspect="1")

        graphic = etree.SubElement(inline, f"{{{_A_NS}}}graphic")
        graphic_data = etree.SubElement(graphic, f"{{{_A_NS}}}graphicData", uri=_PIC_NS)
        pic = etree.SubElement(graphic_data, f"{{{_PIC_NS}}}pic")
        nv_pic = etree.SubElement(pic, f"{{{_PIC_NS}}}nvPicPr")
        etree.SubElement(nv_pic, f"{{{_PIC_NS}}}cNvPr", id="0", name=name)
        etree.SubElement(nv_pic, f"{{{_PIC_NS}}}cNvPicPr")
        blip_fill = etree.SubElement(pic, f"{{{_PIC_NS}}}blipFill")
        etree.SubElement(blip_fill, f"{{{_A_NS}}}blip", {f"{{{_R_NS}}}embed": r_id})
        stretch = etree.SubElement(blip_fill, f"{{{_A_NS}}}stretch")
        etree.SubElement(stretch, f"{{{_A_NS}}}fillRect")
        sp_pr = etree.SubElement(pic, f"{{{_PIC_NS}}}spPr")
        xfrm = etree.SubElement(sp_pr, f"{{{_A_NS}}}xfrm")
        etree.SubElement(xfrm, f"{{{_A_NS}}}off", x="0", y="0")
        etree.SubElement(xfrm, f"{{{_A_NS}}}ext", cx=str(cx), cy=str(cy))
        geometry = etree.SubElement(sp_pr, f"{{{_A_NS}}}prstGeom", prst="rect")
        etree.SubElement(geometry, f"{{{_A_NS}}}avLst")
        return etree.tostring(drawing, encoding="unicode")

    def run_snippet(self, r_id: str, drawing_id: int, name: str) -> str:
        """Drawing markup to splice into a ``w:t``: closes the text node and reopens it after."""
        return "</w:t>" + self.drawing_xml(r_id, drawing_id, name) + '<w:t xml:space="preserve">'


class ImageRegistry:
    """Registers media parts, relationships and content types for inserted images."""

    def __init__(
        self,
        relationships: Relationships,
        content_types: ContentTypes,
        media: Dict[str, bytes],
        existing_parts: Iterable[str] = (),
        last_drawing_id: int = 0,
    ) -> None:
        self._relationships = relationships
        self._content_types = content_types
        self._media = media
        self._taken = set(existing_parts) | set(media)
        self.last_drawing_id = last_drawing_id

    def _next_part_name(self, extension: str) -> str:
        index = 1
        while True:
            candidate = MEDIA_PART_TEMPLATE.format(index=index, extension=extension)
            if candidate not in self._taken:
                return candidate
            index += 1

    def add(self, image: InlineImage) -> str:
        """Store ``image`` as a new media part and return its run snippet."""
        part_name = self._next_part_name(image.format.extension)
        self._taken.add(part_name)
        self._media[part_name] = image.data
        relationship = self._relationships.add(RELTYPE_IMAGE, part_name[len("word/"):])
        for extension, content_type in image.format.content_type_defaults:
            self._content_types.add_default(extension, content_type)
        self.last_drawing_id += 1
        LOGGER.debug("Registered image %s as %s (%s)", image.source, part_name, relationship.r_id)
        return image.run_snippet(relationship.r_id, self.last_drawing_id, PurePosixPath(part_name).name)


ImageHandler = Callable[[InlineImage], str]
