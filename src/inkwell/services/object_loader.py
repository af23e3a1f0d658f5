"""Loads files referenced by documents: frontmatter images and files, body images."""

import asyncio
import io
import mimetypes
from pathlib import Path
from urllib.parse import unquote

import structlog
from lxml import etree
from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel

from inkwell.errors import ValidationError
from inkwell.models.markdown import ElementNode, MarkdownNode, TextNode

SVG_CONTENT_TYPE = "image/svg+xml"
DEFAULT_CONTENT_TYPE = "application/octet-stream"


class LoadedObject(BaseModel):
    path: Path
    data: bytes
    content_type: str
    width: int | None = None
    height: int | None = None

    model_config = {"frozen": True}

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def is_svg(self) -> bool:
        return self.content_type == SVG_CONTENT_TYPE


def guess_content_type(path: Path) -> str:
    if path.suffix.lower() == ".svg":
        return SVG_CONTENT_TYPE
    content_type, _ = mimetypes.guess_type(path.name)
    return content_type or DEFAULT_CONTENT_TYPE


class ObjectLoader:
    """Reads referenced files relative to the document that references them.

    When ``root_dir`` is given, sources resolving outside it are rejected.
    """

    def __init__(
        self,
        root_dir: Path | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._root_dir = root_dir.resolve() if root_dir is not None else None
        self._logger = logger or structlog.get_logger(__name__)

    def resolve_path(self, source: str, document_path: Path) -> Path:
        """Path of ``source`` relative to the referencing document.

        Raises:
            ValidationError: If the path escapes the collection root.
        """
        path = document_path.parent / unquote(source).lstrip("/")
        if self._root_dir is not None and not path.resolve().is_relative_to(self._root_dir):
            raise ValidationError(
                f"referenced file {source!r} is outside the collection root {self._root_dir}",
                path=document_path,
            )
        return path

    async def load(self, source: str, document_path: Path) -> LoadedObject:
        """Read a referenced file and sniff its type and raster dimensions.

        Raises:
            ValidationError: If the file is outside the collection root, does
                not exist or cannot be read.
        """
        path = self.resolve_path(source, document_path)
        try:
            data = await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise ValidationError(f"referenced file {source!r} cannot be read: {e}", path=document_path) from e

        content_type = guess_content_type(path)
        width = height = None
        if content_type.startswith("image/") and content_type != SVG_CONTENT_TYPE:
            width, height = self._dimensions(data, path)
        return LoadedObject(path=path, data=data, content_type=content_type, width=width, height=height)

    def _dimensions(self, data: bytes, path: Path) -> tuple[int | None, int | None]:
        try:
            with Image.open(io.BytesIO(data)) as image:
                return image.size
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
            self._logger.warning("image_dimensions_unavailable", path=str(path), error=str(e))
            return None, None


def _qualified_name(name: str, nsmap: dict) -> str:
    """``prefix:local`` for names in a prefixed namespace, else the local name."""
    qname = etree.QName(name)
    if qname.namespace is None:
        return qname.localname
    for prefix, uri in nsmap.items():
        if prefix and uri == qname.namespace:
            return f"{prefix}:{qname.localname}"
    return qname.localname


def _convert_xml(element: etree._Element) -> ElementNode:
    children: list[MarkdownNode] = []
    if element.text and element.text.strip():
        children.append(TextNode(text=element.text))
    for child in element:
        # Comments and processing instructions are dropped, their tails kept.
        if isinstance(child.tag, str):
            children.append(_convert_xml(child))
        if child.tail and child.tail.strip():
            children.append(TextNode(text=child.tail))
    attrs = {_qualified_name(name, element.nsmap): value for name, value in element.attrib.items()}
    return ElementNode(tag=_qualified_name(element.tag, element.nsmap), attrs=attrs, children=children)


def svg_figure(data: bytes, alt: str, path: Path | None = None) -> ElementNode:
    """Embed SVG source as an accessible figure.

    The ``svg`` root gets ``role="img"`` and an ``aria-label`` from the alt
    text, and the alt text is repeated as a visible caption. Entities are not
    resolved and no network access is made while parsing.

    Raises:
        ValidationError: If the file is not well-formed SVG.
    """
    parser = etree.XMLParser(resolve_entities=False, no_network=True)
    try:
        root = etree.fromstring(data, parser=parser)
    except etree.XMLSyntaxError as e:
        raise ValidationError(f"invalid SVG: {e}", path=path) from e
    svg = _convert_xml(root)
    if svg.tag != "svg":
        raise ValidationError(f"expected an svg root element, found {svg.tag!r}", path=path)
    svg = svg.model_copy(update={"attrs": {**svg.attrs, "role": "img", "aria-label": alt}})
    children: list[MarkdownNode] = [svg]
    if alt:
        children.append(ElementNode(tag="figcaption", children=[TextNode(text=alt)]))
    return ElementNode(tag="figure", children=children)
