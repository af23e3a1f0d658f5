"""Markdown body compiler.

Parses a body with markdown-it (CommonMark plus GFM tables, strikethrough and
footnotes) and converts the syntax tree into ``MarkdownBody``. Constructs
listed in ``KeepKind`` become Keep nodes; everything else passes through as
plain elements. Image sources are handed to a resolver supplied by the caller,
which decides whether the image is embedded, uploaded or left as a URL.
"""

import re
from collections.abc import Awaitable, Callable
from typing import Protocol

import structlog
from markdown_it import MarkdownIt
from markdown_it.tree import SyntaxTreeNode
from mdit_py_plugins.footnote import footnote_plugin
from pydantic import BaseModel

from inkwell.models.enums import AlertKind
from inkwell.models.markdown import (
    Alert,
    Codeblock,
    ElementNode,
    FootnoteDefinition,
    FootnoteReference,
    Heading,
    KeepNode,
    LinkCard,
    MarkdownBody,
    MarkdownNode,
    Section,
    TextNode,
    text_content,
)

UNKNOWN_FOOTNOTE_ID = "?"

_ALERT_MARKER = re.compile(r"^\[!(NOTE|TIP|IMPORTANT|WARNING|CAUTION)\][ \t]*", re.IGNORECASE)
_UNKNOWN_FOOTNOTE = re.compile(r"\[\^([^\]\s]+)\]")
_INFO_TITLE = re.compile(r'title="([^"]*)"')
_BARE_URL = re.compile(r"^https?://\S+$")

_PASS_THROUGH_TAGS = {
    "bullet_list": "ul",
    "ordered_list": "ol",
    "list_item": "li",
    "table": "table",
    "thead": "thead",
    "tbody": "tbody",
    "tr": "tr",
    "th": "th",
    "td": "td",
    "em": "em",
    "strong": "strong",
    "s": "del",
}

ImageResolver = Callable[[str, str, str | None], Awaitable[MarkdownNode]]


class LinkMetadata(BaseModel):
    title: str | None = None
    description: str | None = None
    image: str | None = None
    favicon: str | None = None

    model_config = {"frozen": True}


class LinkMetadataFetcher(Protocol):
    async def fetch(self, url: str) -> LinkMetadata | None: ...


def slugify(text: str) -> str:
    """Lowercase, whitespace to ``-``, keep only alphanumerics and ``-``."""
    slug = []
    for char in text.strip().lower():
        if char.isspace():
            slug.append("-")
        elif char.isalnum() or char == "-":
            slug.append(char)
    return "".join(slug)


def _plain_text(node: SyntaxTreeNode) -> str:
    if node.type in ("text", "code_inline", "fence", "code_block"):
        return node.content
    if node.type in ("softbreak", "hardbreak"):
        return " "
    if node.type == "footnote_anchor":
        return ""
    return "".join(_plain_text(child) for child in node.children)


def _footnote_label(meta: dict) -> str:
    """Definition label; inline footnotes have none and fall back to their number."""
    return str(meta.get("label") or meta.get("id", ""))


async def _plain_image(src: str, alt: str, title: str | None) -> MarkdownNode:
    attrs = {"src": src, "alt": alt}
    if title:
        attrs["title"] = title
    return ElementNode(tag="img", attrs=attrs)


class MarkdownCompiler:
    """Converts Markdown text into a resolved ``MarkdownBody``."""

    def __init__(
        self,
        link_fetcher: LinkMetadataFetcher | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        # Definitions stay in place so unreferenced ones survive parsing.
        self._md = (
            MarkdownIt("commonmark", {"html": False})
            .enable(["table", "strikethrough"])
            .use(footnote_plugin, inline=False, move_to_end=False)
        )
        self._link_fetcher = link_fetcher
        self._logger = logger or structlog.get_logger(__name__)

    def parse(self, text: str) -> SyntaxTreeNode:
        return SyntaxTreeNode(self._md.parse(text))

    async def compile(self, text: str, resolve_image: ImageResolver | None = None) -> MarkdownBody:
        """Parse and convert a Markdown body.

        Args:
            text: Markdown source, without frontmatter.
            resolve_image: Called with ``(src, alt, title)`` for every image.
                Defaults to leaving images as plain ``img`` elements.

        Returns:
            The converted body with footnote definitions and section list.
            Referenced definitions come first in reference order, followed by
            unreferenced ones in document order with no reference number.
        """
        tree = self.parse(text)
        walk = _BodyWalk(resolve_image or _plain_image, self._link_fetcher)
        walk.collect_footnotes(tree)

        root = await walk.convert_all(tree.children)
        footnotes = [
            FootnoteDefinition(id=label, reference=number, children=await walk.convert_all(children))
            for label, number, children in walk.ordered_footnotes()
        ]
        body = MarkdownBody(root=root, footnotes=footnotes, sections=walk.sections)
        self._logger.debug(
            "markdown_compiled",
            keep_count=len(body.keep_nodes()),
            footnote_count=len(footnotes),
            section_count=len(walk.sections),
        )
        return body


class _BodyWalk:
    """State for converting one document body."""

    def __init__(self, resolve_image: ImageResolver, link_fetcher: LinkMetadataFetcher | None) -> None:
        self._resolve_image = resolve_image
        self._link_fetcher = link_fetcher
        self._footnote_text: dict[str, str] = {}
        self._footnote_bodies: dict[str, list[SyntaxTreeNode]] = {}
        self._footnote_numbers: dict[str, int] = {}
        self.sections: list[Section] = []
        self._slugs: dict[str, int] = {}

    def collect_footnotes(self, tree: SyntaxTreeNode) -> None:
        """Record every definition and the number of its first reference."""
        for node in tree.walk():
            if node.type == "footnote_reference":
                label = _footnote_label(node.meta)
                self._footnote_text[label] = "".join(_plain_text(child) for child in node.children).strip()
                self._footnote_bodies[label] = list(node.children)
            elif node.type == "footnote_ref":
                self._footnote_numbers.setdefault(_footnote_label(node.meta), int(node.meta.get("id", 0)) + 1)

    def ordered_footnotes(self) -> list[tuple[str, int | None, list[SyntaxTreeNode]]]:
        referenced = sorted(
            (number, label) for label, number in self._footnote_numbers.items() if label in self._footnote_bodies
        )
        ordered: list[tuple[str, int | None, list[SyntaxTreeNode]]] = [
            (label, number, self._footnote_bodies[label]) for number, label in referenced
        ]
        ordered.extend(
            (label, None, children)
            for label, children in self._footnote_bodies.items()
            if label not in self._footnote_numbers
        )
        return ordered

    async def convert_all(self, nodes: list[SyntaxTreeNode]) -> list[MarkdownNode]:
        converted: list[MarkdownNode] = []
        for node in nodes:
            converted.extend(await self.convert(node))
        return converted

    async def convert(self, node: SyntaxTreeNode) -> list[MarkdownNode]:
        kind = node.type
        if kind == "paragraph":
            return await self._paragraph(node)
        if kind == "inline":
            return await self._inline(node.children)
        if kind == "heading":
            return [await self._heading(node)]
        if kind == "blockquote":
            return [await self._blockquote(node)]
        if kind in ("fence", "code_block"):
            return [self._codeblock(node)]
        if kind == "image":
            return [await self._resolve_image(node.attrs.get("src", ""), node.content, node.attrs.get("title"))]
        if kind == "footnote_ref":
            return [self._footnote_reference(node)]
        if kind in ("footnote_reference", "footnote_anchor"):
            return []
        if kind == "text":
            return [TextNode(text=node.content)]
        if kind == "softbreak":
            return [TextNode(text="\n")]
        if kind == "hardbreak":
            return [ElementNode(tag="br")]
        if kind == "hr":
            return [ElementNode(tag="hr")]
        if kind == "code_inline":
            return [ElementNode(tag="code", children=[TextNode(text=node.content)])]
        if kind == "link":
            attrs = {"href": str(node.attrs.get("href", ""))}
            if node.attrs.get("title"):
                attrs["title"] = str(node.attrs["title"])
            return [ElementNode(tag="a", attrs=attrs, children=await self._inline(node.children))]

        attrs = {name: str(value) for name, value in node.attrs.items()}
        tag = _PASS_THROUGH_TAGS.get(kind) or node.tag or "div"
        if not node.children and node.content:
            return [ElementNode(tag=tag, attrs=attrs, children=[TextNode(text=node.content)])]
        return [ElementNode(tag=tag, attrs=attrs, children=await self.convert_all(node.children))]

    async def _paragraph(self, node: SyntaxTreeNode) -> list[MarkdownNode]:
        inline = node.children[0] if node.children else None
        if inline is not None:
            card = await self._link_card(inline)
            if card is not None:
                return [card]
        children = await self.convert_all(node.children)
        if node.hidden:
            return children
        return [ElementNode(tag="p", children=children)]

    async def _inline(self, nodes: list[SyntaxTreeNode]) -> list[MarkdownNode]:
        converted: list[MarkdownNode] = []
        pending: list[str] = []

        def flush() -> None:
            if pending:
                converted.extend(self._split_unknown_footnotes("".join(pending)))
                pending.clear()

        for node in nodes:
            if node.type == "text":
                pending.append(node.content)
                continue
            flush()
            converted.extend(await self.convert(node))
        flush()
        return converted

    def _split_unknown_footnotes(self, text: str) -> list[MarkdownNode]:
        nodes: list[MarkdownNode] = []
        position = 0
        for match in _UNKNOWN_FOOTNOTE.finditer(text):
            if match.start() > position:
                nodes.append(TextNode(text=text[position : match.start()]))
            nodes.append(
                KeepNode(keep=FootnoteReference(id=UNKNOWN_FOOTNOTE_ID, reference=0, content=None))
            )
            position = match.end()
        if position < len(text):
            nodes.append(TextNode(text=text[position:]))
        return nodes

    def _footnote_reference(self, node: SyntaxTreeNode) -> MarkdownNode:
        label = _footnote_label(node.meta)
        if label not in self._footnote_text:
            return KeepNode(keep=FootnoteReference(id=UNKNOWN_FOOTNOTE_ID, reference=0, content=None))
        return KeepNode(
            keep=FootnoteReference(
                id=label,
                reference=int(node.meta.get("id", 0)) + 1,
                content=self._footnote_text[label],
            )
        )

    async def _heading(self, node: SyntaxTreeNode) -> MarkdownNode:
        level = int(node.tag[1:])
        children = await self.convert_all(node.children)
        title = text_content(children).strip()
        slug = self._unique_slug(slugify(title))
        self.sections.append(Section(level=level, slug=slug, title=title))
        return KeepNode(keep=Heading(level=level, slug=slug), children=children)

    def _unique_slug(self, slug: str) -> str:
        seen = self._slugs.get(slug)
        self._slugs[slug] = 0 if seen is None else seen + 1
        return slug if seen is None else f"{slug}-{seen + 1}"

    async def _blockquote(self, node: SyntaxTreeNode) -> MarkdownNode:
        children = await self.convert_all(node.children)
        first = children[0] if children else None
        if not (isinstance(first, ElementNode) and first.tag == "p" and first.children):
            return ElementNode(tag="blockquote", children=children)
        lead = first.children[0]
        if not isinstance(lead, TextNode):
            return ElementNode(tag="blockquote", children=children)
        match = _ALERT_MARKER.match(lead.text)
        if match is None:
            return ElementNode(tag="blockquote", children=children)

        rest = lead.text[match.end() :]
        paragraph: list[MarkdownNode] = ([TextNode(text=rest)] if rest else []) + list(first.children[1:])
        while paragraph and isinstance(paragraph[0], TextNode) and not paragraph[0].text.strip():
            paragraph = paragraph[1:]
        body = ([first.model_copy(update={"children": paragraph})] if paragraph else []) + children[1:]
        return KeepNode(keep=Alert(kind=AlertKind(match.group(1).lower())), children=body)

    def _codeblock(self, node: SyntaxTreeNode) -> MarkdownNode:
        info = (node.info or "").strip()
        title_match = _INFO_TITLE.search(info)
        first = info.split()[0] if info else ""
        lang = first if first and "=" not in first else None
        return KeepNode(
            keep=Codeblock(lang=lang, title=title_match.group(1) if title_match else None),
            children=[TextNode(text=node.content)],
        )

    async def _link_card(self, inline: SyntaxTreeNode) -> MarkdownNode | None:
        children = [child for child in inline.children if not (child.type == "text" and not child.content.strip())]
        if len(children) != 1:
            return None
        only = children[0]
        if only.type == "text" and _BARE_URL.match(only.content.strip()):
            url = only.content.strip()
        elif only.type == "link" and only.markup == "autolink":
            url = str(only.attrs.get("href", ""))
        else:
            return None

        metadata = await self._link_fetcher.fetch(url) if self._link_fetcher is not None else None
        return KeepNode(
            keep=LinkCard(
                url=url,
                title=(metadata.title if metadata and metadata.title else url),
                description=metadata.description if metadata else None,
                image=metadata.image if metadata else None,
                favicon=metadata.favicon if metadata else None,
            )
        )
