"""Resolved Markdown body: a generic node tree with typed Keep nodes.

Only the node kinds listed in ``KeepKind`` are modelled individually; every
other construct passes through as a plain element. ``KEEP_MODELS`` is the
canonical mapping from kind to model and the code generators derive their
Keep unions from it.
"""

from typing import Annotated, Literal, Union

from pydantic import Field

from inkwell.models.base import FrozenModel
from inkwell.models.enums import AlertKind, KeepKind
from inkwell.models.pointer import ObjectReference


class Alert(FrozenModel):
    type: Literal["alert"] = "alert"
    kind: AlertKind


class FootnoteReference(FrozenModel):
    """A ``[^label]`` reference, numbered in order of first reference.

    Unknown labels resolve to ``id="?"`` with no content.
    """

    type: Literal["footnote_reference"] = "footnote_reference"
    id: str
    reference: int = Field(ge=0)
    content: str | None = None


class LinkCard(FrozenModel):
    type: Literal["link_card"] = "link_card"
    url: str
    title: str
    description: str | None = None
    image: str | None = None
    favicon: str | None = None


class Codeblock(FrozenModel):
    type: Literal["codeblock"] = "codeblock"
    lang: str | None = None
    title: str | None = None


class Heading(FrozenModel):
    type: Literal["heading"] = "heading"
    level: int = Field(ge=1, le=6)
    slug: str


class Image(FrozenModel):
    """An embedded image; ``reference`` is set for locally stored files."""

    type: Literal["image"] = "image"
    src: str
    alt: str
    title: str | None = None
    width: int | None = None
    height: int | None = None
    reference: ObjectReference | None = None


Keep = Annotated[
    Union[Alert, FootnoteReference, LinkCard, Codeblock, Heading, Image],
    Field(discriminator="type"),
]

KEEP_MODELS: dict[KeepKind, type[FrozenModel]] = {
    KeepKind.ALERT: Alert,
    KeepKind.FOOTNOTE_REFERENCE: FootnoteReference,
    KeepKind.LINK_CARD: LinkCard,
    KeepKind.CODEBLOCK: Codeblock,
    KeepKind.HEADING: Heading,
    KeepKind.IMAGE: Image,
}


class TextNode(FrozenModel):
    type: Literal["text"] = "text"
    text: str


class ElementNode(FrozenModel):
    type: Literal["element"] = "element"
    tag: str
    attrs: dict[str, str] = Field(default_factory=dict)
    children: list["MarkdownNode"] = Field(default_factory=list)


class KeepNode(FrozenModel):
    type: Literal["keep"] = "keep"
    keep: Keep
    children: list["MarkdownNode"] = Field(default_factory=list)


MarkdownNode = Annotated[Union[TextNode, ElementNode, KeepNode], Field(discriminator="type")]

ElementNode.model_rebuild()
KeepNode.model_rebuild()


class FootnoteDefinition(FrozenModel):
    """A footnote body; ``reference`` is ``None`` when nothing refers to it."""

    id: str
    reference: int | None = Field(default=None, ge=1)
    children: list[MarkdownNode] = Field(default_factory=list)


class Section(FrozenModel):
    level: int = Field(ge=1, le=6)
    slug: str
    title: str


class MarkdownBody(FrozenModel):
    root: list[MarkdownNode] = Field(default_factory=list)
    footnotes: list[FootnoteDefinition] = Field(default_factory=list)
    sections: list[Section] = Field(default_factory=list)

    def keep_nodes(self) -> list[KeepNode]:
        """All Keep nodes in document order, footnote bodies last."""
        found: list[KeepNode] = []

        def visit(nodes: list) -> None:
            for node in nodes:
                if isinstance(node, KeepNode):
                    found.append(node)
                if isinstance(node, (ElementNode, KeepNode)):
                    visit(node.children)

        visit(self.root)
        for footnote in self.footnotes:
            visit(footnote.children)
        return found


def text_content(nodes: list) -> str:
    """Concatenated text of a node list, ignoring markup."""
    parts: list[str] = []
    for node in nodes:
        if isinstance(node, TextNode):
            parts.append(node.text)
        elif isinstance(node, (ElementNode, KeepNode)):
            parts.append(text_content(node.children))
    return "".join(parts)
