"""Unit tests for the Markdown body compiler."""

import pytest

from inkwell.models.enums import AlertKind
from inkwell.models.markdown import (
    Alert,
    Codeblock,
    ElementNode,
    FootnoteReference,
    Heading,
    Image,
    KeepNode,
    LinkCard,
    MarkdownNode,
    TextNode,
    text_content,
)
from inkwell.services.markdown import (
    UNKNOWN_FOOTNOTE_ID,
    LinkMetadata,
    MarkdownCompiler,
    slugify,
)


class FakeLinkFetcher:
    """Returns canned metadata and records requested URLs."""

    def __init__(self, metadata: LinkMetadata | None) -> None:
        self.metadata = metadata
        self.urls: list[str] = []

    async def fetch(self, url: str) -> LinkMetadata | None:
        self.urls.append(url)
        return self.metadata


@pytest.fixture
def compiler() -> MarkdownCompiler:
    return MarkdownCompiler()


def _keeps(body, kind: type) -> list:
    return [node.keep for node in body.keep_nodes() if isinstance(node.keep, kind)]


class TestSlugify:
    """Tests for heading slugs."""

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("Hello World", "hello-world"),
            ("What's new?", "whats-new"),
            ("  Trimmed  ", "trimmed"),
            ("Already-slugged", "already-slugged"),
        ],
    )
    def test_slugify(self, text: str, expected: str) -> None:
        assert slugify(text) == expected


class TestHeadings:
    """Tests for heading conversion and the section list."""

    async def test_heading_becomes_keep_node(self, compiler: MarkdownCompiler) -> None:
        body = await compiler.compile("# Hello World\n")

        node = body.root[0]
        assert isinstance(node, KeepNode)
        assert node.keep == Heading(level=1, slug="hello-world")
        assert text_content(node.children) == "Hello World"

    async def test_sections_follow_document_order(self, compiler: MarkdownCompiler) -> None:
        body = await compiler.compile("# Intro\n\ntext\n\n## The `run` method\n\n### Details\n")

        assert [(s.level, s.slug, s.title) for s in body.sections] == [
            (1, "intro", "Intro"),
            (2, "the-run-method", "The run method"),
            (3, "details", "Details"),
        ]

    async def test_duplicate_slugs_are_numbered(self, compiler: MarkdownCompiler) -> None:
        body = await compiler.compile("## Notes\n\n## Notes\n\n## Notes\n")

        assert [s.slug for s in body.sections] == ["notes", "notes-1", "notes-2"]


class TestFootnotes:
    """Tests for footnote references and definitions."""

    async def test_reference_carries_definition_text(self, compiler: MarkdownCompiler) -> None:
        body = await compiler.compile("Claim[^src].\n\n[^src]: The source.\n")

        references = _keeps(body, FootnoteReference)
        assert references == [FootnoteReference(id="src", reference=1, content="The source.")]
        assert [(f.id, f.reference) for f in body.footnotes] == [("src", 1)]
        assert text_content(body.footnotes[0].children) == "The source."

    async def test_references_are_numbered_by_first_use(self, compiler: MarkdownCompiler) -> None:
        body = await compiler.compile("A[^b] then[^a].\n\n[^a]: First defined.\n[^b]: Second defined.\n")

        assert [(r.id, r.reference) for r in _keeps(body, FootnoteReference)] == [("b", 1), ("a", 2)]
        assert [(f.id, f.reference) for f in body.footnotes] == [("b", 1), ("a", 2)]

    async def test_unreferenced_definition_is_kept(self, compiler: MarkdownCompiler) -> None:
        body = await compiler.compile("Text without refs.\n\n[^orphan]: Lonely definition.\n")

        assert [(f.id, f.reference) for f in body.footnotes] == [("orphan", None)]
        assert text_content(body.footnotes[0].children) == "Lonely definition."
        assert len(body.root) == 1

    async def test_unreferenced_definitions_follow_referenced_ones(self, compiler: MarkdownCompiler) -> None:
        body = await compiler.compile("See[^used].\n\n[^spare]: Spare note.\n\n[^used]: Used note.\n")

        assert [(f.id, f.reference) for f in body.footnotes] == [("used", 1), ("spare", None)]

    async def test_unknown_label(self, compiler: MarkdownCompiler) -> None:
        body = await compiler.compile("Dangling[^missing] reference.\n")

        paragraph = body.root[0]
        assert isinstance(paragraph, ElementNode)
        assert paragraph.children == [
            TextNode(text="Dangling"),
            KeepNode(keep=FootnoteReference(id=UNKNOWN_FOOTNOTE_ID, reference=0, content=None)),
            TextNode(text=" reference."),
        ]
        assert body.footnotes == []


class TestAlerts:
    """Tests for GitHub-style alert blockquotes."""

    async def test_alert_marker_is_removed(self, compiler: MarkdownCompiler) -> None:
        body = await compiler.compile("> [!WARNING]\n> Be careful.\n")

        node = body.root[0]
        assert isinstance(node, KeepNode)
        assert node.keep == Alert(kind=AlertKind.WARNING)
        assert node.children == [ElementNode(tag="p", children=[TextNode(text="Be careful.")])]

    async def test_marker_is_case_insensitive(self, compiler: MarkdownCompiler) -> None:
        body = await compiler.compile("> [!tip] Use the cache.\n")

        assert _keeps(body, Alert) == [Alert(kind=AlertKind.TIP)]
        assert text_content(body.root) == "Use the cache."

    async def test_plain_blockquote_passes_through(self, compiler: MarkdownCompiler) -> None:
        body = await compiler.compile("> Just a quote.\n")

        node = body.root[0]
        assert isinstance(node, ElementNode)
        assert node.tag == "blockquote"


class TestCodeblocks:
    """Tests for fenced code blocks."""

    async def test_language_and_title(self, compiler: MarkdownCompiler) -> None:
        body = await compiler.compile('```python title="app.py"\nprint(1)\n```\n')

        node = body.root[0]
        assert node.keep == Codeblock(lang="python", title="app.py")
        assert node.children == [TextNode(text="print(1)\n")]

    async def test_no_info_string(self, compiler: MarkdownCompiler) -> None:
        body = await compiler.compile("```\nplain\n```\n")

        assert body.root[0].keep == Codeblock(lang=None, title=None)

    async def test_indented_code(self, compiler: MarkdownCompiler) -> None:
        body = await compiler.compile("    indented\n")

        assert body.root[0].keep == Codeblock()


class TestLinkCards:
    """Tests for standalone links."""

    async def test_autolink_paragraph_becomes_card(self) -> None:
        fetcher = FakeLinkFetcher(LinkMetadata(title="Example", description="An example page"))
        compiler = MarkdownCompiler(link_fetcher=fetcher)

        body = await compiler.compile("<https://example.com/page>\n")

        assert body.root == [
            KeepNode(
                keep=LinkCard(url="https://example.com/page", title="Example", description="An example page")
            )
        ]
        assert fetcher.urls == ["https://example.com/page"]

    async def test_card_carries_favicon(self) -> None:
        icon = "https://example.com/icon.png"
        metadata = LinkMetadata(title="Docs", image=icon, favicon=icon)
        compiler = MarkdownCompiler(link_fetcher=FakeLinkFetcher(metadata))

        body = await compiler.compile("<https://example.com/docs>\n")

        (card,) = _keeps(body, LinkCard)
        assert card.favicon == "https://example.com/icon.png"
        assert card.image == "https://example.com/icon.png"

    async def test_card_without_metadata_uses_url_as_title(self, compiler: MarkdownCompiler) -> None:
        body = await compiler.compile("<https://example.com/page>\n")

        assert _keeps(body, LinkCard) == [LinkCard(url="https://example.com/page", title="https://example.com/page")]

    async def test_link_inside_sentence_stays_a_link(self, compiler: MarkdownCompiler) -> None:
        body = await compiler.compile("See <https://example.com> for more.\n")

        assert _keeps(body, LinkCard) == []
        paragraph = body.root[0]
        link = paragraph.children[1]
        assert isinstance(link, ElementNode)
        assert link.tag == "a"
        assert link.attrs == {"href": "https://example.com"}


class TestImages:
    """Tests for image resolution."""

    async def test_default_leaves_plain_img(self, compiler: MarkdownCompiler) -> None:
        body = await compiler.compile('![A cat](cat.png "Cat")\n')

        image = body.root[0].children[0]
        assert image == ElementNode(tag="img", attrs={"src": "cat.png", "alt": "A cat", "title": "Cat"})

    async def test_resolver_receives_source_alt_and_title(self, compiler: MarkdownCompiler) -> None:
        calls = []

        async def resolve(src: str, alt: str, title: str | None) -> MarkdownNode:
            calls.append((src, alt, title))
            return KeepNode(keep=Image(src=src, alt=alt, title=title, width=10, height=5))

        body = await compiler.compile("Look: ![A cat](images/cat.png)\n", resolve_image=resolve)

        assert calls == [("images/cat.png", "A cat", None)]
        assert _keeps(body, Image) == [Image(src="images/cat.png", alt="A cat", width=10, height=5)]


class TestPassThrough:
    """Constructs without a Keep model stay generic elements."""

    async def test_lists_and_emphasis(self, compiler: MarkdownCompiler) -> None:
        body = await compiler.compile("- *one*\n- **two**\n")

        listing = body.root[0]
        assert listing.tag == "ul"
        assert [item.tag for item in listing.children] == ["li", "li"]
        assert text_content(body.root) == "onetwo"
        assert body.keep_nodes() == []

    async def test_table(self, compiler: MarkdownCompiler) -> None:
        body = await compiler.compile("| a | b |\n|---|---|\n| 1 | 2 |\n")

        assert body.root[0].tag == "table"
        assert text_content(body.root) == "ab12"
