"""Unit tests for the DocumentCompiler."""

import io
import json
from pathlib import Path
from typing import Any

import pytest
from PIL import Image as PILImage

from inkwell.errors import ParseError, ValidationError
from inkwell.models.config import CollectionConfig
from inkwell.models.markdown import ElementNode, Image, MarkdownBody
from inkwell.models.pointer import ObjectReference
from inkwell.services.document_compiler import SOURCE_ID_LENGTH, DocumentCompiler
from inkwell.services.hashing import content_hash
from inkwell.services.schema_compiler import compile_collection

MEDIA = {"type": "r2", "bucket": "media", "prefix": "images"}
LOGO_SVG = b'<svg xmlns="http://www.w3.org/2000/svg" width="8" height="8"><rect width="8" height="8"/></svg>'

HELLO = """---
id: hello
title: Hello
published: 2024-01-02
cover: images/cat.png
tags: [python, web]
comments:
  - id: c1
    author: Ada
    body: Nice *post*
---
# Hello

![A cat](images/cat.png)

![Logo](logo.svg)

![Remote](https://example.com/remote.png)
"""


def _png_bytes() -> bytes:
    buffer = io.BytesIO()
    PILImage.new("RGB", (4, 3)).save(buffer, format="PNG")
    return buffer.getvalue()


PNG = _png_bytes()


def _make_config(root_dir: Path, svg_threshold: int = 1024) -> CollectionConfig:
    """Create a blog CollectionConfig rooted at ``root_dir``."""
    fields: dict[str, Any] = {
        "id": {"type": "id"},
        "hash": {"type": "hash"},
        "title": {"type": "string", "required": True},
        "published": {"type": "date"},
        "cover": {"type": "image", "storage": MEDIA},
        "content": {
            "type": "markdown",
            "storage": {"type": "inline"},
            "image": {
                "table": "post_image",
                "inherit_ids": ["post_id"],
                "storage": MEDIA,
                "embed_svg_threshold": svg_threshold,
            },
        },
        "tags": {"type": "records", "table": "post_tag", "inherit_ids": ["post_id"], "schema": {"tag": {"type": "id"}}},
        "comments": {
            "type": "records",
            "table": "comment",
            "inherit_ids": ["post_id"],
            "schema": {
                "id": {"type": "id"},
                "author": {"type": "string", "required": True},
                "body": {"type": "markdown", "storage": {"type": "kv", "namespace": "comments"}},
            },
        },
    }
    return CollectionConfig.model_validate(
        {
            "name": "posts",
            "glob": "posts/*.md",
            "table": "post",
            "database_id": "db",
            "syntax": {"type": "markdown", "column": "content"},
            "schema": fields,
            "root_dir": root_dir,
        }
    )


def _write_post(root_dir: Path, text: str = HELLO, name: str = "hello.md") -> Path:
    """Write a post and the files it references under ``root_dir/posts``."""
    posts = root_dir / "posts"
    (posts / "images").mkdir(parents=True, exist_ok=True)
    (posts / "images" / "cat.png").write_bytes(PNG)
    (posts / "logo.svg").write_bytes(LOGO_SVG)
    path = posts / name
    path.write_text(text, encoding="utf-8")
    return path


async def _compile(config: CollectionConfig, path: Path):
    compiler = DocumentCompiler(compile_collection(config))
    return await compiler.compile(await compiler.parse(path))


def _body(row_value: dict) -> MarkdownBody:
    reference = ObjectReference.model_validate(row_value)
    return MarkdownBody.model_validate_json(reference.content)


class TestDocumentCompilerRows:
    """Tests for rows produced from a valid document."""

    async def test_rows_for_every_table(self, tmp_path: Path) -> None:
        compiled = await _compile(_make_config(tmp_path), _write_post(tmp_path))

        assert list(compiled.rows) == ["post", "post_image", "post_tag", "comment"]
        assert compiled.document_id == "hello"
        assert compiled.rows["post_tag"] == [
            {"post_id": "hello", "tag": "python"},
            {"post_id": "hello", "tag": "web"},
        ]
        comment = compiled.rows["comment"][0]
        assert comment["post_id"] == "hello"
        assert comment["author"] == "Ada"
        assert comment["body"]["pointer"] == "kv://comments/hello/c1/body"

    async def test_root_row_values(self, tmp_path: Path) -> None:
        compiled = await _compile(_make_config(tmp_path), _write_post(tmp_path))

        root = compiled.root_row
        assert root["title"] == "Hello"
        assert root["published"] == "2024-01-02"
        assert root["hash"] == compiled.content_hash
        assert root["cover"]["pointer"] == f"r2://media/images/{content_hash(PNG)}"
        assert root["content"]["pointer"] is None

    async def test_body_images_get_rows_and_keep_nodes(self, tmp_path: Path) -> None:
        compiled = await _compile(_make_config(tmp_path), _write_post(tmp_path))

        source_id = content_hash(PNG)[:SOURCE_ID_LENGTH]
        assert [(row["post_id"], row["src_id"]) for row in compiled.rows["post_image"]] == [("hello", source_id)]

        images = [node.keep for node in _body(compiled.root_row["content"]).keep_nodes() if isinstance(node.keep, Image)]
        local, remote = images
        assert local.src == f"r2://media/images/{content_hash(PNG)}"
        assert (local.width, local.height) == (4, 3)
        assert local.reference.hash == content_hash(PNG)
        assert remote == Image(src="https://example.com/remote.png", alt="Remote")

    async def test_shared_image_is_one_storage_key(self, tmp_path: Path) -> None:
        compiled = await _compile(_make_config(tmp_path), _write_post(tmp_path))

        uris = [obj.pointer.uri for obj in compiled.objects]
        assert uris.count(f"r2://media/images/{content_hash(PNG)}") == 2
        assert "kv://comments/hello/c1/body" in uris
        assert len({obj.key for obj in compiled.objects}) == 2

    async def test_kv_markdown_stores_body_with_frontmatter_envelope(self, tmp_path: Path) -> None:
        compiled = await _compile(_make_config(tmp_path), _write_post(tmp_path))

        stored = next(obj for obj in compiled.objects if obj.pointer.scheme == "kv")
        payload = json.loads(stored.data)
        assert set(payload) == {"frontmatter", "body"}
        assert MarkdownBody.model_validate(payload["body"]).root[0].tag == "p"

    async def test_hash_is_deterministic(self, tmp_path: Path) -> None:
        config = _make_config(tmp_path)
        path = _write_post(tmp_path)

        first = await _compile(config, path)
        second = await _compile(config, path)

        assert first.content_hash == second.content_hash
        assert first.rows == second.rows

    async def test_hash_changes_with_content(self, tmp_path: Path) -> None:
        config = _make_config(tmp_path)
        before = await _compile(config, _write_post(tmp_path))
        after = await _compile(config, _write_post(tmp_path, HELLO.replace("title: Hello", "title: Hello again")))

        assert before.content_hash != after.content_hash

    async def test_yaml_collection_with_asset(self, tmp_path: Path) -> None:
        authors = tmp_path / "authors"
        authors.mkdir()
        (authors / "ada.png").write_bytes(PNG)
        path = authors / "ada.yaml"
        path.write_text("id: ada\nname: Ada\navatar: ada.png\n")
        config = CollectionConfig.model_validate(
            {
                "name": "authors",
                "glob": "authors/*.yaml",
                "table": "author",
                "database_id": "db",
                "syntax": {"type": "yaml"},
                "root_dir": tmp_path,
                "schema": {
                    "id": {"type": "id"},
                    "name": {"type": "string"},
                    "avatar": {"type": "image", "storage": {"type": "asset", "dir": "public/avatars"}},
                },
            }
        )

        compiled = await _compile(config, path)

        assert compiled.root_row["avatar"]["pointer"] == "asset://public/avatars/ada/avatar"
        assert compiled.objects[0].pointer.path == "public/avatars/ada/avatar"


class TestSvgEmbedding:
    """SVG images below the threshold are embedded; the rest are stored."""

    async def test_svg_below_threshold_is_embedded(self, tmp_path: Path) -> None:
        config = _make_config(tmp_path, svg_threshold=len(LOGO_SVG) + 1)

        compiled = await _compile(config, _write_post(tmp_path))

        figures = [node for node in _body(compiled.root_row["content"]).root if isinstance(node, ElementNode)]
        assert any(child.tag == "figure" for node in figures for child in node.children)
        assert len(compiled.rows["post_image"]) == 1

    async def test_svg_at_threshold_is_stored(self, tmp_path: Path) -> None:
        config = _make_config(tmp_path, svg_threshold=len(LOGO_SVG))

        compiled = await _compile(config, _write_post(tmp_path))

        assert len(compiled.rows["post_image"]) == 2
        assert any(obj.pointer.content_type == "image/svg+xml" for obj in compiled.objects)


class TestDocumentCompilerErrors:
    """Tests for documents that fail to compile."""

    async def test_missing_frontmatter(self, tmp_path: Path) -> None:
        path = _write_post(tmp_path, "# No frontmatter\n")

        with pytest.raises(ParseError):
            await _compile(_make_config(tmp_path), path)

    async def test_missing_required_field(self, tmp_path: Path) -> None:
        path = _write_post(tmp_path, HELLO.replace("title: Hello\n", ""))

        with pytest.raises(ValidationError, match="required field 'title'") as excinfo:
            await _compile(_make_config(tmp_path), path)

        assert excinfo.value.document_id == "hello"
        assert excinfo.value.path == str(path)

    async def test_computed_hash_cannot_be_set(self, tmp_path: Path) -> None:
        path = _write_post(tmp_path, HELLO.replace("title: Hello\n", "title: Hello\nhash: abc\n"))

        with pytest.raises(ValidationError, match="computed"):
            await _compile(_make_config(tmp_path), path)

    async def test_id_with_slash(self, tmp_path: Path) -> None:
        path = _write_post(tmp_path, HELLO.replace("id: hello", "id: a/b"))

        with pytest.raises(ValidationError, match="must not contain"):
            await _compile(_make_config(tmp_path), path)

    async def test_missing_id(self, tmp_path: Path) -> None:
        path = _write_post(tmp_path, HELLO.replace("id: hello\n", ""))

        with pytest.raises(ValidationError, match="missing its id"):
            await _compile(_make_config(tmp_path), path)

    async def test_duplicate_nested_id(self, tmp_path: Path) -> None:
        text = HELLO.replace("tags: [python, web]", "tags: [python, python]")

        with pytest.raises(ValidationError, match="duplicate post_tag id 'hello/python'"):
            await _compile(_make_config(tmp_path), _write_post(tmp_path, text))

    async def test_records_must_be_a_list(self, tmp_path: Path) -> None:
        text = HELLO.replace("tags: [python, web]", "tags: python")

        with pytest.raises(ValidationError, match="expects a list"):
            await _compile(_make_config(tmp_path), _write_post(tmp_path, text))

    async def test_wrong_scalar_type(self, tmp_path: Path) -> None:
        text = HELLO.replace("published: 2024-01-02", "published: soon")

        with pytest.raises(ValidationError, match="expects date"):
            await _compile(_make_config(tmp_path), _write_post(tmp_path, text))

    async def test_missing_referenced_file(self, tmp_path: Path) -> None:
        text = HELLO.replace("cover: images/cat.png", "cover: images/dog.png")

        with pytest.raises(ValidationError, match="cannot be read"):
            await _compile(_make_config(tmp_path), _write_post(tmp_path, text))

    async def test_local_image_without_image_storage(self, tmp_path: Path) -> None:
        text = HELLO.replace("body: Nice *post*", "body: '![x](images/cat.png)'")

        with pytest.raises(ValidationError, match="no image storage"):
            await _compile(_make_config(tmp_path), _write_post(tmp_path, text))
