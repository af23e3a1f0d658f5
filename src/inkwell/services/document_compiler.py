"""Document compiler: one source file to rows for every table plus pending objects.

Frontmatter is validated field by field against the compiled table. Records
fields recurse into their child tables with the parent's primary key values
as inherited ids. Content fields (images, files, Markdown) are loaded,
located in their storage and either embedded inline or queued for upload.
The Markdown body is compiled last, once the full resolved frontmatter is
known, because non-inline bodies are stored together with it.
"""

import asyncio
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel

from inkwell.errors import DocumentError, ParseError, ValidationError
from inkwell.models.config import StorageConfig
from inkwell.models.document import CompiledDocument, PendingObject, Row
from inkwell.models.enums import FieldKind, StorageKind
from inkwell.models.markdown import Image, KeepNode, MarkdownNode
from inkwell.models.pointer import ObjectReference
from inkwell.models.schema import IMAGE_SOURCE_FIELD, IMAGE_VALUE_FIELD, CollectionSchema, FieldSpec, TableSchema
from inkwell.services.frontmatter import coerce_scalar, split_document
from inkwell.services.hashing import canonical_json, content_hash, hash_json
from inkwell.services.markdown import ImageResolver, MarkdownCompiler
from inkwell.services.object_loader import ObjectLoader, svg_figure
from inkwell.services.storage.backends import InlineBackend, locate

MARKDOWN_CONTENT_TYPE = "application/json"
SOURCE_ID_LENGTH = 16

_EXTERNAL_SOURCE = re.compile(r"^(?:[a-z][a-z0-9+.-]*:|//)", re.IGNORECASE)


class ParsedDocument(BaseModel):
    """A source file split into its frontmatter mapping and Markdown body."""

    path: Path
    frontmatter: dict[str, Any]
    body: str | None = None

    model_config = {"frozen": True}


class _CompileState:
    def __init__(self, schema: CollectionSchema) -> None:
        self.rows: dict[str, list[Row]] = {table.name: [] for table in schema.ordered_tables()}
        self.objects: list[PendingObject] = []
        self.keys: set[tuple[str, tuple[str, ...]]] = set()


class DocumentCompiler:
    """Compiles documents of one collection against its compiled schema."""

    def __init__(
        self,
        schema: CollectionSchema,
        markdown: MarkdownCompiler | None = None,
        loader: ObjectLoader | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._schema = schema
        self._logger = logger or structlog.get_logger(__name__)
        self._markdown = markdown or MarkdownCompiler(logger=self._logger)
        self._loader = loader or ObjectLoader(logger=self._logger)

    async def parse(self, path: Path) -> ParsedDocument:
        """Read a source file and split off its frontmatter.

        Raises:
            ParseError: If the file cannot be read or its frontmatter is malformed.
        """
        try:
            text = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ParseError(f"cannot read document: {e}", path=path) from e
        data, body = split_document(text, self._schema.syntax, path)
        return ParsedDocument(path=path, frontmatter=data, body=body)

    async def compile(self, document: ParsedDocument) -> CompiledDocument:
        """Validate a parsed document and turn it into rows and pending objects.

        Args:
            document: Output of ``parse``.

        Returns:
            CompiledDocument with rows for every table (parent rows first),
            the objects to upload, and the document's content hash.

        Raises:
            ValidationError: If a value is missing, mistyped, computed, or
                references a file that cannot be read.
        """
        state = _CompileState(self._schema)
        try:
            await self._compile_row(
                table=self._schema.root,
                data=document.frontmatter,
                inherited=(),
                state=state,
                path=document.path,
                body=document.body,
            )
        except DocumentError as e:
            raise e.with_context(path=document.path)

        root_row = state.rows[self._schema.root.name][0]
        document_id = str(root_row[self._schema.root.id_field.name])
        document_hash = hash_json(state.rows)
        self._fill_hash_columns(state, document_hash)

        compiled = CompiledDocument(
            path=document.path,
            document_id=document_id,
            content_hash=document_hash,
            rows=state.rows,
            objects=state.objects,
        )
        self._logger.debug(
            "document_compiled",
            path=str(document.path),
            document_id=document_id,
            row_count=compiled.row_count,
            object_count=len(compiled.objects),
        )
        return compiled

    def _fill_hash_columns(self, state: _CompileState, document_hash: str) -> None:
        for table in self._schema.ordered_tables():
            hash_field = table.hash_field
            if hash_field is None:
                continue
            for row in state.rows[table.name]:
                if table.name == self._schema.root.name:
                    row[hash_field.name] = document_hash
                else:
                    row[hash_field.name] = hash_json({k: v for k, v in row.items() if k != hash_field.name})

    async def _compile_row(
        self,
        table: TableSchema,
        data: Any,
        inherited: tuple[str, ...],
        state: _CompileState,
        path: Path,
        body: str | None = None,
    ) -> dict[str, Any]:
        """Append one row (and its children) to ``state``; return its resolved frontmatter."""
        if not isinstance(data, Mapping):
            raise ValidationError(f"{table.name} entry must be a mapping, got {type(data).__name__}", path=path)

        id_field = table.id_field
        raw_id = data.get(id_field.name)
        if raw_id is None:
            raise ValidationError(f"{table.name} entry is missing its id {id_field.name!r}", path=path)
        row_id = coerce_scalar(id_field, raw_id, path)
        if not row_id or "/" in row_id:
            raise ValidationError(f"id {row_id!r} must be non-empty and must not contain '/'", path=path)

        key_values = (*inherited, row_id)
        compound = "/".join(key_values)
        if (table.name, key_values) in state.keys:
            raise ValidationError(f"duplicate {table.name} id {compound!r}", path=path, document_id=compound)
        state.keys.add((table.name, key_values))

        row: Row = dict(zip(table.inherit_ids, inherited))
        resolved: dict[str, Any] = {}
        is_root = table.name == self._schema.root.name
        body_column = self._schema.body_column if is_root else None

        for spec in table.fields:
            if spec.kind == FieldKind.ID:
                row[spec.name] = resolved[spec.name] = row_id
            elif spec.kind == FieldKind.HASH:
                if spec.name in data:
                    raise ValidationError(
                        f"field {spec.name!r} is computed and must not be set", path=path, document_id=compound
                    )
                row[spec.name] = None
            elif spec.kind == FieldKind.RECORDS or spec.name == body_column:
                if spec.has_column:
                    row[spec.name] = None
            else:
                value = data.get(spec.name)
                resolved[spec.name] = row[spec.name] = await self._column_value(
                    table, spec, value, key_values, state, path
                )

        state.rows[table.name].append(row)

        for spec in table.records_fields():
            resolved[spec.name] = await self._compile_records(table, spec, data.get(spec.name), key_values, state, path)

        if body_column is not None:
            spec = table.field(body_column)
            row[body_column] = await self._markdown_value(table, spec, body or "", key_values, state, path, resolved)
        return resolved

    async def _column_value(
        self,
        table: TableSchema,
        spec: FieldSpec,
        value: Any,
        key_values: tuple[str, ...],
        state: _CompileState,
        path: Path,
    ) -> Any:
        compound = "/".join(key_values)
        if value is None:
            if spec.required:
                raise ValidationError(f"required field {spec.name!r} is missing", path=path, document_id=compound)
            return None
        if spec.kind in (FieldKind.IMAGE, FieldKind.FILE):
            if not isinstance(value, str):
                raise ValidationError(f"field {spec.name!r} expects a file path", path=path, document_id=compound)
            loaded = await self._loader.load(value, path)
            return self._store(spec.storage, loaded.data, loaded.content_type, compound, spec.name, state)
        if spec.kind == FieldKind.MARKDOWN:
            if not isinstance(value, str):
                raise ValidationError(f"field {spec.name!r} expects Markdown text", path=path, document_id=compound)
            return await self._markdown_value(table, spec, value, key_values, state, path, None)
        try:
            return coerce_scalar(spec, value, path)
        except ValidationError as e:
            raise e.with_context(document_id=compound)

    async def _compile_records(
        self,
        table: TableSchema,
        spec: FieldSpec,
        value: Any,
        key_values: tuple[str, ...],
        state: _CompileState,
        path: Path,
    ) -> list[dict[str, Any]]:
        compound = "/".join(key_values)
        if value is None:
            if spec.required:
                raise ValidationError(f"required field {spec.name!r} is missing", path=path, document_id=compound)
            return []
        if not isinstance(value, list):
            raise ValidationError(f"field {spec.name!r} expects a list", path=path, document_id=compound)

        child = table.children[spec.name]
        resolved = []
        for item in value:
            if isinstance(item, str) and child.is_id_only:
                item = {child.id_field.name: item}
            resolved.append(await self._compile_row(child, item, key_values, state, path))
        return resolved

    async def _markdown_value(
        self,
        table: TableSchema,
        spec: FieldSpec,
        text: str,
        key_values: tuple[str, ...],
        state: _CompileState,
        path: Path,
        frontmatter: dict[str, Any] | None,
    ) -> dict[str, Any]:
        compound = "/".join(key_values)
        resolver = self._image_resolver(table, spec, key_values, state, path)
        body = await self._markdown.compile(text, resolver)
        body_json = body.model_dump(mode="json")

        if spec.storage.kind == StorageKind.INLINE:
            return self._store(spec.storage, canonical_json(body_json), MARKDOWN_CONTENT_TYPE, compound, spec.name, state)
        stored = {"frontmatter": frontmatter or {}, "body": body_json}
        return self._store(spec.storage, canonical_json(stored), MARKDOWN_CONTENT_TYPE, compound, spec.name, state)

    def _image_resolver(
        self,
        table: TableSchema,
        spec: FieldSpec,
        key_values: tuple[str, ...],
        state: _CompileState,
        path: Path,
    ) -> ImageResolver:
        compound = "/".join(key_values)
        image_spec = spec.image
        image_table = table.children.get(spec.name)

        async def resolve(src: str, alt: str, title: str | None) -> MarkdownNode:
            if _EXTERNAL_SOURCE.match(src):
                return KeepNode(keep=Image(src=src, alt=alt, title=title))
            if image_spec is None or image_table is None:
                raise ValidationError(
                    f"field {spec.name!r} has no image storage for local image {src!r}",
                    path=path,
                    document_id=compound,
                )

            loaded = await self._loader.load(src, path)
            if loaded.is_svg and loaded.size < image_spec.embed_svg_threshold:
                return svg_figure(loaded.data, alt, path)

            source_id = content_hash(loaded.data)[:SOURCE_ID_LENGTH]
            owner = f"{compound}/{source_id}"
            reference = self._store(image_spec.storage, loaded.data, loaded.content_type, owner, IMAGE_VALUE_FIELD, state)
            if (image_table.name, (*key_values, source_id)) not in state.keys:
                state.keys.add((image_table.name, (*key_values, source_id)))
                image_row: Row = dict(zip(image_table.inherit_ids, key_values))
                image_row[IMAGE_SOURCE_FIELD] = source_id
                image_row[IMAGE_VALUE_FIELD] = reference
                state.rows[image_table.name].append(image_row)

            return KeepNode(
                keep=Image(
                    src=reference["pointer"] or src,
                    alt=alt,
                    title=title,
                    width=loaded.width,
                    height=loaded.height,
                    reference=ObjectReference.model_validate(reference),
                )
            )

        return resolve

    def _store(
        self,
        storage: StorageConfig,
        data: bytes,
        content_type: str,
        owner: str,
        suffix: str,
        state: _CompileState,
    ) -> dict[str, Any]:
        if storage.kind == StorageKind.INLINE:
            return InlineBackend.embed(data, content_type).model_dump(mode="json")
        pointer = locate(storage, data, content_type, owner, suffix)
        state.objects.append(PendingObject(data=data, pointer=pointer, owner=owner))
        return pointer.to_reference().model_dump(mode="json")
