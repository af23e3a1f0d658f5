"""Schema compiler: turns a collection's raw field map into a CollectionSchema.

The field map is walked by recursive descent. Every table name is registered
in a single registry so collisions are caught anywhere in the tree, and the
walk tracks the ancestor chain plus the identity of every mapping on the
stack, so self-referencing YAML aliases are reported instead of recursing
forever.
"""

from collections.abc import Mapping
from typing import Any, Type, TypeVar

import structlog
from pydantic import BaseModel, Field, ValidationError

from inkwell.errors import (
    CyclicSchema,
    DuplicateTable,
    InvalidFieldOption,
    InvalidInheritIds,
    MissingIdField,
    UnknownFieldType,
)
from inkwell.models.base import FrozenModel, is_identifier
from inkwell.models.config import CollectionConfig, StorageConfig
from inkwell.models.enums import CONTENT_KINDS, INDEXABLE_KINDS, DocumentSyntax, FieldKind
from inkwell.models.schema import (
    IMAGE_SOURCE_FIELD,
    IMAGE_VALUE_FIELD,
    CollectionSchema,
    FieldSpec,
    MarkdownImageSpec,
    TableSchema,
)

MAX_SCHEMA_DEPTH = 8

T_Options = TypeVar("T_Options", bound=BaseModel)


class _KeyOptions(FrozenModel):
    type: str


class _ScalarOptions(FrozenModel):
    type: str
    required: bool = False
    index: bool = False


class _FileOptions(FrozenModel):
    type: str
    required: bool = False
    storage: StorageConfig


class _ImageOptions(FrozenModel):
    table: str
    inherit_ids: list[str]
    storage: StorageConfig
    embed_svg_threshold: int = Field(default=0, ge=0)


class _MarkdownOptions(FrozenModel):
    type: str
    required: bool = False
    storage: StorageConfig
    image: _ImageOptions | None = None


class _RecordsOptions(FrozenModel):
    type: str
    required: bool = False
    table: str
    inherit_ids: list[str]
    fields: dict[str, Any] = Field(alias="schema")


def compile_collection(
    config: CollectionConfig,
    logger: structlog.stdlib.BoundLogger | None = None,
) -> CollectionSchema:
    """Compile a collection config into its table tree.

    Args:
        config: Validated collection config holding the raw field map.
        logger: Optional structlog logger.

    Returns:
        The compiled CollectionSchema; ``tables`` lists every table parent first.

    Raises:
        SchemaError: If the field map cannot be compiled. The subclass names
            the problem (duplicate table, cycle, bad option, unknown type,
            missing id, bad inherited ids).
    """
    log = logger or structlog.get_logger(__name__)
    compiler = _SchemaCompiler()
    root = compiler.compile_table(
        name=config.table,
        fields=config.fields,
        inherit_ids=(),
        parent=None,
        ancestors=(),
        stack=(),
    )

    body_column = config.syntax.column
    if config.syntax.type == DocumentSyntax.MARKDOWN:
        body = root.field(body_column) if body_column else None
        if body is None or body.kind != FieldKind.MARKDOWN:
            raise InvalidFieldOption(
                f"syntax column {body_column!r} must name a markdown field",
                table=root.name,
            )
    elif body_column is not None:
        raise InvalidFieldOption("yaml syntax does not take a body column", table=root.name)

    schema = CollectionSchema(
        name=config.name,
        root=root,
        tables=compiler.tables,
        syntax=config.syntax.type,
        body_column=body_column,
        glob=config.glob,
    )
    log.info("schema_compiled", collection=config.name, tables=list(schema.tables))
    return schema


class _SchemaCompiler:
    def __init__(self) -> None:
        self._tables: dict[str, TableSchema | None] = {}

    @property
    def tables(self) -> dict[str, TableSchema]:
        return {name: table for name, table in self._tables.items() if table is not None}

    def _register(self, name: str, ancestors: tuple[str, ...]) -> None:
        if name in ancestors:
            raise CyclicSchema(f"table {name!r} nests inside itself", table=name)
        if name in self._tables:
            raise DuplicateTable(f"table {name!r} is declared more than once", table=name)
        if not is_identifier(name):
            raise InvalidFieldOption(f"table name {name!r} is not a valid identifier", table=name)
        # reserve the slot so the arena stays parent first
        self._tables[name] = None

    def compile_table(
        self,
        name: str,
        fields: Any,
        inherit_ids: tuple[str, ...],
        parent: str | None,
        ancestors: tuple[str, ...],
        stack: tuple[int, ...],
        parent_key: tuple[str, ...] = (),
    ) -> TableSchema:
        if len(ancestors) >= MAX_SCHEMA_DEPTH:
            raise CyclicSchema(f"nesting deeper than {MAX_SCHEMA_DEPTH} tables", table=name)
        if not isinstance(fields, Mapping):
            raise InvalidFieldOption("schema must be a mapping of field name to field", table=name)
        if id(fields) in stack:
            raise CyclicSchema("schema refers to itself", table=name)

        self._register(name, ancestors)
        self._check_inherit_ids(name, inherit_ids, parent_key, fields)

        id_names = [key for key, raw in fields.items() if isinstance(raw, Mapping) and raw.get("type") == "id"]
        if not id_names:
            raise MissingIdField("table has no id field", table=name)
        if len(id_names) > 1:
            raise InvalidFieldOption(f"table has more than one id field: {id_names}", table=name)
        own_key = (*inherit_ids, id_names[0])

        specs: list[FieldSpec] = []
        children: dict[str, TableSchema] = {}
        seen_hash = False
        for field_name, raw in fields.items():
            spec, child = self._compile_field(
                table=name,
                field_name=str(field_name),
                raw=raw,
                own_key=own_key,
                ancestors=(*ancestors, name),
                stack=(*stack, id(fields)),
            )
            if spec.kind == FieldKind.HASH:
                if seen_hash:
                    raise InvalidFieldOption("table has more than one hash field", table=name, field=spec.name)
                seen_hash = True
            specs.append(spec)
            if child is not None:
                children[spec.name] = child

        table = TableSchema(
            name=name,
            fields=tuple(specs),
            inherit_ids=inherit_ids,
            parent=parent,
            parent_key=parent_key,
            children=children,
        )
        self._tables[name] = table
        return table

    def _check_inherit_ids(
        self,
        name: str,
        inherit_ids: tuple[str, ...],
        parent_key: tuple[str, ...],
        fields: Mapping,
    ) -> None:
        if len(inherit_ids) != len(parent_key):
            raise InvalidInheritIds(
                f"inherit_ids {list(inherit_ids)} must map onto parent key {list(parent_key)}",
                table=name,
            )
        if len(set(inherit_ids)) != len(inherit_ids):
            raise InvalidInheritIds(f"inherit_ids {list(inherit_ids)} repeat a column", table=name)
        for column in inherit_ids:
            if not is_identifier(column):
                raise InvalidInheritIds(f"inherited id {column!r} is not a valid identifier", table=name)
            if column in fields:
                raise InvalidInheritIds(f"inherited id {column!r} collides with a field", table=name)

    def _compile_field(
        self,
        table: str,
        field_name: str,
        raw: Any,
        own_key: tuple[str, ...],
        ancestors: tuple[str, ...],
        stack: tuple[int, ...],
    ) -> tuple[FieldSpec, TableSchema | None]:
        if not is_identifier(field_name):
            raise InvalidFieldOption("field name is not a valid identifier", table=table, field=field_name)
        if not isinstance(raw, Mapping) or "type" not in raw:
            raise InvalidFieldOption("field must be a mapping with a type", table=table, field=field_name)
        try:
            kind = FieldKind(raw["type"])
        except ValueError:
            raise UnknownFieldType(f"unknown field type {raw['type']!r}", table=table, field=field_name) from None

        if kind in (FieldKind.ID, FieldKind.HASH):
            for option in ("required", "index"):
                if option in raw:
                    raise InvalidFieldOption(
                        f"{option!r} is implied for {kind.value} fields", table=table, field=field_name
                    )
            _parse_options(_KeyOptions, raw, table, field_name)
            return FieldSpec(name=field_name, kind=kind), None

        if kind in INDEXABLE_KINDS:
            options = _parse_options(_ScalarOptions, raw, table, field_name)
            return FieldSpec(name=field_name, kind=kind, required=options.required, indexed=options.index), None

        if "index" in raw:
            raise InvalidFieldOption(f"{kind.value} fields cannot be indexed", table=table, field=field_name)
        if kind in CONTENT_KINDS and "storage" not in raw:
            raise InvalidFieldOption(f"{kind.value} fields require storage", table=table, field=field_name)

        if kind in (FieldKind.IMAGE, FieldKind.FILE):
            options = _parse_options(_FileOptions, raw, table, field_name)
            return FieldSpec(name=field_name, kind=kind, required=options.required, storage=options.storage), None

        if kind == FieldKind.MARKDOWN:
            options = _parse_options(_MarkdownOptions, raw, table, field_name)
            image = None
            child = None
            if options.image is not None:
                image = MarkdownImageSpec(
                    table=options.image.table,
                    inherit_ids=tuple(options.image.inherit_ids),
                    storage=options.image.storage,
                    embed_svg_threshold=options.image.embed_svg_threshold,
                )
                child = self._compile_image_table(image, own_key, table, ancestors)
            spec = FieldSpec(
                name=field_name,
                kind=kind,
                required=options.required,
                storage=options.storage,
                image=image,
            )
            return spec, child

        options = _parse_options(_RecordsOptions, raw, table, field_name)
        child = self.compile_table(
            name=options.table,
            fields=raw["schema"],
            inherit_ids=tuple(options.inherit_ids),
            parent=table,
            ancestors=ancestors,
            stack=stack,
            parent_key=own_key,
        )
        spec = FieldSpec(name=field_name, kind=kind, required=options.required, table=options.table)
        return spec, child

    def _compile_image_table(
        self,
        image: MarkdownImageSpec,
        own_key: tuple[str, ...],
        table: str,
        ancestors: tuple[str, ...],
    ) -> TableSchema:
        if len(ancestors) >= MAX_SCHEMA_DEPTH:
            raise CyclicSchema(f"nesting deeper than {MAX_SCHEMA_DEPTH} tables", table=image.table)
        self._register(image.table, ancestors)
        fields = {IMAGE_SOURCE_FIELD: {}, IMAGE_VALUE_FIELD: {}}
        self._check_inherit_ids(image.table, image.inherit_ids, own_key, fields)
        child = TableSchema(
            name=image.table,
            fields=(
                FieldSpec(name=IMAGE_SOURCE_FIELD, kind=FieldKind.ID),
                FieldSpec(name=IMAGE_VALUE_FIELD, kind=FieldKind.IMAGE, required=True, storage=image.storage),
            ),
            inherit_ids=image.inherit_ids,
            parent=table,
            parent_key=own_key,
        )
        self._tables[image.table] = child
        return child


def _parse_options(model: Type[T_Options], raw: Mapping, table: str, field_name: str) -> T_Options:
    try:
        return model.model_validate(dict(raw))
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'field'}: {error['msg']}" for error in e.errors()
        )
        raise InvalidFieldOption(problems, table=table, field=field_name) from None
