"""Compiled relational schema: tables, fields and the column walk.

``TableSchema.columns()`` is the single sequence every emitter iterates, so
the DDL, the TypeScript interfaces and both validators agree on field
presence, order and nullability by construction.
"""

from pydantic import Field

from inkwell.models.base import FrozenModel
from inkwell.models.config import StorageConfig
from inkwell.models.enums import DocumentSyntax, FieldKind

IMAGE_SOURCE_FIELD = "src_id"
IMAGE_VALUE_FIELD = "image"

_SQL_TYPES = {
    FieldKind.BOOLEAN: "INTEGER",
    FieldKind.INTEGER: "INTEGER",
    FieldKind.REAL: "REAL",
}


class MarkdownImageSpec(FrozenModel):
    """Where images embedded in a Markdown body are stored."""

    table: str
    inherit_ids: tuple[str, ...]
    storage: StorageConfig
    embed_svg_threshold: int = Field(default=0, ge=0)


class FieldSpec(FrozenModel):
    name: str
    kind: FieldKind
    required: bool = False
    indexed: bool = False
    storage: StorageConfig | None = None
    image: MarkdownImageSpec | None = None
    table: str | None = None

    @property
    def nullable(self) -> bool:
        if self.kind in (FieldKind.ID, FieldKind.HASH):
            return False
        return not self.required

    @property
    def has_column(self) -> bool:
        return self.kind != FieldKind.RECORDS


class Column(FrozenModel):
    """One physical column of a table, in declaration order."""

    name: str
    kind: FieldKind
    nullable: bool
    inherited: bool = False
    field: FieldSpec | None = None

    @property
    def sql_type(self) -> str:
        return _SQL_TYPES.get(self.kind, "TEXT")


class TableSchema(FrozenModel):
    """A relational table compiled from a field map.

    ``inherit_ids`` name the leading columns that copy the parent's primary
    key, positionally. ``children`` maps the owning field name (a records
    field, or a markdown field with image storage) to the child table.
    """

    name: str
    fields: tuple[FieldSpec, ...]
    inherit_ids: tuple[str, ...] = ()
    parent: str | None = None
    parent_key: tuple[str, ...] = ()
    children: dict[str, "TableSchema"] = Field(default_factory=dict)

    @property
    def id_field(self) -> FieldSpec:
        return next(f for f in self.fields if f.kind == FieldKind.ID)

    @property
    def hash_field(self) -> FieldSpec | None:
        return next((f for f in self.fields if f.kind == FieldKind.HASH), None)

    @property
    def primary_key(self) -> tuple[str, ...]:
        return (*self.inherit_ids, self.id_field.name)

    @property
    def is_id_only(self) -> bool:
        """Whether rows can be written as bare id strings."""
        return [f.kind for f in self.fields if f.kind != FieldKind.HASH] == [FieldKind.ID]

    def field(self, name: str) -> FieldSpec | None:
        return next((f for f in self.fields if f.name == name), None)

    def columns(self) -> list[Column]:
        inherited = [
            Column(name=name, kind=FieldKind.ID, nullable=False, inherited=True) for name in self.inherit_ids
        ]
        own = [
            Column(name=f.name, kind=f.kind, nullable=f.nullable, field=f) for f in self.fields if f.has_column
        ]
        return inherited + own

    def indexed_columns(self) -> list[Column]:
        return [
            column
            for column in self.columns()
            if column.field is not None and (column.field.indexed or column.kind == FieldKind.HASH)
        ]

    def records_fields(self) -> list[FieldSpec]:
        return [f for f in self.fields if f.kind == FieldKind.RECORDS]


TableSchema.model_rebuild()


class CollectionSchema(FrozenModel):
    """The root table plus a parent-first arena of every table in the tree."""

    name: str
    root: TableSchema
    tables: dict[str, TableSchema]
    syntax: DocumentSyntax
    body_column: str | None = None
    glob: str

    def ordered_tables(self) -> list[TableSchema]:
        return list(self.tables.values())

    def table(self, name: str) -> TableSchema:
        return self.tables[name]

    @property
    def body_field(self) -> FieldSpec | None:
        if self.body_column is None:
            return None
        return self.root.field(self.body_column)
