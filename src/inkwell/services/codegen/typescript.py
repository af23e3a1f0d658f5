"""TypeScript interface emitter.

Each table gets a self-contained module with the Keep union (derived from
``KEEP_MODELS``), the Markdown tree types, a ``Table`` interface describing
rows as the table store returns them, and a ``Frontmatter`` interface
describing the authored values after resolution.
"""

import json
import types
from enum import Enum
from typing import Any, Literal, Union, get_args, get_origin

from pydantic import BaseModel

from inkwell.models.enums import CONTENT_KINDS, FieldKind
from inkwell.models.markdown import KEEP_MODELS, FootnoteDefinition, Section
from inkwell.models.pointer import ObjectReference
from inkwell.models.schema import CollectionSchema, TableSchema

HEADER = "// Generated by inkwell. Do not edit.\n"

_ROW_TYPES = {
    FieldKind.INTEGER: "number",
    FieldKind.REAL: "number",
    FieldKind.BOOLEAN: "number",
}

_FRONTMATTER_TYPES = {
    FieldKind.INTEGER: "number",
    FieldKind.REAL: "number",
    FieldKind.BOOLEAN: "boolean",
}


def pascal_case(name: str) -> str:
    return "".join(part[:1].upper() + part[1:] for part in name.split("_") if part)


def model_name(model: type[BaseModel]) -> str:
    return model.__name__


def ts_type(annotation: Any) -> str:
    """TypeScript spelling of a pydantic field annotation."""
    origin = get_origin(annotation)
    if origin is Literal:
        return " | ".join(json.dumps(value) for value in get_args(annotation))
    if origin in (Union, types.UnionType):
        return " | ".join(ts_type(arg) for arg in get_args(annotation))
    if origin is list:
        (item,) = get_args(annotation)
        return f"{ts_type(item)}[]"
    if annotation is type(None):
        return "null"
    if isinstance(annotation, type) and issubclass(annotation, Enum):
        return " | ".join(json.dumps(member.value) for member in annotation)
    if annotation is str:
        return "string"
    if annotation is bool:
        return "boolean"
    if annotation in (int, float):
        return "number"
    if isinstance(annotation, type) and issubclass(annotation, BaseModel):
        return model_name(annotation)
    raise TypeError(f"no TypeScript type for {annotation!r}")


def _interface(name: str, model: type[BaseModel], fields: dict[str, str] | None = None) -> str:
    lines = [f"export interface {name} {{"]
    for field_name, info in model.model_fields.items():
        rendered = (fields or {}).get(field_name) or ts_type(info.annotation)
        lines.append(f"  {field_name}: {rendered};")
    lines.append("}")
    return "\n".join(lines)


def keep_declarations() -> str:
    """Keep variant interfaces, the Keep union and the Markdown tree types."""
    blocks = [_interface(model_name(ObjectReference), ObjectReference)]
    for model in KEEP_MODELS.values():
        blocks.append(_interface(model_name(model), model))
    blocks.append("export type Keep = " + " | ".join(model_name(m) for m in KEEP_MODELS.values()) + ";")
    blocks.append(
        "export type MarkdownNode =\n"
        '  | { type: "text"; text: string }\n'
        '  | { type: "element"; tag: string; attrs: Record<string, string>; children: MarkdownNode[] }\n'
        '  | { type: "keep"; keep: Keep; children: MarkdownNode[] };'
    )
    blocks.append(
        _interface(
            model_name(FootnoteDefinition),
            FootnoteDefinition,
            {"children": "MarkdownNode[]"},
        )
    )
    blocks.append(_interface(model_name(Section), Section))
    blocks.append(
        "export interface MarkdownBody {\n"
        "  root: MarkdownNode[];\n"
        "  footnotes: FootnoteDefinition[];\n"
        "  sections: Section[];\n"
        "}"
    )
    return "\n\n".join(blocks)


def _nullable(rendered: str, nullable: bool) -> str:
    return f"{rendered} | null" if nullable else rendered


def frontmatter_columns(schema: CollectionSchema, table: TableSchema) -> list:
    """Columns that appear in a table's resolved frontmatter, in column order."""
    skip = {schema.body_column} if table.name == schema.root.name else set()
    return [
        column
        for column in table.columns()
        if not column.inherited and column.kind != FieldKind.HASH and column.name not in skip
    ]


def generate_table_module(schema: CollectionSchema, table: TableSchema) -> str:
    imports = []
    for field in table.records_fields():
        imports.append(f'import type {{ Frontmatter as {pascal_case(field.table)}Frontmatter }} from "./{field.table}";')

    row_lines = ["export interface Table {"]
    for column in table.columns():
        rendered = "string" if column.kind in CONTENT_KINDS else _ROW_TYPES.get(column.kind, "string")
        row_lines.append(f"  {column.name}: {_nullable(rendered, column.nullable)};")
    row_lines.append("}")

    frontmatter_lines = ["export interface Frontmatter {"]
    for column in frontmatter_columns(schema, table):
        if column.kind in CONTENT_KINDS:
            rendered = model_name(ObjectReference)
        else:
            rendered = _FRONTMATTER_TYPES.get(column.kind, "string")
        frontmatter_lines.append(f"  {column.name}: {_nullable(rendered, column.nullable)};")
    for field in table.records_fields():
        frontmatter_lines.append(f"  {field.name}: {pascal_case(field.table)}Frontmatter[];")
    frontmatter_lines.append("}")

    parts = [HEADER]
    if imports:
        parts.append("\n".join(imports) + "\n")
    parts.append(keep_declarations())
    parts.append("\n".join(row_lines))
    parts.append("\n".join(frontmatter_lines))
    return "\n\n".join(part.rstrip("\n") for part in parts) + "\n"


def generate_typescript(schema: CollectionSchema) -> dict[str, str]:
    """One TypeScript module per table, keyed by table name."""
    return {table.name: generate_table_module(schema, table) for table in schema.ordered_tables()}
