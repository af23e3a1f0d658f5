"""valibot validator emitter.

Mirrors the TypeScript emitter: the same Keep models, the same column walk,
the same nullability. Content columns arrive from the table store as JSON
text and are parsed before validation.
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
from inkwell.services.codegen.typescript import HEADER, frontmatter_columns, model_name, pascal_case

_ROW_SCHEMAS = {
    FieldKind.INTEGER: "v.number()",
    FieldKind.REAL: "v.number()",
    FieldKind.BOOLEAN: "v.number()",
}

_FRONTMATTER_SCHEMAS = {
    FieldKind.INTEGER: "v.number()",
    FieldKind.REAL: "v.number()",
    FieldKind.BOOLEAN: "v.boolean()",
}


def valibot_schema(annotation: Any) -> str:
    """valibot expression validating a pydantic field annotation."""
    origin = get_origin(annotation)
    if origin is Literal:
        values = get_args(annotation)
        if len(values) == 1:
            return f"v.literal({json.dumps(values[0])})"
        return f"v.picklist({json.dumps(list(values))})"
    if origin in (Union, types.UnionType):
        args = [arg for arg in get_args(annotation) if arg is not type(None)]
        inner = valibot_schema(args[0]) if len(args) == 1 else f"v.union([{', '.join(map(valibot_schema, args))}])"
        if len(args) < len(get_args(annotation)):
            return f"v.nullable({inner})"
        return inner
    if origin is list:
        (item,) = get_args(annotation)
        return f"v.array({valibot_schema(item)})"
    if isinstance(annotation, type) and issubclass(annotation, Enum):
        return f"v.picklist({json.dumps([member.value for member in annotation])})"
    if annotation is str:
        return "v.string()"
    if annotation is bool:
        return "v.boolean()"
    if annotation in (int, float):
        return "v.number()"
    if isinstance(annotation, type) and issubclass(annotation, BaseModel):
        return model_name(annotation)
    raise TypeError(f"no valibot schema for {annotation!r}")


def _object(name: str, model: type[BaseModel], overrides: dict[str, str] | None = None) -> str:
    lines = [f"export const {name} = v.object({{"]
    for field_name, info in model.model_fields.items():
        rendered = (overrides or {}).get(field_name) or valibot_schema(info.annotation)
        lines.append(f"  {field_name}: {rendered},")
    lines.append("});")
    return "\n".join(lines)


def keep_schemas() -> str:
    blocks = [_object(model_name(ObjectReference), ObjectReference)]
    for model in KEEP_MODELS.values():
        blocks.append(_object(model_name(model), model))
    blocks.append('export const Keep = v.variant("type", [' + ", ".join(model_name(m) for m in KEEP_MODELS.values()) + "]);")
    blocks.append(
        "export type MarkdownNodeType =\n"
        '  | { type: "text"; text: string }\n'
        '  | { type: "element"; tag: string; attrs: Record<string, string>; children: MarkdownNodeType[] }\n'
        '  | { type: "keep"; keep: v.InferOutput<typeof Keep>; children: MarkdownNodeType[] };'
    )
    blocks.append(
        "export const MarkdownNode: v.GenericSchema<MarkdownNodeType> = v.lazy(() =>\n"
        '  v.variant("type", [\n'
        '    v.object({ type: v.literal("text"), text: v.string() }),\n'
        '    v.object({ type: v.literal("element"), tag: v.string(), attrs: v.record(v.string(), v.string()), '
        "children: v.array(MarkdownNode) }),\n"
        '    v.object({ type: v.literal("keep"), keep: Keep, children: v.array(MarkdownNode) }),\n'
        "  ]),\n"
        ");"
    )
    blocks.append(_object(model_name(FootnoteDefinition), FootnoteDefinition, {"children": "v.array(MarkdownNode)"}))
    blocks.append(_object(model_name(Section), Section))
    blocks.append(
        "export const MarkdownBody = v.object({\n"
        "  root: v.array(MarkdownNode),\n"
        "  footnotes: v.array(FootnoteDefinition),\n"
        "  sections: v.array(Section),\n"
        "});"
    )
    return "\n\n".join(blocks)


def _nullable(rendered: str, nullable: bool) -> str:
    return f"v.nullable({rendered})" if nullable else rendered


def generate_table_module(schema: CollectionSchema, table: TableSchema) -> str:
    imports = ['import * as v from "valibot";']
    for field in table.records_fields():
        imports.append(f'import {{ frontmatter as {field.table}Frontmatter }} from "./{field.table}";')

    row_lines = ["export const table = v.object({"]
    for column in table.columns():
        if column.kind in CONTENT_KINDS:
            rendered = f"v.pipe(v.string(), v.parseJson(), {model_name(ObjectReference)})"
        else:
            rendered = _ROW_SCHEMAS.get(column.kind, "v.string()")
        row_lines.append(f"  {column.name}: {_nullable(rendered, column.nullable)},")
    row_lines.append("});")

    frontmatter_lines = ["export const frontmatter = v.object({"]
    for column in frontmatter_columns(schema, table):
        if column.kind in CONTENT_KINDS:
            rendered = model_name(ObjectReference)
        else:
            rendered = _FRONTMATTER_SCHEMAS.get(column.kind, "v.string()")
        frontmatter_lines.append(f"  {column.name}: {_nullable(rendered, column.nullable)},")
    for field in table.records_fields():
        frontmatter_lines.append(f"  {field.name}: v.array({field.table}Frontmatter),")
    frontmatter_lines.append("});")

    parts = [
        HEADER,
        "\n".join(imports),
        keep_schemas(),
        "\n".join(row_lines),
        "\n".join(frontmatter_lines),
        f"export type {pascal_case(table.name)}Table = v.InferOutput<typeof table>;",
    ]
    return "\n\n".join(part.rstrip("\n") for part in parts) + "\n"


def generate_valibot(schema: CollectionSchema) -> dict[str, str]:
    """One valibot module per table, keyed by table name."""
    return {table.name: generate_table_module(schema, table) for table in schema.ordered_tables()}
