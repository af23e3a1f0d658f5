"""Runtime row validators built from the compiled schema.

``build_row_validator`` walks the same ``TableSchema.columns()`` sequence as
the SQL, TypeScript and valibot emitters and produces a pydantic model that
accepts a row exactly as the table store returns it.
"""

from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Json, create_model, model_validator

from inkwell.models.enums import FieldKind
from inkwell.models.markdown import MarkdownBody
from inkwell.models.pointer import ObjectReference
from inkwell.models.schema import CollectionSchema, TableSchema
from inkwell.services.codegen.typescript import pascal_case


class MarkdownReference(ObjectReference):
    """An ObjectReference whose inline content must be a valid MarkdownBody."""

    @model_validator(mode="after")
    def _check_inline_body(self) -> "MarkdownReference":
        if self.pointer is None:
            if self.content is None:
                raise ValueError("inline markdown reference has no content")
            MarkdownBody.model_validate_json(self.content)
        return self


_ROW_TYPES: dict[FieldKind, Any] = {
    FieldKind.ID: str,
    FieldKind.HASH: str,
    FieldKind.STRING: str,
    FieldKind.INTEGER: int,
    FieldKind.REAL: float,
    FieldKind.BOOLEAN: bool,
    FieldKind.DATE: date,
    FieldKind.DATETIME: datetime,
    FieldKind.IMAGE: Json[ObjectReference],
    FieldKind.FILE: Json[ObjectReference],
    FieldKind.MARKDOWN: Json[MarkdownReference],
}


def build_row_validator(table: TableSchema) -> type[BaseModel]:
    """Create a pydantic model validating rows of ``table``.

    Args:
        table: The compiled table.

    Returns:
        A frozen pydantic model class named after the table. Every column is
        required to be present; nullable columns accept ``None``.
    """
    fields: dict[str, Any] = {}
    for column in table.columns():
        annotation = _ROW_TYPES[column.kind]
        if column.nullable:
            annotation = Optional[annotation]
        fields[column.name] = (annotation, ...)
    return create_model(
        f"{pascal_case(table.name)}Row",
        __config__=ConfigDict(frozen=True, extra="forbid"),
        **fields,
    )


def build_validators(schema: CollectionSchema) -> dict[str, type[BaseModel]]:
    return {table.name: build_row_validator(table) for table in schema.ordered_tables()}
