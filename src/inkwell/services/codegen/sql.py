"""SQL DDL emitter (SQLite dialect)."""

from inkwell.models.enums import FieldKind
from inkwell.models.schema import CollectionSchema, TableSchema

_INDEX_EXPRESSIONS = {
    FieldKind.DATE: "date({column})",
    FieldKind.DATETIME: "datetime({column})",
}


def table_statements(table: TableSchema) -> list[str]:
    """CREATE TABLE plus CREATE INDEX statements for one table."""
    lines = []
    for column in table.columns():
        definition = f"  {column.name} {column.sql_type}"
        if not column.nullable:
            definition += " NOT NULL"
        lines.append(definition)

    if table.inherit_ids:
        lines.append(
            f"  FOREIGN KEY ({', '.join(table.inherit_ids)}) "
            f"REFERENCES {table.parent}({', '.join(table.parent_key)}) ON DELETE CASCADE"
        )
    lines.append(f"  PRIMARY KEY ({', '.join(table.primary_key)})")

    statements = [f"CREATE TABLE IF NOT EXISTS {table.name} (\n" + ",\n".join(lines) + "\n);"]
    for column in table.indexed_columns():
        expression = _INDEX_EXPRESSIONS.get(column.kind, "{column}").format(column=column.name)
        statements.append(
            f"CREATE INDEX IF NOT EXISTS index_{table.name}_{column.name} ON {table.name}({expression});"
        )
    return statements


def ddl_statements(schema: CollectionSchema) -> list[str]:
    """Every DDL statement for the collection, parent tables first."""
    return [statement for table in schema.ordered_tables() for statement in table_statements(table)]


def generate_ddl(schema: CollectionSchema) -> str:
    return "\n\n".join(ddl_statements(schema)) + "\n"


def drop_statements(schema: CollectionSchema) -> list[str]:
    """DROP TABLE statements, children before their parents."""
    return [f"DROP TABLE IF EXISTS {table.name};" for table in reversed(schema.ordered_tables())]


def generate_drop(schema: CollectionSchema) -> str:
    return "\n".join(drop_statements(schema)) + "\n"
