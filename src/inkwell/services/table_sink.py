"""Table sink writing compiled rows to a SQL database.

Uses SQLAlchemy's native async support (aiosqlite for local files). Content
tables are created from the generated DDL; the per-document content hashes
used for change detection live in a SQLModel bookkeeping table.
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import bindparam, delete, select, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from inkwell.models.document import CompiledDocument, Row
from inkwell.models.schema import CollectionSchema, TableSchema
from inkwell.models.tables import DocumentStateRecord
from inkwell.services.codegen.sql import ddl_statements, drop_statements


def _sql_value(value: Any) -> Any:
    if isinstance(value, dict):
        return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    if isinstance(value, bool):
        return int(value)
    return value


def _insert_statement(table: TableSchema) -> str:
    names = [column.name for column in table.columns()]
    placeholders = ", ".join(f":{name}" for name in names)
    return f"INSERT INTO {table.name} ({', '.join(names)}) VALUES ({placeholders})"


class SqlTableSink:
    """Persists compiled documents to the tables of a collection schema.

    Accepts an AsyncEngine via dependency injection to support both
    persistent and in-memory databases for testing.

    Operations are serialized with a lock because an in-memory database
    shares a single connection between sessions.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._engine = engine
        self._logger = logger or structlog.get_logger(__name__)
        self._lock = asyncio.Lock()

    async def initialize(self, schema: CollectionSchema) -> None:
        """Create the bookkeeping table and the collection's tables if missing."""
        async with self._lock, self._engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all, tables=[DocumentStateRecord.__table__])
            for statement in ddl_statements(schema):
                await conn.execute(text(statement))
        self._logger.info("table_sink_initialized", collection=schema.name, tables=list(schema.tables))

    async def reset(self, schema: CollectionSchema) -> None:
        """Drop the collection's tables and forget its recorded hashes."""
        async with self._lock, self._engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all, tables=[DocumentStateRecord.__table__])
            for statement in drop_statements(schema):
                await conn.execute(text(statement))
            await conn.execute(delete(DocumentStateRecord).where(DocumentStateRecord.table_name == schema.root.name))
        self._logger.info("table_sink_reset", collection=schema.name)

    async def get_content_hash(self, schema: CollectionSchema, document_id: str) -> str | None:
        """Return the content hash recorded for a document, or None if never written."""
        async with self._lock, AsyncSession(self._engine) as session:
            record = await session.get(DocumentStateRecord, (schema.root.name, document_id))
            return record.content_hash if record is not None else None

    async def document_ids(self, schema: CollectionSchema) -> set[str]:
        async with self._lock, AsyncSession(self._engine) as session:
            statement = select(DocumentStateRecord.document_id).where(
                DocumentStateRecord.table_name == schema.root.name
            )
            result = await session.execute(statement)
            return set(result.scalars().all())

    async def write_document(self, schema: CollectionSchema, document: CompiledDocument) -> None:
        """Replace a document's rows in every table in one transaction.

        Existing rows of the document are deleted children first, then the new
        rows are inserted parent first, and the recorded content hash is
        updated. Nothing is visible until the transaction commits.

        Args:
            schema: The collection the document belongs to.
            document: The compiled document.
        """
        async with self._lock, AsyncSession(self._engine) as session:
            await self._delete_documents(session, schema, [document.document_id])
            for table in schema.ordered_tables():
                rows = document.rows.get(table.name, [])
                if rows:
                    await session.execute(
                        text(_insert_statement(table)),
                        [self._row_params(table, row) for row in rows],
                    )

            record = await session.get(DocumentStateRecord, (schema.root.name, document.document_id))
            now = datetime.now(timezone.utc)
            if record:
                record.content_hash = document.content_hash
                record.updated_at = now
            else:
                session.add(
                    DocumentStateRecord(
                        table_name=schema.root.name,
                        document_id=document.document_id,
                        content_hash=document.content_hash,
                        updated_at=now,
                    )
                )
            await session.commit()
        self._logger.debug(
            "document_rows_written",
            document_id=document.document_id,
            row_count=document.row_count,
        )

    async def fetch_rows(self, table: TableSchema) -> list[Row]:
        """Read every row of a table, ordered by primary key."""
        statement = text(f"SELECT * FROM {table.name} ORDER BY {', '.join(table.primary_key)}")
        async with self._lock, self._engine.connect() as conn:
            result = await conn.execute(statement)
            return [dict(row._mapping) for row in result]

    async def prune(self, schema: CollectionSchema, keep_ids: set[str]) -> int:
        """Delete documents that are recorded but no longer in the corpus.

        Returns:
            Number of documents removed.
        """
        stale = sorted(await self.document_ids(schema) - keep_ids)
        if not stale:
            return 0
        async with self._lock, AsyncSession(self._engine) as session:
            await self._delete_documents(session, schema, stale)
            await session.execute(
                delete(DocumentStateRecord).where(
                    DocumentStateRecord.table_name == schema.root.name,
                    DocumentStateRecord.document_id.in_(stale),
                )
            )
            await session.commit()
        self._logger.info("documents_pruned", collection=schema.name, document_ids=stale)
        return len(stale)

    async def _delete_documents(self, session: AsyncSession, schema: CollectionSchema, document_ids: list[str]) -> None:
        # the first key column of every table holds the root document id
        for table in reversed(schema.ordered_tables()):
            statement = text(f"DELETE FROM {table.name} WHERE {table.primary_key[0]} IN :ids").bindparams(
                bindparam("ids", expanding=True)
            )
            await session.execute(statement, {"ids": document_ids})

    def _row_params(self, table: TableSchema, row: Row) -> dict[str, Any]:
        return {column.name: _sql_value(row.get(column.name)) for column in table.columns()}

    async def dispose(self) -> None:
        await self._engine.dispose()


def create_async_engine_from_path(db_path: str) -> AsyncEngine:
    """Create an async SQLAlchemy engine for a SQLite database path.

    Args:
        db_path: Path to SQLite database file, or ":memory:" for in-memory.

    Returns:
        AsyncEngine instance configured for aiosqlite.
    """
    if db_path == ":memory:":
        # Every session must share the one connection that holds the database.
        return create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    return create_async_engine(f"sqlite+aiosqlite:///{db_path}")
