"""SQLModel table for run bookkeeping.

Content tables are created from generated DDL because their shape comes from
the collection schema. The bookkeeping table has a fixed shape and is mapped
with SQLModel so the table sink can use the ORM for it.
"""

from datetime import datetime

from sqlmodel import Field, SQLModel


class DocumentStateRecord(SQLModel, table=True):
    """Last written content hash of each root document, per table."""

    __tablename__ = "document_states"

    table_name: str = Field(primary_key=True)
    document_id: str = Field(primary_key=True)
    content_hash: str
    updated_at: datetime
