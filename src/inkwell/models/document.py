from pathlib import Path
from typing import Any

from pydantic import Field

from inkwell.models.base import FrozenModel
from inkwell.models.pointer import StoragePointer

Row = dict[str, Any]


class PendingObject(FrozenModel):
    """Bytes waiting to be written to a storage backend."""

    data: bytes
    pointer: StoragePointer
    owner: str

    @property
    def key(self) -> tuple[str, str]:
        return (self.pointer.uri, self.pointer.hash)


class CompiledDocument(FrozenModel):
    """A document turned into rows for every table plus objects to upload.

    ``rows`` is keyed by table name in parent-first order; the single root row
    comes first. Content columns hold ``ObjectReference`` dictionaries.
    """

    path: Path
    document_id: str
    content_hash: str
    rows: dict[str, list[Row]] = Field(default_factory=dict)
    objects: list[PendingObject] = Field(default_factory=list)

    @property
    def root_row(self) -> Row:
        return next(iter(self.rows.values()))[0]

    @property
    def row_count(self) -> int:
        return sum(len(rows) for rows in self.rows.values())
