"""Exception hierarchy for schema compilation, document processing and storage.

Fatal errors (``SchemaError``, ``ConfigError``) abort a run before any document
is processed. Document-level errors (``ParseError``, ``ValidationError``,
``StorageError``, ``IntegrityError``) are caught at the document boundary by the
pipeline and turned into a failed outcome for that document only.
"""

from pathlib import Path


class InkwellError(Exception):
    """Base class for all errors raised by inkwell."""


class ConfigError(InkwellError):
    """The collection config file could not be read or is malformed."""


class SchemaError(InkwellError):
    """The declared field tree cannot be compiled into a table schema."""

    def __init__(self, message: str, table: str | None = None, field: str | None = None) -> None:
        self.table = table
        self.field = field
        location = ".".join(part for part in (table, field) if part)
        super().__init__(f"{location}: {message}" if location else message)


class DuplicateTable(SchemaError):
    pass


class CyclicSchema(SchemaError):
    pass


class InvalidFieldOption(SchemaError):
    pass


class UnknownFieldType(SchemaError):
    pass


class MissingIdField(SchemaError):
    pass


class InvalidInheritIds(SchemaError):
    pass


class DocumentError(InkwellError):
    """An error attributed to a single document.

    Carries enough context (path, compound id, stage) to report the failure
    without aborting the rest of the batch.
    """

    def __init__(
        self,
        message: str,
        path: Path | str | None = None,
        document_id: str | None = None,
        stage: str | None = None,
    ) -> None:
        self.message = message
        self.path = str(path) if path is not None else None
        self.document_id = document_id
        self.stage = stage
        super().__init__(message)

    def __str__(self) -> str:
        if self.path is None:
            return self.message
        if self.document_id:
            return f"{self.document_id}({self.path}): {self.message}"
        return f"{self.path}: {self.message}"

    def with_context(
        self,
        path: Path | str | None = None,
        document_id: str | None = None,
        stage: str | None = None,
    ) -> "DocumentError":
        if self.path is None and path is not None:
            self.path = str(path)
        if self.document_id is None:
            self.document_id = document_id
        if self.stage is None:
            self.stage = stage
        return self


class ParseError(DocumentError):
    """Malformed frontmatter or document structure."""


class ValidationError(DocumentError):
    """Frontmatter value is missing or does not match the declared kind."""


class StorageError(DocumentError):
    """Backend I/O failure while checking for or writing an object."""

    def __init__(self, message: str, pointer: str | None = None, **kwargs) -> None:
        self.pointer = pointer
        super().__init__(message, **kwargs)


class IntegrityError(DocumentError):
    """A persisted object no longer hashes to the hash recorded for it."""

    def __init__(self, message: str, pointer: str | None = None, **kwargs) -> None:
        self.pointer = pointer
        super().__init__(message, **kwargs)
