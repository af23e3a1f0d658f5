from enum import StrEnum


class FieldKind(StrEnum):
    ID = "id"
    STRING = "string"
    INTEGER = "integer"
    REAL = "real"
    BOOLEAN = "boolean"
    DATE = "date"
    DATETIME = "datetime"
    HASH = "hash"
    MARKDOWN = "markdown"
    IMAGE = "image"
    FILE = "file"
    RECORDS = "records"


CONTENT_KINDS = frozenset({FieldKind.MARKDOWN, FieldKind.IMAGE, FieldKind.FILE})
INDEXABLE_KINDS = frozenset(
    {
        FieldKind.STRING,
        FieldKind.INTEGER,
        FieldKind.REAL,
        FieldKind.BOOLEAN,
        FieldKind.DATE,
        FieldKind.DATETIME,
    }
)


class StorageKind(StrEnum):
    R2 = "r2"
    KV = "kv"
    INLINE = "inline"
    ASSET = "asset"


class DocumentSyntax(StrEnum):
    MARKDOWN = "markdown"
    YAML = "yaml"


class KeepKind(StrEnum):
    """The closed set of Markdown node kinds the compiler models individually.

    The Markdown walker, the TypeScript and valibot emitters and the runtime
    validator all derive their Keep unions from this enumeration.
    """

    ALERT = "alert"
    FOOTNOTE_REFERENCE = "footnote_reference"
    LINK_CARD = "link_card"
    CODEBLOCK = "codeblock"
    HEADING = "heading"
    IMAGE = "image"


class AlertKind(StrEnum):
    NOTE = "note"
    TIP = "tip"
    IMPORTANT = "important"
    WARNING = "warning"
    CAUTION = "caution"


class DocumentState(StrEnum):
    DISCOVERED = "discovered"
    PARSED = "parsed"
    COMPILED = "compiled"
    DIFFED = "diffed"
    UNCHANGED = "unchanged"
    WRITTEN = "written"
    FAILED = "failed"


class UploadStatus(StrEnum):
    UPLOADED = "uploaded"
    SKIPPED = "skipped"
    FAILED = "failed"


class SkipReason(StrEnum):
    """Why an upload was skipped: seen earlier this run, or already in the backend."""

    CACHED = "cached"
    ALREADY_PRESENT = "already_present"
