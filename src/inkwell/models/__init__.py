from inkwell.models.config import CollectionConfig, StorageConfig, load_config
from inkwell.models.document import CompiledDocument, PendingObject
from inkwell.models.enums import DocumentState, FieldKind, KeepKind, SkipReason, StorageKind, UploadStatus
from inkwell.models.markdown import KEEP_MODELS, MarkdownBody
from inkwell.models.outcome import BatchResult, DocumentOutcome, UploadOutcome, VerificationResult
from inkwell.models.pointer import ObjectReference, StoragePointer
from inkwell.models.schema import CollectionSchema, FieldSpec, TableSchema

__all__ = [
    "BatchResult",
    "CollectionConfig",
    "CollectionSchema",
    "CompiledDocument",
    "DocumentOutcome",
    "DocumentState",
    "FieldKind",
    "FieldSpec",
    "KEEP_MODELS",
    "KeepKind",
    "MarkdownBody",
    "ObjectReference",
    "PendingObject",
    "SkipReason",
    "StorageConfig",
    "StorageKind",
    "StoragePointer",
    "TableSchema",
    "UploadOutcome",
    "UploadStatus",
    "VerificationResult",
    "load_config",
]
