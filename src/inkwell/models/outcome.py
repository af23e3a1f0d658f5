"""Per-object and per-document outcomes of a run, aggregated into a BatchResult."""

from pydantic import BaseModel, Field

from inkwell.models.enums import DocumentState, SkipReason, UploadStatus


class UploadOutcome(BaseModel):
    """Result of writing one object; ``reason`` says why a skipped object was not put."""

    pointer: str
    hash: str
    status: UploadStatus
    reason: SkipReason | None = None
    error: str | None = None

    model_config = {"frozen": True}


class DocumentOutcome(BaseModel):
    """Terminal state of one document.

    ``state`` is one of ``written``, ``unchanged`` or ``failed``; a failure
    records the stage it happened in.
    """

    path: str
    state: DocumentState
    document_id: str | None = None
    stage: DocumentState | None = None
    error: str | None = None
    uploads: list[UploadOutcome] = Field(default_factory=list)

    model_config = {"frozen": True}

    @property
    def failed(self) -> bool:
        return self.state == DocumentState.FAILED


class BatchResult(BaseModel):
    """Aggregate of a run with statistics; never persisted."""

    outcomes: list[DocumentOutcome] = Field(default_factory=list)
    pruned: int = Field(default=0, ge=0)

    model_config = {"frozen": True}

    def _count(self, state: DocumentState) -> int:
        return sum(1 for outcome in self.outcomes if outcome.state == state)

    @property
    def written(self) -> int:
        return self._count(DocumentState.WRITTEN)

    @property
    def unchanged(self) -> int:
        return self._count(DocumentState.UNCHANGED)

    @property
    def failed(self) -> int:
        return self._count(DocumentState.FAILED)

    @property
    def uploads(self) -> list[UploadOutcome]:
        return [upload for outcome in self.outcomes for upload in outcome.uploads]

    def upload_count(self, status: UploadStatus) -> int:
        return sum(1 for upload in self.uploads if upload.status == status)

    @property
    def errors(self) -> list[str]:
        return [f"{outcome.path}: {outcome.error}" for outcome in self.outcomes if outcome.failed]

    @property
    def exit_code(self) -> int:
        return 1 if self.failed else 0


class VerificationResult(BaseModel):
    """Result of re-hashing every persisted object."""

    checked: int = Field(default=0, ge=0)
    failures: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}

    @property
    def exit_code(self) -> int:
        return 1 if self.failures else 0
