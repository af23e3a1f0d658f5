"""Unit tests for run outcomes."""

from inkwell.models.enums import DocumentState, UploadStatus
from inkwell.models.outcome import BatchResult, DocumentOutcome, UploadOutcome, VerificationResult


def _make_upload(status: UploadStatus) -> UploadOutcome:
    """Create an UploadOutcome for testing."""
    return UploadOutcome(pointer="r2://media/images/abc", hash="ab" * 32, status=status)


def _make_outcome(state: DocumentState, uploads: list[UploadOutcome] | None = None) -> DocumentOutcome:
    """Create a DocumentOutcome for testing."""
    failed = state == DocumentState.FAILED
    return DocumentOutcome(
        path=f"posts/{state.value}.md",
        state=state,
        document_id=state.value,
        stage=DocumentState.COMPILED if failed else None,
        error="bad value" if failed else None,
        uploads=uploads or [],
    )


class TestBatchResult:
    """Tests for BatchResult aggregation."""

    def test_counts_by_state(self) -> None:
        result = BatchResult(
            outcomes=[
                _make_outcome(DocumentState.WRITTEN),
                _make_outcome(DocumentState.WRITTEN),
                _make_outcome(DocumentState.UNCHANGED),
                _make_outcome(DocumentState.FAILED),
            ]
        )

        assert result.written == 2
        assert result.unchanged == 1
        assert result.failed == 1

    def test_counts_uploads_across_documents(self) -> None:
        result = BatchResult(
            outcomes=[
                _make_outcome(DocumentState.WRITTEN, [_make_upload(UploadStatus.UPLOADED)]),
                _make_outcome(
                    DocumentState.WRITTEN,
                    [_make_upload(UploadStatus.SKIPPED), _make_upload(UploadStatus.SKIPPED)],
                ),
            ]
        )

        assert len(result.uploads) == 3
        assert result.upload_count(UploadStatus.UPLOADED) == 1
        assert result.upload_count(UploadStatus.SKIPPED) == 2
        assert result.upload_count(UploadStatus.FAILED) == 0

    def test_errors_name_the_failed_path(self) -> None:
        result = BatchResult(outcomes=[_make_outcome(DocumentState.FAILED)])

        assert result.errors == ["posts/failed.md: bad value"]

    def test_exit_code_is_zero_without_failures(self) -> None:
        result = BatchResult(outcomes=[_make_outcome(DocumentState.WRITTEN), _make_outcome(DocumentState.UNCHANGED)])

        assert result.exit_code == 0

    def test_exit_code_is_one_with_any_failure(self) -> None:
        result = BatchResult(outcomes=[_make_outcome(DocumentState.WRITTEN), _make_outcome(DocumentState.FAILED)])

        assert result.exit_code == 1

    def test_empty_result(self) -> None:
        result = BatchResult()

        assert result.written == 0
        assert result.exit_code == 0


class TestVerificationResult:
    """Tests for VerificationResult."""

    def test_exit_code_reflects_failures(self) -> None:
        assert VerificationResult(checked=3).exit_code == 0
        assert VerificationResult(checked=3, failures=["post.cover hello: hash mismatch"]).exit_code == 1
