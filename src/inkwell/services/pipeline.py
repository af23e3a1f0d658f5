"""Pipeline that drives a collection from source files to tables and objects.

Each document moves through parse, compile and diff. Unchanged documents stop
there; changed ones have their objects uploaded and their rows written.
Documents are processed by a bounded pool of workers that pull paths from a
queue and report exactly one outcome each on a result queue.
"""

import asyncio
import base64
from pathlib import Path

import structlog
from sqlalchemy.exc import SQLAlchemyError

from inkwell.errors import DocumentError, IntegrityError, StorageError, ValidationError
from inkwell.models.enums import CONTENT_KINDS, DocumentState, UploadStatus
from inkwell.models.outcome import BatchResult, DocumentOutcome, UploadOutcome, VerificationResult
from inkwell.models.pointer import ObjectReference, StoragePointer
from inkwell.models.schema import CollectionSchema
from inkwell.services.document_compiler import DocumentCompiler
from inkwell.services.file_walker import FileWalker
from inkwell.services.hashing import content_hash
from inkwell.services.storage.backends import StorageBackends
from inkwell.services.storage.uploader import ObjectUploader
from inkwell.services.table_sink import SqlTableSink

DEFAULT_CONCURRENCY = 8
DEFAULT_TIMEOUT = 120.0


class _Progress:
    """Where a document currently is, so a timeout can report its stage."""

    def __init__(self) -> None:
        self.stage = DocumentState.PARSED
        self.document_id: str | None = None
        self.uploads: list[UploadOutcome] = []


class Pipeline:
    """Compiles every document of one collection and persists the results.

    All collaborators are injected via the constructor; local (dump) and
    remote (batch) runs differ only in the sink and the backend clients.
    """

    def __init__(
        self,
        schema: CollectionSchema,
        root_dir: Path,
        compiler: DocumentCompiler,
        sink: SqlTableSink,
        backends: StorageBackends,
        uploader: ObjectUploader,
        file_walker: FileWalker,
        concurrency: int = DEFAULT_CONCURRENCY,
        timeout: float | None = DEFAULT_TIMEOUT,
        force: bool = False,
        prune: bool = True,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._schema = schema
        self._root_dir = root_dir
        self._compiler = compiler
        self._sink = sink
        self._backends = backends
        self._uploader = uploader
        self._file_walker = file_walker
        self._concurrency = concurrency
        self._timeout = timeout
        self._force = force
        self._prune = prune
        self._logger = logger or structlog.get_logger(__name__)
        self._claimed: dict[str, Path] = {}
        self._closers: list = []

    @property
    def schema(self) -> CollectionSchema:
        return self._schema

    @property
    def sink(self) -> SqlTableSink:
        return self._sink

    def add_closer(self, closer) -> None:
        """Register an async callable run by ``aclose``, e.g. an HTTP client's."""
        self._closers.append(closer)

    async def __aenter__(self) -> "Pipeline":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        for closer in self._closers:
            await closer()
        await self._sink.dispose()

    async def reset(self) -> None:
        """Drop the collection's tables so the next run rebuilds them from scratch."""
        await self._sink.reset(self._schema)

    async def run(self) -> BatchResult:
        """Process every document of the collection.

        Sink initialization happens before any document is touched; its
        errors propagate. Per-document errors become failed outcomes.

        Returns:
            BatchResult with one outcome per discovered document.
        """
        self._logger.info(
            "pipeline_started",
            collection=self._schema.name,
            root_dir=str(self._root_dir),
            force=self._force,
            concurrency=self._concurrency,
        )
        await self._sink.initialize(self._schema)
        self._claimed = {}

        paths = [path async for path in self._file_walker.walk(self._root_dir)]
        queue: asyncio.Queue[Path | None] = asyncio.Queue()
        results: asyncio.Queue[DocumentOutcome] = asyncio.Queue()
        for path in paths:
            queue.put_nowait(path)

        worker_count = min(self._concurrency, max(len(paths), 1))
        for _ in range(worker_count):
            queue.put_nowait(None)
        workers = [asyncio.create_task(self._worker(queue, results)) for _ in range(worker_count)]

        await asyncio.gather(*workers)
        outcomes = [results.get_nowait() for _ in paths]
        outcomes.sort(key=lambda outcome: outcome.path)

        pruned = 0
        if self._prune and not any(outcome.failed for outcome in outcomes):
            keep_ids = {outcome.document_id for outcome in outcomes if outcome.document_id}
            pruned = await self._sink.prune(self._schema, keep_ids)

        result = BatchResult(outcomes=outcomes, pruned=pruned)
        self._logger.info(
            "pipeline_completed",
            collection=self._schema.name,
            written=result.written,
            unchanged=result.unchanged,
            failed=result.failed,
            uploaded=result.upload_count(UploadStatus.UPLOADED),
            skipped=result.upload_count(UploadStatus.SKIPPED),
            pruned=pruned,
        )
        return result

    async def _worker(self, queue: asyncio.Queue, results: asyncio.Queue) -> None:
        while True:
            path = await queue.get()
            if path is None:
                return
            await results.put(await self._process_with_timeout(path))

    async def _process_with_timeout(self, path: Path) -> DocumentOutcome:
        progress = _Progress()
        try:
            return await asyncio.wait_for(self._process(path, progress), timeout=self._timeout)
        except asyncio.TimeoutError:
            return self._failed(path, progress, f"timed out after {self._timeout}s")

    async def _process(self, path: Path, progress: _Progress) -> DocumentOutcome:
        """Run one document through the state machine.

        Args:
            path: Source file.
            progress: Updated as stages are entered.

        Returns:
            DocumentOutcome in state written, unchanged or failed.
        """
        self._logger.debug("document_discovered", path=str(path))
        try:
            parsed = await self._compiler.parse(path)

            progress.stage = DocumentState.COMPILED
            compiled = await self._compiler.compile(parsed)
            progress.document_id = compiled.document_id
            self._claim(compiled.document_id, path)

            progress.stage = DocumentState.DIFFED
            stored_hash = await self._sink.get_content_hash(self._schema, compiled.document_id)
            if stored_hash == compiled.content_hash and not self._force:
                self._logger.debug("document_unchanged", path=str(path), document_id=compiled.document_id)
                return DocumentOutcome(
                    path=str(path),
                    state=DocumentState.UNCHANGED,
                    document_id=compiled.document_id,
                )

            progress.uploads = await self._uploader.upload_all(compiled.objects)
            failures = [upload for upload in progress.uploads if upload.status == UploadStatus.FAILED]
            if failures:
                raise StorageError(
                    f"{len(failures)} object(s) failed to upload: {failures[0].error}",
                    pointer=failures[0].pointer,
                )

            await self._sink.write_document(self._schema, compiled)
        except DocumentError as e:
            return self._failed(path, progress, str(e.with_context(path=path, document_id=progress.document_id)))
        except (OSError, SQLAlchemyError) as e:
            return self._failed(path, progress, str(e))
        except Exception as e:
            # Library errors outside the document hierarchy stay within this document.
            self._logger.exception("document_crashed", path=str(path), stage=progress.stage.value)
            return self._failed(path, progress, f"{type(e).__name__}: {e}")

        self._logger.info(
            "document_written",
            path=str(path),
            document_id=compiled.document_id,
            row_count=compiled.row_count,
            object_count=len(compiled.objects),
        )
        return DocumentOutcome(
            path=str(path),
            state=DocumentState.WRITTEN,
            document_id=compiled.document_id,
            uploads=progress.uploads,
        )

    def _claim(self, document_id: str, path: Path) -> None:
        owner = self._claimed.setdefault(document_id, path)
        if owner != path:
            raise ValidationError(f"document id {document_id!r} is already used by {owner}", document_id=document_id)

    def _failed(self, path: Path, progress: _Progress, error: str) -> DocumentOutcome:
        self._logger.error(
            "document_failed",
            path=str(path),
            document_id=progress.document_id,
            stage=progress.stage.value,
            error=error,
        )
        return DocumentOutcome(
            path=str(path),
            state=DocumentState.FAILED,
            document_id=progress.document_id,
            stage=progress.stage,
            error=error,
            uploads=progress.uploads,
        )

    async def verify(self) -> VerificationResult:
        """Re-read every persisted object and check it still matches its hash.

        Mismatches and unreadable objects are reported, never repaired.

        Returns:
            VerificationResult with the number of references checked and a
            message per failure.
        """
        await self._sink.initialize(self._schema)
        checked = 0
        failures: list[str] = []

        for table in self._schema.ordered_tables():
            content_columns = [column for column in table.columns() if column.kind in CONTENT_KINDS]
            if not content_columns:
                continue
            for row in await self._sink.fetch_rows(table):
                owner = "/".join(str(row[name]) for name in table.primary_key)
                for column in content_columns:
                    raw = row.get(column.name)
                    if raw is None:
                        continue
                    checked += 1
                    try:
                        await self._verify_reference(ObjectReference.model_validate_json(raw))
                    except (IntegrityError, StorageError) as e:
                        message = f"{table.name}.{column.name} {owner}: {e}"
                        self._logger.error("object_verification_failed", table=table.name, owner=owner, error=str(e))
                        failures.append(message)

        self._logger.info("verification_completed", collection=self._schema.name, checked=checked, failed=len(failures))
        return VerificationResult(checked=checked, failures=failures)

    async def _verify_reference(self, reference: ObjectReference) -> None:
        if reference.pointer is None:
            content = reference.content or ""
            data = base64.b64decode(content) if reference.base64 else content.encode("utf-8")
        else:
            try:
                pointer = StoragePointer.parse(reference)
            except ValueError as e:
                raise IntegrityError(str(e), pointer=reference.pointer) from e
            data = await self._backends.for_kind(pointer.scheme).get(pointer)

        actual = content_hash(data)
        if actual != reference.hash:
            raise IntegrityError(
                f"hash mismatch: recorded {reference.hash}, found {actual}",
                pointer=reference.pointer,
            )
