"""Deduplicating uploader.

Every object is identified by its pointer URI plus content hash. Before an
upload the uploader consults an in-run cache of objects known to be present,
then the backend itself. Checks for the same object are serialized by a
per-key lock, so identical content referenced from several documents is put
exactly once per run even when those documents are processed concurrently.
"""

import asyncio

import structlog

from inkwell.errors import StorageError
from inkwell.models.document import PendingObject
from inkwell.models.enums import SkipReason, UploadStatus
from inkwell.models.outcome import UploadOutcome
from inkwell.services.storage.backends import StorageBackends


class ObjectUploader:
    def __init__(
        self,
        backends: StorageBackends,
        force: bool = False,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._backends = backends
        self._force = force
        self._logger = logger or structlog.get_logger(__name__)
        self._present: set[tuple[str, str]] = set()
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

    async def upload(self, obj: PendingObject) -> UploadOutcome:
        """Upload one object unless it is already present.

        Forced runs skip the backend existence check but still upload each
        object only once per run.

        Args:
            obj: The object and its computed pointer.

        Returns:
            UploadOutcome with status uploaded, skipped or failed. A failed
            put is never recorded as present.
        """
        key = obj.key
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            if key in self._present:
                return self._skipped(obj, reason=SkipReason.CACHED)

            backend = self._backends.for_kind(obj.pointer.scheme)
            try:
                if not self._force and await backend.exists(obj.pointer):
                    self._present.add(key)
                    return self._skipped(obj, reason=SkipReason.ALREADY_PRESENT)
                await backend.put(obj)
            except StorageError as e:
                self._logger.warning(
                    "object_upload_failed",
                    pointer=obj.pointer.uri,
                    owner=obj.owner,
                    error=str(e),
                )
                return UploadOutcome(
                    pointer=obj.pointer.uri,
                    hash=obj.pointer.hash,
                    status=UploadStatus.FAILED,
                    error=str(e),
                )

            self._present.add(key)
            self._logger.info("object_uploaded", pointer=obj.pointer.uri, owner=obj.owner, size=obj.pointer.size)
            return UploadOutcome(pointer=obj.pointer.uri, hash=obj.pointer.hash, status=UploadStatus.UPLOADED)

    async def upload_all(self, objects: list[PendingObject]) -> list[UploadOutcome]:
        return list(await asyncio.gather(*(self.upload(obj) for obj in objects)))

    def _skipped(self, obj: PendingObject, reason: SkipReason) -> UploadOutcome:
        self._logger.debug("object_skipped", pointer=obj.pointer.uri, owner=obj.owner, reason=reason.value)
        return UploadOutcome(
            pointer=obj.pointer.uri,
            hash=obj.pointer.hash,
            status=UploadStatus.SKIPPED,
            reason=reason,
        )
