"""Storage backends behind the ``exists``/``put`` capability.

Each backend wraps a client that does the actual I/O, so the same backend
logic drives local dump directories and remote services. Backend selection
is an exhaustive branch over ``StorageKind``.
"""

import base64
from typing import Protocol

import structlog

from inkwell.errors import StorageError
from inkwell.models.config import StorageConfig
from inkwell.models.document import PendingObject
from inkwell.models.enums import StorageKind
from inkwell.models.pointer import ObjectReference, StoragePointer
from inkwell.services.hashing import content_hash


class ObjectClient(Protocol):
    async def head(self, bucket: str, key: str) -> bool: ...

    async def put(self, bucket: str, key: str, data: bytes, content_type: str) -> None: ...

    async def get(self, bucket: str, key: str) -> bytes: ...


class KvClient(Protocol):
    async def get_metadata(self, namespace: str, key: str) -> dict | None: ...

    async def put(self, namespace: str, key: str, data: bytes, metadata: dict) -> None: ...

    async def get(self, namespace: str, key: str) -> bytes: ...


class AssetClient(Protocol):
    async def read(self, path: str) -> bytes | None: ...

    async def write(self, path: str, data: bytes) -> None: ...


class StorageBackend(Protocol):
    async def exists(self, pointer: StoragePointer) -> bool: ...

    async def put(self, obj: PendingObject) -> StoragePointer: ...

    async def get(self, pointer: StoragePointer) -> bytes: ...


def _join(*parts: str | None) -> str:
    return "/".join(part.strip("/") for part in parts if part and part.strip("/"))


def locate(
    storage: StorageConfig,
    data: bytes,
    content_type: str,
    owner: str,
    suffix: str,
) -> StoragePointer:
    """Compute where ``data`` will live without touching the backend.

    Args:
        storage: Target storage config (not inline).
        data: Object bytes.
        content_type: MIME type recorded with the pointer.
        owner: Compound id of the row that owns the object, ``a/b/c``.
        suffix: Column name, distinguishing several objects of one row.

    Returns:
        The pointer the backend will store the object under.
    """
    digest = content_hash(data)
    kind = storage.kind
    if kind == StorageKind.R2:
        namespace, key = storage.bucket, _join(storage.prefix, digest)
    elif kind == StorageKind.KV:
        namespace, key = storage.namespace, _join(storage.prefix, owner, suffix)
    elif kind == StorageKind.ASSET:
        namespace, key = storage.dir.strip("/"), _join(owner, suffix)
    elif kind == StorageKind.INLINE:
        raise ValueError("inline values have no storage location")
    else:
        raise ValueError(f"unsupported storage kind: {kind}")
    return StoragePointer(
        scheme=kind,
        namespace=namespace,
        key=key,
        content_type=content_type,
        size=len(data),
        hash=digest,
    )


class ObjectBackend:
    """Content-addressed object store; identical bytes share one key."""

    def __init__(self, client: ObjectClient, logger: structlog.stdlib.BoundLogger | None = None) -> None:
        self._client = client
        self._logger = logger or structlog.get_logger(__name__)

    async def exists(self, pointer: StoragePointer) -> bool:
        return await self._client.head(pointer.namespace, pointer.key)

    async def put(self, obj: PendingObject) -> StoragePointer:
        pointer = obj.pointer
        await self._client.put(pointer.namespace, pointer.key, obj.data, pointer.content_type)
        self._logger.debug("object_put", pointer=pointer.uri, size=pointer.size)
        return pointer

    async def get(self, pointer: StoragePointer) -> bytes:
        return await self._client.get(pointer.namespace, pointer.key)


class KvBackend:
    """Key-value store keyed by compound id; the content hash rides along as metadata."""

    def __init__(self, client: KvClient, logger: structlog.stdlib.BoundLogger | None = None) -> None:
        self._client = client
        self._logger = logger or structlog.get_logger(__name__)

    async def exists(self, pointer: StoragePointer) -> bool:
        metadata = await self._client.get_metadata(pointer.namespace, pointer.key)
        return metadata is not None and metadata.get("hash") == pointer.hash

    async def put(self, obj: PendingObject) -> StoragePointer:
        pointer = obj.pointer
        metadata = {"hash": pointer.hash, "content_type": pointer.content_type}
        await self._client.put(pointer.namespace, pointer.key, obj.data, metadata)
        self._logger.debug("kv_put", pointer=pointer.uri, size=pointer.size)
        return pointer

    async def get(self, pointer: StoragePointer) -> bytes:
        return await self._client.get(pointer.namespace, pointer.key)


class AssetBackend:
    """Static files under a local asset directory; no network involved."""

    def __init__(self, client: AssetClient, logger: structlog.stdlib.BoundLogger | None = None) -> None:
        self._client = client
        self._logger = logger or structlog.get_logger(__name__)

    async def exists(self, pointer: StoragePointer) -> bool:
        data = await self._client.read(pointer.path)
        return data is not None and content_hash(data) == pointer.hash

    async def put(self, obj: PendingObject) -> StoragePointer:
        await self._client.write(obj.pointer.path, obj.data)
        self._logger.debug("asset_written", pointer=obj.pointer.uri, size=obj.pointer.size)
        return obj.pointer

    async def get(self, pointer: StoragePointer) -> bytes:
        data = await self._client.read(pointer.path)
        if data is None:
            raise StorageError("asset not found", pointer=pointer.uri)
        return data


class InlineBackend:
    """Values embedded in the column itself; nothing is ever written elsewhere."""

    @staticmethod
    def embed(data: bytes, content_type: str) -> ObjectReference:
        try:
            content, encoded = data.decode("utf-8"), False
        except UnicodeDecodeError:
            content, encoded = base64.b64encode(data).decode("ascii"), True
        return ObjectReference(
            hash=content_hash(data),
            size=len(data),
            content_type=content_type,
            pointer=None,
            content=content,
            base64=encoded,
        )

    async def exists(self, pointer: StoragePointer) -> bool:
        return True

    async def put(self, obj: PendingObject) -> StoragePointer:
        raise StorageError("inline values are embedded at compile time", pointer=obj.pointer.uri)

    async def get(self, pointer: StoragePointer) -> bytes:
        raise StorageError("inline values are not stored externally", pointer=pointer.uri)


class StorageBackends:
    """The backend set for one run: the same backends serve every collection."""

    def __init__(
        self,
        objects: ObjectBackend,
        kv: KvBackend,
        assets: AssetBackend,
        inline: InlineBackend | None = None,
    ) -> None:
        self.objects = objects
        self.kv = kv
        self.assets = assets
        self.inline = inline or InlineBackend()

    def for_kind(self, kind: StorageKind) -> StorageBackend:
        if kind == StorageKind.R2:
            return self.objects
        if kind == StorageKind.KV:
            return self.kv
        if kind == StorageKind.ASSET:
            return self.assets
        if kind == StorageKind.INLINE:
            return self.inline
        raise ValueError(f"unsupported storage kind: {kind}")
