"""Filesystem clients for dump mode.

Objects are laid out so the pointer scheme can be read off the directory
tree: ``r2/<bucket>/<key>``, ``kv/<namespace>/<quoted key>`` with a
``.meta.json`` sidecar, and assets at their real relative path.
"""

import asyncio
import json
from pathlib import Path
from urllib.parse import quote

import structlog

from inkwell.errors import StorageError


def _read_optional(path: Path) -> bytes | None:
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None


def _write(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_bytes(data)
    tmp.replace(path)


def _safe_path(root: Path, *parts: str) -> Path:
    path = root.joinpath(*parts)
    if ".." in Path(*parts).parts:
        raise StorageError(f"path escapes storage root: {'/'.join(parts)}")
    return path


class LocalObjectClient:
    def __init__(self, root: Path) -> None:
        self._root = root / "r2"

    def _path(self, bucket: str, key: str) -> Path:
        return _safe_path(self._root, bucket, key)

    async def head(self, bucket: str, key: str) -> bool:
        return await asyncio.to_thread(self._path(bucket, key).is_file)

    async def put(self, bucket: str, key: str, data: bytes, content_type: str) -> None:
        try:
            await asyncio.to_thread(_write, self._path(bucket, key), data)
        except OSError as e:
            raise StorageError(f"cannot write object: {e}", pointer=f"r2://{bucket}/{key}") from e

    async def get(self, bucket: str, key: str) -> bytes:
        data = await asyncio.to_thread(_read_optional, self._path(bucket, key))
        if data is None:
            raise StorageError("object not found", pointer=f"r2://{bucket}/{key}")
        return data


class LocalKvClient:
    def __init__(self, root: Path, logger: structlog.stdlib.BoundLogger | None = None) -> None:
        self._root = root / "kv"
        self._logger = logger or structlog.get_logger(__name__)

    def _path(self, namespace: str, key: str) -> Path:
        return _safe_path(self._root, namespace, quote(key, safe=""))

    async def get_metadata(self, namespace: str, key: str) -> dict | None:
        path = self._path(namespace, key)
        raw = await asyncio.to_thread(_read_optional, path.with_name(path.name + ".meta.json"))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            self._logger.warning("kv_metadata_corrupt", namespace=namespace, key=key)
            return None

    async def put(self, namespace: str, key: str, data: bytes, metadata: dict) -> None:
        path = self._path(namespace, key)
        try:
            await asyncio.to_thread(_write, path, data)
            await asyncio.to_thread(
                _write, path.with_name(path.name + ".meta.json"), json.dumps(metadata).encode("utf-8")
            )
        except OSError as e:
            raise StorageError(f"cannot write kv value: {e}", pointer=f"kv://{namespace}/{key}") from e

    async def get(self, namespace: str, key: str) -> bytes:
        data = await asyncio.to_thread(_read_optional, self._path(namespace, key))
        if data is None:
            raise StorageError("kv value not found", pointer=f"kv://{namespace}/{key}")
        return data


class LocalAssetClient:
    def __init__(self, root: Path) -> None:
        self._root = root

    async def read(self, path: str) -> bytes | None:
        return await asyncio.to_thread(_read_optional, _safe_path(self._root, path))

    async def write(self, path: str, data: bytes) -> None:
        try:
            await asyncio.to_thread(_write, _safe_path(self._root, path), data)
        except OSError as e:
            raise StorageError(f"cannot write asset: {e}", pointer=f"asset://{path}") from e
