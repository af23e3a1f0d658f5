"""Clients for remote storage services.

``S3ObjectClient`` speaks the S3 API through boto3 (R2 and MinIO included via
``endpoint_url``); ``HttpKvClient`` speaks the Cloudflare KV REST API through
httpx. Both raise ``StorageError`` for anything other than "not found".
"""

import asyncio
import json
from typing import Any
from urllib.parse import quote

import boto3
import httpx
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from inkwell.errors import StorageError

_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}

KV_API_BASE = "https://api.cloudflare.com/client/v4"


class S3ObjectClient:
    """S3-compatible object client; blocking SDK calls run in a worker thread."""

    def __init__(
        self,
        endpoint_url: str | None = None,
        region: str | None = None,
        client: Any | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        kwargs: dict = {}
        if region:
            kwargs["region_name"] = region
        if endpoint_url:
            kwargs["endpoint_url"] = endpoint_url
        self._s3 = client or boto3.client("s3", **kwargs)
        self._logger = logger or structlog.get_logger(__name__)

    async def head(self, bucket: str, key: str) -> bool:
        try:
            await asyncio.to_thread(self._s3.head_object, Bucket=bucket, Key=key)
            return True
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in _MISSING_CODES:
                return False
            raise StorageError(f"head failed: {e}", pointer=f"r2://{bucket}/{key}") from e
        except BotoCoreError as e:
            raise StorageError(f"head failed: {e}", pointer=f"r2://{bucket}/{key}") from e

    async def put(self, bucket: str, key: str, data: bytes, content_type: str) -> None:
        try:
            await asyncio.to_thread(
                self._s3.put_object,
                Bucket=bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"put failed: {e}", pointer=f"r2://{bucket}/{key}") from e
        self._logger.debug("s3_put", bucket=bucket, key=key, size=len(data))

    async def get(self, bucket: str, key: str) -> bytes:
        try:
            response = await asyncio.to_thread(self._s3.get_object, Bucket=bucket, Key=key)
            return await asyncio.to_thread(response["Body"].read)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"get failed: {e}", pointer=f"r2://{bucket}/{key}") from e


class HttpKvClient:
    """Cloudflare Workers KV over the REST API."""

    def __init__(
        self,
        account_id: str,
        api_token: str,
        client: httpx.AsyncClient | None = None,
        base_url: str = KV_API_BASE,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            headers={"Authorization": f"Bearer {api_token}"},
            timeout=30.0,
        )
        self._prefix = f"/accounts/{account_id}/storage/kv/namespaces"
        self._logger = logger or structlog.get_logger(__name__)

    def _url(self, namespace: str, endpoint: str, key: str) -> str:
        return f"{self._prefix}/{namespace}/{endpoint}/{quote(key, safe='')}"

    async def get_metadata(self, namespace: str, key: str) -> dict | None:
        try:
            response = await self._client.get(self._url(namespace, "metadata", key))
        except httpx.HTTPError as e:
            raise StorageError(f"metadata request failed: {e}", pointer=f"kv://{namespace}/{key}") from e
        if response.status_code == 404:
            return None
        if response.is_error:
            raise StorageError(
                f"metadata request returned {response.status_code}", pointer=f"kv://{namespace}/{key}"
            )
        return response.json().get("result")

    async def put(self, namespace: str, key: str, data: bytes, metadata: dict) -> None:
        try:
            response = await self._client.put(
                self._url(namespace, "values", key),
                files={"value": (None, data), "metadata": (None, json.dumps(metadata))},
            )
        except httpx.HTTPError as e:
            raise StorageError(f"put failed: {e}", pointer=f"kv://{namespace}/{key}") from e
        if response.is_error:
            raise StorageError(f"put returned {response.status_code}", pointer=f"kv://{namespace}/{key}")
        self._logger.debug("kv_remote_put", namespace=namespace, key=key, size=len(data))

    async def get(self, namespace: str, key: str) -> bytes:
        try:
            response = await self._client.get(self._url(namespace, "values", key))
        except httpx.HTTPError as e:
            raise StorageError(f"get failed: {e}", pointer=f"kv://{namespace}/{key}") from e
        if response.is_error:
            raise StorageError(f"get returned {response.status_code}", pointer=f"kv://{namespace}/{key}")
        return response.content

    async def aclose(self) -> None:
        await self._client.aclose()
