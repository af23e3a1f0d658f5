"""Factory functions for creating and wiring pipelines.

Provides a dump factory that writes to a local SQLite file and storage
directory, a batch factory that talks to remote services, and a test factory
that uses an in-memory database for fast, isolated testing.
"""

from pathlib import Path

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from inkwell.errors import ConfigError
from inkwell.models.config import CollectionConfig
from inkwell.models.schema import CollectionSchema
from inkwell.services.document_compiler import DocumentCompiler
from inkwell.services.file_walker import FileWalker
from inkwell.services.link_metadata import HttpLinkMetadataFetcher
from inkwell.services.markdown import LinkMetadataFetcher, MarkdownCompiler
from inkwell.services.object_loader import ObjectLoader
from inkwell.services.pipeline import DEFAULT_CONCURRENCY, DEFAULT_TIMEOUT, Pipeline
from inkwell.services.schema_compiler import compile_collection
from inkwell.services.storage.backends import AssetBackend, KvBackend, ObjectBackend, StorageBackends
from inkwell.services.storage.local import LocalAssetClient, LocalKvClient, LocalObjectClient
from inkwell.services.storage.remote import HttpKvClient, S3ObjectClient
from inkwell.services.storage.uploader import ObjectUploader
from inkwell.services.table_sink import SqlTableSink, create_async_engine_from_path


def create_local_backends(
    storage_dir: Path,
    logger: structlog.stdlib.BoundLogger | None = None,
) -> StorageBackends:
    """Create backends that mirror every storage scheme under one directory."""
    logger = logger or structlog.get_logger(__name__)
    return StorageBackends(
        objects=ObjectBackend(LocalObjectClient(storage_dir), logger=logger),
        kv=KvBackend(LocalKvClient(storage_dir, logger=logger), logger=logger),
        assets=AssetBackend(LocalAssetClient(storage_dir / "asset"), logger=logger),
    )


def create_pipeline(
    config: CollectionConfig,
    engine: AsyncEngine,
    backends: StorageBackends,
    force: bool = False,
    concurrency: int = DEFAULT_CONCURRENCY,
    timeout: float | None = DEFAULT_TIMEOUT,
    link_fetcher: LinkMetadataFetcher | None = None,
    schema: CollectionSchema | None = None,
    logger: structlog.stdlib.BoundLogger | None = None,
) -> Pipeline:
    """Wire a Pipeline for one collection from already-built infrastructure.

    Args:
        config: The collection to process.
        engine: Engine of the table store.
        backends: Storage backends for every scheme.
        force: Re-upload and rewrite even when content is unchanged.
        concurrency: Number of documents processed at once.
        timeout: Seconds one document may take before it is failed; ``None``
            disables the limit.
        link_fetcher: Source of link card metadata; cards keep their URL as
            title when omitted.
        schema: Precompiled schema; compiled from ``config`` when omitted.

    Returns:
        Configured Pipeline ready for use.

    Raises:
        SchemaError: If the collection's field map does not compile.
    """
    logger = logger or structlog.get_logger(__name__)
    schema = schema or compile_collection(config, logger=logger)

    compiler = DocumentCompiler(
        schema=schema,
        markdown=MarkdownCompiler(link_fetcher=link_fetcher, logger=logger),
        loader=ObjectLoader(root_dir=config.root_dir, logger=logger),
        logger=logger,
    )
    file_walker = FileWalker(include_patterns=[config.glob], logger=logger)

    return Pipeline(
        schema=schema,
        root_dir=config.root_dir,
        compiler=compiler,
        sink=SqlTableSink(engine=engine, logger=logger),
        backends=backends,
        uploader=ObjectUploader(backends, force=force, logger=logger),
        file_walker=file_walker,
        concurrency=concurrency,
        timeout=timeout,
        force=force,
        logger=logger,
    )


def create_dump_pipeline(
    config: CollectionConfig,
    db_path: Path,
    storage_dir: Path,
    force: bool = False,
    fetch_links: bool = False,
    concurrency: int = DEFAULT_CONCURRENCY,
    timeout: float | None = DEFAULT_TIMEOUT,
) -> Pipeline:
    """Create a Pipeline writing to a local SQLite file and storage directory.

    Args:
        config: The collection to process.
        db_path: SQLite database file, created if missing.
        storage_dir: Directory mirroring the object, kv and asset stores.
        force: Re-upload and rewrite even when content is unchanged.
        fetch_links: Fetch page metadata for link cards over HTTP.
        concurrency: Number of documents processed at once.
        timeout: Per-document time limit in seconds.

    Returns:
        Configured Pipeline ready for use.
    """
    logger = structlog.get_logger(__name__)

    db_path.parent.mkdir(parents=True, exist_ok=True)
    storage_dir.mkdir(parents=True, exist_ok=True)

    link_fetcher = HttpLinkMetadataFetcher(logger=logger) if fetch_links else None
    pipeline = create_pipeline(
        config=config,
        engine=create_async_engine_from_path(str(db_path)),
        backends=create_local_backends(storage_dir, logger=logger),
        force=force,
        concurrency=concurrency,
        timeout=timeout,
        link_fetcher=link_fetcher,
        logger=logger,
    )
    if link_fetcher is not None:
        pipeline.add_closer(link_fetcher.aclose)
    return pipeline


def create_batch_pipeline(
    config: CollectionConfig,
    database_url: str,
    preview: bool = False,
    force: bool = False,
    s3_endpoint: str | None = None,
    kv_account_id: str | None = None,
    kv_api_token: str | None = None,
    concurrency: int = DEFAULT_CONCURRENCY,
    timeout: float | None = DEFAULT_TIMEOUT,
) -> Pipeline:
    """Create a Pipeline writing to remote storage and a remote table store.

    ``database_url`` may contain a ``{database_id}`` placeholder, filled with
    the collection's production or preview database id. Assets are written
    beneath the config file's directory.

    Args:
        config: The collection to process.
        database_url: SQLAlchemy async database URL.
        preview: Use the collection's preview database.
        force: Re-upload and rewrite even when content is unchanged.
        s3_endpoint: S3-compatible endpoint, e.g. an R2 account endpoint.
        kv_account_id: Account owning the KV namespaces.
        kv_api_token: API token for the KV REST API.
        concurrency: Number of documents processed at once.
        timeout: Per-document time limit in seconds.

    Returns:
        Configured Pipeline ready for use.

    Raises:
        ConfigError: If KV credentials are missing.
    """
    logger = structlog.get_logger(__name__)

    if not kv_account_id or not kv_api_token:
        raise ConfigError("batch mode requires a KV account id and API token")

    url = database_url.format(database_id=config.database_for(preview))
    kv_client = HttpKvClient(account_id=kv_account_id, api_token=kv_api_token, logger=logger)
    link_fetcher = HttpLinkMetadataFetcher(logger=logger)
    backends = StorageBackends(
        objects=ObjectBackend(S3ObjectClient(endpoint_url=s3_endpoint, logger=logger), logger=logger),
        kv=KvBackend(kv_client, logger=logger),
        assets=AssetBackend(LocalAssetClient(config.root_dir), logger=logger),
    )

    pipeline = create_pipeline(
        config=config,
        engine=create_async_engine(url),
        backends=backends,
        force=force,
        concurrency=concurrency,
        timeout=timeout,
        link_fetcher=link_fetcher,
        logger=logger,
    )
    pipeline.add_closer(kv_client.aclose)
    pipeline.add_closer(link_fetcher.aclose)
    return pipeline


def create_test_pipeline(
    config: CollectionConfig,
    storage_dir: Path,
    force: bool = False,
    link_fetcher: LinkMetadataFetcher | None = None,
    backends: StorageBackends | None = None,
    timeout: float | None = DEFAULT_TIMEOUT,
) -> Pipeline:
    """Create a Pipeline with an in-memory database for testing.

    Each call creates independent storage, so tests don't interfere.

    Args:
        config: The collection to process.
        storage_dir: Directory for the local storage backends.
        force: Re-upload and rewrite even when content is unchanged.
        link_fetcher: Optional fake link metadata source.
        backends: Backends to use instead of local ones under ``storage_dir``.
        timeout: Per-document time limit in seconds.

    Returns:
        Configured Pipeline with in-memory table storage.
    """
    logger = structlog.get_logger(__name__)

    return create_pipeline(
        config=config,
        engine=create_async_engine_from_path(":memory:"),
        backends=backends or create_local_backends(storage_dir, logger=logger),
        force=force,
        timeout=timeout,
        link_fetcher=link_fetcher,
        logger=logger,
    )
