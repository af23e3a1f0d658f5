"""inkwell CLI.

Compiles collections of Markdown/YAML documents into SQL tables and stored
objects, either locally (dump) or against remote services (batch), and prints
the generated schema code.
"""

import asyncio
import sys
from collections.abc import Awaitable, Callable
from enum import Enum
from pathlib import Path
from typing import Optional

import structlog
import typer

from inkwell.errors import ConfigError, SchemaError
from inkwell.models.config import CollectionConfig, load_config
from inkwell.models.outcome import BatchResult, VerificationResult
from inkwell.services.codegen.sql import generate_ddl
from inkwell.services.codegen.typescript import generate_typescript
from inkwell.services.codegen.valibot import generate_valibot
from inkwell.services.factory import create_batch_pipeline, create_dump_pipeline
from inkwell.services.pipeline import DEFAULT_CONCURRENCY, Pipeline
from inkwell.services.schema_compiler import compile_collection


class SchemaFormat(str, Enum):
    """Available generated schema formats."""

    SQL = "sql"
    TYPESCRIPT = "typescript"
    VALIBOT = "valibot"


structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    logger_factory=lambda name: structlog.PrintLogger(file=sys.stderr),
    wrapper_class=structlog.BoundLogger,
    context_class=dict,
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)

app = typer.Typer(
    name="inkwell",
    help="""Compile Markdown collections into SQL tables, stored objects and typed schemas.

Examples:

  # Build a local database and storage directory
  uv run inkwell dump content.yaml --db out/content.db --storage out/storage

  # Publish to remote storage and database
  uv run inkwell batch content.yaml --preview

  # Print the generated TypeScript types
  uv run inkwell show-schema content.yaml typescript

  # Re-hash every stored object
  uv run inkwell verify content.yaml --db out/content.db --storage out/storage""",
    rich_markup_mode="markdown",
)


def _load_collections(config_path: Path) -> list[CollectionConfig]:
    try:
        return load_config(config_path)
    except ConfigError as e:
        logger.error("config_invalid", config=str(config_path), error=str(e))
        raise typer.Exit(1)


def _report(collection: str, result: BatchResult) -> None:
    for error in result.errors:
        logger.warning("document_error", collection=collection, error=error)
    typer.echo(
        f"{collection}: {result.written} written, {result.unchanged} unchanged, "
        f"{result.failed} failed, {result.pruned} pruned"
    )


def _run_collections(
    collections: list[CollectionConfig],
    build: Callable[[CollectionConfig], Pipeline],
    before_run: Callable[[Pipeline], Awaitable[None]] | None = None,
) -> int:
    """Run a pipeline per collection, in order; return the combined exit code."""

    async def run_one(collection: CollectionConfig) -> BatchResult:
        async with build(collection) as pipeline:
            if before_run is not None:
                await before_run(pipeline)
            return await pipeline.run()

    exit_code = 0
    for collection in collections:
        try:
            result = asyncio.run(run_one(collection))
        except (SchemaError, ConfigError) as e:
            logger.error("collection_aborted", collection=collection.name, error=str(e))
            exit_code = 1
            continue
        _report(collection.name, result)
        exit_code = max(exit_code, result.exit_code)
    return exit_code


@app.command()
def dump(
    config: Path = typer.Argument(
        ...,
        help="Collection config file",
    ),
    db: Path = typer.Option(
        ...,
        "--db",
        help="SQLite database file to write",
    ),
    storage: Path = typer.Option(
        ...,
        "--storage",
        help="Directory mirroring the object, kv and asset stores",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        help="Re-upload and rewrite documents even when unchanged",
    ),
    reset: bool = typer.Option(
        False,
        "--reset",
        help="Drop the collection tables before writing",
    ),
    fetch_links: bool = typer.Option(
        False,
        "--fetch-links",
        help="Fetch page titles and descriptions for link cards",
    ),
    concurrency: int = typer.Option(
        DEFAULT_CONCURRENCY,
        "--concurrency",
        "-j",
        help="Number of documents processed at once",
    ),
) -> None:
    """Compile collections into a local database and storage directory."""
    collections = _load_collections(config)

    def build(collection: CollectionConfig) -> Pipeline:
        return create_dump_pipeline(
            collection,
            db_path=db,
            storage_dir=storage,
            force=force,
            fetch_links=fetch_links,
            concurrency=concurrency,
        )

    async def reset_tables(pipeline: Pipeline) -> None:
        await pipeline.reset()

    exit_code = _run_collections(collections, build, reset_tables if reset else None)
    raise typer.Exit(exit_code)


@app.command()
def batch(
    config: Path = typer.Argument(
        ...,
        help="Collection config file",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        help="Re-upload and rewrite documents even when unchanged",
    ),
    preview: bool = typer.Option(
        False,
        "--preview",
        help="Write to each collection's preview database",
    ),
    database_url: Optional[str] = typer.Option(
        None,
        "--database-url",
        envvar="INKWELL_DATABASE_URL",
        help="SQLAlchemy async URL; {database_id} is replaced per collection",
    ),
    s3_endpoint: Optional[str] = typer.Option(
        None,
        "--s3-endpoint",
        envvar="INKWELL_S3_ENDPOINT",
        help="S3-compatible endpoint URL (credentials come from AWS_ACCESS_KEY_ID / AWS_SECRET_ACCESS_KEY)",
    ),
    kv_account_id: Optional[str] = typer.Option(
        None,
        "--kv-account-id",
        envvar="INKWELL_KV_ACCOUNT_ID",
        help="Account owning the KV namespaces",
    ),
    kv_api_token: Optional[str] = typer.Option(
        None,
        "--kv-api-token",
        envvar="INKWELL_KV_API_TOKEN",
        help="API token for the KV REST API",
    ),
    concurrency: int = typer.Option(
        DEFAULT_CONCURRENCY,
        "--concurrency",
        "-j",
        help="Number of documents processed at once",
    ),
) -> None:
    """Compile collections and publish them to remote storage and database."""
    if not database_url:
        logger.error("database_url_missing")
        typer.echo("No database URL. Pass --database-url or set INKWELL_DATABASE_URL.")
        raise typer.Exit(1)

    collections = _load_collections(config)

    def build(collection: CollectionConfig) -> Pipeline:
        return create_batch_pipeline(
            collection,
            database_url=database_url,
            preview=preview,
            force=force,
            s3_endpoint=s3_endpoint,
            kv_account_id=kv_account_id,
            kv_api_token=kv_api_token,
            concurrency=concurrency,
        )

    exit_code = _run_collections(collections, build)
    raise typer.Exit(exit_code)


@app.command("show-schema")
def show_schema(
    config: Path = typer.Argument(
        ...,
        help="Collection config file",
    ),
    schema_format: SchemaFormat = typer.Argument(
        ...,
        help="Output format",
    ),
    out: Optional[Path] = typer.Option(
        None,
        "--out",
        "-o",
        help="Directory to write generated files to (default: print to stdout)",
    ),
) -> None:
    """Print or write the code generated from each collection's schema."""
    collections = _load_collections(config)

    files: dict[str, str] = {}
    for collection in collections:
        try:
            schema = compile_collection(collection)
        except SchemaError as e:
            logger.error("schema_invalid", collection=collection.name, error=str(e))
            raise typer.Exit(1)

        if schema_format == SchemaFormat.SQL:
            files[f"{schema.name}.sql"] = generate_ddl(schema)
        elif schema_format == SchemaFormat.TYPESCRIPT:
            files.update({f"{name}.ts": source for name, source in generate_typescript(schema).items()})
        else:
            files.update({f"{name}.ts": source for name, source in generate_valibot(schema).items()})

    if out is None:
        for name, source in files.items():
            if len(files) > 1:
                typer.echo(f"// {name}")
            typer.echo(source)
        return

    out.mkdir(parents=True, exist_ok=True)
    for name, source in files.items():
        (out / name).write_text(source, encoding="utf-8")
        logger.info("schema_file_written", path=str(out / name))
    typer.echo(f"Wrote {len(files)} files to {out}")


@app.command()
def verify(
    config: Path = typer.Argument(
        ...,
        help="Collection config file",
    ),
    db: Path = typer.Option(
        ...,
        "--db",
        help="SQLite database file written by dump",
    ),
    storage: Path = typer.Option(
        ...,
        "--storage",
        help="Storage directory written by dump",
    ),
) -> None:
    """Re-read every stored object and check it against its recorded hash."""
    if not db.exists():
        logger.error("database_not_found", db=str(db))
        raise typer.Exit(1)

    collections = _load_collections(config)

    exit_code = 0
    for collection in collections:

        async def run_verify() -> VerificationResult:
            async with create_dump_pipeline(collection, db_path=db, storage_dir=storage) as pipeline:
                return await pipeline.verify()

        try:
            result = asyncio.run(run_verify())
        except SchemaError as e:
            logger.error("schema_invalid", collection=collection.name, error=str(e))
            exit_code = 1
            continue

        for failure in result.failures:
            typer.echo(f"FAILED {failure}")
        typer.echo(f"{collection.name}: {result.checked} objects checked, {len(result.failures)} failed")
        exit_code = max(exit_code, result.exit_code)
    raise typer.Exit(exit_code)


@app.command()
def version() -> None:
    """Show version information."""
    from inkwell import __version__

    typer.echo(f"inkwell {__version__}")
