"""Collection configuration models and YAML loading."""

from pathlib import Path
from typing import Annotated, Any, Literal, Union

import yaml
from pydantic import Field, ValidationError, field_validator, model_validator

from inkwell.errors import ConfigError
from inkwell.models.base import FrozenModel
from inkwell.models.enums import DocumentSyntax, StorageKind


class _StorageConfigBase(FrozenModel):
    type: str

    @property
    def kind(self) -> StorageKind:
        return StorageKind(self.type)


class R2StorageConfig(_StorageConfigBase):
    """Content-addressed object store (S3 compatible)."""

    type: Literal["r2"] = "r2"
    bucket: str
    prefix: str | None = None


class KvStorageConfig(_StorageConfigBase):
    """Key-value namespace keyed by the owning row's compound id."""

    type: Literal["kv"] = "kv"
    namespace: str
    prefix: str | None = None


class InlineStorageConfig(_StorageConfigBase):
    """Value embedded directly in the table column."""

    type: Literal["inline"] = "inline"


class AssetStorageConfig(_StorageConfigBase):
    """Static file written under a local asset directory."""

    type: Literal["asset"] = "asset"
    dir: str


StorageConfig = Annotated[
    Union[R2StorageConfig, KvStorageConfig, InlineStorageConfig, AssetStorageConfig],
    Field(discriminator="type"),
]


class SyntaxConfig(FrozenModel):
    type: DocumentSyntax
    column: str | None = None

    @model_validator(mode="after")
    def _check_column(self) -> "SyntaxConfig":
        if self.type == DocumentSyntax.MARKDOWN and not self.column:
            raise ValueError("markdown syntax requires a body column")
        return self


class CollectionConfig(FrozenModel):
    """One collection of documents sharing a schema.

    ``fields`` holds the raw field map exactly as written in the config file;
    it is compiled into a ``CollectionSchema`` by the schema compiler.
    """

    name: str
    glob: str
    table: str
    database_id: str
    preview_database_id: str | None = None
    syntax: SyntaxConfig
    fields: dict[str, Any] = Field(alias="schema")
    root_dir: Path = Field(default_factory=Path.cwd)

    @field_validator("glob", "table", "name")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value

    def database_for(self, preview: bool) -> str:
        if preview and self.preview_database_id:
            return self.preview_database_id
        return self.database_id


def load_config(path: Path) -> list[CollectionConfig]:
    """Load collections from a YAML config file.

    A file may hold a single collection (a mapping with a ``glob`` key) or a
    mapping of collection name to collection. Globs are resolved relative to
    the directory containing the config file.

    Args:
        path: Path to the YAML config file.

    Returns:
        The collections declared in the file, in file order.

    Raises:
        ConfigError: If the file cannot be read, is not valid YAML, or does
            not describe valid collections.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"cannot read config {path}: {e}") from e

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict) or not data:
        raise ConfigError(f"config {path} must be a non-empty mapping")

    entries: list[tuple[str | None, Any]]
    if "glob" in data:
        entries = [(None, data)]
    else:
        entries = list(data.items())

    root_dir = path.resolve().parent
    collections = []
    for key, entry in entries:
        if not isinstance(entry, dict):
            raise ConfigError(f"collection {key!r} in {path} must be a mapping")
        payload = dict(entry)
        payload.setdefault("name", key if key is not None else payload.get("table", path.stem))
        payload["root_dir"] = root_dir
        try:
            collections.append(CollectionConfig.model_validate(payload))
        except ValidationError as e:
            raise ConfigError(f"invalid collection {payload['name']!r} in {path}: {e}") from e
    return collections
