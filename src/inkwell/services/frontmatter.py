"""Frontmatter splitting and scalar validation."""

from datetime import date, datetime
from pathlib import Path
from typing import Any

import yaml
from frontmatter import YAMLHandler

from inkwell.errors import ParseError, ValidationError
from inkwell.models.enums import DocumentSyntax, FieldKind
from inkwell.models.schema import FieldSpec


def split_document(text: str, syntax: DocumentSyntax, path: Path) -> tuple[dict[str, Any], str | None]:
    """Split a source file into its frontmatter mapping and Markdown body.

    Args:
        text: Full file contents.
        syntax: ``markdown`` for frontmatter plus body, ``yaml`` for a
            whole-file mapping.
        path: Source path, for error context.

    Returns:
        Tuple of (frontmatter mapping, body). The body is None for YAML files.

    Raises:
        ParseError: If the frontmatter block is missing, unclosed, not valid
            YAML, or not a mapping.
    """
    text = text.lstrip("\ufeff")
    if syntax == DocumentSyntax.YAML:
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ParseError(f"invalid YAML: {e}", path=path) from e
        if not isinstance(data, dict):
            raise ParseError("document must be a YAML mapping", path=path)
        return data, None

    if not text.startswith("---"):
        raise ParseError("missing frontmatter block", path=path)
    handler = YAMLHandler()
    try:
        raw, body = handler.split(text)
    except ValueError:
        raise ParseError("unclosed frontmatter block", path=path) from None
    try:
        metadata = handler.load(raw)
    except yaml.YAMLError as e:
        raise ParseError(f"invalid frontmatter: {e}", path=path) from e

    if metadata is None:
        metadata = {}
    if not isinstance(metadata, dict):
        raise ParseError("frontmatter must be a mapping", path=path)
    return metadata, body.lstrip("\r\n")


def coerce_scalar(spec: FieldSpec, value: Any, path: Path | None = None) -> Any:
    """Check a scalar frontmatter value against its field kind.

    Dates and datetimes are normalized to ISO strings, whether YAML already
    parsed them or they were written as quoted strings.

    Raises:
        ValidationError: If the value does not match the kind.
    """
    kind = spec.kind
    if kind in (FieldKind.ID, FieldKind.STRING):
        if isinstance(value, str):
            return value
    elif kind == FieldKind.BOOLEAN:
        if isinstance(value, bool):
            return value
    elif kind == FieldKind.INTEGER:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    elif kind == FieldKind.REAL:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    elif kind == FieldKind.DATE:
        if isinstance(value, date) and not isinstance(value, datetime):
            return value.isoformat()
        if isinstance(value, str):
            try:
                return date.fromisoformat(value).isoformat()
            except ValueError:
                pass
    elif kind == FieldKind.DATETIME:
        if isinstance(value, datetime):
            return value.isoformat()
        if isinstance(value, str):
            try:
                return datetime.fromisoformat(value).isoformat()
            except ValueError:
                pass
    raise ValidationError(
        f"field {spec.name!r} expects {kind.value}, got {type(value).__name__} {value!r}",
        path=path,
    )
