import re
from typing import Any

from pydantic import BaseModel, ConfigDict

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class FrozenModel(BaseModel):
    """Immutable model shared by the schema, pointer and outcome types."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)


def ensure_hex_digest(value: Any) -> str:
    if not isinstance(value, str):
        raise TypeError("expected string hex digest")
    digest = value.strip().lower()
    if not digest:
        raise ValueError("hex digest cannot be empty")
    if len(digest) % 2 != 0:
        raise ValueError("hex digest length must be even")
    if any(ch not in "0123456789abcdef" for ch in digest):
        raise ValueError("hex digest must contain only hexadecimal characters")
    return digest


def is_identifier(value: str) -> bool:
    """Whether ``value`` can be used unquoted as a SQL table or column name."""
    return bool(_IDENTIFIER.match(value))
