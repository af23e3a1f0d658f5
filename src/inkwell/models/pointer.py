"""Storage pointers and their column serialization."""

from typing import Any

from pydantic import Field, field_validator

from inkwell.models.base import FrozenModel, ensure_hex_digest
from inkwell.models.enums import StorageKind


class ObjectReference(FrozenModel):
    """The JSON value stored in a content column.

    ``pointer`` is ``scheme://namespace/key`` for externally stored objects
    and ``None`` for inline values, which carry ``content`` instead.
    """

    hash: str
    size: int = Field(ge=0)
    content_type: str
    pointer: str | None = None
    content: str | None = None
    base64: bool | None = None

    @field_validator("hash")
    @classmethod
    def validate_hash(cls, value: str) -> str:
        return ensure_hex_digest(value)


class StoragePointer(FrozenModel):
    """Location of a stored object.

    For r2 the namespace is the bucket, for kv the namespace id, and for
    assets the asset directory.
    """

    scheme: StorageKind
    namespace: str
    key: str
    content_type: str
    size: int = Field(ge=0)
    hash: str

    @field_validator("hash")
    @classmethod
    def validate_hash(cls, value: str) -> str:
        return ensure_hex_digest(value)

    @property
    def uri(self) -> str:
        return f"{self.scheme.value}://{self.namespace}/{self.key}"

    @property
    def path(self) -> str:
        """Namespace and key joined; asset directories may themselves contain slashes."""
        return f"{self.namespace}/{self.key}"

    def to_reference(self) -> ObjectReference:
        return ObjectReference(
            hash=self.hash,
            size=self.size,
            content_type=self.content_type,
            pointer=self.uri,
        )

    @classmethod
    def parse(cls, reference: ObjectReference | dict[str, Any]) -> "StoragePointer":
        """Rebuild a pointer from its column serialization.

        Raises:
            ValueError: If the reference is inline or the URI is malformed.
        """
        if isinstance(reference, dict):
            reference = ObjectReference.model_validate(reference)
        if reference.pointer is None:
            raise ValueError("inline references have no pointer")
        scheme, sep, rest = reference.pointer.partition("://")
        namespace, slash, key = rest.partition("/")
        if not sep or not slash or not namespace or not key:
            raise ValueError(f"malformed pointer: {reference.pointer}")
        return cls(
            scheme=StorageKind(scheme),
            namespace=namespace,
            key=key,
            content_type=reference.content_type,
            size=reference.size,
            hash=reference.hash,
        )
