"""Data types for the DAL.

These types represent the values that flow between entities and stores:
- `Reference` for the identity of one remote document
- `DocumentSnapshot` for a document read, with its pagination key
- `ArrayUnion`, `ArrayRemove`, `Increment`, `ServerTimestamp` for
  server-side field transforms in writes
"""

from typing import Any, Self, TypeAlias

from pydantic import BaseModel, Field

# Raw field mapping of one document.
DocumentData: TypeAlias = dict[str, Any]


class Reference(BaseModel, frozen=True):
    """An opaque, comparable handle identifying one remote document."""

    collection: str = Field(min_length=1)
    """Collection path (e.g., "users" or "forums/abc/posts")."""

    id: str = Field(min_length=1)
    """Document identifier within the collection."""

    @classmethod
    def from_path(cls, path: str) -> Self:
        """Parse a slash-separated document path such as "users/abc"."""
        collection, sep, doc_id = path.strip("/").rpartition("/")
        if not sep:
            msg = f"Document path '{path}' has no collection segment"
            raise ValueError(msg)
        return cls(collection=collection, id=doc_id)

    @property
    def path(self) -> str:
        """Full document path."""
        return f"{self.collection}/{self.id}"

    def __str__(self) -> str:
        return self.path


class DocumentSnapshot(BaseModel, frozen=True):
    """The result of reading one document."""

    reference: Reference
    """The document that was read."""

    data: DocumentData | None = None
    """Field values, or None if the document does not exist."""

    key: Any = None
    """Opaque pagination key attached by the store to query results."""

    @property
    def exists(self) -> bool:
        """Whether the document existed at read time."""
        return self.data is not None


class ArrayUnion(BaseModel, frozen=True):
    """Append values to an array field, skipping ones already present."""

    values: tuple[Any, ...]


class ArrayRemove(BaseModel, frozen=True):
    """Remove every occurrence of the values from an array field."""

    values: tuple[Any, ...]


class Increment(BaseModel, frozen=True):
    """Add a number to a numeric field (missing fields count as zero)."""

    amount: int | float


class ServerTimestamp(BaseModel, frozen=True):
    """Set a field to the store's commit time."""


SERVER_TIMESTAMP = ServerTimestamp()
