"""Core protocols for document stores and cursors."""

from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Protocol, Self, TypeVar, runtime_checkable

from tower_dal.schema.contexts import PageContext
from tower_dal.schema.datatypes import DocumentSnapshot, Reference
from tower_dal.schema.params import Query

T = TypeVar("T")
T_co = TypeVar("T_co", covariant=True)
Cred_contra = TypeVar("Cred_contra", contravariant=True)
Params_contra = TypeVar("Params_contra", contravariant=True)


@runtime_checkable
class Transaction(Protocol):
    """Read/write handle scoped to one store transaction.

    Reads are awaited immediately; writes are buffered and committed
    atomically when the transaction body returns.
    """

    async def get(self, reference: Reference) -> DocumentSnapshot:
        """Read a document as part of the transaction."""
        ...

    def set(self, reference: Reference, data: Mapping[str, Any]) -> None:
        """Create or overwrite a document."""
        ...

    def update(self, reference: Reference, changes: Mapping[str, Any]) -> None:
        """Update fields of an existing document.

        Values may be field transforms (`ArrayUnion`, `Increment`, ...).
        """
        ...

    def delete(self, reference: Reference) -> None:
        """Delete a document."""
        ...


@runtime_checkable
class DocumentStore(Protocol):
    """Protocol for the remote document store consumed by entities and cursors."""

    async def get_document(self, reference: Reference) -> DocumentSnapshot:
        """Fetch one document. Missing documents yield a snapshot without data."""
        ...

    async def query_page(
        self,
        query: Query,
        ctx: PageContext,
        limit: int,
    ) -> list[DocumentSnapshot]:
        """Return up to `limit` matching documents after `ctx.start_after`.

        Each snapshot carries the pagination key to resume after it. Fewer
        than `limit` results means no further matches exist at call time.
        """
        ...

    async def run_transaction(self, body: Callable[[Transaction], Awaitable[T]]) -> T:
        """Run `body` in a transaction, retrying on conflicting writes."""
        ...

    def new_reference(self, collection: str) -> Reference:
        """Allocate a reference for a document that does not exist yet."""
        ...

    async def disconnect(self) -> None:
        """Release resources and close connections."""
        ...


@runtime_checkable
class Cursor(Protocol[T_co]):
    """Single-consumer, lazily-advancing read stream.

    `None` is the exhaustion sentinel. Calls on one instance must not
    overlap.
    """

    async def peek_next(self) -> T_co | None:
        """Return the next item without consuming it."""
        ...

    async def poll_next(self) -> T_co | None:
        """Return the next item and consume it."""
        ...

    async def has_next(self) -> bool:
        """Whether another item is available."""
        ...

    def reset(self) -> None:
        """Rewind to the first buffered item."""
        ...

    def stored_results(self) -> list[T_co]:
        """Items consumed so far."""
        ...


@runtime_checkable
class Provider(Protocol[Cred_contra, Params_contra]):
    """Protocol for store lifecycle management."""

    @classmethod
    async def connect(cls, credentials: Cred_contra, params: Params_contra) -> Self:
        """Establish connection to the external service."""
        ...

    async def disconnect(self) -> None:
        """Release resources and close connections."""
        ...
