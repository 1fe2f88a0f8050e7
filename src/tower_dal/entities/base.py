"""Lazily materialized entities backed by remote documents.

An entity is either reference-only (fields load on first access) or built
from data a query already returned. Loaded state lives in one slot per
entity, so every accessor checks a single tag instead of per-field flags.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping, MutableSequence, Sequence
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Annotated, Any, ClassVar, Generic, Self, TypeVar, cast

from pydantic import BaseModel, BeforeValidator, ConfigDict, ValidationError

from tower_dal.errors import DalError, ErrorKind
from tower_dal.protocols import Transaction
from tower_dal.schema.datatypes import ArrayRemove, ArrayUnion, DocumentSnapshot, Reference

if TYPE_CHECKING:
    from tower_dal.client import Client

logger = logging.getLogger(__name__)

S = TypeVar("S")
E = TypeVar("E", bound="LazyEntity[Any]")


def _coerce_timestamp(value: Any) -> Any:
    # Exported documents carry timestamps as {"seconds": ..., "nanoseconds": ...}.
    if isinstance(value, Mapping) and "seconds" in value:
        seconds = value["seconds"]
        nanos = value.get("nanoseconds", 0)
        return datetime.fromtimestamp(seconds, tz=UTC) + timedelta(microseconds=nanos / 1000)
    return value


Timestamp = Annotated[datetime, BeforeValidator(_coerce_timestamp)]


class DocumentModel(BaseModel):
    """Wire schema of one document kind.

    Field names are snake_case with the store's camelCase names as aliases.
    Unknown fields are ignored.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


def contains_ref(entities: Iterable["LazyEntity[Any]"], target: "LazyEntity[Any]") -> bool:
    """Whether any entity in `entities` points at the same document as `target`."""
    return target.reference is not None and any(e.same_document(target) for e in entities)


def remove_ref(entities: MutableSequence["LazyEntity[Any]"], target: "LazyEntity[Any]") -> None:
    """Remove every entity pointing at the same document as `target`, in place."""
    entities[:] = [e for e in entities if not e.same_document(target)]


def array_change(reference: Reference, *, add: bool) -> ArrayUnion | ArrayRemove:
    return ArrayUnion(values=(reference,)) if add else ArrayRemove(values=(reference,))


class LazyEntity(ABC, Generic[S]):
    """Base class for domain objects backed by a `Reference`.

    Subclasses set `collection` and implement `_decode`, which turns raw
    document data into the entity's state object, wrapping every
    relationship as a reference-only entity.

    Instances are not shared per reference: several wrappers of the same
    document may coexist and cache independently.
    """

    collection: ClassVar[str]

    def __init__(self, client: "Client", reference: Reference | None = None) -> None:
        if reference is not None and reference.collection != self.collection:
            msg = f"{type(self).__name__} cannot wrap a document in '{reference.collection}'"
            raise DalError(msg, kind=ErrorKind.INVALID_INPUT)
        self._client = client
        self._reference = reference
        self._state: S | None = None
        self._lock: asyncio.Lock | None = None

    def __repr__(self) -> str:
        status = "loaded" if self._state is not None else "lazy"
        return f"{type(self).__name__}({self._reference}, {status})"

    @classmethod
    def ref(cls, doc_id: str) -> Reference:
        """Build a reference to a document of this kind."""
        return Reference(collection=cls.collection, id=doc_id)

    @classmethod
    def by_id(cls, client: "Client", doc_id: str) -> Self:
        """Reference-only entity for the document with id `doc_id`."""
        return cls(client, cls.ref(doc_id))

    @classmethod
    def from_data(
        cls,
        client: "Client",
        data: Mapping[str, Any],
        reference: Reference | None = None,
    ) -> Self:
        """Build an already-materialized entity from a fetched payload."""
        entity = cls(client, reference)
        entity._state = entity._decode_checked(data)
        return entity

    @classmethod
    def from_snapshot(cls, client: "Client", snapshot: DocumentSnapshot) -> Self:
        """Build an already-materialized entity from a query result."""
        if snapshot.data is None:
            msg = f"Document '{snapshot.reference}' does not exist"
            raise DalError(msg, kind=ErrorKind.NOT_FOUND)
        return cls.from_data(client, snapshot.data, snapshot.reference)

    @property
    def client(self) -> "Client":
        return self._client

    @property
    def reference(self) -> Reference | None:
        return self._reference

    @property
    def id(self) -> str:
        return self._require_reference().id

    @property
    def is_materialized(self) -> bool:
        return self._state is not None

    @property
    def state(self) -> S:
        """Loaded fields. Raises PRECONDITION if the entity is not materialized."""
        if self._state is None:
            msg = f"{self!r} is not materialized; await materialize() first"
            raise DalError(msg, kind=ErrorKind.PRECONDITION)
        return self._state

    def same_document(self, other: "LazyEntity[Any]") -> bool:
        """Whether both wrappers point at the same remote document."""
        return self._reference is not None and self._reference == other._reference

    @abstractmethod
    def _decode(self, data: Mapping[str, Any]) -> S:
        """Turn raw document data into this entity's state."""

    def _decode_checked(self, data: Mapping[str, Any]) -> S:
        try:
            return self._decode(data)
        except ValidationError as e:
            msg = f"Malformed {type(self).__name__} document '{self._reference}': {e}"
            raise DalError(msg, kind=ErrorKind.INVALID_INPUT, source=e) from e

    def _wrap(self, entity_cls: type[E], reference: Reference | None) -> E | None:
        """Reference-only wrapper sharing this entity's client, or None if absent."""
        if reference is None:
            return None
        return entity_cls(self._client, reference)

    def _wrap_all(self, entity_cls: type[E], references: Sequence[Reference]) -> list[E]:
        return [entity_cls(self._client, reference) for reference in references]

    def _require_reference(self) -> Reference:
        if self._reference is None:
            msg = f"{type(self).__name__} has no reference to load or write"
            raise DalError(msg, kind=ErrorKind.INVALID_INPUT)
        return self._reference

    def _is_stale(self) -> bool:
        return self._reference is not None and self._client.is_invalidated(self._reference)

    async def materialize(self, *, force: bool = False) -> None:
        """Load this entity's fields unless they are already loaded.

        Concurrent calls on one instance share a single fetch. If the
        document does not exist the entity is left unloaded, even if it
        held state before, and the call raises `DalError(kind=NOT_FOUND)`;
        a later call tries again.
        """
        refresh = force or (self._state is not None and self._is_stale())
        if self._state is not None and not refresh:
            return
        reference = self._require_reference()
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            # Another caller may have finished loading while we waited.
            if self._state is not None and not refresh:
                return
            snapshot = await self._client.store.get_document(reference)
            self._apply_snapshot(snapshot)
            # The mark is only cleared once fresh data is in place.
            self._client.consume_invalidation(reference)
            logger.debug("Materialized %s", reference)

    async def refresh_in_transaction(self, tx: Transaction) -> None:
        """Re-read this document through `tx` and reload its fields."""
        snapshot = await tx.get(self._require_reference())
        self._apply_snapshot(snapshot)

    def _apply_snapshot(self, snapshot: DocumentSnapshot) -> None:
        if snapshot.data is None:
            self._state = None
            msg = f"Document '{snapshot.reference}' does not exist"
            raise DalError(msg, kind=ErrorKind.NOT_FOUND)
        self._state = self._decode_checked(snapshot.data)

    async def _loaded(self) -> S:
        await self.materialize()
        return cast(S, self._state)

    async def _update_membership(
        self,
        attr: str,
        field: str,
        member: "LazyEntity[Any]",
        *,
        add: bool,
    ) -> bool:
        """Transactionally add or remove `member` in a reference-list field.

        Returns whether a write was committed. The in-memory list `attr` of
        the state is updated to match after the commit.
        """
        if contains_ref(getattr(await self._loaded(), attr), member) == add:
            return False
        reference = self._require_reference()
        target = member._require_reference()

        async def body(tx: Transaction) -> bool:
            await self.refresh_in_transaction(tx)
            if contains_ref(getattr(self._state, attr), member) == add:
                return False
            tx.update(reference, {field: array_change(target, add=add)})
            return True

        changed = await self._client.store.run_transaction(body)
        if changed:
            members = getattr(self._state, attr)
            if add:
                members.append(member)
            else:
                remove_ref(members, member)
        return changed

    async def _update_fields(self, changes: Mapping[str, Any]) -> None:
        """Write plain field values to this document in a transaction.

        The caller mirrors the new values into the loaded state once this
        returns.
        """
        reference = self._require_reference()

        async def body(tx: Transaction) -> None:
            tx.update(reference, changes)

        await self._client.store.run_transaction(body)
        logger.debug("Updated %s fields %s", reference, sorted(changes))
