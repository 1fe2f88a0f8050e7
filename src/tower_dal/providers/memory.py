"""In-memory document store.

Implements the full `DocumentStore` contract (snapshot queries with
marker-based pagination, optimistic transactions, field transforms) inside
the process. Used for local development and as the backing store in tests.
"""

import asyncio
import copy
import functools
import logging
import uuid
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, ClassVar, Self, TypeVar

from pydantic import BaseModel, Field

from tower_dal.errors import DalError, ErrorKind
from tower_dal.protocols import Transaction
from tower_dal.schema.contexts import PageContext
from tower_dal.schema.datatypes import (
    ArrayRemove,
    ArrayUnion,
    DocumentData,
    DocumentSnapshot,
    Increment,
    Reference,
    ServerTimestamp,
)
from tower_dal.schema.params import Direction, Filter, FilterOp, Ordering, Query

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MISSING = object()


class MemoryParams(BaseModel, frozen=True):
    """Parameters for the in-memory store."""

    max_attempts: int = Field(default=5, ge=1)
    """Maximum attempts for a transaction that keeps hitting conflicts."""


@dataclass
class StoreStats:
    """Operation counters, mainly for asserting network behaviour in tests."""

    gets: int = 0
    queries: int = 0
    transactions: int = 0
    commits: int = 0
    writes: int = 0


# Firestore's cross-type ordering: null < bool < number < timestamp < string
# < bytes < reference < everything else.
def _type_rank(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, bool):
        return 1
    if isinstance(value, int | float):
        return 2
    if isinstance(value, datetime):
        return 3
    if isinstance(value, str):
        return 4
    if isinstance(value, bytes):
        return 5
    if isinstance(value, Reference):
        return 6
    return 7


def _compare_values(a: Any, b: Any) -> int:
    rank_a, rank_b = _type_rank(a), _type_rank(b)
    if rank_a != rank_b:
        return -1 if rank_a < rank_b else 1
    if isinstance(a, Reference):
        a, b = a.path, b.path
    if a == b:
        return 0
    try:
        return -1 if a < b else 1
    except TypeError:
        return -1 if repr(a) < repr(b) else 1


def _resolve(data: Mapping[str, Any], path: str) -> Any:
    """Look up a dotted field path, returning `_MISSING` if absent."""
    current: Any = data
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _matches(data: Mapping[str, Any], condition: Filter) -> bool:
    value = _resolve(data, condition.field)
    if value is _MISSING:
        return False
    target = condition.value
    match condition.op:
        case FilterOp.EQUAL:
            return _compare_values(value, target) == 0
        case FilterOp.NOT_EQUAL:
            return _compare_values(value, target) != 0
        case FilterOp.LESS_THAN:
            return _type_rank(value) == _type_rank(target) and _compare_values(value, target) < 0
        case FilterOp.LESS_THAN_OR_EQUAL:
            return _type_rank(value) == _type_rank(target) and _compare_values(value, target) <= 0
        case FilterOp.GREATER_THAN:
            return _type_rank(value) == _type_rank(target) and _compare_values(value, target) > 0
        case FilterOp.GREATER_THAN_OR_EQUAL:
            return _type_rank(value) == _type_rank(target) and _compare_values(value, target) >= 0
        case FilterOp.IN:
            return any(_compare_values(value, t) == 0 for t in target)
        case FilterOp.NOT_IN:
            return all(_compare_values(value, t) != 0 for t in target)
        case FilterOp.ARRAY_CONTAINS:
            return isinstance(value, list) and any(_compare_values(v, target) == 0 for v in value)
        case FilterOp.ARRAY_CONTAINS_ANY:
            return isinstance(value, list) and any(
                _compare_values(v, t) == 0 for v in value for t in target
            )


def _compare_keys(
    a: tuple[tuple[Any, ...], str],
    b: tuple[tuple[Any, ...], str],
    order_by: tuple[Ordering, ...],
) -> int:
    for clause, left, right in zip(order_by, a[0], b[0], strict=True):
        result = _compare_values(left, right)
        if result:
            return -result if clause.direction is Direction.DESCENDING else result
    if a[1] == b[1]:
        return 0
    return -1 if a[1] < b[1] else 1


def _contains(values: list[Any], item: Any) -> bool:
    return any(_compare_values(v, item) == 0 for v in values)


def _apply_transform(current: Any, value: Any) -> Any:
    match value:
        case ArrayUnion(values=values):
            result = list(current) if isinstance(current, list) else []
            for item in values:
                if not _contains(result, item):
                    result.append(copy.deepcopy(item))
            return result
        case ArrayRemove(values=values):
            if not isinstance(current, list):
                return []
            return [item for item in current if not _contains(list(values), item)]
        case Increment(amount=amount):
            base = current if isinstance(current, int | float) and not isinstance(current, bool) else 0
            return base + amount
        case ServerTimestamp():
            return datetime.now(UTC)
        case Mapping():
            return {k: _apply_transform(_MISSING, v) for k, v in value.items()}
        case _:
            return copy.deepcopy(value)


def _set_path(data: dict[str, Any], path: str, value: Any) -> None:
    *parents, leaf = path.split(".")
    current = data
    for part in parents:
        child = current.get(part)
        if not isinstance(child, dict):
            child = {}
            current[part] = child
        current = child
    current[leaf] = _apply_transform(current.get(leaf, _MISSING), value)


class MemoryTransaction:
    """Transaction handle for `MemoryStore`."""

    __slots__: ClassVar[tuple[str, str, str]] = ("_reads", "_store", "_writes")

    _store: "MemoryStore"
    _reads: dict[Reference, int]
    _writes: list[tuple[str, Reference, Mapping[str, Any] | None]]

    def __init__(self, store: "MemoryStore") -> None:
        self._store = store
        self._reads = {}
        self._writes = []

    async def get(self, reference: Reference) -> DocumentSnapshot:
        """Read a document and remember its version for the commit check."""
        if self._writes:
            msg = "Transaction reads must happen before any writes"
            raise DalError(msg, kind=ErrorKind.INVALID_INPUT)
        await asyncio.sleep(0)
        self._reads[reference] = self._store._versions.get(reference, 0)
        return self._store._snapshot(reference)

    def set(self, reference: Reference, data: Mapping[str, Any]) -> None:
        self._writes.append(("set", reference, data))

    def update(self, reference: Reference, changes: Mapping[str, Any]) -> None:
        self._writes.append(("update", reference, changes))

    def delete(self, reference: Reference) -> None:
        self._writes.append(("delete", reference, None))

    @property
    def has_writes(self) -> bool:
        return bool(self._writes)

    def conflicts(self) -> bool:
        """Whether a document read by this transaction changed since the read."""
        versions = self._store._versions
        return any(versions.get(ref, 0) != version for ref, version in self._reads.items())


class MemoryStore:
    """In-process document store implementing `DocumentStore`."""

    __slots__: ClassVar[tuple[str, ...]] = ("_documents", "_params", "_versions", "stats")

    _documents: dict[Reference, DocumentData]
    _versions: dict[Reference, int]
    _params: MemoryParams
    stats: StoreStats

    def __init__(self, params: MemoryParams | None = None) -> None:
        self._documents = {}
        self._versions = {}
        self._params = params or MemoryParams()
        self.stats = StoreStats()

    @classmethod
    async def connect(cls, credentials: None = None, params: MemoryParams | None = None) -> Self:
        """Create an empty store. There is nothing to authenticate against."""
        del credentials
        logger.info("Connected to in-memory document store")
        return cls(params)

    async def disconnect(self) -> None:
        """Drop all documents."""
        self._documents.clear()
        self._versions.clear()

    def seed(self, reference: Reference, data: Mapping[str, Any]) -> None:
        """Write a document directly, bypassing transactions and counters."""
        self._documents[reference] = {k: _apply_transform(_MISSING, v) for k, v in data.items()}
        self._versions[reference] = self._versions.get(reference, 0) + 1

    def drop(self, reference: Reference) -> None:
        """Delete a document directly, bypassing transactions and counters."""
        self._documents.pop(reference, None)
        self._versions[reference] = self._versions.get(reference, 0) + 1

    def read_raw(self, reference: Reference) -> DocumentData | None:
        """Return a copy of the stored fields without counting a read."""
        data = self._documents.get(reference)
        return copy.deepcopy(data) if data is not None else None

    def new_reference(self, collection: str) -> Reference:
        return Reference(collection=collection, id=uuid.uuid4().hex[:20])

    def _snapshot(self, reference: Reference, key: Any = None) -> DocumentSnapshot:
        return DocumentSnapshot(reference=reference, data=self.read_raw(reference), key=key)

    async def get_document(self, reference: Reference) -> DocumentSnapshot:
        """Fetch one document."""
        self.stats.gets += 1
        await asyncio.sleep(0)
        return self._snapshot(reference)

    async def query_page(
        self,
        query: Query,
        ctx: PageContext,
        limit: int,
    ) -> list[DocumentSnapshot]:
        """Return the next page of matching documents after `ctx.start_after`.

        Documents missing an ordered field are excluded, as Firestore does.
        """
        if limit < 1:
            msg = f"Query limit must be positive, got {limit}"
            raise DalError(msg, kind=ErrorKind.INVALID_INPUT)
        self.stats.queries += 1
        await asyncio.sleep(0)

        candidates: list[tuple[tuple[tuple[Any, ...], str], Reference]] = []
        for reference, data in self._documents.items():
            if reference.collection != query.collection:
                continue
            if not all(_matches(data, condition) for condition in query.filters):
                continue
            values = tuple(_resolve(data, clause.field) for clause in query.order_by)
            if any(value is _MISSING for value in values):
                continue
            candidates.append(((values, reference.id), reference))

        compare = functools.partial(_compare_keys, order_by=query.order_by)
        candidates.sort(key=functools.cmp_to_key(lambda a, b: compare(a[0], b[0])))

        if not ctx.is_initial:
            candidates = [c for c in candidates if compare(c[0], ctx.start_after) > 0]

        page = candidates[:limit]
        logger.debug(
            "Query on %s returned %d of %d remaining matches",
            query.collection,
            len(page),
            len(candidates),
        )
        return [self._snapshot(reference, key=key) for key, reference in page]

    async def run_transaction(self, body: Callable[[Transaction], Awaitable[T]]) -> T:
        """Run `body`, retrying when a document it read changed before commit."""
        self.stats.transactions += 1
        for attempt in range(1, self._params.max_attempts + 1):
            tx = MemoryTransaction(self)
            result = await body(tx)
            await asyncio.sleep(0)
            if tx.conflicts():
                logger.warning("Transaction conflict on attempt %d, retrying", attempt)
                continue
            if tx.has_writes:
                self._commit(tx._writes)
            return result
        msg = f"Transaction aborted after {self._params.max_attempts} conflicting attempts"
        raise DalError(msg, kind=ErrorKind.ABORTED)

    def _commit(self, writes: list[tuple[str, Reference, Mapping[str, Any] | None]]) -> None:
        staged: dict[Reference, DocumentData | None] = {}
        for op, reference, payload in writes:
            current = staged[reference] if reference in staged else self._documents.get(reference)
            if op == "delete":
                staged[reference] = None
            elif op == "set":
                staged[reference] = {k: _apply_transform(_MISSING, v) for k, v in (payload or {}).items()}
            else:
                if current is None:
                    msg = f"Cannot update missing document '{reference}'"
                    raise DalError(msg, kind=ErrorKind.NOT_FOUND)
                updated = copy.deepcopy(current)
                for path, value in (payload or {}).items():
                    _set_path(updated, path, value)
                staged[reference] = updated

        for reference, data in staged.items():
            if data is None:
                self._documents.pop(reference, None)
            else:
                self._documents[reference] = data
            self._versions[reference] = self._versions.get(reference, 0) + 1

        self.stats.commits += 1
        self.stats.writes += len(writes)
        logger.debug("Committed %d writes to %d documents", len(writes), len(staged))


Provider = MemoryStore
