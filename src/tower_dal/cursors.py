"""Single-consumer read cursors over entities.

- `QueryCursor` pages through one filtered, ordered collection query.
- `MergeCursor` merges cursors that share an ordering into one stream.
- `ArrayCursor` walks a list of reference-only entities.

All cursors share the `peek_next` / `poll_next` protocol with `None` as the
exhaustion sentinel. Calls on one instance must be issued one at a time;
an overlapping call raises `DalError(kind=PRECONDITION)`.
"""

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable, Iterator, Sequence
from typing import TYPE_CHECKING, Any, Generic, TypeAlias, TypeVar

from tower_dal.errors import DalError, ErrorKind
from tower_dal.protocols import Cursor
from tower_dal.schema.contexts import PageContext
from tower_dal.schema.params import Query

if TYPE_CHECKING:
    from tower_dal.client import Client
    from tower_dal.entities.base import LazyEntity

logger = logging.getLogger(__name__)

E = TypeVar("E", bound="LazyEntity[Any]")

SortKey: TypeAlias = Callable[[Any], Any]


def by_field(name: str) -> SortKey:
    """Sort key reading field `name` from a materialized entity's state."""

    def key(entity: "LazyEntity[Any]") -> Any:
        return getattr(entity.state, name)

    return key


class BaseCursor(ABC, Generic[E]):
    """Shared cursor behaviour: the single-consumer guard, paging and iteration."""

    def __init__(self) -> None:
        self._busy = False

    @contextlib.contextmanager
    def _exclusive(self) -> Iterator[None]:
        if self._busy:
            msg = f"{type(self).__name__} is already in use; calls must not overlap"
            raise DalError(msg, kind=ErrorKind.PRECONDITION)
        self._busy = True
        try:
            yield
        finally:
            self._busy = False

    @abstractmethod
    async def _peek(self) -> E | None: ...

    @abstractmethod
    async def _poll(self) -> E | None: ...

    @abstractmethod
    def _rewind(self) -> None: ...

    @abstractmethod
    def stored_results(self) -> list[E]:
        """Items consumed so far, in consumption order."""

    async def peek_next(self) -> E | None:
        """Return the next item without consuming it, or None when exhausted."""
        with self._exclusive():
            return await self._peek()

    async def poll_next(self) -> E | None:
        """Return and consume the next item, or None when exhausted."""
        with self._exclusive():
            return await self._poll()

    async def has_next(self) -> bool:
        with self._exclusive():
            return await self._peek() is not None

    def reset(self) -> None:
        """Rewind to the first item without discarding anything already fetched."""
        with self._exclusive():
            self._rewind()

    async def next_page(self, count: int) -> list[E]:
        """Consume up to `count` items."""
        with self._exclusive():
            items: list[E] = []
            while len(items) < count and (item := await self._poll()) is not None:
                items.append(item)
            return items

    async def drain(self) -> list[E]:
        """Consume every remaining item. Reads the whole result set."""
        with self._exclusive():
            items: list[E] = []
            while (item := await self._poll()) is not None:
                items.append(item)
            return items

    def __aiter__(self) -> AsyncIterator[E]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[E]:
        while (item := await self.poll_next()) is not None:
            yield item


class QueryCursor(BaseCursor[E]):
    """Cursor over one paginated collection query.

    Fetches `page_size` documents at a time, starting after the last
    document seen. A page shorter than `page_size` marks the cursor as
    exhausted for good, so a result set that is an exact multiple of the
    page size costs one extra, empty fetch to confirm the end.

    The first page is requested as soon as the cursor is created (when an
    event loop is running) and awaited by the first read.
    """

    def __init__(
        self,
        client: "Client",
        entity_cls: type[E],
        query: Query,
        page_size: int,
    ) -> None:
        if page_size < 1:
            msg = f"Page size must be at least 1, got {page_size}"
            raise DalError(msg, kind=ErrorKind.INVALID_INPUT)
        super().__init__()
        self._client = client
        self._entity_cls = entity_cls
        self._query = query
        self._page_size = page_size
        self._buffer: list[E | None] = []
        self._position = 0
        self._context = PageContext()
        self._first_page: asyncio.Task[None] | None = None

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No running loop: the first advance() fetches instead.
            loop = None
        if loop is not None:
            self._first_page = loop.create_task(self._fetch_page())
            self._first_page.add_done_callback(self._log_first_page_failure)

    def __repr__(self) -> str:
        return (
            f"QueryCursor({self._entity_cls.__name__}, {self._query.collection}, "
            f"page_size={self._page_size}, buffered={len(self._buffer)})"
        )

    @property
    def query(self) -> Query:
        return self._query

    @property
    def page_size(self) -> int:
        return self._page_size

    @staticmethod
    def _log_first_page_failure(task: "asyncio.Task[None]") -> None:
        if not task.cancelled() and (error := task.exception()) is not None:
            logger.debug("First page fetch failed: %s", error)

    async def _fetch_page(self) -> None:
        snapshots = await self._client.store.query_page(self._query, self._context, self._page_size)
        entities = [self._entity_cls.from_snapshot(self._client, snap) for snap in snapshots]
        self._buffer.extend(entities)
        if snapshots:
            self._context = PageContext(start_after=snapshots[-1].key)
        if len(snapshots) < self._page_size:
            self._buffer.append(None)
        logger.debug(
            "Fetched %d %s documents (exhausted=%s)",
            len(snapshots),
            self._query.collection,
            len(snapshots) < self._page_size,
        )

    async def _advance(self) -> None:
        if self._first_page is not None:
            first_page, self._first_page = self._first_page, None
            await first_page
        if self._position < len(self._buffer):
            return
        await self._fetch_page()

    async def advance(self) -> None:
        """Make sure the buffer holds an entry at the current position.

        Awaits the initial page if it is still in flight, then fetches the
        next page if needed. A failed fetch leaves the cursor unchanged, so
        the call can simply be repeated.
        """
        with self._exclusive():
            await self._advance()

    async def _peek(self) -> E | None:
        if self._position >= len(self._buffer):
            await self._advance()
        return self._buffer[self._position]

    async def _poll(self) -> E | None:
        item = await self._peek()
        if item is not None:
            self._position += 1
        return item

    def _rewind(self) -> None:
        self._position = 0

    def stored_results(self) -> list[E]:
        return [item for item in self._buffer[: self._position] if item is not None]


class MergeCursor(BaseCursor[E]):
    """Merges cursors sorted descending by `key` into one descending stream.

    The inputs are arranged as a balanced binary tree of merge nodes. Each
    node caches at most one peeked winner and polls only the side that
    wins, so no input is read further than the items actually consumed
    plus one lookahead. Ties go to the right-hand side.
    """

    def __init__(
        self,
        cursors: Sequence[Cursor[E]],
        key: SortKey = by_field("timestamp"),
    ) -> None:
        super().__init__()
        self._key = key
        self._winner: E | None = None
        self._left: Cursor[E] | None
        self._right: Cursor[E] | None
        if len(cursors) < 2:
            self._left = cursors[0] if cursors else None
            self._right = None
        else:
            mid = len(cursors) // 2
            self._left = MergeCursor(cursors[:mid], key)
            self._right = MergeCursor(cursors[mid:], key)

    async def _head(self, side: Cursor[E] | None) -> E | None:
        if side is None:
            return None
        head = await side.peek_next()
        if head is not None:
            await head.materialize()
        return head

    async def _next_side(self) -> tuple[Cursor[E], E] | None:
        left = await self._head(self._left)
        right = await self._head(self._right)
        if left is None:
            return (self._right, right) if self._right is not None and right is not None else None
        if right is None:
            return (self._left, left) if self._left is not None else None
        if self._key(left) > self._key(right):
            return (self._left, left) if self._left is not None else None
        return (self._right, right) if self._right is not None else None

    async def _peek(self) -> E | None:
        if self._winner is not None:
            return self._winner
        side = await self._next_side()
        if side is None:
            return None
        self._winner = side[1]
        return self._winner

    async def _poll(self) -> E | None:
        self._winner = None
        side = await self._next_side()
        if side is None:
            return None
        return await side[0].poll_next()

    def _rewind(self) -> None:
        self._winner = None
        if self._left is not None:
            self._left.reset()
        if self._right is not None:
            self._right.reset()

    def stored_results(self) -> list[E]:
        results: list[E] = []
        if self._left is not None:
            results.extend(self._left.stored_results())
        if self._right is not None:
            results.extend(self._right.stored_results())
        results.sort(key=self._key, reverse=True)
        return results


class ArrayCursor(BaseCursor[E]):
    """Cursor over an in-memory list of entities.

    Entities are materialized as the cursor reaches them; entries whose
    document no longer exists are skipped.
    """

    def __init__(self, entities: Sequence[E]) -> None:
        super().__init__()
        self._items = list(entities)
        self._position = 0

    async def _peek(self) -> E | None:
        while self._position < len(self._items):
            item = self._items[self._position]
            try:
                await item.materialize()
            except DalError as e:
                if not e.is_not_found:
                    raise
                logger.debug("Skipping missing document %s", item.reference)
                self._position += 1
                continue
            return item
        return None

    async def _poll(self) -> E | None:
        item = await self._peek()
        if item is not None:
            self._position += 1
        return item

    def _rewind(self) -> None:
        self._position = 0

    def stored_results(self) -> list[E]:
        return [item for item in self._items[: self._position] if item.is_materialized]
