"""Shared fixtures: an in-memory store, a client and document seeding helpers."""

from collections.abc import AsyncGenerator, Awaitable, Callable, Iterable, Mapping
from datetime import UTC, datetime, timedelta
from typing import Any, TypeVar

import pytest
import pytest_asyncio

from tower_dal.client import Client
from tower_dal.config import Settings
from tower_dal.entities.grades import RouteStatus, RouteType
from tower_dal.errors import DalError, ErrorKind
from tower_dal.protocols import Transaction
from tower_dal.providers.memory import MemoryStore
from tower_dal.schema.contexts import PageContext
from tower_dal.schema.datatypes import DocumentSnapshot, Reference
from tower_dal.schema.params import Query

T = TypeVar("T")

BASE_TIME = datetime(2024, 3, 1, 12, 0, tzinfo=UTC)


def at(minute: int) -> datetime:
    """A timestamp `minute` minutes after the fixed test epoch."""
    return BASE_TIME + timedelta(minutes=minute)


class Seeder:
    """Writes fixture documents straight into a `MemoryStore`."""

    def __init__(self, store: MemoryStore) -> None:
        self.store = store

    def user(
        self,
        user_id: str,
        *,
        following: Iterable[Reference] = (),
        followers: Iterable[Reference] = (),
        **fields: Any,
    ) -> Reference:
        ref = Reference(collection="users", id=user_id)
        data = {
            "username": user_id,
            "email": f"{user_id}@knights.ucf.edu",
            "displayName": user_id.title(),
            "bio": "I'm a new climber!",
            "status": 1,
            "following": list(following),
            "followers": list(followers),
        }
        self.store.seed(ref, {**data, **fields})
        return ref

    def post(self, post_id: str, author: Reference, minute: int, **fields: Any) -> Reference:
        ref = Reference(collection="posts", id=post_id)
        data = {
            "author": author,
            "timestamp": at(minute),
            "textContent": f"post {post_id}",
            "likes": [],
            "reports": [],
        }
        self.store.seed(ref, {**data, **fields})
        return ref

    def comment(
        self,
        comment_id: str,
        post: Reference,
        author: Reference,
        minute: int,
        **fields: Any,
    ) -> Reference:
        ref = Reference(collection="comments", id=comment_id)
        data = {
            "author": author,
            "post": post,
            "timestamp": at(minute),
            "textContent": f"comment {comment_id}",
        }
        self.store.seed(ref, {**data, **fields})
        return ref

    def forum(self, forum_id: str, **fields: Any) -> Reference:
        ref = Reference(collection="forums", id=forum_id)
        self.store.seed(ref, {"posts": [], "isArchived": False, **fields})
        return ref

    def route(
        self,
        route_id: str,
        *,
        rawgrade: int = 4,
        route_type: RouteType = RouteType.BOULDER,
        status: RouteStatus = RouteStatus.ACTIVE,
        **fields: Any,
    ) -> Reference:
        ref = Reference(collection="routes", id=route_id)
        forum = self.forum(f"{route_id}-forum", route=ref)
        data = {
            "name": route_id.replace("-", " ").title(),
            "rawgrade": rawgrade,
            "type": str(route_type),
            "forum": forum,
            "status": int(status),
        }
        self.store.seed(ref, {**data, **fields})
        return ref


class FlakyStore:
    """Delegating store that fails the next N reads with UNAVAILABLE."""

    def __init__(self, inner: MemoryStore) -> None:
        self.inner = inner
        self.failing_gets = 0
        self.failing_queries = 0

    async def get_document(self, reference: Reference) -> DocumentSnapshot:
        if self.failing_gets:
            self.failing_gets -= 1
            raise DalError("Store unavailable", kind=ErrorKind.UNAVAILABLE)
        return await self.inner.get_document(reference)

    async def query_page(self, query: Query, ctx: PageContext, limit: int) -> list[DocumentSnapshot]:
        if self.failing_queries:
            self.failing_queries -= 1
            raise DalError("Store unavailable", kind=ErrorKind.UNAVAILABLE)
        return await self.inner.query_page(query, ctx, limit)

    async def run_transaction(self, body: Callable[[Transaction], Awaitable[T]]) -> T:
        return await self.inner.run_transaction(body)

    def new_reference(self, collection: str) -> Reference:
        return self.inner.new_reference(collection)

    async def disconnect(self) -> None:
        await self.inner.disconnect()


@pytest.fixture
def config() -> Settings:
    """Settings with defaults only, ignoring any local .env file."""
    return Settings(_env_file=None)


@pytest_asyncio.fixture
async def store() -> AsyncGenerator[MemoryStore, None]:
    memory = await MemoryStore.connect()
    yield memory
    await memory.disconnect()


@pytest.fixture
def client(store: MemoryStore, config: Settings) -> Client:
    return Client(store, config)


@pytest.fixture
def seed(store: MemoryStore) -> Seeder:
    return Seeder(store)


@pytest.fixture
def flaky(store: MemoryStore) -> FlakyStore:
    return FlakyStore(store)


@pytest.fixture
def flaky_client(flaky: FlakyStore, config: Settings) -> Client:
    return Client(flaky, config)


def raw(store: MemoryStore, ref: Reference) -> Mapping[str, Any]:
    data = store.read_raw(ref)
    assert data is not None, f"{ref} does not exist"
    return data
