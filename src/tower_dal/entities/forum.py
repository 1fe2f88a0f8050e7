"""Discussion forums, optionally attached to a route."""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import Field

from tower_dal.cursors import QueryCursor
from tower_dal.entities.base import DocumentModel, LazyEntity
from tower_dal.schema.datatypes import Reference
from tower_dal.schema.params import Direction, FilterOp, Query

if TYPE_CHECKING:
    from tower_dal.entities.post import Post
    from tower_dal.entities.route import Route


class ForumDocument(DocumentModel):
    posts: list[Reference] = Field(default_factory=list)
    is_archived: bool = Field(default=True, alias="isArchived")
    route: Reference | None = None


@dataclass
class ForumState:
    posts: list["Post"]
    is_archived: bool
    route: "Route | None"


class Forum(LazyEntity[ForumState]):
    """A thread of posts. Every route has one; general forums have no route."""

    collection: ClassVar[str] = "forums"

    def _decode(self, data: Mapping[str, Any]) -> ForumState:
        from tower_dal.entities.post import Post
        from tower_dal.entities.route import Route

        doc = ForumDocument.model_validate(data)
        return ForumState(
            posts=self._wrap_all(Post, doc.posts),
            is_archived=doc.is_archived,
            route=self._wrap(Route, doc.route),
        )

    async def get_posts(self) -> list["Post"]:
        return (await self._loaded()).posts

    async def is_archived(self) -> bool:
        return (await self._loaded()).is_archived

    async def has_route(self) -> bool:
        return (await self._loaded()).route is not None

    async def get_route(self) -> "Route | None":
        return (await self._loaded()).route

    def posts_cursor(self) -> QueryCursor["Post"]:
        """Posts made to this forum, newest first."""
        from tower_dal.entities.post import Post

        query = (
            Query(collection=Post.collection)
            .where("forum", FilterOp.EQUAL, self._require_reference())
            .ordered("timestamp", Direction.DESCENDING)
        )
        return QueryCursor(self._client, Post, query, self._client.settings.default_page_size)
