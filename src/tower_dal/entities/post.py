"""Posts in the social feed."""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import Field

from tower_dal.cursors import QueryCursor
from tower_dal.entities.base import (
    DocumentModel,
    LazyEntity,
    Timestamp,
    array_change,
    contains_ref,
)
from tower_dal.entities.user import User
from tower_dal.protocols import Transaction
from tower_dal.schema.datatypes import SERVER_TIMESTAMP, Reference
from tower_dal.schema.params import Direction, FilterOp, Query

if TYPE_CHECKING:
    from tower_dal.client import Client
    from tower_dal.entities.comment import Comment
    from tower_dal.entities.forum import Forum
    from tower_dal.entities.report import Report

logger = logging.getLogger(__name__)


class PostDocument(DocumentModel):
    author: Reference
    timestamp: Timestamp
    text_content: str = Field(alias="textContent")
    likes: list[Reference] = Field(default_factory=list)
    reports: list[Reference] = Field(default_factory=list)
    image_content: list[str] = Field(default_factory=list, alias="imageContent")
    forum: Reference | None = None
    video_content: str | None = Field(default=None, alias="videoContent")


@dataclass
class PostState:
    author: User
    timestamp: datetime
    text_content: str
    likes: list[User]
    reports: list[User]
    image_paths: list[str]
    forum: "Forum | None"
    video_path: str | None


class Post(LazyEntity[PostState]):
    """A post by one user, optionally made to a forum."""

    collection: ClassVar[str] = "posts"

    @classmethod
    async def create(
        cls,
        client: "Client",
        author: User,
        text_content: str,
        forum: "Forum | None" = None,
    ) -> "Post":
        """Create a post and register it with `forum`.

        The returned post is reference-only, since its timestamp is
        assigned by the store on commit.
        """
        reference = client.store.new_reference(cls.collection)
        author_ref = author._require_reference()
        data: dict[str, Any] = {
            "author": author_ref,
            "timestamp": SERVER_TIMESTAMP,
            "textContent": text_content,
            "likes": [],
            "reports": [],
            "imageContent": [],
        }
        forum_ref = forum._require_reference() if forum is not None else None
        if forum_ref is not None:
            data["forum"] = forum_ref

        async def body(tx: Transaction) -> None:
            if forum_ref is not None:
                tx.update(forum_ref, {"posts": array_change(reference, add=True)})
            tx.set(reference, data)

        await client.store.run_transaction(body)
        logger.debug("Created post %s by %s", reference, author_ref)
        return cls(client, reference)

    def _decode(self, data: Mapping[str, Any]) -> PostState:
        from tower_dal.entities.forum import Forum

        doc = PostDocument.model_validate(data)
        return PostState(
            author=User(self._client, doc.author),
            timestamp=doc.timestamp,
            text_content=doc.text_content,
            likes=self._wrap_all(User, doc.likes),
            reports=self._wrap_all(User, doc.reports),
            image_paths=list(doc.image_content),
            forum=self._wrap(Forum, doc.forum),
            video_path=doc.video_content,
        )

    async def get_author(self) -> User:
        return (await self._loaded()).author

    async def get_timestamp(self) -> datetime:
        return (await self._loaded()).timestamp

    async def get_text_content(self) -> str:
        return (await self._loaded()).text_content

    async def get_likes(self) -> list[User]:
        return (await self._loaded()).likes

    async def get_reports(self) -> list[User]:
        return (await self._loaded()).reports

    async def get_forum(self) -> "Forum | None":
        return (await self._loaded()).forum

    async def has_forum(self) -> bool:
        return (await self._loaded()).forum is not None

    async def get_image_paths(self) -> list[str]:
        return (await self._loaded()).image_paths

    async def get_image_count(self) -> int:
        return len((await self._loaded()).image_paths)

    async def has_video_content(self) -> bool:
        return (await self._loaded()).video_path is not None

    async def get_video_paths(self) -> tuple[str, str] | None:
        """Storage paths of the video's thumbnail and stream, if any."""
        path = (await self._loaded()).video_path
        if path is None:
            return None
        return f"{path}_thumbnail", f"{path}_video"

    async def liked_by(self, user: User) -> bool:
        return contains_ref((await self._loaded()).likes, user)

    async def reported_by(self, user: User) -> bool:
        return contains_ref((await self._loaded()).reports, user)

    async def add_report(self, reporter: User) -> "Report | None":
        """File `reporter`'s report of this content. See `User.add_report`."""
        return await reporter.add_report(self)

    async def remove_report(self, reporter: User) -> bool:
        return await reporter.remove_report(self)

    async def add_like(self, user: User) -> bool:
        return await self._update_membership("likes", "likes", user, add=True)

    async def remove_like(self, user: User) -> bool:
        return await self._update_membership("likes", "likes", user, add=False)

    async def add_comment(self, author: User, text_content: str) -> "Comment":
        """Comment on this post. Returns the new, reference-only comment."""
        from tower_dal.entities.comment import Comment

        reference = self._client.store.new_reference(Comment.collection)
        data = {
            "author": author._require_reference(),
            "textContent": text_content,
            "timestamp": SERVER_TIMESTAMP,
            "likes": [],
            "reports": [],
            "post": self._require_reference(),
        }

        async def body(tx: Transaction) -> None:
            tx.set(reference, data)

        await self._client.store.run_transaction(body)
        return Comment(self._client, reference)

    async def edit_text(self, text_content: str) -> None:
        await self._update_fields({"textContent": text_content})
        if self._state is not None:
            self._state.text_content = text_content

    async def delete(self) -> None:
        """Delete this post together with all of its comments.

        Reads every comment on the post. The post is also removed from its
        forum's post list when the forum still exists.
        """
        await self.materialize(force=True)
        comments = await self.comments_cursor().drain()
        reference = self._require_reference()

        async def body(tx: Transaction) -> None:
            await self.refresh_in_transaction(tx)
            forum = self.state.forum
            forum_exists = forum is not None and (await tx.get(forum._require_reference())).exists
            for comment in comments:
                tx.delete(comment._require_reference())
            if forum is not None and forum_exists:
                tx.update(forum._require_reference(), {"posts": array_change(reference, add=False)})
            tx.delete(reference)

        await self._client.store.run_transaction(body)
        logger.debug("Deleted post %s and %d comments", reference, len(comments))
        self._state = None

    def comments_cursor(self) -> QueryCursor["Comment"]:
        """Comments on this post, newest first."""
        from tower_dal.entities.comment import Comment

        query = (
            Query(collection=Comment.collection)
            .where("post", FilterOp.EQUAL, self._require_reference())
            .ordered("timestamp", Direction.DESCENDING)
        )
        return QueryCursor(self._client, Comment, query, self._client.settings.comment_page_size)
