"""Comments on posts."""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import Field

from tower_dal.entities.base import DocumentModel, LazyEntity, Timestamp, contains_ref
from tower_dal.entities.post import Post
from tower_dal.entities.user import User
from tower_dal.protocols import Transaction
from tower_dal.schema.datatypes import Reference

if TYPE_CHECKING:
    from tower_dal.entities.report import Report


class CommentDocument(DocumentModel):
    author: Reference
    timestamp: Timestamp
    text_content: str = Field(alias="textContent")
    post: Reference
    likes: list[Reference] = Field(default_factory=list)
    reports: list[Reference] = Field(default_factory=list)


@dataclass
class CommentState:
    author: User
    timestamp: datetime
    text_content: str
    post: Post
    likes: list[User]
    reports: list[User]


class Comment(LazyEntity[CommentState]):
    collection: ClassVar[str] = "comments"

    def _decode(self, data: Mapping[str, Any]) -> CommentState:
        doc = CommentDocument.model_validate(data)
        return CommentState(
            author=User(self._client, doc.author),
            timestamp=doc.timestamp,
            text_content=doc.text_content,
            post=Post(self._client, doc.post),
            likes=self._wrap_all(User, doc.likes),
            reports=self._wrap_all(User, doc.reports),
        )

    async def get_author(self) -> User:
        return (await self._loaded()).author

    async def get_timestamp(self) -> datetime:
        return (await self._loaded()).timestamp

    async def get_text_content(self) -> str:
        return (await self._loaded()).text_content

    async def get_post(self) -> Post:
        return (await self._loaded()).post

    async def get_likes(self) -> list[User]:
        return (await self._loaded()).likes

    async def get_reports(self) -> list[User]:
        return (await self._loaded()).reports

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

    async def edit(self, text_content: str) -> None:
        await self._update_fields({"textContent": text_content})
        if self._state is not None:
            self._state.text_content = text_content

    async def delete(self) -> None:
        reference = self._require_reference()

        async def body(tx: Transaction) -> None:
            tx.delete(reference)

        await self._client.store.run_transaction(body)
        self._state = None
