"""Reports filed by climbers against posts, comments and profiles."""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, ClassVar, TypeAlias

from tower_dal.cursors import QueryCursor
from tower_dal.entities.base import DocumentModel, LazyEntity, Timestamp
from tower_dal.entities.comment import Comment
from tower_dal.entities.post import Post
from tower_dal.entities.user import User
from tower_dal.errors import DalError, ErrorKind
from tower_dal.schema.datatypes import Reference
from tower_dal.schema.params import Direction, Query

if TYPE_CHECKING:
    from tower_dal.client import Client

Reportable: TypeAlias = Post | Comment | User

_CONTENT_TYPES: dict[str, type[Post] | type[Comment] | type[User]] = {
    Post.collection: Post,
    Comment.collection: Comment,
    User.collection: User,
}


class ReportDocument(DocumentModel):
    reporter: Reference
    reported: Reference
    content: Reference
    timestamp: Timestamp | None = None


@dataclass
class ReportState:
    reporter: User
    reported: User
    content: Reportable
    timestamp: datetime | None


class Report(LazyEntity[ReportState]):
    """One user's report of one piece of content.

    `reported` is the author of the content, or the reported user for
    profile reports.
    """

    collection: ClassVar[str] = "reports"

    @classmethod
    def cursor(cls, client: "Client") -> QueryCursor["Report"]:
        """Every open report, most recent first."""
        query = Query(collection=cls.collection).ordered("timestamp", Direction.DESCENDING)
        return QueryCursor(client, cls, query, client.settings.moderation_page_size)

    def _decode(self, data: Mapping[str, Any]) -> ReportState:
        doc = ReportDocument.model_validate(data)
        content_cls = _CONTENT_TYPES.get(doc.content.collection)
        if content_cls is None:
            msg = f"Report '{self._reference}' targets unreportable '{doc.content}'"
            raise DalError(msg, kind=ErrorKind.INVALID_INPUT)
        return ReportState(
            reporter=User(self._client, doc.reporter),
            reported=User(self._client, doc.reported),
            content=content_cls(self._client, doc.content),
            timestamp=doc.timestamp,
        )

    async def get_reporter(self) -> User:
        return (await self._loaded()).reporter

    async def get_reported(self) -> User:
        return (await self._loaded()).reported

    async def get_content(self) -> Reportable:
        return (await self._loaded()).content

    async def get_timestamp(self) -> datetime | None:
        return (await self._loaded()).timestamp
