"""Moderation history: one entry per action a staff member takes."""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import Field

from tower_dal.cursors import QueryCursor
from tower_dal.entities.base import DocumentModel, LazyEntity, Timestamp
from tower_dal.entities.user import User
from tower_dal.schema.datatypes import Reference
from tower_dal.schema.params import Direction, Query

if TYPE_CHECKING:
    from tower_dal.client import Client


class ModActionDocument(DocumentModel):
    user_moderated: Reference = Field(alias="userModerated")
    user_email: str = Field(default="", alias="userEmail")
    mod: Reference
    mod_reason: str = Field(default="", alias="modReason")
    timestamp: Timestamp | None = None


@dataclass
class ModActionState:
    user_moderated: User
    user_email: str
    mod: User
    mod_reason: str
    timestamp: datetime | None


class ModAction(LazyEntity[ModActionState]):
    collection: ClassVar[str] = "modHistory"

    @classmethod
    def cursor(cls, client: "Client") -> QueryCursor["ModAction"]:
        """The moderation history, most recent first."""
        query = Query(collection=cls.collection).ordered("timestamp", Direction.DESCENDING)
        return QueryCursor(client, cls, query, client.settings.moderation_page_size)

    def _decode(self, data: Mapping[str, Any]) -> ModActionState:
        doc = ModActionDocument.model_validate(data)
        return ModActionState(
            user_moderated=User(self._client, doc.user_moderated),
            user_email=doc.user_email,
            mod=User(self._client, doc.mod),
            mod_reason=doc.mod_reason,
            timestamp=doc.timestamp,
        )

    async def get_user_moderated(self) -> User:
        return (await self._loaded()).user_moderated

    async def get_user_email(self) -> str:
        return (await self._loaded()).user_email

    async def get_mod(self) -> User:
        return (await self._loaded()).mod

    async def get_mod_reason(self) -> str:
        return (await self._loaded()).mod_reason

    async def get_timestamp(self) -> datetime | None:
        return (await self._loaded()).timestamp
