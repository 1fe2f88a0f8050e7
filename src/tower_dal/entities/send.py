"""Sends: a climber completing a route."""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar

from tower_dal.entities.base import DocumentModel, LazyEntity, Timestamp
from tower_dal.entities.grades import RouteClassifier, RouteType
from tower_dal.entities.route import Route
from tower_dal.entities.user import User
from tower_dal.schema.datatypes import Reference


class SendDocument(DocumentModel):
    user: Reference
    route: Reference
    timestamp: Timestamp | None = None
    attempts: int | None = None
    rawgrade: int | None = None
    type: RouteType | None = None


@dataclass
class SendState:
    user: User
    route: Route
    timestamp: datetime | None
    attempts: int | None
    classifier: RouteClassifier | None


class Send(LazyEntity[SendState]):
    """One climber's send of one route.

    The grade is copied from the route when the send is recorded, so later
    regrades of the route do not change past sends.
    """

    collection: ClassVar[str] = "sends"

    def _decode(self, data: Mapping[str, Any]) -> SendState:
        doc = SendDocument.model_validate(data)
        classifier = None
        if doc.rawgrade is not None and doc.type is not None:
            classifier = RouteClassifier(rawgrade=doc.rawgrade, type=doc.type)
        return SendState(
            user=User(self._client, doc.user),
            route=Route(self._client, doc.route),
            timestamp=doc.timestamp,
            attempts=doc.attempts,
            classifier=classifier,
        )

    async def get_user(self) -> User:
        return (await self._loaded()).user

    async def get_route(self) -> Route:
        return (await self._loaded()).route

    async def get_timestamp(self) -> datetime | None:
        return (await self._loaded()).timestamp

    async def get_attempts(self) -> int | None:
        return (await self._loaded()).attempts

    async def get_classifier(self) -> RouteClassifier | None:
        return (await self._loaded()).classifier
