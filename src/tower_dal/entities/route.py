"""Climbing routes and their lifecycle."""

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import Field

from tower_dal.cursors import QueryCursor
from tower_dal.entities.base import (
    DocumentModel,
    LazyEntity,
    Timestamp,
    contains_ref,
)
from tower_dal.entities.forum import Forum
from tower_dal.entities.grades import RouteClassifier, RouteStatus, RouteTech, RouteType
from tower_dal.entities.tag import Tag
from tower_dal.entities.user import User
from tower_dal.errors import DalError, ErrorKind
from tower_dal.protocols import Transaction
from tower_dal.schema.contexts import PageContext
from tower_dal.schema.datatypes import SERVER_TIMESTAMP, Increment, Reference
from tower_dal.schema.params import FilterOp, Query

if TYPE_CHECKING:
    from tower_dal.client import Client
    from tower_dal.entities.send import Send

logger = logging.getLogger(__name__)


class RouteDocument(DocumentModel):
    name: str
    rawgrade: int
    type: RouteType
    forum: Reference
    likes: list[Reference] = Field(default_factory=list)
    tags: list[Reference] = Field(default_factory=list)
    status: RouteStatus = RouteStatus.DRAFT
    description: str = ""
    send_count: int = Field(default=0, alias="sendCount")
    total_stars: int = Field(default=0, alias="totalStars")
    num_ratings: int = Field(default=0, alias="numRatings")
    setter: Reference | None = None
    thumbnail: str | None = None
    rope: int | None = None
    timestamp: Timestamp | None = None
    color: str | None = None
    setter_raw_name: str | None = Field(default=None, alias="setterRawName")
    tech: RouteTech | None = None


@dataclass
class RouteState:
    name: str
    classifier: RouteClassifier
    forum: Forum
    likes: list[User]
    tags: list[Tag]
    status: RouteStatus
    description: str
    send_count: int
    total_stars: int
    num_ratings: int
    setter: User | None
    thumbnail_path: str | None
    rope: int | None
    timestamp: datetime | None
    color: str | None
    setter_raw_name: str | None
    tech: RouteTech | None


class Route(LazyEntity[RouteState]):
    """A route set on the wall.

    Routes start as drafts, become active when published and are archived
    when stripped. Each route owns one forum for discussion.
    """

    collection: ClassVar[str] = "routes"

    @classmethod
    async def create(
        cls,
        client: "Client",
        name: str,
        classifier: RouteClassifier,
        *,
        description: str | None = None,
        tags: Sequence[Tag] = (),
        setter: User | None = None,
        rope: int | None = None,
        color: str | None = None,
        setter_raw_name: str | None = None,
        tech: RouteTech | None = None,
        thumbnail_path: str | None = None,
    ) -> "Route":
        """Create a draft route together with its forum.

        Raises:
            DalError: INVALID_INPUT if another route already has `name`.
        """
        if await cls.by_name(client, name) is not None:
            msg = f"A route named {name!r} already exists"
            raise DalError(msg, kind=ErrorKind.INVALID_INPUT)
        reference = client.store.new_reference(cls.collection)
        forum_ref = client.store.new_reference(Forum.collection)
        data: dict[str, Any] = {
            "name": name,
            "rawgrade": classifier.rawgrade,
            "type": str(classifier.type),
            "forum": forum_ref,
            "status": int(RouteStatus.DRAFT),
            "tags": [tag._require_reference() for tag in tags],
        }
        optional = {
            "description": description,
            "setter": setter._require_reference() if setter is not None else None,
            "rope": rope,
            "color": color,
            "setterRawName": setter_raw_name,
            "tech": str(tech) if tech is not None else None,
            "thumbnail": thumbnail_path,
        }
        data.update({k: v for k, v in optional.items() if v is not None})

        async def body(tx: Transaction) -> None:
            tx.set(reference, data)
            tx.set(forum_ref, {"route": reference, "isArchived": False, "posts": []})

        await client.store.run_transaction(body)
        logger.info("Created draft route %s (%s)", reference, name)
        return cls.from_data(client, data, reference)

    @classmethod
    async def by_name(cls, client: "Client", name: str) -> "Route | None":
        """The route called `name`, or None."""
        query = Query(collection=cls.collection).where("name", FilterOp.EQUAL, name)
        snapshots = await client.store.query_page(query, PageContext(), 1)
        if not snapshots:
            return None
        return cls.from_snapshot(client, snapshots[0])

    @classmethod
    async def active_routes(cls, client: "Client") -> list["Route"]:
        """Every route currently on the wall, by name."""
        return await cls._with_status(client, [RouteStatus.ACTIVE])

    @classmethod
    async def all_routes(cls, client: "Client") -> list["Route"]:
        """Every published route, active or archived, by name."""
        return await cls._with_status(client, [RouteStatus.ACTIVE, RouteStatus.ARCHIVED])

    @classmethod
    async def _with_status(cls, client: "Client", statuses: list[RouteStatus]) -> list["Route"]:
        query = (
            Query(collection=cls.collection)
            .where("status", FilterOp.IN, [int(s) for s in statuses])
            .ordered("name")
        )
        return await QueryCursor(client, cls, query, client.settings.default_page_size).drain()

    def _decode(self, data: Mapping[str, Any]) -> RouteState:
        doc = RouteDocument.model_validate(data)
        return RouteState(
            name=doc.name,
            classifier=RouteClassifier(rawgrade=doc.rawgrade, type=doc.type),
            forum=Forum(self._client, doc.forum),
            likes=self._wrap_all(User, doc.likes),
            tags=self._wrap_all(Tag, doc.tags),
            status=doc.status,
            description=doc.description,
            send_count=doc.send_count,
            total_stars=doc.total_stars,
            num_ratings=doc.num_ratings,
            setter=self._wrap(User, doc.setter),
            thumbnail_path=doc.thumbnail,
            rope=doc.rope,
            timestamp=doc.timestamp,
            color=doc.color,
            setter_raw_name=doc.setter_raw_name,
            tech=doc.tech,
        )

    async def get_name(self) -> str:
        return (await self._loaded()).name

    async def get_classifier(self) -> RouteClassifier:
        return (await self._loaded()).classifier

    async def get_grade_display_string(self) -> str:
        return (await self._loaded()).classifier.display_string

    async def get_type(self) -> RouteType:
        return (await self._loaded()).classifier.type

    async def get_forum(self) -> Forum:
        return (await self._loaded()).forum

    async def get_likes(self) -> list[User]:
        return (await self._loaded()).likes

    async def get_tags(self) -> list[Tag]:
        return (await self._loaded()).tags

    async def get_status(self) -> RouteStatus:
        return (await self._loaded()).status

    async def get_description(self) -> str:
        return (await self._loaded()).description

    async def get_send_count(self) -> int:
        return (await self._loaded()).send_count

    async def get_setter(self) -> User | None:
        return (await self._loaded()).setter

    async def get_thumbnail_path(self) -> str | None:
        return (await self._loaded()).thumbnail_path

    async def get_rope(self) -> int | None:
        return (await self._loaded()).rope

    async def get_timestamp(self) -> datetime | None:
        return (await self._loaded()).timestamp

    async def get_color(self) -> str | None:
        return (await self._loaded()).color

    async def get_setter_raw_name(self) -> str | None:
        return (await self._loaded()).setter_raw_name

    async def get_tech(self) -> RouteTech | None:
        return (await self._loaded()).tech

    async def get_average_rating(self) -> float | None:
        """Mean star rating, or None if nobody rated the route yet."""
        state = await self._loaded()
        if state.num_ratings == 0:
            return None
        return state.total_stars / state.num_ratings

    async def liked_by(self, user: User) -> bool:
        return contains_ref((await self._loaded()).likes, user)

    async def add_like(self, user: User) -> bool:
        return await self._update_membership("likes", "likes", user, add=True)

    async def remove_like(self, user: User) -> bool:
        return await self._update_membership("likes", "likes", user, add=False)

    async def upgrade_status(self) -> RouteStatus:
        """Advance Draft to Active, or Active to Archived.

        The upgrade only happens if the stored status still equals the
        status this object has loaded, so two clients upgrading at once
        advance the route by one step. Returns the resulting status.
        Publishing stamps the route with the commit time; the next
        materialization picks it up.
        """
        expected = await self.get_status()
        reference = self._require_reference()

        async def body(tx: Transaction) -> RouteStatus | None:
            await self.refresh_in_transaction(tx)
            current = self.state.status
            if current != expected or current == RouteStatus.ARCHIVED:
                return None
            if current == RouteStatus.DRAFT:
                tx.update(reference, {"status": int(RouteStatus.ACTIVE), "timestamp": SERVER_TIMESTAMP})
                return RouteStatus.ACTIVE
            tx.update(reference, {"status": int(RouteStatus.ARCHIVED)})
            return RouteStatus.ARCHIVED

        upgraded = await self._client.store.run_transaction(body)
        if upgraded is None:
            return self.state.status
        self.state.status = upgraded
        if upgraded == RouteStatus.ACTIVE:
            self._client.invalidate(reference)
        logger.info("Route %s is now %s", reference, upgraded.name.lower())
        return upgraded

    async def get_send_by_user(self, user: User) -> "Send | None":
        """The user's send of this route, or None if they have not sent it."""
        from tower_dal.entities.send import Send

        query = (
            Query(collection=Send.collection)
            .where("user", FilterOp.EQUAL, user._require_reference())
            .where("route", FilterOp.EQUAL, self._require_reference())
        )
        snapshots = await self._client.store.query_page(query, PageContext(), 1)
        if not snapshots:
            return None
        return Send.from_snapshot(self._client, snapshots[0])

    async def record_send(
        self,
        sender: User,
        rating: int | None = None,
        attempts: int | None = None,
    ) -> "Send":
        """Record that `sender` climbed this route.

        Bumps the route's send and rating counters and the sender's
        per-type totals and best grade in one transaction. If the sender
        already sent the route, the existing send is returned unchanged.

        Args:
            sender: The climber.
            rating: Optional star rating from 1 to 5.
            attempts: Optional number of tries it took.
        """
        from tower_dal.entities.send import Send

        if rating is not None and not 1 <= rating <= 5:
            msg = f"Rating must be between 1 and 5, got {rating}"
            raise DalError(msg, kind=ErrorKind.INVALID_INPUT)
        if (existing := await self.get_send_by_user(sender)) is not None:
            logger.debug("%s already sent %s", sender.reference, self.reference)
            return existing

        reference = self._require_reference()
        sender_ref = sender._require_reference()
        send_ref = self._client.store.new_reference(Send.collection)

        async def body(tx: Transaction) -> tuple[dict[RouteType, int], dict[RouteType, int]]:
            await self.refresh_in_transaction(tx)
            await sender.refresh_in_transaction(tx)
            classifier = self.state.classifier
            total_sends = dict(sender.state.total_sends)
            best_sends = dict(sender.state.best_sends)
            total_sends[classifier.type] = total_sends.get(classifier.type, 0) + 1
            if best_sends.get(classifier.type, classifier.rawgrade) <= classifier.rawgrade:
                best_sends[classifier.type] = classifier.rawgrade

            counters: dict[str, Any] = {"sendCount": Increment(amount=1)}
            if rating is not None:
                counters["totalStars"] = Increment(amount=rating)
                counters["numRatings"] = Increment(amount=1)
            tx.update(reference, counters)

            send: dict[str, Any] = {
                "user": sender_ref,
                "route": reference,
                "timestamp": SERVER_TIMESTAMP,
                "rawgrade": classifier.rawgrade,
                "type": str(classifier.type),
            }
            if attempts is not None:
                send["attempts"] = attempts
            tx.set(send_ref, send)
            tx.update(
                sender_ref,
                {
                    "totalSends": {str(k): v for k, v in total_sends.items()},
                    "bestSends": {str(k): v for k, v in best_sends.items()},
                },
            )
            return total_sends, best_sends

        total_sends, best_sends = await self._client.store.run_transaction(body)
        self.state.send_count += 1
        if rating is not None:
            self.state.total_stars += rating
            self.state.num_ratings += 1
        sender.state.total_sends = total_sends
        sender.state.best_sends = best_sends
        logger.info("%s sent %s", sender_ref, reference)
        return Send(self._client, send_ref)

    async def edit(
        self,
        *,
        name: str | None = None,
        classifier: RouteClassifier | None = None,
        description: str | None = None,
        tags: Sequence[Tag] | None = None,
        setter: User | None = None,
        rope: int | None = None,
        color: str | None = None,
        setter_raw_name: str | None = None,
        tech: RouteTech | None = None,
        thumbnail_path: str | None = None,
    ) -> None:
        """Update the given fields; arguments left as None are unchanged.

        Raises:
            DalError: INVALID_INPUT if `name` belongs to another route.
        """
        if name is not None:
            existing = await Route.by_name(self._client, name)
            if existing is not None and not existing.same_document(self):
                msg = f"A route named {name!r} already exists"
                raise DalError(msg, kind=ErrorKind.INVALID_INPUT)
        changes: dict[str, Any] = {}
        if name is not None:
            changes["name"] = name
        if classifier is not None:
            changes["rawgrade"] = classifier.rawgrade
            changes["type"] = str(classifier.type)
        if description is not None:
            changes["description"] = description
        if tags is not None:
            changes["tags"] = [tag._require_reference() for tag in tags]
        if setter is not None:
            changes["setter"] = setter._require_reference()
        if rope is not None:
            changes["rope"] = rope
        if color is not None:
            changes["color"] = color
        if setter_raw_name is not None:
            changes["setterRawName"] = setter_raw_name
        if tech is not None:
            changes["tech"] = str(tech)
        if thumbnail_path is not None:
            changes["thumbnail"] = thumbnail_path
        if not changes:
            return
        reference = self._require_reference()

        async def body(tx: Transaction) -> None:
            await self.refresh_in_transaction(tx)
            tx.update(reference, changes)

        await self._client.store.run_transaction(body)
        state = self.state
        if name is not None:
            state.name = name
        if classifier is not None:
            state.classifier = classifier
        if description is not None:
            state.description = description
        if tags is not None:
            state.tags = list(tags)
        if setter is not None:
            state.setter = setter
        if rope is not None:
            state.rope = rope
        if color is not None:
            state.color = color
        if setter_raw_name is not None:
            state.setter_raw_name = setter_raw_name
        if tech is not None:
            state.tech = tech
        if thumbnail_path is not None:
            state.thumbnail_path = thumbnail_path
        logger.debug("Edited route %s fields %s", reference, sorted(changes))

    async def delete(self) -> None:
        """Delete a draft route and its forum.

        Raises:
            DalError: PRECONDITION if the route is not a draft.
        """
        await self.materialize(force=True)
        if self.state.status != RouteStatus.DRAFT:
            msg = f"Only draft routes can be deleted; {self.reference} is {self.state.status.name.lower()}"
            raise DalError(msg, kind=ErrorKind.PRECONDITION)
        reference = self._require_reference()
        forum_ref = self.state.forum._require_reference()

        async def body(tx: Transaction) -> None:
            await self.refresh_in_transaction(tx)
            if self.state.status != RouteStatus.DRAFT:
                msg = f"Route {reference} was published while being deleted"
                raise DalError(msg, kind=ErrorKind.PRECONDITION)
            tx.delete(forum_ref)
            tx.delete(reference)

        await self._client.store.run_transaction(body)
        logger.info("Deleted draft route %s", reference)
        self._state = None
