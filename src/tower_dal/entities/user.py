"""Climber accounts and their social graph."""

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import IntEnum
from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import Field

from tower_dal.cursors import ArrayCursor, QueryCursor
from tower_dal.entities.base import (
    DocumentModel,
    LazyEntity,
    array_change,
    contains_ref,
    remove_ref,
)
from tower_dal.entities.grades import RouteClassifier, RouteType
from tower_dal.errors import DalError, ErrorKind
from tower_dal.protocols import Transaction
from tower_dal.schema.contexts import PageContext
from tower_dal.schema.datatypes import SERVER_TIMESTAMP, Reference
from tower_dal.schema.params import Direction, FilterOp, Query

if TYPE_CHECKING:
    from tower_dal.client import Client
    from tower_dal.entities.comment import Comment
    from tower_dal.entities.mod_action import ModAction
    from tower_dal.entities.post import Post
    from tower_dal.entities.report import Report, Reportable
    from tower_dal.entities.send import Send

logger = logging.getLogger(__name__)

_SCRUBBED_BIO = "My profile content got deleted by a moderator and I am so embarrassed."
_SCRUBBED_DISPLAY_NAME = "Disappointment"


class UserStatus(IntEnum):
    BANNED = -1
    UNVERIFIED = 0
    VERIFIED = 1
    APPROVED = 2
    EMPLOYEE = 3
    MANAGER = 4
    DEVELOPER = 5


class UserDocument(DocumentModel):
    username: str
    email: str
    display_name: str = Field(alias="displayName")
    bio: str = ""
    status: UserStatus
    following: list[Reference] = Field(default_factory=list)
    followers: list[Reference] = Field(default_factory=list)
    avatar: str | None = None
    total_post_size_in_bytes: int = Field(default=0, alias="totalPostSizeInBytes")
    total_sends: dict[RouteType, int] = Field(default_factory=dict, alias="totalSends")
    best_sends: dict[RouteType, int] = Field(default_factory=dict, alias="bestSends")
    reports: list[Reference] = Field(default_factory=list)
    no_spoilers: bool = Field(default=True, alias="noSpoilers")


@dataclass
class UserState:
    username: str
    email: str
    display_name: str
    bio: str
    status: UserStatus
    following: list["User"]
    followers: list["User"]
    avatar_path: str
    total_post_size_in_bytes: int
    total_sends: dict[RouteType, int] = field(default_factory=dict)
    best_sends: dict[RouteType, int] = field(default_factory=dict)
    reports: list["User"] = field(default_factory=list)
    no_spoilers: bool = True


class User(LazyEntity[UserState]):
    """A climber's account."""

    collection: ClassVar[str] = "users"

    @classmethod
    async def create(
        cls,
        client: "Client",
        username: str,
        email: str,
        *,
        display_name: str | None = None,
        user_id: str | None = None,
    ) -> "User":
        """Create an unverified account document and return it materialized.

        `user_id` lets the caller reuse an id issued elsewhere (for example
        by an auth provider); otherwise the store allocates one.
        """
        reference = cls.ref(user_id) if user_id else client.store.new_reference(cls.collection)
        data = {
            "username": username,
            "email": email,
            "displayName": display_name or client.settings.default_display_name,
            "bio": client.settings.default_bio,
            "status": int(UserStatus.UNVERIFIED),
            "following": [],
            "followers": [],
            "createdOn": SERVER_TIMESTAMP,
        }

        async def body(tx: Transaction) -> None:
            if (await tx.get(reference)).exists:
                raise DalError(f"User '{reference}' already exists", kind=ErrorKind.INVALID_INPUT)
            tx.set(reference, data)

        await client.store.run_transaction(body)
        logger.info("Created user %s (%s)", reference, username)
        return cls.from_data(client, {k: v for k, v in data.items() if k != "createdOn"}, reference)

    @classmethod
    async def by_username(cls, client: "Client", username: str) -> "User | None":
        """Look up a user by username, or None if nobody has it."""
        query = Query(collection=cls.collection).where("username", FilterOp.EQUAL, username)
        snapshots = await client.store.query_page(query, PageContext(), 1)
        if not snapshots:
            return None
        return cls.from_snapshot(client, snapshots[0])

    def _decode(self, data: Mapping[str, Any]) -> UserState:
        doc = UserDocument.model_validate(data)
        return UserState(
            username=doc.username,
            email=doc.email,
            display_name=doc.display_name,
            bio=doc.bio,
            status=doc.status,
            following=self._wrap_all(User, doc.following),
            followers=self._wrap_all(User, doc.followers),
            avatar_path=doc.avatar or self._client.settings.default_avatar_path,
            total_post_size_in_bytes=doc.total_post_size_in_bytes,
            total_sends=dict(doc.total_sends),
            best_sends=dict(doc.best_sends),
            reports=self._wrap_all(User, doc.reports),
            no_spoilers=doc.no_spoilers,
        )

    async def get_username(self) -> str:
        return (await self._loaded()).username

    async def get_email(self) -> str:
        return (await self._loaded()).email

    async def get_display_name(self) -> str:
        return (await self._loaded()).display_name

    async def get_bio(self) -> str:
        return (await self._loaded()).bio

    async def get_status(self) -> UserStatus:
        return (await self._loaded()).status

    async def get_avatar_path(self) -> str:
        return (await self._loaded()).avatar_path

    async def get_following(self) -> list["User"]:
        return (await self._loaded()).following

    async def get_followers(self) -> list["User"]:
        return (await self._loaded()).followers

    async def get_reports(self) -> list["User"]:
        return (await self._loaded()).reports

    async def get_total_post_size_in_bytes(self) -> int:
        return (await self._loaded()).total_post_size_in_bytes

    async def get_no_spoilers(self) -> bool:
        return (await self._loaded()).no_spoilers

    async def is_following(self, other: "User") -> bool:
        return contains_ref((await self._loaded()).following, other)

    async def follow_user(self, other: "User") -> bool:
        """Follow `other`. Returns False if already following."""
        if self.same_document(other):
            raise DalError("Users cannot follow themselves", kind=ErrorKind.INVALID_INPUT)
        return await self._set_following(other, follow=True)

    async def unfollow_user(self, other: "User") -> bool:
        """Stop following `other`. Returns False if not following."""
        return await self._set_following(other, follow=False)

    async def _set_following(self, other: "User", *, follow: bool) -> bool:
        if await self.is_following(other) == follow:
            return False
        me = self._require_reference()
        them = other._require_reference()

        async def body(tx: Transaction) -> bool:
            await self.refresh_in_transaction(tx)
            await other.refresh_in_transaction(tx)
            if contains_ref(self.state.following, other) == follow:
                return False
            tx.update(me, {"following": array_change(them, add=follow)})
            tx.update(them, {"followers": array_change(me, add=follow)})
            return True

        changed = await self._client.store.run_transaction(body)
        if changed:
            if follow:
                self.state.following.append(other)
                other.state.followers.append(User(self._client, me))
            else:
                remove_ref(self.state.following, other)
                remove_ref(other.state.followers, self)
            logger.debug("%s %s %s", me, "followed" if follow else "unfollowed", them)
        return changed

    async def toggle_no_spoilers(self) -> bool:
        """Flip the no-spoilers preference and return the new value."""
        value = not await self.get_no_spoilers()
        await self._update_fields({"noSpoilers": value})
        self.state.no_spoilers = value
        return value

    async def set_bio(self, bio: str) -> None:
        await self._update_fields({"bio": bio})
        if self._state is not None:
            self._state.bio = bio

    async def set_display_name(self, display_name: str) -> None:
        if await self.get_display_name() == display_name:
            return
        await self._update_fields({"displayName": display_name})
        self.state.display_name = display_name

    async def get_best_send_classifier(self, route_type: RouteType) -> RouteClassifier | None:
        """Hardest grade sent for `route_type`, or None if nothing was sent."""
        grade = (await self._loaded()).best_sends.get(route_type)
        if grade is None:
            return None
        return RouteClassifier(rawgrade=grade, type=route_type)

    async def get_total_sends_by_type(self, route_type: RouteType) -> int:
        return (await self._loaded()).total_sends.get(route_type, 0)

    async def get_total_sends(self) -> int:
        state = await self._loaded()
        return sum(state.total_sends.get(route_type, 0) for route_type in RouteType)

    async def get_best_send(self, route_type: RouteType) -> "Send | None":
        """This user's hardest send of `route_type`, or None if there is none."""
        from tower_dal.entities.send import Send

        query = (
            Query(collection=Send.collection)
            .where("user", FilterOp.EQUAL, self._require_reference())
            .where("type", FilterOp.EQUAL, str(route_type))
            .ordered("rawgrade", Direction.DESCENDING)
        )
        snapshots = await self._client.store.query_page(query, PageContext(), 1)
        if not snapshots:
            return None
        return Send.from_snapshot(self._client, snapshots[0])

    # Reports

    async def already_reported(self, content: "Reportable") -> bool:
        return contains_ref(await content.get_reports(), self)

    async def add_report(self, content: "Reportable") -> "Report | None":
        """Report a post, comment or profile.

        Writes a report document and adds this user to the content's report
        list in one transaction. Returns None without writing when this
        user already reported the content or it already carries more than
        `settings.max_reports` reports.

        Raises:
            DalError: PRECONDITION if the content belongs to staff.
        """
        from tower_dal.entities.report import Report

        author = await _author_of(content)
        if await author.get_status() >= UserStatus.EMPLOYEE:
            raise DalError("Content by staff cannot be reported", kind=ErrorKind.PRECONDITION)
        limit = self._client.settings.max_reports
        reports = await content.get_reports()
        if contains_ref(reports, self) or len(reports) > limit:
            return None

        me = self._require_reference()
        target = content._require_reference()
        data = {
            "reporter": me,
            "reported": author._require_reference(),
            "content": target,
            "timestamp": SERVER_TIMESTAMP,
        }
        report_ref = self._client.store.new_reference(Report.collection)

        async def body(tx: Transaction) -> bool:
            await content.refresh_in_transaction(tx)
            current = content.state.reports
            if contains_ref(current, self) or len(current) > limit:
                return False
            tx.set(report_ref, data)
            tx.update(target, {"reports": array_change(me, add=True)})
            return True

        if not await self._client.store.run_transaction(body):
            return None
        content.state.reports.append(User(self._client, me))
        logger.info("%s reported %s", me, target)
        return Report(self._client, report_ref)

    async def remove_report(self, content: "Reportable") -> bool:
        """Withdraw this user's report of `content`. Returns False if there was none."""
        from tower_dal.entities.report import Report

        if not await self.already_reported(content):
            return False
        me = self._require_reference()
        target = content._require_reference()
        query = (
            Query(collection=Report.collection)
            .where("reporter", FilterOp.EQUAL, me)
            .where("content", FilterOp.EQUAL, target)
        )
        found = await self._client.store.query_page(query, PageContext(), 1)

        async def body(tx: Transaction) -> bool:
            await content.refresh_in_transaction(tx)
            if not contains_ref(content.state.reports, self):
                return False
            if found:
                tx.delete(found[0].reference)
            tx.update(target, {"reports": array_change(me, add=False)})
            return True

        changed = await self._client.store.run_transaction(body)
        if changed:
            remove_ref(content.state.reports, self)
        return changed

    # Moderation

    async def _require_rank(self, rank: UserStatus) -> None:
        if await self.get_status() < rank:
            msg = f"{self.reference} needs {rank.name.lower()} status for this action"
            raise DalError(msg, kind=ErrorKind.PRECONDITION)

    async def clear_all_reports(self, content: "Reportable") -> int:
        """Delete every report on `content`. Returns how many were removed.

        Raises:
            DalError: PRECONDITION unless this user is staff.
        """
        from tower_dal.entities.report import Report

        await self._require_rank(UserStatus.EMPLOYEE)
        target = content._require_reference()
        query = Query(collection=Report.collection).where("content", FilterOp.EQUAL, target)
        reports = await QueryCursor(
            self._client, Report, query, self._client.settings.moderation_page_size
        ).drain()

        async def body(tx: Transaction) -> None:
            await content.refresh_in_transaction(tx)
            for report in reports:
                tx.delete(report._require_reference())
            tx.update(target, {"reports": []})

        await self._client.store.run_transaction(body)
        content.state.reports.clear()
        logger.info("%s cleared %d reports on %s", self.reference, len(reports), target)
        return len(reports)

    async def delete_reported_content(self, content: "Reportable", reason: str) -> "ModAction":
        """Remove reported content and log the action in the moderation history.

        Posts and comments are deleted. Profiles are scrubbed: the avatar,
        bio and display name are reset. Reports on the content are cleared
        first. Nobody is banned.
        """
        from tower_dal.entities.mod_action import ModAction

        await self._require_rank(UserStatus.EMPLOYEE)
        author = await _author_of(content)
        data = self._mod_action_data(author, await author.get_email(), reason)
        await self.clear_all_reports(content)
        if isinstance(content, User):
            await content._scrub_profile()
        else:
            await content.delete()

        action_ref = self._client.store.new_reference(ModAction.collection)

        async def body(tx: Transaction) -> None:
            tx.set(action_ref, data)

        await self._client.store.run_transaction(body)
        return ModAction(self._client, action_ref)

    async def _scrub_profile(self) -> None:
        await self._update_fields(
            {"avatar": None, "bio": _SCRUBBED_BIO, "displayName": _SCRUBBED_DISPLAY_NAME}
        )
        if self._state is not None:
            self._state.avatar_path = self._client.settings.default_avatar_path
            self._state.bio = _SCRUBBED_BIO
            self._state.display_name = _SCRUBBED_DISPLAY_NAME

    def _mod_action_data(self, moderated: "User", email: str, reason: str) -> dict[str, Any]:
        return {
            "userModerated": moderated._require_reference(),
            "userEmail": email,
            "mod": self._require_reference(),
            "modReason": reason,
            "timestamp": SERVER_TIMESTAMP,
        }

    async def ban_user(self, user: "User", reason: str) -> "ModAction":
        """Ban `user` and record why in the moderation history.

        Raises:
            DalError: PRECONDITION unless this user is staff and outranks
                `user`; INVALID_INPUT when banning oneself.
        """
        from tower_dal.entities.mod_action import ModAction

        if self.same_document(user):
            raise DalError("Users cannot ban themselves", kind=ErrorKind.INVALID_INPUT)
        await self._require_rank(UserStatus.EMPLOYEE)
        them = user._require_reference()
        action_ref = self._client.store.new_reference(ModAction.collection)

        async def body(tx: Transaction) -> None:
            await self.refresh_in_transaction(tx)
            await user.refresh_in_transaction(tx)
            if self.state.status < UserStatus.EMPLOYEE or user.state.status >= self.state.status:
                msg = f"{self.reference} cannot ban {them}"
                raise DalError(msg, kind=ErrorKind.PRECONDITION)
            tx.update(them, {"status": int(UserStatus.BANNED)})
            tx.set(action_ref, self._mod_action_data(user, user.state.email, reason))

        await self._client.store.run_transaction(body)
        user.state.status = UserStatus.BANNED
        logger.info("%s banned %s", self.reference, them)
        return ModAction(self._client, action_ref)

    async def _change_status(
        self,
        other: "User",
        *,
        rank: UserStatus,
        allowed: Callable[[UserStatus], bool],
        status: UserStatus,
        step_down: bool = False,
    ) -> bool:
        """Set `other`'s status if this user holds `rank` and `allowed` accepts
        `other`'s current status. Both are checked inside the transaction.

        With `step_down`, a manager acting on another user becomes an
        employee in the same write.
        """
        if self.same_document(other):
            raise DalError("Users cannot change their own status", kind=ErrorKind.INVALID_INPUT)
        me = self._require_reference()
        them = other._require_reference()

        async def body(tx: Transaction) -> bool:
            await self.refresh_in_transaction(tx)
            await other.refresh_in_transaction(tx)
            if self.state.status < rank or not allowed(other.state.status):
                return False
            tx.update(them, {"status": int(status)})
            if step_down and self.state.status == UserStatus.MANAGER:
                tx.update(me, {"status": int(UserStatus.EMPLOYEE)})
            return True

        changed = await self._client.store.run_transaction(body)
        if changed:
            other.state.status = status
            if step_down and self.state.status == UserStatus.MANAGER:
                self.state.status = UserStatus.EMPLOYEE
            logger.info("%s set %s to %s", me, them, status.name.lower())
        return changed

    async def approve_other_user(self, other: "User") -> bool:
        """Approve an unverified or verified user. Requires employee status."""
        return await self._change_status(
            other,
            rank=UserStatus.EMPLOYEE,
            allowed=lambda s: UserStatus.UNVERIFIED <= s <= UserStatus.VERIFIED,
            status=UserStatus.APPROVED,
        )

    async def promote_other_to_employee(self, other: "User") -> bool:
        """Make a non-staff user an employee. Requires manager status."""
        return await self._change_status(
            other,
            rank=UserStatus.MANAGER,
            allowed=lambda s: UserStatus.UNVERIFIED <= s <= UserStatus.APPROVED,
            status=UserStatus.EMPLOYEE,
        )

    async def promote_other_to_manager(self, other: "User") -> bool:
        """Hand an employee manager status; a manager doing so becomes an employee."""
        return await self._change_status(
            other,
            rank=UserStatus.MANAGER,
            allowed=lambda s: s == UserStatus.EMPLOYEE,
            status=UserStatus.MANAGER,
            step_down=True,
        )

    async def demote_employee_to_approved(self, other: "User") -> bool:
        return await self._change_status(
            other,
            rank=UserStatus.MANAGER,
            allowed=lambda s: s == UserStatus.EMPLOYEE,
            status=UserStatus.APPROVED,
        )

    async def demote_to_verified(self, other: "User") -> bool:
        """Drop an approved user or employee to read-only verified status."""
        return await self._change_status(
            other,
            rank=UserStatus.MANAGER,
            allowed=lambda s: UserStatus.APPROVED <= s <= UserStatus.EMPLOYEE,
            status=UserStatus.VERIFIED,
        )

    def posts_cursor(self) -> QueryCursor["Post"]:
        """This user's posts, newest first."""
        from tower_dal.entities.post import Post

        query = (
            Query(collection=Post.collection)
            .where("author", FilterOp.EQUAL, self._require_reference())
            .ordered("timestamp", Direction.DESCENDING)
        )
        return QueryCursor(self._client, Post, query, self._client.settings.default_page_size)

    def comments_cursor(self) -> QueryCursor["Comment"]:
        """This user's comments, newest first."""
        from tower_dal.entities.comment import Comment

        query = (
            Query(collection=Comment.collection)
            .where("author", FilterOp.EQUAL, self._require_reference())
            .ordered("timestamp", Direction.DESCENDING)
        )
        return QueryCursor(self._client, Comment, query, self._client.settings.comment_page_size)

    def followers_cursor(self) -> QueryCursor["User"]:
        """Users whose following list contains this user."""
        query = Query(collection=User.collection).where(
            "following", FilterOp.ARRAY_CONTAINS, self._require_reference()
        )
        return QueryCursor(self._client, User, query, self._client.settings.follower_page_size)

    def recent_sends_cursor(self) -> QueryCursor["Send"]:
        """This user's sends, most recent first."""
        from tower_dal.entities.send import Send

        query = (
            Query(collection=Send.collection)
            .where("user", FilterOp.EQUAL, self._require_reference())
            .ordered("timestamp", Direction.DESCENDING)
        )
        return QueryCursor(self._client, Send, query, self._client.settings.default_page_size)

    async def following_cursor(self) -> ArrayCursor["User"]:
        """The users this user follows, in the order they were followed."""
        return ArrayCursor(list((await self._loaded()).following))


async def _author_of(content: "Reportable") -> User:
    """The user responsible for `content`; a profile is its own author."""
    if isinstance(content, User):
        return content
    return await content.get_author()
