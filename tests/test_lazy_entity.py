"""Tests for tower_dal.entities.base: lazy loading, memoization and decoding."""

import asyncio

import pytest

from conftest import BASE_TIME, FlakyStore, Seeder, at
from tower_dal.client import Client
from tower_dal.entities import Post, User, UserStatus
from tower_dal.errors import DalError, ErrorKind
from tower_dal.providers.memory import MemoryStore
from tower_dal.schema.datatypes import Reference


class TestMaterialize:
    """Tests for fetch-on-first-access behaviour."""

    @pytest.mark.asyncio
    async def test_concurrent_accessors_share_one_fetch(
        self, client: Client, store: MemoryStore, seed: Seeder
    ):
        """Test that overlapping first accesses issue exactly one fetch."""
        ref = seed.user("ada")
        user = User(client, ref)

        username, email, bio, status = await asyncio.gather(
            user.get_username(),
            user.get_email(),
            user.get_bio(),
            user.get_status(),
        )

        assert username == "ada"
        assert email == "ada@knights.ucf.edu"
        assert bio == "I'm a new climber!"
        assert status is UserStatus.VERIFIED
        assert store.stats.gets == 1

    @pytest.mark.asyncio
    async def test_loaded_entity_does_not_refetch(
        self, client: Client, store: MemoryStore, seed: Seeder
    ):
        """Test that accessors after the first load are served from memory."""
        user = User(client, seed.user("ada"))
        await user.get_username()
        await user.get_display_name()
        await user.get_following()

        assert store.stats.gets == 1
        assert user.is_materialized

    @pytest.mark.asyncio
    async def test_prepopulated_entity_never_fetches(self, client: Client, store: MemoryStore):
        """Test that entities built from query data skip the store entirely."""
        post = Post.from_data(
            client,
            {
                "author": Reference(collection="users", id="ada"),
                "timestamp": BASE_TIME,
                "textContent": "Sent the project!",
            },
            Reference(collection="posts", id="p1"),
        )

        assert post.is_materialized
        assert await post.get_text_content() == "Sent the project!"
        assert await post.get_timestamp() == BASE_TIME
        assert await post.get_likes() == []
        assert store.stats.gets == 0

    @pytest.mark.asyncio
    async def test_missing_document_leaves_entity_unloaded(
        self, client: Client, store: MemoryStore, seed: Seeder
    ):
        """Test that a missing document raises NOT_FOUND and can be retried."""
        user = User.by_id(client, "ghost")

        with pytest.raises(DalError) as info:
            await user.get_username()
        assert info.value.kind is ErrorKind.NOT_FOUND
        assert not user.is_materialized

        seed.user("ghost")
        assert await user.get_username() == "ghost"
        assert store.stats.gets == 2

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self, flaky_client: Client, flaky: FlakyStore, seed: Seeder):
        """Test that store errors surface to the caller and leave no partial state."""
        user = User(flaky_client, seed.user("ada"))
        flaky.failing_gets = 1

        with pytest.raises(DalError) as info:
            await user.get_username()
        assert info.value.kind is ErrorKind.UNAVAILABLE
        assert not user.is_materialized

        assert await user.get_username() == "ada"

    @pytest.mark.asyncio
    async def test_entity_without_reference_cannot_load(self, client: Client):
        """Test that materializing an entity with no reference is rejected."""
        with pytest.raises(DalError) as info:
            await User(client).materialize()
        assert info.value.kind is ErrorKind.INVALID_INPUT

    @pytest.mark.asyncio
    async def test_force_refetches(self, client: Client, store: MemoryStore, seed: Seeder):
        """Test that force=True reloads an already loaded entity."""
        ref = seed.user("ada")
        user = User(client, ref)
        await user.materialize()
        seed.user("ada", bio="Crimps all day")

        await user.materialize(force=True)

        assert await user.get_bio() == "Crimps all day"
        assert store.stats.gets == 2

    @pytest.mark.asyncio
    async def test_forced_refresh_of_deleted_document_unloads(
        self, client: Client, store: MemoryStore, seed: Seeder
    ):
        """Test that a refresh finding the document gone drops the old state."""
        post_ref = seed.post("p1", seed.user("ada"), 1)
        post = Post(client, post_ref)
        await post.materialize()
        store.drop(post_ref)

        with pytest.raises(DalError) as info:
            await post.materialize(force=True)
        assert info.value.kind is ErrorKind.NOT_FOUND
        assert not post.is_materialized

        with pytest.raises(DalError):
            await post.get_text_content()
        assert store.stats.gets == 3

    @pytest.mark.asyncio
    async def test_invalidated_reference_refetches_once(
        self, client: Client, store: MemoryStore, seed: Seeder
    ):
        """Test that a client invalidation triggers exactly one reload."""
        ref = seed.user("ada")
        user = User(client, ref)
        await user.materialize()
        seed.user("ada", bio="Updated elsewhere")

        client.invalidate(ref)

        assert await user.get_bio() == "Updated elsewhere"
        assert await user.get_bio() == "Updated elsewhere"
        assert store.stats.gets == 2

    @pytest.mark.asyncio
    async def test_invalidation_survives_failed_refetch(
        self, flaky_client: Client, flaky: FlakyStore, store: MemoryStore, seed: Seeder
    ):
        """Test that an invalidation mark is kept until a refetch succeeds."""
        ref = seed.user("ada")
        user = User(flaky_client, ref)
        await user.materialize()
        seed.user("ada", bio="Updated elsewhere")
        flaky_client.invalidate(ref)
        flaky.failing_gets = 1

        with pytest.raises(DalError) as info:
            await user.get_bio()
        assert info.value.kind is ErrorKind.UNAVAILABLE

        assert await user.get_bio() == "Updated elsewhere"
        assert not flaky_client.is_invalidated(ref)
        assert store.stats.gets == 2


class TestDecoding:
    """Tests for turning document data into entity state."""

    @pytest.mark.asyncio
    async def test_defaults_for_missing_optional_fields(self, client: Client, seed: Seeder):
        """Test that absent optional fields fall back to their defaults."""
        user = User(client, seed.user("ada"))

        assert await user.get_avatar_path() == "avatars/climber.png"
        assert await user.get_no_spoilers() is True
        assert await user.get_total_post_size_in_bytes() == 0
        assert await user.get_reports() == []

    @pytest.mark.asyncio
    async def test_relationships_are_reference_only(self, client: Client, seed: Seeder):
        """Test that nested entities are lazy wrappers sharing the parent's client."""
        bob = seed.user("bob")
        ada = User(client, seed.user("ada", following=[bob]))

        following = await ada.get_following()

        assert len(following) == 1
        assert following[0].reference == bob
        assert following[0].client is client
        assert not following[0].is_materialized

    def test_exported_timestamp_shape_is_parsed(self, client: Client):
        """Test that {seconds, nanoseconds} timestamps decode to datetimes."""
        post = Post.from_data(
            client,
            {
                "author": Reference(collection="users", id="ada"),
                "timestamp": {"seconds": int(BASE_TIME.timestamp()), "nanoseconds": 0},
                "textContent": "hi",
            },
        )
        assert post.state.timestamp == BASE_TIME

    def test_malformed_document_is_invalid_input(self, client: Client):
        """Test that a document missing required fields is rejected."""
        with pytest.raises(DalError) as info:
            User.from_data(client, {"username": "ada"})
        assert info.value.kind is ErrorKind.INVALID_INPUT

    def test_wrong_collection_rejected(self, client: Client):
        """Test that an entity refuses a reference into another collection."""
        with pytest.raises(DalError) as info:
            User(client, Reference(collection="posts", id="p1"))
        assert info.value.kind is ErrorKind.INVALID_INPUT

    def test_state_requires_materialization(self, client: Client):
        """Test that reading state before loading raises PRECONDITION."""
        with pytest.raises(DalError) as info:
            User.by_id(client, "ada").state
        assert info.value.kind is ErrorKind.PRECONDITION


class TestIdentity:
    """Tests for reference identity helpers."""

    def test_same_document(self, client: Client):
        """Test that wrappers compare by reference, not by object."""
        a = User.by_id(client, "ada")
        b = User.by_id(client, "ada")
        c = User.by_id(client, "bob")

        assert a is not b
        assert a.same_document(b)
        assert not a.same_document(c)
        assert a.id == "ada"

    def test_unreferenced_wrappers_never_match(self, client: Client):
        """Test that entities without references are never the same document."""
        assert not User(client).same_document(User(client))

    def test_repr_shows_load_state(self, client: Client):
        """Test the debugging representation."""
        assert repr(User.by_id(client, "ada")) == "User(users/ada, lazy)"

    @pytest.mark.asyncio
    async def test_posts_ordered_by_seeded_minutes(self, client: Client, seed: Seeder):
        """Test the seeding helper's timestamps round-trip through decoding."""
        post = Post(client, seed.post("p1", seed.user("ada"), 7))
        assert await post.get_timestamp() == at(7)
