"""Tests for tower_dal.entities.user."""

import pytest

from conftest import Seeder, raw
from tower_dal.client import Client
from tower_dal.entities import Route, RouteClassifier, RouteType, Send, User, UserStatus
from tower_dal.errors import DalError, ErrorKind
from tower_dal.providers.memory import MemoryStore


class TestFollowing:
    """Tests for follow_user / unfollow_user."""

    @pytest.mark.asyncio
    async def test_follow_updates_both_documents(
        self, client: Client, store: MemoryStore, seed: Seeder
    ):
        """Test that following writes both sides and mirrors them in memory."""
        ada_ref, bob_ref = seed.user("ada"), seed.user("bob")
        ada, bob = User(client, ada_ref), User(client, bob_ref)

        assert await ada.follow_user(bob) is True

        assert raw(store, ada_ref)["following"] == [bob_ref]
        assert raw(store, bob_ref)["followers"] == [ada_ref]
        assert await ada.is_following(bob)
        assert [u.reference for u in await bob.get_followers()] == [ada_ref]
        assert store.stats.transactions == 1

    @pytest.mark.asyncio
    async def test_follow_twice_is_noop(self, client: Client, store: MemoryStore, seed: Seeder):
        """Test that re-following an already followed user writes nothing."""
        bob_ref = seed.user("bob")
        ada = User(client, seed.user("ada", following=[bob_ref]))

        assert await ada.follow_user(User(client, bob_ref)) is False
        assert store.stats.transactions == 0

    @pytest.mark.asyncio
    async def test_unfollow_when_not_following_opens_no_transaction(
        self, client: Client, store: MemoryStore, seed: Seeder
    ):
        """Test that removing a relationship that does not hold never writes."""
        ada = User(client, seed.user("ada"))
        bob = User(client, seed.user("bob"))

        assert await ada.unfollow_user(bob) is False

        assert store.stats.transactions == 0
        assert store.stats.commits == 0
        assert store.stats.writes == 0

    @pytest.mark.asyncio
    async def test_unfollow_removes_both_sides(
        self, client: Client, store: MemoryStore, seed: Seeder
    ):
        """Test that unfollowing clears both reference lists."""
        ada_ref = seed.user("ada", following=[User.ref("bob")])
        bob_ref = seed.user("bob", followers=[ada_ref])
        ada, bob = User(client, ada_ref), User(client, bob_ref)

        assert await ada.unfollow_user(bob) is True

        assert raw(store, ada_ref)["following"] == []
        assert raw(store, bob_ref)["followers"] == []
        assert not await ada.is_following(bob)
        assert await bob.get_followers() == []

    @pytest.mark.asyncio
    async def test_stale_state_is_rechecked_in_transaction(
        self, client: Client, store: MemoryStore, seed: Seeder
    ):
        """Test that a follow already made elsewhere is detected before writing."""
        bob_ref = seed.user("bob")
        ada_ref = seed.user("ada")
        ada = User(client, ada_ref)
        await ada.materialize()
        seed.user("ada", following=[bob_ref])

        assert await ada.follow_user(User(client, bob_ref)) is False
        assert store.stats.commits == 0
        assert await ada.is_following(User(client, bob_ref))

    @pytest.mark.asyncio
    async def test_cannot_follow_self(self, client: Client, seed: Seeder):
        """Test that self-follows are rejected."""
        ref = seed.user("ada")
        with pytest.raises(DalError) as info:
            await User(client, ref).follow_user(User(client, ref))
        assert info.value.kind is ErrorKind.INVALID_INPUT

    @pytest.mark.asyncio
    async def test_following_missing_user_fails(self, client: Client, store: MemoryStore, seed: Seeder):
        """Test that following a deleted account raises NOT_FOUND and writes nothing."""
        ada = User(client, seed.user("ada"))

        with pytest.raises(DalError) as info:
            await ada.follow_user(User.by_id(client, "ghost"))
        assert info.value.kind is ErrorKind.NOT_FOUND
        assert store.stats.commits == 0


class TestProfile:
    """Tests for profile fields and preferences."""

    @pytest.mark.asyncio
    async def test_toggle_no_spoilers(self, client: Client, store: MemoryStore, seed: Seeder):
        """Test that the preference flips in the store and in memory."""
        ref = seed.user("ada")
        user = User(client, ref)

        assert await user.toggle_no_spoilers() is False
        assert raw(store, ref)["noSpoilers"] is False
        assert await user.get_no_spoilers() is False

    @pytest.mark.asyncio
    async def test_set_bio_and_display_name(self, client: Client, store: MemoryStore, seed: Seeder):
        """Test profile text updates."""
        ref = seed.user("ada")
        user = User(client, ref)

        await user.set_bio("Slab enjoyer")
        await user.set_display_name("Ada L.")

        data = raw(store, ref)
        assert data["bio"] == "Slab enjoyer"
        assert data["displayName"] == "Ada L."
        assert await user.get_bio() == "Slab enjoyer"
        assert await user.get_display_name() == "Ada L."

    @pytest.mark.asyncio
    async def test_unchanged_display_name_skips_write(
        self, client: Client, store: MemoryStore, seed: Seeder
    ):
        """Test that setting the current display name is a no-op."""
        user = User(client, seed.user("ada"))
        await user.set_display_name("Ada")
        assert store.stats.transactions == 0

    @pytest.mark.asyncio
    async def test_create_user(self, client: Client, store: MemoryStore):
        """Test creating an account with default profile values."""
        user = await User.create(client, "ada", "ada@knights.ucf.edu", user_id="uid-1")

        assert user.id == "uid-1"
        assert await user.get_status() is UserStatus.UNVERIFIED
        assert await user.get_bio() == "I'm a new climber!"
        assert await user.get_display_name() == "Tower Climber"
        assert raw(store, user.ref("uid-1"))["createdOn"] is not None

    @pytest.mark.asyncio
    async def test_create_existing_user_fails(self, client: Client, seed: Seeder):
        """Test that an id already in use is rejected."""
        seed.user("ada")
        with pytest.raises(DalError) as info:
            await User.create(client, "ada", "ada@knights.ucf.edu", user_id="ada")
        assert info.value.kind is ErrorKind.INVALID_INPUT


class TestSendStats:
    """Tests for per-type send totals and best grades."""

    @pytest.mark.asyncio
    async def test_totals_and_best(self, client: Client, seed: Seeder):
        """Test reading send statistics."""
        user = User(
            client,
            seed.user(
                "ada",
                totalSends={"Boulder": 4, "Top-Rope": 2},
                bestSends={"Boulder": 0, "Top-Rope": 101},
            ),
        )

        assert await user.get_total_sends_by_type(RouteType.BOULDER) == 4
        assert await user.get_total_sends_by_type(RouteType.TRAVERSE) == 0
        assert await user.get_total_sends() == 6
        assert await user.get_best_send_classifier(RouteType.BOULDER) == RouteClassifier(
            rawgrade=0, type=RouteType.BOULDER
        )
        best_rope = await user.get_best_send_classifier(RouteType.TOPROPE)
        assert best_rope is not None and best_rope.display_string == "5.10+"
        assert await user.get_best_send_classifier(RouteType.LEADCLIMB) is None


class TestUserCursors:
    """Tests for the cursors hanging off a user."""

    @pytest.mark.asyncio
    async def test_posts_cursor(self, client: Client, seed: Seeder):
        """Test that a user's posts come newest first and exclude others' posts."""
        ada_ref, bob_ref = seed.user("ada"), seed.user("bob")
        for minute in (1, 5, 3):
            seed.post(f"ada-{minute}", ada_ref, minute)
        seed.post("bob-9", bob_ref, 9)

        posts = await User(client, ada_ref).posts_cursor().drain()

        assert [p.id for p in posts] == ["ada-5", "ada-3", "ada-1"]

    @pytest.mark.asyncio
    async def test_comments_cursor(self, client: Client, seed: Seeder):
        """Test that a user's comments come newest first."""
        ada_ref = seed.user("ada")
        post_ref = seed.post("p1", ada_ref, 0)
        seed.comment("c1", post_ref, ada_ref, 1)
        seed.comment("c2", post_ref, ada_ref, 2)

        comments = await User(client, ada_ref).comments_cursor().drain()

        assert [c.id for c in comments] == ["c2", "c1"]

    @pytest.mark.asyncio
    async def test_followers_cursor(self, client: Client, seed: Seeder):
        """Test that followers are found through their following lists."""
        ada_ref = seed.user("ada")
        seed.user("bob", following=[ada_ref])
        seed.user("cy", following=[ada_ref])
        seed.user("dee")

        followers = await User(client, ada_ref).followers_cursor().drain()

        assert sorted(u.id for u in followers) == ["bob", "cy"]

    @pytest.mark.asyncio
    async def test_following_cursor_skips_deleted(self, client: Client, seed: Seeder):
        """Test walking the following list, skipping deleted accounts."""
        bob_ref = seed.user("bob")
        ghost_ref = User.ref("ghost")
        cy_ref = seed.user("cy")
        ada = User(client, seed.user("ada", following=[bob_ref, ghost_ref, cy_ref]))

        cursor = await ada.following_cursor()

        assert [u.id for u in await cursor.drain()] == ["bob", "cy"]


class TestLookups:
    """Tests for finding users and their best sends."""

    @pytest.mark.asyncio
    async def test_by_username(self, client: Client, seed: Seeder):
        """Test looking a user up by username."""
        ada_ref = seed.user("ada")
        seed.user("bob")

        found = await User.by_username(client, "ada")

        assert found is not None and found.reference == ada_ref
        assert found.is_materialized
        assert await User.by_username(client, "nobody") is None

    @pytest.mark.asyncio
    async def test_get_best_send(self, client: Client, store: MemoryStore, seed: Seeder):
        """Test that the hardest send of the requested type is returned."""
        ada = seed.user("ada")
        grades = [(3, RouteType.BOULDER), (6, RouteType.BOULDER), (110, RouteType.TOPROPE)]
        for i, (rawgrade, route_type) in enumerate(grades):
            route_ref = seed.route(f"route-{i}", rawgrade=rawgrade, route_type=route_type)
            store.seed(
                Send.ref(f"s{i}"),
                {"user": ada, "route": route_ref, "rawgrade": rawgrade, "type": str(route_type)},
            )
        store.seed(
            Send.ref("other"),
            {"user": seed.user("bob"), "route": Route.ref("route-0"), "rawgrade": 7, "type": "Boulder"},
        )
        user = User(client, ada)

        best = await user.get_best_send(RouteType.BOULDER)

        assert best is not None and best.id == "s1"
        classifier = await best.get_classifier()
        assert classifier is not None and classifier.display_string == "V6"
        assert await user.get_best_send(RouteType.TRAVERSE) is None
