"""Tests for tower_dal.client."""

import logging

import pytest

from tower_dal.client import Client
from tower_dal.config import Settings
from tower_dal.entities import User
from tower_dal.logging_config import ROOT_LOGGER_NAME
from tower_dal.providers.memory import MemoryStore


class TestConnect:
    """Tests for building a client from settings."""

    @pytest.mark.asyncio
    async def test_memory_backend(self, config: Settings):
        """Test that the default backend is the in-memory store."""
        client = await Client.connect(config)

        assert isinstance(client.store, MemoryStore)
        assert client.settings is config

    @pytest.mark.asyncio
    async def test_context_manager_disconnects(self, config: Settings):
        """Test that leaving the context releases the store."""
        async with await Client.connect(config) as client:
            client.store.seed(User.ref("ada"), {"username": "ada"})
        assert client.store.read_raw(User.ref("ada")) is None

    @pytest.mark.asyncio
    async def test_applies_log_level(self):
        """Test that connecting applies the configured log level."""
        await Client.connect(Settings(_env_file=None, log_level="WARNING"))

        assert logging.getLogger(ROOT_LOGGER_NAME).level == logging.WARNING


class TestInvalidation:
    """Tests for marking documents stale."""

    def test_consume_once(self, client: Client):
        """Test that an invalidation mark is reported exactly once."""
        ref = User.ref("ada")
        assert not client.consume_invalidation(ref)

        client.invalidate(ref)

        assert client.consume_invalidation(ref)
        assert not client.consume_invalidation(ref)
