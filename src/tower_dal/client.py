"""Client context shared by entities and cursors."""

import logging
from typing import ClassVar, Self

from tower_dal.config import Settings, settings
from tower_dal.logging_config import setup_logging
from tower_dal.protocols import DocumentStore
from tower_dal.providers.memory import MemoryParams, MemoryStore
from tower_dal.schema.datatypes import Reference

logger = logging.getLogger(__name__)


class Client:
    """Explicitly constructed handle to the document store.

    Created once at startup and passed to every entity and cursor; nested
    entities inherit the client of the entity that created them.
    """

    __slots__: ClassVar[tuple[str, str, str]] = ("_invalidated", "settings", "store")

    store: DocumentStore
    settings: Settings
    _invalidated: set[Reference]

    def __init__(self, store: DocumentStore, config: Settings | None = None) -> None:
        self.store = store
        self.settings = config or settings
        self._invalidated = set()

    @classmethod
    async def connect(cls, config: Settings | None = None) -> Self:
        """Connect to the store selected by `config.backend`.

        Also applies `config.log_level` to the package logger.
        """
        config = config or settings
        setup_logging(config.log_level)
        store: DocumentStore
        if config.backend == "firestore":
            from tower_dal.providers import firestore

            store = await firestore.FirestoreStore.connect(
                firestore.FirestoreCredentials(
                    project_id=config.project_id,
                    credentials_path=config.credentials_path,
                    emulator_host=config.emulator_host,
                ),
                firestore.FirestoreParams(
                    database=config.database,
                    max_attempts=config.transaction_max_attempts,
                ),
            )
        else:
            store = await MemoryStore.connect(
                params=MemoryParams(max_attempts=config.transaction_max_attempts)
            )
        logger.info("Client connected using %s backend", config.backend)
        return cls(store, config)

    async def disconnect(self) -> None:
        """Release the underlying store."""
        await self.store.disconnect()
        logger.info("Client disconnected")

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.disconnect()

    def invalidate(self, reference: Reference) -> None:
        """Mark a document so the next materialization of it refetches."""
        self._invalidated.add(reference)

    def is_invalidated(self, reference: Reference) -> bool:
        return reference in self._invalidated

    def consume_invalidation(self, reference: Reference) -> bool:
        """Clear and report an invalidation mark for `reference`."""
        if reference in self._invalidated:
            self._invalidated.discard(reference)
            return True
        return False
