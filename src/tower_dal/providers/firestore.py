"""Firestore provider using google-cloud-firestore's async client."""

import logging
import os
from collections.abc import Awaitable, Callable, Mapping
from typing import TYPE_CHECKING, Any, ClassVar, Self, TypeVar

from pydantic import BaseModel

from tower_dal.errors import DalError, ErrorKind
from tower_dal.protocols import Transaction
from tower_dal.schema.contexts import PageContext
from tower_dal.schema.datatypes import (
    ArrayRemove,
    ArrayUnion,
    DocumentSnapshot,
    Increment,
    Reference,
    ServerTimestamp,
)
from tower_dal.schema.params import Direction, Query

if TYPE_CHECKING:
    from google.cloud.firestore import AsyncClient, AsyncTransaction

try:
    from google.api_core import exceptions as gexc
    from google.cloud import firestore
    from google.cloud.firestore_v1.async_document import AsyncDocumentReference
    from google.cloud.firestore_v1.base_query import FieldFilter
    from google.cloud.firestore_v1.document import DocumentReference
except ImportError as e:
    _msg = (
        "google-cloud-firestore is required for Firestore support. "
        "Install with: pip install 'tower-dal[firestore]'"
    )
    raise ImportError(_msg) from e

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FirestoreCredentials(BaseModel, frozen=True):
    """Credentials for Firestore connection."""

    project_id: str | None = None
    """GCP project; falls back to the ambient default project."""

    credentials_path: str | None = None
    """Service account JSON file; falls back to application default credentials."""

    emulator_host: str | None = None
    """host:port of a local Firestore emulator."""


class FirestoreParams(BaseModel, frozen=True):
    """Parameters for Firestore operations."""

    database: str = "(default)"
    """Firestore database id."""

    max_attempts: int = 5
    """Transaction attempts before giving up on contention."""


def _error_kind(error: Exception) -> ErrorKind:
    match error:
        case gexc.NotFound():
            return ErrorKind.NOT_FOUND
        case gexc.InvalidArgument() | gexc.FailedPrecondition():
            return ErrorKind.INVALID_INPUT
        case gexc.DeadlineExceeded():
            return ErrorKind.TIMEOUT
        case gexc.Aborted():
            return ErrorKind.ABORTED
        case gexc.ServiceUnavailable() | gexc.RetryError():
            return ErrorKind.UNAVAILABLE
        case _:
            return ErrorKind.PROVIDER


def from_firestore(value: Any) -> Any:
    """Convert Firestore values in document data to DAL values."""
    if isinstance(value, AsyncDocumentReference | DocumentReference):
        return Reference.from_path(value.path)
    if isinstance(value, list):
        return [from_firestore(v) for v in value]
    if isinstance(value, dict):
        return {k: from_firestore(v) for k, v in value.items()}
    return value


class FirestoreStore:
    """Firestore provider for document operations.

    Implements Provider[FirestoreCredentials, FirestoreParams] and
    DocumentStore.
    """

    __slots__: ClassVar[tuple[str, str]] = ("_client", "_params")

    _client: "AsyncClient"
    _params: FirestoreParams

    def __init__(self, client: "AsyncClient", params: FirestoreParams) -> None:
        self._client = client
        self._params = params

    @classmethod
    async def connect(cls, credentials: FirestoreCredentials, params: FirestoreParams) -> Self:
        """Create the async Firestore client."""
        if credentials.emulator_host:
            os.environ["FIRESTORE_EMULATOR_HOST"] = credentials.emulator_host
        try:
            if credentials.credentials_path:
                client = firestore.AsyncClient.from_service_account_json(
                    credentials.credentials_path,
                    project=credentials.project_id,
                    database=params.database,
                )
            else:
                client = firestore.AsyncClient(
                    project=credentials.project_id,
                    database=params.database,
                )
        except Exception as e:
            msg = f"Failed to connect to Firestore: {e}"
            raise DalError(msg, kind=ErrorKind.CONNECTION, source=e) from e

        logger.info("Connected to Firestore project %s", client.project)
        return cls(client, params)

    async def disconnect(self) -> None:
        """Release the Firestore client (no-op; gRPC channels close with the client)."""

    def to_firestore(self, value: Any) -> Any:
        """Convert DAL values in outgoing data to Firestore values."""
        match value:
            case Reference():
                return self._document(value)
            case ArrayUnion(values=values):
                return firestore.ArrayUnion([self.to_firestore(v) for v in values])
            case ArrayRemove(values=values):
                return firestore.ArrayRemove([self.to_firestore(v) for v in values])
            case Increment(amount=amount):
                return firestore.Increment(amount)
            case ServerTimestamp():
                return firestore.SERVER_TIMESTAMP
            case list() | tuple():
                return [self.to_firestore(v) for v in value]
            case Mapping():
                return {k: self.to_firestore(v) for k, v in value.items()}
            case _:
                return value

    def _document(self, reference: Reference) -> AsyncDocumentReference:
        return self._client.document(reference.path)

    def _snapshot(self, snap: Any, *, keyed: bool = False) -> DocumentSnapshot:
        data = snap.to_dict() if snap.exists else None
        return DocumentSnapshot(
            reference=Reference.from_path(snap.reference.path),
            data=from_firestore(data) if data is not None else None,
            key=snap if keyed else None,
        )

    def new_reference(self, collection: str) -> Reference:
        return Reference.from_path(self._client.collection(collection).document().path)

    async def get_document(self, reference: Reference) -> DocumentSnapshot:
        """Fetch one document."""
        try:
            snap = await self._document(reference).get()
        except Exception as e:
            msg = f"Failed to get document '{reference}': {e}"
            raise DalError(msg, kind=_error_kind(e), source=e) from e
        return self._snapshot(snap)

    async def query_page(
        self,
        query: Query,
        ctx: PageContext,
        limit: int,
    ) -> list[DocumentSnapshot]:
        """Run one page of a collection query.

        The pagination key is the raw Firestore snapshot, which is what
        `start_after` expects.
        """
        fs_query: Any = self._client.collection(query.collection)
        for condition in query.filters:
            fs_query = fs_query.where(
                filter=FieldFilter(
                    condition.field,
                    condition.op.value,
                    self.to_firestore(condition.value),
                )
            )
        for clause in query.order_by:
            direction = (
                firestore.Query.DESCENDING
                if clause.direction is Direction.DESCENDING
                else firestore.Query.ASCENDING
            )
            fs_query = fs_query.order_by(clause.field, direction=direction)
        if not ctx.is_initial:
            fs_query = fs_query.start_after(ctx.start_after)
        fs_query = fs_query.limit(limit)

        try:
            snaps = await fs_query.get()
        except Exception as e:
            msg = f"Failed to query '{query.collection}': {e}"
            raise DalError(msg, kind=_error_kind(e), source=e) from e
        return [self._snapshot(snap, keyed=True) for snap in snaps]

    async def run_transaction(self, body: Callable[[Transaction], Awaitable[T]]) -> T:
        """Run `body` in a Firestore transaction with the SDK's retry loop."""
        store = self

        @firestore.async_transactional
        async def _run(transaction: "AsyncTransaction") -> T:
            return await body(FirestoreTransaction(store, transaction))

        try:
            return await _run(self._client.transaction(max_attempts=self._params.max_attempts))
        except DalError:
            raise
        except gexc.GoogleAPICallError as e:
            msg = f"Transaction failed: {e}"
            raise DalError(msg, kind=_error_kind(e), source=e) from e
        except ValueError as e:
            # The SDK raises ValueError once max_attempts is exhausted.
            msg = f"Transaction aborted: {e}"
            raise DalError(msg, kind=ErrorKind.ABORTED, source=e) from e


class FirestoreTransaction:
    """`Transaction` adapter over a Firestore `AsyncTransaction`."""

    __slots__: ClassVar[tuple[str, str]] = ("_store", "_transaction")

    def __init__(self, store: FirestoreStore, transaction: "AsyncTransaction") -> None:
        self._store = store
        self._transaction = transaction

    async def get(self, reference: Reference) -> DocumentSnapshot:
        document = self._store._document(reference)
        snap = await document.get(transaction=self._transaction)
        return self._store._snapshot(snap)

    def set(self, reference: Reference, data: Mapping[str, Any]) -> None:
        self._transaction.set(self._store._document(reference), self._store.to_firestore(data))

    def update(self, reference: Reference, changes: Mapping[str, Any]) -> None:
        self._transaction.update(self._store._document(reference), self._store.to_firestore(changes))

    def delete(self, reference: Reference) -> None:
        self._transaction.delete(self._store._document(reference))


Provider = FirestoreStore
