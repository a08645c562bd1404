"""
In-Memory Document Store

A process-local implementation of the document store with the same
transactional semantics the application relies on in Firestore:

- every document carries a version that changes on each write
- a transaction records the version of every document it reads
- at commit time, if any of those versions changed, the transaction is
  discarded and run again (optimistic concurrency / compare-and-swap)
- after the last attempt, TransactionAborted is raised and nothing is written

It backs local development (STORAGE_BACKEND=memory) and the test suite.
"""

import asyncio
import copy
from typing import Any, Callable, Optional, TypeVar
from uuid import uuid4

import structlog
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
)

from expense_tracker.services.storage.interface import (
    DocumentStoreInterface,
    ErrorCallback,
    NotFoundError,
    SnapshotCallback,
    StoredDocument,
    Subscription,
    SubscriptionError,
    TransactionAborted,
    TransactionInterface,
)


T = TypeVar("T")

logger = structlog.get_logger(__name__)


class _CommitConflict(Exception):
    """A document read by the transaction changed before commit."""
    pass


def _new_id() -> str:
    # Same length as Firestore auto ids
    return uuid4().hex[:20]


class _MemoryTransaction(TransactionInterface):
    """Buffers writes and remembers read versions until commit."""

    def __init__(self, store: "InMemoryDocumentStore"):
        self._store = store
        self.read_versions: dict[tuple[str, str], int] = {}
        self.writes: list[tuple[str, str, Optional[dict[str, Any]]]] = []

    def get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        if self.writes:
            raise RuntimeError("Transactions require all reads before writes")
        key = (collection, doc_id)
        self.read_versions[key] = self._store._version(key)
        return self._store._read(collection, doc_id)

    def set(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        self.writes.append((collection, doc_id, copy.deepcopy(data)))

    def delete(self, collection: str, doc_id: str) -> None:
        self.writes.append((collection, doc_id, None))

    def new_document_id(self, collection: str) -> str:
        return _new_id()


class _MemorySubscription(Subscription):

    def __init__(
        self,
        store: "InMemoryDocumentStore",
        collection: str,
        order_by: Optional[str],
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ):
        self._store = store
        self.collection = collection
        self.order_by = order_by
        self.on_snapshot = on_snapshot
        self.on_error = on_error
        self.active = True

    def deliver(self) -> None:
        if not self.active:
            return
        documents = self._store._snapshot(self.collection, self.order_by)
        try:
            self.on_snapshot(documents)
        except Exception as e:
            logger.error(
                "snapshot_listener_failed",
                collection=self.collection,
                error=str(e),
            )
            self.fail(e)

    def fail(self, error: Exception) -> None:
        if not self.active:
            return
        self.unsubscribe()
        if not isinstance(error, SubscriptionError):
            error = SubscriptionError(f"Live query on {self.collection} failed: {error}")
        self.on_error(error)

    def unsubscribe(self) -> None:
        self.active = False
        self._store._subscriptions.discard(self)


class InMemoryDocumentStore(DocumentStoreInterface):
    """
    Document store held in process memory.

    Args:
        max_transaction_attempts: How many times a conflicting transaction is
            run before it is aborted.
    """

    def __init__(self, max_transaction_attempts: int = 5):
        if max_transaction_attempts < 1:
            raise ValueError("max_transaction_attempts must be at least 1")
        self._max_attempts = max_transaction_attempts
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._versions: dict[tuple[str, str], int] = {}
        self._clock = 0
        self._subscriptions: set[_MemorySubscription] = set()

    # -------------------------------------------------------------------------
    # Internal state
    # -------------------------------------------------------------------------

    def _version(self, key: tuple[str, str]) -> int:
        return self._versions.get(key, 0)

    def _read(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        document = self._collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(document) if document is not None else None

    def _snapshot(self, collection: str, order_by: Optional[str]) -> list[StoredDocument]:
        documents = [
            StoredDocument(doc_id, copy.deepcopy(data))
            for doc_id, data in self._collections.get(collection, {}).items()
        ]
        if order_by:
            documents = [d for d in documents if d.data.get(order_by) is not None]
            documents.sort(key=lambda d: d.data[order_by])
        return documents

    def _apply(self, writes: list[tuple[str, str, Optional[dict[str, Any]]]]) -> None:
        touched = set()
        for collection, doc_id, data in writes:
            documents = self._collections.setdefault(collection, {})
            if data is None:
                documents.pop(doc_id, None)
            else:
                documents[doc_id] = data
            self._clock += 1
            self._versions[(collection, doc_id)] = self._clock
            touched.add(collection)
        for subscription in list(self._subscriptions):
            if subscription.collection in touched:
                subscription.deliver()

    def _commit(self, transaction: _MemoryTransaction) -> None:
        for key, version in transaction.read_versions.items():
            if self._version(key) != version:
                raise _CommitConflict(f"{key[0]}/{key[1]} changed during transaction")
        self._apply(transaction.writes)

    # -------------------------------------------------------------------------
    # DocumentStoreInterface
    # -------------------------------------------------------------------------

    async def run_transaction(self, fn: Callable[[TransactionInterface], T]) -> T:
        result = None
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._max_attempts),
                retry=retry_if_exception_type(_CommitConflict),
            ):
                with attempt:
                    transaction = _MemoryTransaction(self)
                    result = fn(transaction)
                    # Yield between read and commit so concurrent
                    # transactions interleave like remote ones do
                    await asyncio.sleep(0)
                    self._commit(transaction)
        except RetryError as e:
            logger.warning(
                "transaction_aborted",
                attempts=self._max_attempts,
                error=str(e.last_attempt.exception()),
            )
            raise TransactionAborted(
                f"Transaction aborted after {self._max_attempts} attempts"
            ) from e
        return result

    async def get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        return self._read(collection, doc_id)

    async def add(self, collection: str, data: dict[str, Any]) -> str:
        doc_id = _new_id()
        self._apply([(collection, doc_id, copy.deepcopy(data))])
        return doc_id

    async def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        current = self._read(collection, doc_id)
        if current is None:
            raise NotFoundError(f"Document not found: {collection}/{doc_id}")
        current.update(copy.deepcopy(data))
        self._apply([(collection, doc_id, current)])

    async def delete(self, collection: str, doc_id: str) -> None:
        self._apply([(collection, doc_id, None)])

    async def query(
        self,
        collection: str,
        order_by: Optional[str] = None,
    ) -> list[StoredDocument]:
        return self._snapshot(collection, order_by)

    def subscribe(
        self,
        collection: str,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
        order_by: Optional[str] = None,
    ) -> Subscription:
        subscription = _MemorySubscription(
            self, collection, order_by, on_snapshot, on_error
        )
        self._subscriptions.add(subscription)
        subscription.deliver()
        return subscription

    def fail_subscriptions(self, message: str = "Missing or insufficient permissions") -> None:
        """Fail every open live query, as a revoked permission would."""
        for subscription in list(self._subscriptions):
            subscription.fail(SubscriptionError(message))
