"""
Record Feed

The query side of the application: a live, ordered view of the record
collection.

DESIGN DECISION: Consumers never share a mutable cache. Every change in the
store (and every explicit reload) produces a new immutable RecordSnapshot
that replaces the previous one wholesale. The dashboard re-summarizes each
snapshot it receives.
"""

import threading
from typing import Callable, Optional

import structlog

from expense_tracker.models.record import RecordSnapshot
from expense_tracker.services.storage.documents import DISPLAY_ID_KEY, document_to_record
from expense_tracker.services.storage.interface import (
    DocumentStoreInterface,
    StorageError,
    StoredDocument,
    Subscription,
    SubscriptionError,
)


logger = structlog.get_logger(__name__)

SnapshotListener = Callable[[RecordSnapshot], None]
ErrorListener = Callable[[SubscriptionError], None]


def build_snapshot(documents: list[StoredDocument]) -> RecordSnapshot:
    """
    Convert delivered documents to a snapshot.

    Raises:
        SubscriptionError: If any document is not a valid record. Malformed
            documents are never dropped silently.
    """
    records = []
    for doc in documents:
        try:
            records.append(document_to_record(doc.id, doc.data))
        except Exception as e:
            raise SubscriptionError(f"Record {doc.id} could not be read: {e}") from e
    records.sort(key=lambda r: r.display_id)
    return RecordSnapshot(records=tuple(records))


class RecordFeed:
    """
    Live query over the records collection, ordered by display id.

    Usage:
        feed = RecordFeed(store)
        feed.add_listener(on_snapshot)
        feed.start()
        ...
        feed.stop()
    """

    def __init__(self, store: DocumentStoreInterface, collection: str = "records"):
        self._store = store
        self._collection = collection
        self._subscription: Optional[Subscription] = None
        self._latest: Optional[RecordSnapshot] = None
        self._error: Optional[SubscriptionError] = None
        self._listeners: list[SnapshotListener] = []
        self._error_listeners: list[ErrorListener] = []
        # Firestore delivers snapshots on a background thread
        self._lock = threading.Lock()

    @property
    def collection(self) -> str:
        return self._collection

    @property
    def latest(self) -> Optional[RecordSnapshot]:
        """Most recent snapshot, or None before the first delivery."""
        with self._lock:
            return self._latest

    @property
    def error(self) -> Optional[SubscriptionError]:
        """The failure that closed the live query, if any."""
        with self._lock:
            return self._error

    @property
    def is_running(self) -> bool:
        return self._subscription is not None

    def add_listener(self, callback: SnapshotListener) -> None:
        self._listeners.append(callback)

    def add_error_listener(self, callback: ErrorListener) -> None:
        self._error_listeners.append(callback)

    def start(self) -> None:
        """Open the live query. The current collection is delivered right away."""
        if self._subscription is not None:
            return
        with self._lock:
            self._error = None
        try:
            self._subscription = self._store.subscribe(
                self._collection,
                self._on_documents,
                self._on_error,
                order_by=DISPLAY_ID_KEY,
            )
        except SubscriptionError as e:
            self._on_error(e)
            return
        # A synchronous first delivery may already have failed the channel
        if self.error is not None:
            self._subscription = None
        logger.info("record_feed_started", collection=self._collection)

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
            logger.info("record_feed_stopped", collection=self._collection)

    async def reload(self) -> RecordSnapshot:
        """
        Re-read the whole collection with a one-shot query and emit it.

        Raises:
            SubscriptionError: If the query fails or returns malformed records
        """
        try:
            documents = await self._store.query(self._collection, order_by=DISPLAY_ID_KEY)
            snapshot = build_snapshot(documents)
        except SubscriptionError as e:
            self._on_error(e)
            raise
        except StorageError as e:
            error = SubscriptionError(f"Reload of {self._collection} failed: {e}")
            self._on_error(error)
            raise error from e
        with self._lock:
            self._error = None
        self._emit(snapshot)
        return snapshot

    def _on_documents(self, documents: list[StoredDocument]) -> None:
        # Raising here makes the store fail the subscription through _on_error
        self._emit(build_snapshot(documents))

    def _emit(self, snapshot: RecordSnapshot) -> None:
        with self._lock:
            self._latest = snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error("snapshot_listener_error", error=str(e))

    def _on_error(self, error: Exception) -> None:
        if not isinstance(error, SubscriptionError):
            error = SubscriptionError(str(error))
        with self._lock:
            self._error = error
        self._subscription = None
        logger.error(
            "record_feed_failed",
            collection=self._collection,
            error=str(error),
        )
        for listener in list(self._error_listeners):
            listener(error)
