"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface over the document store.
This allows us to:
1. Run against Cloud Firestore in production
2. Use an in-memory transactional store for local runs and tests
3. Keep the allocator and the query layer decoupled from the client library

The interface only exposes what the application needs: atomic
read-modify-write transactions, a live ordered query, and plain
create/update/delete for non-transactional writes.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, NamedTuple, Optional, TypeVar

from expense_tracker.models.audit import AuditEvent


T = TypeVar("T")


class StoredDocument(NamedTuple):
    """A document as delivered by the store: its id and its fields."""
    id: str
    data: dict[str, Any]


class TransactionInterface(ABC):
    """
    Operations available inside an atomic transaction.

    All reads must happen before the first write, as in Firestore.
    Nothing is visible to other clients until the transaction commits.
    """

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        """Read a document, or None when it does not exist."""
        pass

    @abstractmethod
    def set(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        """Create or overwrite a document."""
        pass

    @abstractmethod
    def delete(self, collection: str, doc_id: str) -> None:
        """Delete a document (no-op when it does not exist)."""
        pass

    @abstractmethod
    def new_document_id(self, collection: str) -> str:
        """Reserve a fresh opaque document id in a collection."""
        pass


class Subscription(ABC):
    """Handle to a live query."""

    @abstractmethod
    def unsubscribe(self) -> None:
        pass


SnapshotCallback = Callable[[list[StoredDocument]], None]
ErrorCallback = Callable[[Exception], None]


class DocumentStoreInterface(ABC):
    """
    Abstract interface for the document store.

    Any backend (Firestore, in-memory) must implement these methods.
    """

    @abstractmethod
    async def run_transaction(self, fn: Callable[[TransactionInterface], T]) -> T:
        """
        Run `fn` as one all-or-nothing transaction.

        The store retries `fn` on its own when a document it read was changed
        concurrently, so `fn` must be free of side effects outside the
        transaction.

        Raises:
            TransactionAborted: If the transaction could not commit after the
                store's retries. Nothing was written.
        """
        pass

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        """Read a single document, or None when it does not exist."""
        pass

    @abstractmethod
    async def add(self, collection: str, data: dict[str, Any]) -> str:
        """Create a document with a generated id and return the id."""
        pass

    @abstractmethod
    async def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        """
        Overwrite the given fields of an existing document.

        Fields not present in `data` are left untouched.

        Raises:
            NotFoundError: If the document doesn't exist
        """
        pass

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None:
        """Delete a document (non-transactional)."""
        pass

    @abstractmethod
    async def query(
        self,
        collection: str,
        order_by: Optional[str] = None,
    ) -> list[StoredDocument]:
        """
        One-shot query over a collection.

        When `order_by` is given, results are sorted ascending by that field
        and documents lacking the field are excluded.
        """
        pass

    @abstractmethod
    def subscribe(
        self,
        collection: str,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
        order_by: Optional[str] = None,
    ) -> Subscription:
        """
        Open a live query.

        `on_snapshot` is called with the full current result set right away
        and again after every change; `on_error` is called when the channel
        fails.
        """
        pass

    async def close(self) -> None:
        """Release client resources."""
        return None


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        """Get the most recent audit events, newest first."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class TransactionAborted(StorageError):
    """A transaction could not commit after the store's own retries."""
    pass


# Contention is the only reason the store gives up on a transaction
WriteConflict = TransactionAborted


class CounterMissing(StorageError):
    """The display id counter does not exist when it must."""
    pass


class SubscriptionError(StorageError):
    """The live query channel failed or delivered unreadable documents."""
    pass
