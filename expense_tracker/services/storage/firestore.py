"""
Cloud Firestore Storage Implementation

Firestore provides exactly the primitives the application depends on:
1. Transactions with built-in optimistic-concurrency retry
2. Snapshot listeners that deliver the full ordered result set on change
3. Plain document create/update/delete

The synchronous client is used and its blocking calls are run in worker
threads, so the event loop is never blocked. Transaction retry is
Firestore's own (`max_attempts`); nothing here retries on top of it.
"""

import asyncio
import os
from typing import Any, Callable, Optional, TypeVar

import structlog
from google.api_core import exceptions as google_exceptions
from google.cloud import firestore
from google.oauth2 import service_account

from expense_tracker.config import FirestoreSettings, get_settings
from expense_tracker.services.storage.interface import (
    ConnectionError,
    DocumentStoreInterface,
    ErrorCallback,
    NotFoundError,
    SnapshotCallback,
    StorageError,
    StoredDocument,
    Subscription,
    SubscriptionError,
    TransactionAborted,
    TransactionInterface,
)


T = TypeVar("T")

logger = structlog.get_logger(__name__)

# Raised as ValueError by the client once max_attempts is exhausted
_EXHAUSTED_ATTEMPTS_MARKER = "Failed to commit transaction"


class _FirestoreTransaction(TransactionInterface):
    """Adapts a google.cloud.firestore.Transaction to our interface."""

    def __init__(self, client: firestore.Client, transaction: firestore.Transaction):
        self._client = client
        self._transaction = transaction

    def _ref(self, collection: str, doc_id: str):
        return self._client.collection(collection).document(doc_id)

    def get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        snapshot = self._ref(collection, doc_id).get(transaction=self._transaction)
        return snapshot.to_dict() if snapshot.exists else None

    def set(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        self._transaction.set(self._ref(collection, doc_id), data)

    def delete(self, collection: str, doc_id: str) -> None:
        self._transaction.delete(self._ref(collection, doc_id))

    def new_document_id(self, collection: str) -> str:
        return self._client.collection(collection).document().id


class _FirestoreSubscription(Subscription):

    def __init__(self, watch):
        self._watch = watch

    def unsubscribe(self) -> None:
        self._watch.unsubscribe()


class FirestoreDocumentStore(DocumentStoreInterface):
    """
    Firestore implementation of the document store.

    The client is created lazily on first use and closed by close().
    """

    def __init__(
        self,
        settings: Optional[FirestoreSettings] = None,
        client: Optional[firestore.Client] = None,
    ):
        self._settings = settings or get_settings().firestore
        self._client = client

    def connect(self) -> firestore.Client:
        """Create the Firestore client (service account or ADC, or the emulator)."""
        if self._client is None:
            if self._settings.emulator_host:
                os.environ["FIRESTORE_EMULATOR_HOST"] = self._settings.emulator_host
                logger.info("firestore_emulator", host=self._settings.emulator_host)
            try:
                credentials = None
                if self._settings.credentials_path:
                    credentials = service_account.Credentials.from_service_account_file(
                        self._settings.credentials_path
                    )
                self._client = firestore.Client(
                    project=self._settings.project_id,
                    credentials=credentials,
                )
            except FileNotFoundError:
                raise ConnectionError(
                    f"Firestore credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Firestore: {e}")
        return self._client

    def _collection(self, collection: str):
        return self.connect().collection(collection)

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    def _run_transaction_sync(self, fn: Callable[[TransactionInterface], T]) -> T:
        client = self.connect()
        transaction = client.transaction(
            max_attempts=self._settings.max_transaction_attempts
        )

        @firestore.transactional
        def _apply(transaction):
            return fn(_FirestoreTransaction(client, transaction))

        try:
            return _apply(transaction)
        except google_exceptions.Aborted as e:
            raise TransactionAborted(f"Transaction aborted: {e}") from e
        except ValueError as e:
            if _EXHAUSTED_ATTEMPTS_MARKER in str(e):
                raise TransactionAborted(str(e)) from e
            raise
        except google_exceptions.GoogleAPICallError as e:
            raise StorageError(f"Transaction failed: {e}") from e

    async def run_transaction(self, fn: Callable[[TransactionInterface], T]) -> T:
        return await asyncio.to_thread(self._run_transaction_sync, fn)

    # -------------------------------------------------------------------------
    # Plain reads and writes
    # -------------------------------------------------------------------------

    async def get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        def _get():
            snapshot = self._collection(collection).document(doc_id).get()
            return snapshot.to_dict() if snapshot.exists else None

        try:
            return await asyncio.to_thread(_get)
        except google_exceptions.GoogleAPICallError as e:
            raise StorageError(f"Failed to read {collection}/{doc_id}: {e}") from e

    async def add(self, collection: str, data: dict[str, Any]) -> str:
        def _add():
            _, reference = self._collection(collection).add(data)
            return reference.id

        try:
            return await asyncio.to_thread(_add)
        except google_exceptions.GoogleAPICallError as e:
            raise StorageError(f"Failed to add to {collection}: {e}") from e

    async def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        def _update():
            self._collection(collection).document(doc_id).update(data)

        try:
            await asyncio.to_thread(_update)
        except google_exceptions.NotFound as e:
            raise NotFoundError(f"Document not found: {collection}/{doc_id}") from e
        except google_exceptions.GoogleAPICallError as e:
            raise StorageError(f"Failed to update {collection}/{doc_id}: {e}") from e

    async def delete(self, collection: str, doc_id: str) -> None:
        def _delete():
            self._collection(collection).document(doc_id).delete()

        try:
            await asyncio.to_thread(_delete)
        except google_exceptions.GoogleAPICallError as e:
            raise StorageError(f"Failed to delete {collection}/{doc_id}: {e}") from e

    async def query(
        self,
        collection: str,
        order_by: Optional[str] = None,
    ) -> list[StoredDocument]:
        def _query():
            query = self._collection(collection)
            if order_by:
                query = query.order_by(order_by)
            return [StoredDocument(doc.id, doc.to_dict()) for doc in query.stream()]

        try:
            return await asyncio.to_thread(_query)
        except google_exceptions.PermissionDenied as e:
            raise SubscriptionError(f"Permission denied reading {collection}: {e}") from e
        except google_exceptions.GoogleAPICallError as e:
            raise StorageError(f"Failed to query {collection}: {e}") from e

    # -------------------------------------------------------------------------
    # Live query
    # -------------------------------------------------------------------------

    def subscribe(
        self,
        collection: str,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
        order_by: Optional[str] = None,
    ) -> Subscription:
        try:
            query = self._collection(collection)
            if order_by:
                query = query.order_by(order_by)
        except ConnectionError as e:
            raise SubscriptionError(str(e)) from e

        # Called on the listener's background thread
        def _callback(docs, changes, read_time):
            try:
                on_snapshot([StoredDocument(doc.id, doc.to_dict()) for doc in docs])
            except Exception as e:
                logger.error("snapshot_listener_failed", collection=collection, error=str(e))
                on_error(
                    e if isinstance(e, SubscriptionError)
                    else SubscriptionError(f"Live query on {collection} failed: {e}")
                )

        try:
            watch = query.on_snapshot(_callback)
        except google_exceptions.GoogleAPICallError as e:
            raise SubscriptionError(f"Could not open live query on {collection}: {e}") from e
        return _FirestoreSubscription(watch)

    async def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
