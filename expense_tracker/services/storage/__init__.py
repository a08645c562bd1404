"""
Storage Services Package

Provides the abstract document-store interface and its two implementations:
Cloud Firestore for production and an in-memory transactional store for
local runs and tests.
"""

from expense_tracker.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    CounterMissing,
    DocumentStoreInterface,
    NotFoundError,
    StorageError,
    StoredDocument,
    Subscription,
    SubscriptionError,
    TransactionAborted,
    TransactionInterface,
    WriteConflict,
)
from expense_tracker.services.storage.documents import (
    DISPLAY_ID_KEY,
    RECORD_DOCUMENT_KEYS,
    document_to_record,
    payload_to_document,
    record_to_document,
)
from expense_tracker.services.storage.memory import InMemoryDocumentStore
from expense_tracker.services.storage.firestore import FirestoreDocumentStore
from expense_tracker.services.storage.repository import (
    DocumentAuditStorage,
    RecordRepository,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "DocumentStoreInterface",
    "StoredDocument",
    "Subscription",
    "TransactionInterface",
    # Exceptions
    "ConnectionError",
    "CounterMissing",
    "NotFoundError",
    "StorageError",
    "SubscriptionError",
    "TransactionAborted",
    "WriteConflict",
    # Document mapping
    "DISPLAY_ID_KEY",
    "RECORD_DOCUMENT_KEYS",
    "document_to_record",
    "payload_to_document",
    "record_to_document",
    # Implementations
    "DocumentAuditStorage",
    "FirestoreDocumentStore",
    "InMemoryDocumentStore",
    "RecordRepository",
]
