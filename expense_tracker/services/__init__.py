"""Services package."""

from expense_tracker.services.export import (
    ExcelExporter,
    GoogleSheetsExporter,
)
from expense_tracker.services.image import (
    ImageRejectedError,
    decode_data_uri,
    encode_image,
    encode_upload,
)
from expense_tracker.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    CounterMissing,
    DocumentAuditStorage,
    DocumentStoreInterface,
    FirestoreDocumentStore,
    InMemoryDocumentStore,
    NotFoundError,
    RecordRepository,
    StorageError,
    SubscriptionError,
    TransactionAborted,
    WriteConflict,
)

__all__ = [
    # Export
    "ExcelExporter",
    "GoogleSheetsExporter",
    # Image services
    "ImageRejectedError",
    "decode_data_uri",
    "encode_image",
    "encode_upload",
    # Storage services
    "AuditStorageInterface",
    "ConnectionError",
    "CounterMissing",
    "DocumentAuditStorage",
    "DocumentStoreInterface",
    "FirestoreDocumentStore",
    "InMemoryDocumentStore",
    "NotFoundError",
    "RecordRepository",
    "StorageError",
    "SubscriptionError",
    "TransactionAborted",
    "WriteConflict",
]
