"""
Record repository: the non-transactional side of record storage.

Edits are plain overwrites keyed by the record's store id. They never touch
the display id or the counter; sequential ids are the allocator's job.
"""

from typing import Optional

from pydantic import ValidationError

from expense_tracker.models.audit import AuditEvent
from expense_tracker.models.record import Record, RecordPayload
from expense_tracker.services.storage.documents import (
    DISPLAY_ID_KEY,
    document_to_record,
    payload_to_document,
)
from expense_tracker.services.storage.interface import (
    AuditStorageInterface,
    DocumentStoreInterface,
    NotFoundError,
    StorageError,
)


class RecordRepository:
    """Reads and edits records in the document store."""

    def __init__(self, store: DocumentStoreInterface, collection: str = "records"):
        self._store = store
        self._collection = collection

    @property
    def collection(self) -> str:
        return self._collection

    async def get(self, record_id: str) -> Optional[Record]:
        """Retrieve a record by its store id."""
        data = await self._store.get(self._collection, record_id)
        if data is None:
            return None
        try:
            return document_to_record(record_id, data)
        except ValidationError as e:
            raise StorageError(f"Stored record {record_id} is malformed: {e}") from e

    async def list_records(self) -> list[Record]:
        """All records, ascending by display id."""
        documents = await self._store.query(self._collection, order_by=DISPLAY_ID_KEY)
        try:
            return [document_to_record(doc.id, doc.data) for doc in documents]
        except ValidationError as e:
            raise StorageError(f"Stored records are malformed: {e}") from e

    async def update(self, record: Record) -> Record:
        """
        Overwrite a record's fields in place.

        The payload is re-validated first, so derived amounts are enforced on
        edits exactly as on creation.

        Raises:
            NotFoundError: If the record doesn't exist
        """
        payload = RecordPayload.model_validate(
            record.model_dump(exclude={"id", "display_id"})
        )
        await self._store.update(
            self._collection,
            record.id,
            payload_to_document(payload),
        )
        return Record.model_validate(
            {**payload.model_dump(), "id": record.id, "display_id": record.display_id}
        )


class DocumentAuditStorage(AuditStorageInterface):
    """
    Audit log kept as a collection in the document store.

    Audit events are append-only.
    """

    def __init__(self, store: DocumentStoreInterface, collection: str = "auditLog"):
        self._store = store
        self._collection = collection

    async def append_event(self, event: AuditEvent) -> bool:
        await self._store.add(self._collection, event.to_document())
        return True

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        documents = await self._store.query(self._collection, order_by="timestamp")
        events = []
        for doc in documents:
            try:
                events.append(AuditEvent.model_validate(doc.data))
            except ValidationError:
                continue  # Skip malformed rows
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]


__all__ = ["DocumentAuditStorage", "NotFoundError", "RecordRepository"]
