"""
Sequential ID Allocator

Assigns the small sequential numbers users see on records ("#1", "#2", ...)
on top of the store's opaque document ids.

DESIGN DECISION: A single counter document is the serialization point.
Both operations below run as one store transaction that reads the counter
first, so two concurrent creations can never commit with the same number;
the store re-runs the losing transaction against the new counter value.

Only the tail id is ever reclaimed. Deleting an interior record leaves a
gap rather than renumbering anything.
"""

from typing import Any, Optional

import structlog

from expense_tracker.models.record import Record, RecordPayload
from expense_tracker.services.storage.documents import DISPLAY_ID_KEY, record_to_document
from expense_tracker.services.storage.interface import (
    CounterMissing,
    DocumentStoreInterface,
    NotFoundError,
    TransactionInterface,
)


logger = structlog.get_logger(__name__)

# Field of the counter document holding the last assigned display id
COUNTER_FIELD = "lastId"


class SequentialIdAllocator:
    """
    Creates and deletes records while keeping the display id counter in step.

    Args:
        store: Document store providing atomic transactions
        records_collection: Collection holding the records
        counters_collection: Collection holding counter documents
        sequence: Name of the counter document for this sequence
    """

    def __init__(
        self,
        store: DocumentStoreInterface,
        records_collection: str = "records",
        counters_collection: str = "counters",
        sequence: str = "records",
    ):
        self._store = store
        self._records_collection = records_collection
        self._counters_collection = counters_collection
        self._sequence = sequence

    @property
    def sequence(self) -> str:
        """Name of the counter document this allocator advances."""
        return self._sequence

    def _read_counter(self, transaction: TransactionInterface) -> Optional[int]:
        document = transaction.get(self._counters_collection, self._sequence)
        if document is None or document.get(COUNTER_FIELD) is None:
            return None
        return int(document[COUNTER_FIELD])

    def _write_counter(self, transaction: TransactionInterface, value: int) -> None:
        transaction.set(
            self._counters_collection,
            self._sequence,
            {COUNTER_FIELD: value},
        )

    async def allocate_and_create(self, payload: RecordPayload) -> Record:
        """
        Write a new record tagged with the next display id.

        A missing counter counts as 0, so the first record ever gets 1.

        Raises:
            TransactionAborted: If the store could not commit after its own
                retries. Nothing was written.
        """

        def _create(transaction: TransactionInterface) -> tuple[str, int]:
            last_id = self._read_counter(transaction) or 0
            new_id = last_id + 1
            record_id = transaction.new_document_id(self._records_collection)
            transaction.set(
                self._records_collection,
                record_id,
                record_to_document(payload, new_id),
            )
            self._write_counter(transaction, new_id)
            return record_id, new_id

        record_id, display_id = await self._store.run_transaction(_create)
        logger.info(
            "record_allocated",
            record_id=record_id,
            display_id=display_id,
            sequence=self._sequence,
        )
        return Record.model_validate(
            {**payload.model_dump(), "id": record_id, "display_id": display_id}
        )

    async def delete_and_reclaim(self, record: Record) -> bool:
        """
        Delete a record and give its display id back if it was the tail.

        The stored record is re-read inside the transaction, so a caller
        holding a stale copy can never move the counter.

        Returns:
            True if the counter was decremented

        Raises:
            NotFoundError: If the record is gone or now carries a different
                display id. Nothing is written.
            CounterMissing: If the counter document does not exist. The record
                is left in place.
            TransactionAborted: If the store could not commit.
        """

        def _delete(transaction: TransactionInterface) -> bool:
            last_id = self._read_counter(transaction)
            stored = transaction.get(self._records_collection, record.id)
            if last_id is None:
                raise CounterMissing(
                    f"Counter {self._counters_collection}/{self._sequence} does not exist"
                )
            if stored is None or stored.get(DISPLAY_ID_KEY) != record.display_id:
                raise NotFoundError(
                    f"Record {self._records_collection}/{record.id} "
                    f"#{record.display_id} no longer exists"
                )
            transaction.delete(self._records_collection, record.id)
            if record.display_id == last_id:
                self._write_counter(transaction, last_id - 1)
                return True
            return False

        reclaimed = await self._store.run_transaction(_delete)
        logger.info(
            "record_deleted",
            record_id=record.id,
            display_id=record.display_id,
            reclaimed=reclaimed,
        )
        return reclaimed

    async def current_value(self) -> int:
        """Last assigned display id (0 when nothing was ever created)."""
        document: Optional[dict[str, Any]] = await self._store.get(
            self._counters_collection, self._sequence
        )
        if not document or document.get(COUNTER_FIELD) is None:
            return 0
        return int(document[COUNTER_FIELD])
