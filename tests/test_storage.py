"""Tests for the in-memory document store, document mapping and repositories."""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from expense_tracker.audit import AuditLogger
from expense_tracker.config import AppSettings
from expense_tracker.models.audit import AuditEventBuilder, AuditEventType
from expense_tracker.services.storage import (
    AuditStorageInterface,
    DocumentAuditStorage,
    InMemoryDocumentStore,
    NotFoundError,
    StorageError,
    TransactionAborted,
    document_to_record,
    payload_to_document,
    record_to_document,
)
from tests.conftest import make_payload


class TestInMemoryDocumentStore:

    @pytest.mark.asyncio
    async def test_transaction_commits_all_writes(self, store):
        def _write(transaction):
            transaction.set("things", "a", {"n": 1})
            transaction.set("things", "b", {"n": 2})
            return "done"

        assert await store.run_transaction(_write) == "done"
        assert await store.get("things", "a") == {"n": 1}
        assert await store.get("things", "b") == {"n": 2}

    @pytest.mark.asyncio
    async def test_read_after_write_is_refused(self, store):
        def _bad(transaction):
            transaction.set("things", "a", {"n": 1})
            transaction.get("things", "a")

        with pytest.raises(RuntimeError):
            await store.run_transaction(_bad)
        assert await store.get("things", "a") is None

    @pytest.mark.asyncio
    async def test_error_in_transaction_writes_nothing(self, store):
        def _fail(transaction):
            transaction.get("things", "a")
            transaction.set("things", "a", {"n": 1})
            raise ValueError("boom")

        with pytest.raises(ValueError):
            await store.run_transaction(_fail)
        assert await store.get("things", "a") is None

    @pytest.mark.asyncio
    async def test_conflict_is_retried_against_new_value(self, store):
        calls = []

        def _increment(transaction):
            current = transaction.get("counters", "c") or {"n": 0}
            calls.append(current["n"])
            if len(calls) == 1:
                # A concurrent writer commits between our read and our commit
                store._apply([("counters", "c", {"n": 10})])
            transaction.set("counters", "c", {"n": current["n"] + 1})

        await store.run_transaction(_increment)

        assert calls == [0, 10]
        assert await store.get("counters", "c") == {"n": 11}

    @pytest.mark.asyncio
    async def test_persistent_conflict_aborts(self):
        store = InMemoryDocumentStore(max_transaction_attempts=3)
        attempts = []

        def _always_conflicting(transaction):
            current = transaction.get("counters", "c") or {"n": 0}
            attempts.append(current["n"])
            store._apply([("counters", "c", {"n": current["n"] + 100})])
            transaction.set("counters", "c", {"n": -1})

        with pytest.raises(TransactionAborted):
            await store.run_transaction(_always_conflicting)

        assert len(attempts) == 3
        assert (await store.get("counters", "c"))["n"] != -1

    def test_max_attempts_must_be_positive(self):
        with pytest.raises(ValueError):
            InMemoryDocumentStore(max_transaction_attempts=0)

    @pytest.mark.asyncio
    async def test_update_missing_document(self, store):
        with pytest.raises(NotFoundError):
            await store.update("things", "missing", {"n": 1})

    @pytest.mark.asyncio
    async def test_update_merges_fields(self, store):
        doc_id = await store.add("things", {"n": 1, "name": "a"})
        await store.update("things", doc_id, {"n": 2})
        assert await store.get("things", doc_id) == {"n": 2, "name": "a"}

    @pytest.mark.asyncio
    async def test_query_order_excludes_documents_without_field(self, store):
        await store.add("things", {"rank": 2})
        await store.add("things", {"rank": 1})
        await store.add("things", {"other": True})

        ordered = await store.query("things", order_by="rank")
        everything = await store.query("things")

        assert [d.data["rank"] for d in ordered] == [1, 2]
        assert len(everything) == 3

    @pytest.mark.asyncio
    async def test_returned_documents_are_copies(self, store):
        doc_id = await store.add("things", {"tags": ["a"]})
        document = await store.get("things", doc_id)
        document["tags"].append("b")
        assert await store.get("things", doc_id) == {"tags": ["a"]}

    @pytest.mark.asyncio
    async def test_subscribe_delivers_immediately_and_on_change(self, store):
        deliveries = []
        subscription = store.subscribe("things", deliveries.append, lambda e: None)

        await store.add("things", {"n": 1})
        await store.add("other", {"n": 1})
        subscription.unsubscribe()
        await store.add("things", {"n": 2})

        assert [len(d) for d in deliveries] == [0, 1]


class TestDocumentMapping:

    def test_camel_case_keys(self):
        document = record_to_document(make_payload(), 7)
        assert document["displayId"] == 7
        assert document["groupName"] == "Group A"
        assert document["date"] == "2024-05-01"
        assert document["totalAmount"] == "110.00"
        assert document["uploadedFiles"] == []

    def test_payload_document_has_no_display_id(self):
        assert "displayId" not in payload_to_document(make_payload())

    def test_reads_timestamp_dates_and_integer_amounts(self):
        document = {
            "displayId": 2,
            "groupName": "Group A",
            "date": "2024-05-01T00:00:00.000Z",
            "bankType": "KBZ",
            "collectedAmount": 100,
            "serviceFee": 10,
            "buyingRate": 3,
            "transferFee": 5,
            "uploadedFiles": None,
        }

        record = document_to_record("doc2", document)

        assert record.record_date == date(2024, 5, 1)
        assert record.total_amount == Decimal("110.00")
        assert record.uploaded_files == []

    def test_reads_datetime_dates(self):
        document = record_to_document(make_payload(), 1)
        document["date"] = datetime(2024, 5, 1, 9, 30)
        assert document_to_record("doc1", document).record_date == date(2024, 5, 1)

    def test_missing_display_id_is_rejected(self):
        document = record_to_document(make_payload(), 1)
        del document["displayId"]
        with pytest.raises(ValueError):
            document_to_record("doc1", document)

    def test_garbage_date_is_rejected(self):
        document = record_to_document(make_payload(), 1)
        document["date"] = "someday"
        with pytest.raises(ValueError):
            document_to_record("doc1", document)


class TestRecordRepository:

    @pytest.mark.asyncio
    async def test_get_and_list(self, allocator, repository, payload):
        first = await allocator.allocate_and_create(payload)
        second = await allocator.allocate_and_create(payload)

        assert await repository.get(first.id) == first
        assert await repository.get("missing") is None
        assert [r.id for r in await repository.list_records()] == [first.id, second.id]

    @pytest.mark.asyncio
    async def test_update_overwrites_fields(self, allocator, repository, payload):
        created = await allocator.allocate_and_create(payload)
        changed = created.model_copy(update={"remark": "corrected"})

        updated = await repository.update(changed)

        assert updated.remark == "corrected"
        assert updated.display_id == created.display_id
        assert (await repository.get(created.id)).remark == "corrected"

    @pytest.mark.asyncio
    async def test_update_missing_record(self, allocator, repository, store, payload):
        created = await allocator.allocate_and_create(payload)
        await store.delete("records", created.id)

        with pytest.raises(NotFoundError):
            await repository.update(created)

    @pytest.mark.asyncio
    async def test_malformed_record(self, repository, store, payload):
        document = record_to_document(payload, 1)
        document["totalAmount"] = 1.0
        doc_id = await store.add("records", document)

        with pytest.raises(StorageError):
            await repository.get(doc_id)
        with pytest.raises(StorageError):
            await repository.list_records()


class FailingAuditStorage(AuditStorageInterface):

    async def append_event(self, event):
        raise StorageError("audit collection unavailable")

    async def get_recent_events(self, limit=100):
        return []


class TestAuditStorage:

    @pytest.mark.asyncio
    async def test_events_are_appended_and_listed_newest_first(self, store):
        storage = DocumentAuditStorage(store)
        logger = AuditLogger(storage)

        await logger.log_record_created(record_id="doc1", display_id=1)
        await logger.log_record_deleted(record_id="doc1", display_id=1, reclaimed=True)

        events = await storage.get_recent_events()
        assert [e.event_type for e in events] == [
            AuditEventType.RECORD_DELETED,
            AuditEventType.RECORD_CREATED,
        ]
        assert len(await storage.get_recent_events(limit=1)) == 1

    @pytest.mark.asyncio
    async def test_malformed_events_are_skipped(self, store):
        storage = DocumentAuditStorage(store)
        await store.add(
            "auditLog",
            {"timestamp": datetime(2024, 1, 1, tzinfo=timezone.utc), "bogus": True},
        )
        await storage.append_event(AuditEventBuilder.record_created("doc1", 1))

        events = await storage.get_recent_events()

        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_storage_failure_does_not_raise(self):
        logger = AuditLogger(FailingAuditStorage())
        event = AuditEventBuilder.record_created("doc1", 1)
        assert await logger.log(event) is False

    @pytest.mark.asyncio
    async def test_local_only_logger(self):
        assert await AuditLogger().log(AuditEventBuilder.record_created("doc1", 1)) is True


class TestAppSettings:

    def test_defaults(self, monkeypatch):
        for name in ("STORAGE_BACKEND", "MAX_UPLOAD_SIZE_MB", "SUPPORTED_IMAGE_FORMATS"):
            monkeypatch.delenv(name, raising=False)
        settings = AppSettings(_env_file=None)
        assert settings.storage_backend == "memory"
        assert settings.max_upload_size_bytes == 5 * 1024 * 1024
        assert settings.supported_formats_list == ["jpg", "jpeg", "png", "webp"]

    def test_rejects_unknown_backend(self):
        with pytest.raises(ValueError):
            AppSettings(_env_file=None, storage_backend="sqlite")
