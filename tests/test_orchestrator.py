"""
Integration tests for the record and dashboard flows.

Everything runs against the in-memory store; the receipt scanner and the
slow or failing allocators are small stand-ins.
"""

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from expense_tracker.agents import ExtractionFailure
from expense_tracker.audit import AuditLogger
from expense_tracker.forms import RecordForm
from expense_tracker.models.notification import NotificationLevel
from expense_tracker.models.record import ImageAttachment, Record
from expense_tracker.orchestrator import (
    AppComponents,
    DashboardFlow,
    RecordFlow,
    create_app_components,
)
from expense_tracker.queries import RecordFeed
from expense_tracker.services.storage import (
    DocumentAuditStorage,
    InMemoryDocumentStore,
    TransactionAborted,
    record_to_document,
)
from tests.conftest import image_bytes


ATTACHMENT = ImageAttachment(name="receipt.png", url="data:image/png;base64,AAAA")


def filled_form(**values) -> RecordForm:
    form = RecordForm()
    data = {
        "group_name": "Group A",
        "record_date": date(2024, 5, 1),
        "bank_type": "KBZ",
        "collected_amount": "100",
        "service_fee": "10",
        "buying_rate": "3",
        "transfer_fee": "5",
    }
    data.update(values)
    for field, value in data.items():
        form.set_value(field, value)
    return form


class SlowAllocator:
    """Holds allocate_and_create open until released."""

    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.calls = 0

    async def allocate_and_create(self, payload):
        self.calls += 1
        self.started.set()
        await self.release.wait()
        return Record(**payload.model_dump(), id="doc1", display_id=1)


class AbortingAllocator:

    async def allocate_and_create(self, payload):
        raise TransactionAborted("Transaction aborted after 5 attempts")


class FakeScanAgent:

    def __init__(self, result=None, error=None):
        self.result = result or {}
        self.error = error
        self.seen = []

    async def extract(self, attachment):
        self.seen.append(attachment)
        if self.error:
            raise self.error
        return self.result


@pytest.fixture
def audit_logger(store):
    return AuditLogger(DocumentAuditStorage(store))


@pytest.fixture
def flow(allocator, repository, audit_logger):
    return RecordFlow(allocator, repository, audit_logger)


async def audit_types(store):
    return [doc.data["event_type"] for doc in await store.query("auditLog")]


class TestCreate:

    @pytest.mark.asyncio
    async def test_valid_form_is_saved(self, flow, store):
        record, notification = await flow.create(filled_form())

        assert record.display_id == 1
        assert notification.level == NotificationLevel.SUCCESS
        assert "#1" in notification.message
        assert await store.get("records", record.id) is not None
        assert "record_created" in await audit_types(store)
        assert not flow.busy

    @pytest.mark.asyncio
    async def test_invalid_form_is_not_written(self, flow, store):
        record, notification = await flow.create(RecordForm())

        assert record is None
        assert notification.level == NotificationLevel.WARNING
        assert "group_name" in notification.field_errors
        assert await store.query("records") == []
        assert "validation_failed" in await audit_types(store)

    @pytest.mark.asyncio
    async def test_duplicate_submission_is_refused(self, repository):
        allocator = SlowAllocator()
        flow = RecordFlow(allocator, repository)
        form = filled_form()

        first = asyncio.create_task(flow.create(form))
        await allocator.started.wait()
        assert flow.busy

        record, notification = await flow.create(form)
        assert record is None
        assert notification.title == "Please wait"

        allocator.release.set()
        record, notification = await first
        assert record.display_id == 1
        assert allocator.calls == 1
        assert not flow.busy

    @pytest.mark.asyncio
    async def test_aborted_transaction(self, repository, audit_logger, store):
        flow = RecordFlow(AbortingAllocator(), repository, audit_logger)

        record, notification = await flow.create(filled_form())

        assert record is None
        assert notification.is_error
        assert notification.title == "Not saved"
        assert "save_failed" in await audit_types(store)
        assert not flow.busy


class TestUpdate:

    @pytest.mark.asyncio
    async def test_update_keeps_display_id(self, flow, store):
        created, _ = await flow.create(filled_form())
        form = RecordForm.from_record(created)
        form.set_value("collected_amount", Decimal("200"))

        record, notification = await flow.update(form)

        assert notification.level == NotificationLevel.SUCCESS
        assert record.id == created.id
        assert record.display_id == created.display_id
        assert record.total_amount == Decimal("210.00")
        stored = await store.get("records", created.id)
        assert stored["totalAmount"] == "210.00"
        assert stored["displayId"] == 1
        assert await store.get("counters", "records") == {"lastId": 1}

    @pytest.mark.asyncio
    async def test_update_without_record(self, flow):
        record, notification = await flow.update(filled_form())
        assert record is None
        assert notification.title == "Nothing to update"

    @pytest.mark.asyncio
    async def test_update_of_deleted_record(self, flow, store):
        created, _ = await flow.create(filled_form())
        form = RecordForm.from_record(created)
        await store.delete("records", created.id)

        record, notification = await flow.update(form)

        assert record is None
        assert notification.title == "Record not found"


class TestDelete:

    @pytest.mark.asyncio
    async def test_delete_tail_reclaims(self, flow, store):
        created, _ = await flow.create(filled_form())

        reclaimed, notification = await flow.delete(created)

        assert reclaimed is True
        assert notification.level == NotificationLevel.SUCCESS
        assert await store.get("counters", "records") == {"lastId": 0}
        assert "record_deleted" in await audit_types(store)
        assert "counter_reclaimed" in await audit_types(store)

    @pytest.mark.asyncio
    async def test_missing_counter(self, flow, store):
        created, _ = await flow.create(filled_form())
        await store.delete("counters", "records")

        reclaimed, notification = await flow.delete(created)

        assert reclaimed is None
        assert notification.title == "Could not delete"
        assert await store.get("records", created.id) is not None

    @pytest.mark.asyncio
    async def test_interior_delete_reclaims_nothing(self, flow, store):
        first, _ = await flow.create(filled_form())
        await flow.create(filled_form())

        reclaimed, _ = await flow.delete(first)

        assert reclaimed is False
        types = await audit_types(store)
        assert "record_deleted" in types
        assert "counter_reclaimed" not in types

    @pytest.mark.asyncio
    async def test_second_delete_of_same_record(self, flow, store):
        await flow.create(filled_form())
        created, _ = await flow.create(filled_form())
        await flow.delete(created)

        reclaimed, notification = await flow.delete(created)

        assert reclaimed is None
        assert notification.title == "Record not found"
        assert await store.get("counters", "records") == {"lastId": 1}


class TestImagesAndScanning:

    @pytest.mark.asyncio
    async def test_attach_image(self, flow, store):
        form = RecordForm()

        attachment, notification = await flow.attach(form, "receipt.png", image_bytes("PNG"))

        assert attachment.url.startswith("data:image/png;base64,")
        assert form.attachments == [attachment]
        assert notification.level == NotificationLevel.SUCCESS

    @pytest.mark.asyncio
    async def test_attach_rejects_non_image(self, flow, store):
        form = RecordForm()

        attachment, notification = await flow.attach(form, "notes.png", b"not an image")

        assert attachment is None
        assert form.attachments == []
        assert notification.level == NotificationLevel.WARNING
        assert "image_rejected" in await audit_types(store)

    @pytest.mark.asyncio
    async def test_scan_fills_form(self, allocator, repository, audit_logger, store):
        agent = FakeScanAgent(result={
            "bank_type": "AYA",
            "collected_amount": "50",
            "record_date": "not a date",
            "total_amount": "1",
        })
        flow = RecordFlow(allocator, repository, audit_logger, scan_agent=agent)
        form = RecordForm()

        merge, notification = await flow.scan(form, ATTACHMENT)

        assert agent.seen == [ATTACHMENT]
        assert set(merge.accepted) == {"bank_type", "collected_amount"}
        assert set(merge.rejected) == {"record_date"}
        assert notification.level == NotificationLevel.SUCCESS
        assert form.get("bank_type") == "AYA"
        assert form.get("total_amount") == Decimal("50.00")
        assert "scan_completed" in await audit_types(store)

    @pytest.mark.asyncio
    async def test_scan_failure_leaves_form_unchanged(self, allocator, repository, audit_logger, store):
        agent = FakeScanAgent(error=ExtractionFailure("quota exceeded"))
        flow = RecordFlow(allocator, repository, audit_logger, scan_agent=agent)
        form = filled_form()
        before = form.values

        merge, notification = await flow.scan(form, ATTACHMENT)

        assert merge is None
        assert notification.level == NotificationLevel.WARNING
        assert form.values == before
        assert "scan_failed" in await audit_types(store)

    @pytest.mark.asyncio
    async def test_scan_with_nothing_usable(self, allocator, repository):
        flow = RecordFlow(allocator, repository, scan_agent=FakeScanAgent(result={"name": None}))

        merge, notification = await flow.scan(RecordForm(), ATTACHMENT)

        assert merge.accepted == {}
        assert notification.title == "Nothing filled in"

    @pytest.mark.asyncio
    async def test_scan_without_agent(self, flow):
        assert not flow.can_scan
        merge, notification = await flow.scan(RecordForm(), ATTACHMENT)
        assert merge is None
        assert notification.title == "Scanning unavailable"


class TestDashboardFlow:

    @pytest.mark.asyncio
    async def test_summary_follows_the_feed(self, store, flow, audit_logger):
        dashboard = DashboardFlow(RecordFeed(store), audit_logger)
        dashboard.start()
        assert dashboard.summary().is_empty

        await flow.create(filled_form())
        await flow.create(filled_form(bank_type="AYA"))

        summary = dashboard.summary()
        assert summary.transaction_count == 2
        assert summary.total_amount == Decimal("220.00")
        assert [d.name for d in summary.by_bank] == ["KBZ", "AYA"]
        assert [r.display_id for r in summary.recent] == [2, 1]
        assert dashboard.summary() is summary

    def test_summary_before_first_snapshot(self, store):
        assert DashboardFlow(RecordFeed(store)).summary() is None

    @pytest.mark.asyncio
    async def test_error_state_is_persistent(self, store, audit_logger, payload):
        dashboard = DashboardFlow(RecordFeed(store), audit_logger)
        dashboard.start()
        assert await dashboard.error_state() is None

        document = record_to_document(payload, 1)
        document["totalAmount"] = 1.0
        await store.add("records", document)

        notification = await dashboard.error_state()
        assert notification.is_error
        assert notification.persistent
        assert not notification.dismissable

        await dashboard.error_state()
        assert (await audit_types(store)).count("subscription_failed") == 1

    @pytest.mark.asyncio
    async def test_reload_after_failure(self, store, flow, audit_logger):
        feed = RecordFeed(store)
        dashboard = DashboardFlow(feed, audit_logger)
        dashboard.start()
        store.fail_subscriptions()
        await flow.create(filled_form())

        snapshot, notification = await dashboard.reload()

        assert len(snapshot) == 1
        assert notification.level == NotificationLevel.SUCCESS
        assert feed.is_running
        assert await dashboard.error_state() is None

    @pytest.mark.asyncio
    async def test_export_excel(self, store, flow, audit_logger):
        dashboard = DashboardFlow(RecordFeed(store), audit_logger)
        dashboard.start()
        await flow.create(filled_form())

        content, notification = await dashboard.export_excel()

        assert content[:2] == b"PK"
        assert notification.level == NotificationLevel.SUCCESS
        assert "export_completed" in await audit_types(store)

    @pytest.mark.asyncio
    async def test_sheets_export_not_configured(self, store):
        dashboard = DashboardFlow(RecordFeed(store))
        assert not dashboard.can_export_to_sheets
        count, notification = await dashboard.export_to_sheets()
        assert count is None
        assert notification.level == NotificationLevel.WARNING


class TestCreateAppComponents:

    @pytest.mark.asyncio
    async def test_wires_memory_store(self):
        store = InMemoryDocumentStore()
        components = create_app_components(store=store, scan_agent=FakeScanAgent())

        assert isinstance(components, AppComponents)
        assert components.store is store
        assert components.record_flow.can_scan

        components.dashboard_flow.start()
        record, _ = await components.record_flow.create(filled_form())
        assert components.dashboard_flow.summary().transaction_count == 1
        assert (await components.repository.get(record.id)) == record

        await components.close()
        assert not components.feed.is_running

