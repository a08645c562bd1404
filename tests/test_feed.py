"""Tests for the live record feed."""

import pytest

from expense_tracker.queries import RecordFeed, build_snapshot
from expense_tracker.services.storage import (
    StoredDocument,
    SubscriptionError,
    record_to_document,
)
from tests.conftest import make_payload


class TestBuildSnapshot:

    def test_orders_by_display_id(self):
        documents = [
            StoredDocument("b", record_to_document(make_payload(), 2)),
            StoredDocument("a", record_to_document(make_payload(), 1)),
        ]
        snapshot = build_snapshot(documents)
        assert [r.display_id for r in snapshot.records] == [1, 2]
        assert [r.id for r in snapshot.records] == ["a", "b"]

    def test_malformed_document_is_an_error(self):
        document = record_to_document(make_payload(), 1)
        document["totalAmount"] = 1.0
        with pytest.raises(SubscriptionError) as exc_info:
            build_snapshot([StoredDocument("bad", document)])
        assert "bad" in str(exc_info.value)


class TestRecordFeed:

    @pytest.mark.asyncio
    async def test_start_delivers_current_collection(self, store, allocator, payload):
        await allocator.allocate_and_create(payload)
        feed = RecordFeed(store)

        feed.start()

        assert feed.is_running
        assert len(feed.latest) == 1
        assert feed.error is None

    def test_empty_collection(self, store):
        feed = RecordFeed(store)
        feed.start()
        assert feed.latest is not None
        assert feed.latest.is_empty

    @pytest.mark.asyncio
    async def test_each_change_produces_a_new_snapshot(self, store, allocator, payload):
        received = []
        feed = RecordFeed(store)
        feed.add_listener(received.append)
        feed.start()

        first = await allocator.allocate_and_create(payload)
        await allocator.allocate_and_create(payload)
        await allocator.delete_and_reclaim(first)

        assert [len(s) for s in received] == [0, 1, 2, 1]
        assert received[0] is not received[1]
        assert [r.display_id for r in feed.latest.records] == [2]

    @pytest.mark.asyncio
    async def test_listener_errors_do_not_stop_the_feed(self, store, allocator, payload):
        def broken(snapshot):
            raise RuntimeError("render failed")

        feed = RecordFeed(store)
        feed.add_listener(broken)
        feed.start()
        await allocator.allocate_and_create(payload)

        assert feed.is_running
        assert feed.error is None
        assert len(feed.latest) == 1

    @pytest.mark.asyncio
    async def test_malformed_record_fails_the_feed(self, store, payload):
        errors = []
        feed = RecordFeed(store)
        feed.add_error_listener(errors.append)
        feed.start()

        document = record_to_document(payload, 1)
        document["convertedAmount"] = 12345.0
        await store.add("records", document)

        assert not feed.is_running
        assert isinstance(feed.error, SubscriptionError)
        assert len(errors) == 1

    @pytest.mark.asyncio
    async def test_malformed_record_at_start(self, store, payload):
        document = record_to_document(payload, 1)
        document["groupName"] = ""
        await store.add("records", document)
        errors = []
        feed = RecordFeed(store)
        feed.add_error_listener(errors.append)

        feed.start()

        assert not feed.is_running
        assert feed.error is not None
        assert feed.latest is None
        assert len(errors) == 1

    def test_channel_failure(self, store):
        feed = RecordFeed(store)
        feed.start()

        store.fail_subscriptions("Missing or insufficient permissions")

        assert not feed.is_running
        assert "permissions" in str(feed.error)

    @pytest.mark.asyncio
    async def test_stop_ends_deliveries(self, store, allocator, payload):
        received = []
        feed = RecordFeed(store)
        feed.add_listener(received.append)
        feed.start()
        feed.stop()

        await allocator.allocate_and_create(payload)

        assert not feed.is_running
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_reload_clears_error(self, store, allocator, payload):
        feed = RecordFeed(store)
        feed.start()
        store.fail_subscriptions()
        await allocator.allocate_and_create(payload)

        snapshot = await feed.reload()

        assert len(snapshot) == 1
        assert feed.error is None
        assert feed.latest is snapshot

    @pytest.mark.asyncio
    async def test_reload_raises_on_malformed_record(self, store, payload):
        document = record_to_document(payload, 1)
        document["totalAmount"] = 1.0
        await store.add("records", document)
        feed = RecordFeed(store)

        with pytest.raises(SubscriptionError):
            await feed.reload()

        assert feed.error is not None
