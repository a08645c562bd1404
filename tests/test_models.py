"""
Tests for Expense Tracker models

Test strategy:
1. Unit tests for individual components (models, aggregation, form)
2. Integration tests for flows (with the in-memory store)
3. No real API calls in tests (use fakes)
"""

import pytest
from datetime import date, timezone
from decimal import Decimal

from pydantic import ValidationError

from expense_tracker.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from expense_tracker.models.notification import Notification, NotificationLevel
from expense_tracker.models.record import (
    ImageAttachment,
    Record,
    RecordPayload,
    RecordSnapshot,
    compute_derived_amounts,
    resolve_category_label,
    to_decimal,
)
from tests.conftest import make_payload


class TestDerivedAmounts:
    """Tests for the derived monetary field arithmetic."""

    def test_total_is_collected_plus_fee(self):
        assert compute_derived_amounts(100, 10).total_amount == Decimal("110")

    def test_converted_is_collected_times_rate(self):
        assert compute_derived_amounts(100, 0, 3).converted_amount == Decimal("300")

    def test_total_transfer_is_converted_plus_fee(self):
        derived = compute_derived_amounts(100, 0, 3, 5)
        assert derived.total_transfer_amount == Decimal("305")

    def test_missing_inputs_count_as_zero(self):
        derived = compute_derived_amounts(None, "", "abc", None)
        assert derived.total_amount == Decimal("0")
        assert derived.converted_amount == Decimal("0")
        assert derived.total_transfer_amount == Decimal("0")

    def test_results_are_rounded_half_up_to_cents(self):
        derived = compute_derived_amounts("10.005", 0, 1)
        assert derived.total_amount == Decimal("10.01")

    def test_rate_is_rounded_before_converting(self):
        derived = compute_derived_amounts(1, 0, "0.00499999999999999999")
        assert derived.converted_amount == Decimal("0.01")

    def test_to_decimal_is_lenient(self):
        assert to_decimal(" 12.5 ") == Decimal("12.5")
        assert to_decimal(True) == Decimal("0")
        assert to_decimal("nan") == Decimal("0")


class TestRecordPayload:
    """Tests for the shared record schema."""

    def test_derived_fields_are_filled(self):
        payload = make_payload()
        assert payload.total_amount == Decimal("110.00")
        assert payload.converted_amount == Decimal("300.00")
        assert payload.total_transfer_amount == Decimal("305.00")

    def test_consistent_derived_fields_are_accepted(self):
        payload = make_payload(
            total_amount=Decimal("110"),
            converted_amount=Decimal("300"),
            total_transfer_amount=Decimal("305"),
        )
        assert payload.total_amount == Decimal("110.00")

    def test_inconsistent_derived_field_is_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            make_payload(total_amount=Decimal("999"))
        assert "total_amount" in str(exc_info.value)

    def test_required_fields(self):
        with pytest.raises(ValidationError) as exc_info:
            RecordPayload(record_date=date(2024, 1, 1))
        missing = {e["loc"][0] for e in exc_info.value.errors()}
        assert {"group_name", "bank_type", "collected_amount", "buying_rate"} <= missing

    def test_rejects_negative_amount(self):
        with pytest.raises(ValidationError):
            make_payload(collected_amount=Decimal("-1"))

    def test_strips_whitespace(self):
        assert make_payload(group_name="  Group B  ").group_name == "Group B"

    def test_blank_optional_text_becomes_none(self):
        payload = make_payload(township="   ", remark=None)
        assert payload.township is None
        assert payload.remark == ""

    def test_amounts_rounded_to_cents(self):
        assert make_payload(service_fee=Decimal("1.005")).service_fee == Decimal("1.01")

    def test_rate_rounded_to_six_places(self):
        payload = make_payload(buying_rate=Decimal("0.00499999999999999999"))
        assert payload.buying_rate == Decimal("0.005000")
        assert payload.buying_rate.as_tuple().exponent == -6

    def test_category_label(self):
        assert make_payload(category="Other", other_category="Software").category_label == "Software"
        assert make_payload(category="Food", other_category="Software").category_label == "Food"


class TestCategoryLabel:

    def test_other_with_override(self):
        assert resolve_category_label("Other", "Software") == "Software"

    def test_other_with_empty_override(self):
        assert resolve_category_label("Other", "") == "Other"

    def test_regular_category_ignores_override(self):
        assert resolve_category_label("Food", "Software") == "Food"


class TestRecord:

    def test_display_id_must_be_positive(self):
        with pytest.raises(ValidationError):
            Record(**make_payload().model_dump(), id="abc", display_id=0)

    def test_payload_drops_identity(self):
        payload = make_payload()
        record = Record(**payload.model_dump(), id="abc", display_id=3)
        assert record.payload() == payload

    def test_attachment_must_be_data_uri(self):
        with pytest.raises(ValidationError):
            ImageAttachment(name="receipt.png", url="https://example.com/receipt.png")
        attachment = ImageAttachment(name="receipt.png", url="data:image/png;base64,AAAA")
        assert attachment.name == "receipt.png"


class TestRecordSnapshot:

    def test_snapshot_is_immutable(self):
        snapshot = RecordSnapshot(records=())
        with pytest.raises(ValidationError):
            snapshot.records = ()

    def test_last_display_id(self):
        records = tuple(
            Record(**make_payload().model_dump(), id=f"id{i}", display_id=i)
            for i in (1, 2, 5)
        )
        snapshot = RecordSnapshot(records=records)
        assert len(snapshot) == 3
        assert snapshot.last_display_id == 5
        assert RecordSnapshot().is_empty
        assert RecordSnapshot().last_display_id == 0

    def test_received_at_is_utc(self):
        assert RecordSnapshot().received_at.tzinfo == timezone.utc


class TestNotification:

    def test_levels(self):
        assert Notification.success("Saved").level == NotificationLevel.SUCCESS
        assert Notification.error("Failed").is_error

    def test_warning_with_field_errors(self):
        notification = Notification.warning(
            "Check the form",
            field_errors={"group_name": "Field required"},
        )
        assert notification.field_errors == {"group_name": "Field required"}
        assert notification.dismissable


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        event = AuditEvent(
            event_type=AuditEventType.RECORD_CREATED,
            description="Record created",
        )
        assert event.event_id is not None
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        event = AuditEvent(
            event_type=AuditEventType.SAVE_FAILED,
            severity=AuditSeverity.ERROR,
            description="Save failed",
            error_message="aborted",
        )
        log_dict = event.to_log_dict()
        assert log_dict["event_type"] == "save_failed"
        assert log_dict["severity"] == "error"
        assert log_dict["error_message"] == "aborted"

    def test_builder_record_deleted(self):
        event = AuditEventBuilder.record_deleted("doc1", 7, reclaimed=True)
        assert event.event_type == AuditEventType.RECORD_DELETED
        assert event.entity_id == "doc1"
        assert event.details == {"display_id": 7, "counter_reclaimed": True}

    def test_builder_save_failed(self):
        event = AuditEventBuilder.save_failed(
            operation="create",
            error_code="TransactionAborted",
            error_message="too much contention",
        )
        assert event.severity == AuditSeverity.ERROR
        assert event.error_code == "TransactionAborted"

    def test_timestamp_is_utc(self):
        event = AuditEventBuilder.record_created("doc1", 1)
        assert event.timestamp.tzinfo == timezone.utc

    def test_builder_counter_reclaimed(self):
        event = AuditEventBuilder.counter_reclaimed("records", 4)
        assert event.event_type == AuditEventType.COUNTER_RECLAIMED
        assert event.entity_type == "counter"
        assert event.entity_id == "records"
        assert event.details == {"display_id": 4, "last_id": 3}
