"""
Data Models Package

This package contains all Pydantic models used in the Expense Tracker.
All data flowing through the system must conform to these schemas.
"""

from expense_tracker.models.record import (
    DERIVED_AMOUNT_FIELDS,
    INPUT_AMOUNT_FIELDS,
    OTHER_CATEGORY,
    DerivedAmounts,
    ImageAttachment,
    Record,
    RecordPayload,
    RecordSnapshot,
    compute_derived_amounts,
    quantize_money,
    resolve_category_label,
    to_decimal,
)
from expense_tracker.models.dashboard import ChartDatum, DashboardSummary
from expense_tracker.models.notification import Notification, NotificationLevel
from expense_tracker.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Record models
    "DERIVED_AMOUNT_FIELDS",
    "INPUT_AMOUNT_FIELDS",
    "OTHER_CATEGORY",
    "DerivedAmounts",
    "ImageAttachment",
    "Record",
    "RecordPayload",
    "RecordSnapshot",
    "compute_derived_amounts",
    "quantize_money",
    "resolve_category_label",
    "to_decimal",
    # Dashboard models
    "ChartDatum",
    "DashboardSummary",
    # Notifications
    "Notification",
    "NotificationLevel",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
