"""
Audit Models for Expense Tracker

Every significant action in the system is logged for audit purposes:
record writes, counter reclaims, receipt scans, exports and every store
error that was turned into a notification.

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Receipt scanning
    IMAGE_ATTACHED = "image_attached"
    IMAGE_REJECTED = "image_rejected"
    SCAN_COMPLETED = "scan_completed"
    SCAN_FAILED = "scan_failed"

    # Validation
    VALIDATION_FAILED = "validation_failed"

    # Persistence
    RECORD_CREATED = "record_created"
    RECORD_UPDATED = "record_updated"
    RECORD_DELETED = "record_deleted"
    COUNTER_RECLAIMED = "counter_reclaimed"
    SAVE_FAILED = "save_failed"

    # Live query
    SUBSCRIPTION_FAILED = "subscription_failed"

    # Export
    EXPORT_COMPLETED = "export_completed"

    # System events
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'record', 'counter', 'image')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="Store id or name of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate the events of one user action"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_document(self) -> dict:
        """Convert to a document for the audit collection."""
        document = self.to_log_dict()
        document["timestamp"] = self.timestamp
        return document


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.record_created(record_id, display_id, correlation_id)
    """

    @staticmethod
    def image_attached(
        filename: str,
        size_bytes: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.IMAGE_ATTACHED,
            entity_type="image",
            entity_id=filename,
            correlation_id=correlation_id,
            description=f"Receipt image attached: {filename}",
            details={"size_bytes": size_bytes},
            is_user_action=True,
        )

    @staticmethod
    def image_rejected(
        filename: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.IMAGE_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="image",
            entity_id=filename,
            correlation_id=correlation_id,
            description=f"Receipt image rejected: {filename}",
            error_message=reason,
        )

    @staticmethod
    def scan_completed(
        filename: str,
        accepted: list[str],
        rejected: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SCAN_COMPLETED,
            entity_type="image",
            entity_id=filename,
            correlation_id=correlation_id,
            description=f"Receipt scanned: {len(accepted)} fields filled",
            details={
                "accepted_fields": accepted,
                "rejected_fields": rejected,
            },
        )

    @staticmethod
    def scan_failed(
        filename: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SCAN_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="image",
            entity_id=filename,
            correlation_id=correlation_id,
            description="Receipt scan failed",
            error_message=error_message,
        )

    @staticmethod
    def validation_failed(
        field_errors: dict[str, str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="record",
            correlation_id=correlation_id,
            description=f"Record validation failed with {len(field_errors)} issues",
            details={"field_errors": field_errors},
            is_user_action=True,
        )

    @staticmethod
    def record_created(
        record_id: str,
        display_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_CREATED,
            entity_type="record",
            entity_id=record_id,
            correlation_id=correlation_id,
            description=f"Record #{display_id} created",
            details={"display_id": display_id},
            is_user_action=True,
        )

    @staticmethod
    def record_updated(
        record_id: str,
        display_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_UPDATED,
            entity_type="record",
            entity_id=record_id,
            correlation_id=correlation_id,
            description=f"Record #{display_id} updated",
            details={"display_id": display_id},
            is_user_action=True,
        )

    @staticmethod
    def record_deleted(
        record_id: str,
        display_id: int,
        reclaimed: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_DELETED,
            entity_type="record",
            entity_id=record_id,
            correlation_id=correlation_id,
            description=f"Record #{display_id} deleted",
            details={
                "display_id": display_id,
                "counter_reclaimed": reclaimed,
            },
            is_user_action=True,
        )

    @staticmethod
    def counter_reclaimed(
        sequence: str,
        display_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        """The tail display id was handed back to the counter."""
        return AuditEvent(
            event_type=AuditEventType.COUNTER_RECLAIMED,
            entity_type="counter",
            entity_id=sequence,
            correlation_id=correlation_id,
            description=f"Display id #{display_id} returned to counter {sequence}",
            details={
                "display_id": display_id,
                "last_id": display_id - 1,
            },
        )

    @staticmethod
    def save_failed(
        operation: str,
        error_code: str,
        error_message: str,
        record_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SAVE_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="record",
            entity_id=record_id,
            correlation_id=correlation_id,
            description=f"Record {operation} failed",
            error_code=error_code,
            error_message=error_message,
            details={"operation": operation},
        )

    @staticmethod
    def subscription_failed(
        collection: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SUBSCRIPTION_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="collection",
            entity_id=collection,
            description=f"Live query on {collection} failed",
            error_message=error_message,
        )

    @staticmethod
    def export_completed(
        target: str,
        row_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPORT_COMPLETED,
            entity_type="export",
            entity_id=target,
            correlation_id=correlation_id,
            description=f"Exported {row_count} records to {target}",
            details={"row_count": row_count},
            is_user_action=True,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={"service": service},
            correlation_id=correlation_id,
        )
