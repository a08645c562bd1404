"""
Audit Logger

DESIGN DECISION: Every significant action in the system is logged.
This provides:
1. Traceability of who created, edited or deleted which record
2. Debugging capability for failed transactions and scans
3. A record of counter reclaims, which change future display ids

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

import logging
from typing import Optional
from uuid import UUID, uuid4

import structlog

from expense_tracker.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from expense_tracker.services.storage import AuditStorageInterface


def configure_logging(level: int = logging.INFO) -> None:
    """Configure structlog for JSON output through the stdlib logger."""
    logging.basicConfig(format="%(message)s", level=level)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The store's audit collection, when storage is given
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("expense_tracker.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_record_created(
        self,
        record_id: str,
        display_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.record_created(
            record_id=record_id,
            display_id=display_id,
            correlation_id=correlation_id,
        ))

    async def log_record_updated(
        self,
        record_id: str,
        display_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.record_updated(
            record_id=record_id,
            display_id=display_id,
            correlation_id=correlation_id,
        ))

    async def log_record_deleted(
        self,
        record_id: str,
        display_id: int,
        reclaimed: bool,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a deletion and whether the tail id was given back."""
        await self.log(AuditEventBuilder.record_deleted(
            record_id=record_id,
            display_id=display_id,
            reclaimed=reclaimed,
            correlation_id=correlation_id,
        ))

    async def log_counter_reclaimed(
        self,
        sequence: str,
        display_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.counter_reclaimed(
            sequence=sequence,
            display_id=display_id,
            correlation_id=correlation_id,
        ))

    async def log_save_failed(
        self,
        operation: str,
        error: Exception,
        record_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.save_failed(
            operation=operation,
            error_code=type(error).__name__,
            error_message=str(error),
            record_id=record_id,
            correlation_id=correlation_id,
        ))

    async def log_validation_failed(
        self,
        field_errors: dict[str, str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.validation_failed(
            field_errors=field_errors,
            correlation_id=correlation_id,
        ))

    async def log_scan_completed(
        self,
        filename: str,
        accepted: list[str],
        rejected: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.scan_completed(
            filename=filename,
            accepted=accepted,
            rejected=rejected,
            correlation_id=correlation_id,
        ))

    async def log_scan_failed(
        self,
        filename: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.scan_failed(
            filename=filename,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_image_attached(
        self,
        filename: str,
        size_bytes: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.image_attached(
            filename=filename,
            size_bytes=size_bytes,
            correlation_id=correlation_id,
        ))

    async def log_image_rejected(
        self,
        filename: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.image_rejected(
            filename=filename,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_subscription_failed(
        self,
        collection: str,
        error_message: str,
    ) -> None:
        await self.log(AuditEventBuilder.subscription_failed(
            collection=collection,
            error_message=error_message,
        ))

    async def log_export_completed(
        self,
        target: str,
        row_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.export_completed(
            target=target,
            row_count=row_count,
            correlation_id=correlation_id,
        ))

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log external service error."""
        await self.log(AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., submitting the form).
    Pass it through all subsequent operations.
    """
    return uuid4()
