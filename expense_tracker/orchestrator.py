"""
Main Orchestrator for Expense Tracker

This module ties together all the components and defines the
end-to-end flows for:
1. Records (form -> validate -> allocate/overwrite/delete -> notify)
2. Receipt scanning (image -> encode -> extract -> re-validate -> merge)
3. Dashboard (live snapshot -> summary, or a persistent error state)

DESIGN DECISION: The orchestrator is the error boundary.
Every store-facing error is caught here, audited, and converted into a
Notification. Nothing raised by the store, the scanner or the exporters
reaches the UI code.

Duplicate submissions from one session are refused while an operation is
in flight. This only protects against double clicks; correctness under
concurrency comes from the store's transactions.
"""

from typing import Any, Awaitable, Callable, Optional, TypeVar
from uuid import UUID

import structlog

from expense_tracker.agents import ExtractionFailure, ReceiptScanAgent
from expense_tracker.allocation import SequentialIdAllocator
from expense_tracker.analytics import summarize
from expense_tracker.audit import AuditLogger, create_correlation_id
from expense_tracker.config import Settings, get_settings
from expense_tracker.forms import ExtractionMerge, FormValidationError, RecordForm
from expense_tracker.models.dashboard import DashboardSummary
from expense_tracker.models.notification import Notification
from expense_tracker.models.record import ImageAttachment, Record, RecordSnapshot
from expense_tracker.queries import RecordFeed
from expense_tracker.services.export import ExcelExporter, GoogleSheetsExporter
from expense_tracker.services.image import ImageRejectedError, encode_upload
from expense_tracker.services.storage import (
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
)


T = TypeVar("T")

logger = structlog.get_logger(__name__)

BUSY = Notification.warning(
    "Please wait",
    "The previous action is still being saved.",
)


class RecordFlow:
    """
    Orchestrates record creation, editing, deletion and receipt scanning.

    Every public method returns (result, Notification); result is None
    whenever the operation did not happen.
    """

    def __init__(
        self,
        allocator: SequentialIdAllocator,
        repository: RecordRepository,
        audit_logger: Optional[AuditLogger] = None,
        scan_agent: Optional[ReceiptScanAgent] = None,
    ):
        self._allocator = allocator
        self._repository = repository
        self._audit_logger = audit_logger or AuditLogger()
        self._scan_agent = scan_agent
        self._busy = False

    @property
    def busy(self) -> bool:
        """True while an operation is in flight."""
        return self._busy

    @property
    def can_scan(self) -> bool:
        return self._scan_agent is not None

    async def _guarded(
        self,
        operation: Callable[[], Awaitable[tuple[Optional[T], Notification]]],
    ) -> tuple[Optional[T], Notification]:
        if self._busy:
            return None, BUSY
        self._busy = True
        try:
            return await operation()
        finally:
            self._busy = False

    async def _validate(
        self,
        form: RecordForm,
        correlation_id: UUID,
    ):
        """Returns (payload, None) or (None, warning notification)."""
        try:
            return form.validate(), None
        except FormValidationError as e:
            await self._audit_logger.log_validation_failed(
                field_errors=e.field_errors,
                correlation_id=correlation_id,
            )
            return None, Notification.warning(
                "Please check the form",
                str(e),
                field_errors=e.field_errors,
            )

    async def _store_failure(
        self,
        operation: str,
        error: StorageError,
        record_id: Optional[str],
        correlation_id: UUID,
    ) -> Notification:
        await self._audit_logger.log_save_failed(
            operation=operation,
            error=error,
            record_id=record_id,
            correlation_id=correlation_id,
        )
        if isinstance(error, TransactionAborted):
            return Notification.error(
                "Not saved",
                "Too many changes were being saved at the same time. "
                "Nothing was changed, please try again.",
            )
        if isinstance(error, CounterMissing):
            return Notification.error(
                "Could not delete",
                "The record counter is missing. The record was not deleted; "
                "you can try again.",
            )
        if isinstance(error, NotFoundError):
            return Notification.error(
                "Record not found",
                "This record no longer exists. It may have been deleted elsewhere.",
            )
        return Notification.error(f"Could not {operation} record", str(error))

    # -------------------------------------------------------------------------
    # Records
    # -------------------------------------------------------------------------

    async def create(
        self,
        form: RecordForm,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[Optional[Record], Notification]:
        """Validate the form and create a record with the next display id."""
        correlation_id = correlation_id or create_correlation_id()

        async def _create():
            payload, warning = await self._validate(form, correlation_id)
            if warning:
                return None, warning
            try:
                record = await self._allocator.allocate_and_create(payload)
            except StorageError as e:
                return None, await self._store_failure("create", e, None, correlation_id)

            await self._audit_logger.log_record_created(
                record_id=record.id,
                display_id=record.display_id,
                correlation_id=correlation_id,
            )
            return record, Notification.success(
                "Record saved",
                f"Saved as record #{record.display_id}.",
            )

        return await self._guarded(_create)

    async def update(
        self,
        form: RecordForm,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[Optional[Record], Notification]:
        """Overwrite the record being edited. The display id never changes."""
        correlation_id = correlation_id or create_correlation_id()
        if form.editing is None:
            return None, Notification.warning("Nothing to update", "No record is being edited.")

        async def _update():
            payload, warning = await self._validate(form, correlation_id)
            if warning:
                return None, warning
            record = Record.model_validate({
                **payload.model_dump(),
                "id": form.editing.id,
                "display_id": form.editing.display_id,
            })
            try:
                record = await self._repository.update(record)
            except StorageError as e:
                return None, await self._store_failure("update", e, record.id, correlation_id)

            await self._audit_logger.log_record_updated(
                record_id=record.id,
                display_id=record.display_id,
                correlation_id=correlation_id,
            )
            return record, Notification.success(
                "Record updated",
                f"Record #{record.display_id} was updated.",
            )

        return await self._guarded(_update)

    async def delete(
        self,
        record: Record,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[Optional[bool], Notification]:
        """
        Delete a record.

        Result is whether its display id was reclaimed, or None on failure.
        """
        correlation_id = correlation_id or create_correlation_id()

        async def _delete():
            try:
                reclaimed = await self._allocator.delete_and_reclaim(record)
            except StorageError as e:
                return None, await self._store_failure("delete", e, record.id, correlation_id)

            await self._audit_logger.log_record_deleted(
                record_id=record.id,
                display_id=record.display_id,
                reclaimed=reclaimed,
                correlation_id=correlation_id,
            )
            if reclaimed:
                await self._audit_logger.log_counter_reclaimed(
                    sequence=self._allocator.sequence,
                    display_id=record.display_id,
                    correlation_id=correlation_id,
                )
            return reclaimed, Notification.success(
                "Record deleted",
                f"Record #{record.display_id} was deleted.",
            )

        return await self._guarded(_delete)

    # -------------------------------------------------------------------------
    # Receipt images
    # -------------------------------------------------------------------------

    async def attach(
        self,
        form: RecordForm,
        filename: str,
        data: bytes,
        mime_type: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[Optional[ImageAttachment], Notification]:
        """Encode an uploaded image and attach it to the form."""
        correlation_id = correlation_id or create_correlation_id()
        try:
            attachment = await encode_upload(filename, data, mime_type)
        except ImageRejectedError as e:
            await self._audit_logger.log_image_rejected(
                filename=filename,
                reason=str(e),
                correlation_id=correlation_id,
            )
            return None, Notification.warning("Image not attached", str(e))

        form.add_attachment(attachment)
        await self._audit_logger.log_image_attached(
            filename=filename,
            size_bytes=len(data),
            correlation_id=correlation_id,
        )
        return attachment, Notification.success("Image attached", filename)

    async def scan(
        self,
        form: RecordForm,
        attachment: ImageAttachment,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[Optional[ExtractionMerge], Notification]:
        """
        Fill the form from a receipt image.

        On failure the form is left exactly as it was.
        """
        correlation_id = correlation_id or create_correlation_id()
        if self._scan_agent is None:
            return None, Notification.warning(
                "Scanning unavailable",
                "Receipt scanning is not configured. Please fill in the form manually.",
            )

        async def _scan():
            try:
                extracted = await self._scan_agent.extract(attachment)
            except ExtractionFailure as e:
                await self._audit_logger.log_scan_failed(
                    filename=attachment.name,
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
                return None, Notification.warning(
                    "Could not read the receipt",
                    "Please fill in the form manually.",
                )

            merge = form.apply_extraction(extracted)
            await self._audit_logger.log_scan_completed(
                filename=attachment.name,
                accepted=sorted(merge.accepted),
                rejected=sorted(merge.rejected),
                correlation_id=correlation_id,
            )
            if not merge.accepted:
                return merge, Notification.warning(
                    "Nothing filled in",
                    "No usable values were found on the receipt.",
                )
            message = f"{len(merge.accepted)} fields filled in. Please check them."
            if merge.rejected:
                message += f" {len(merge.rejected)} values were not valid and were skipped."
            return merge, Notification.success("Receipt scanned", message)

        return await self._guarded(_scan)


class DashboardFlow:
    """
    Turns the live record feed into dashboard summaries.

    The summary is a pure function of the latest snapshot; it is recomputed
    in full whenever a new snapshot arrives.
    """

    def __init__(
        self,
        feed: RecordFeed,
        audit_logger: Optional[AuditLogger] = None,
        recent_count: int = 5,
        excel_exporter: Optional[ExcelExporter] = None,
        sheets_exporter: Optional[GoogleSheetsExporter] = None,
    ):
        self._feed = feed
        self._audit_logger = audit_logger or AuditLogger()
        self._recent_count = recent_count
        self._excel_exporter = excel_exporter or ExcelExporter()
        self._sheets_exporter = sheets_exporter
        self._summarized: Optional[RecordSnapshot] = None
        self._summary: Optional[DashboardSummary] = None
        self._reported_error: Optional[SubscriptionError] = None

    @property
    def can_export_to_sheets(self) -> bool:
        return self._sheets_exporter is not None

    def start(self) -> None:
        self._feed.start()

    @property
    def snapshot(self) -> Optional[RecordSnapshot]:
        return self._feed.latest

    def summary(self) -> Optional[DashboardSummary]:
        """Summary of the latest snapshot, or None before the first one."""
        snapshot = self._feed.latest
        if snapshot is None:
            return None
        if snapshot is not self._summarized:
            self._summary = summarize(snapshot.records, self._recent_count)
            self._summarized = snapshot
        return self._summary

    async def error_state(self) -> Optional[Notification]:
        """
        The persistent error that replaces the dashboard, if the live query
        has failed. Each failure is audited once.
        """
        error = self._feed.error
        if error is None:
            return None
        if error is not self._reported_error:
            self._reported_error = error
            await self._audit_logger.log_subscription_failed(
                collection=self._feed.collection,
                error_message=str(error),
            )
        return Notification.error(
            "Records unavailable",
            f"The record list could not be loaded: {error}",
            dismissable=False,
            persistent=True,
        )

    async def reload(self) -> tuple[Optional[RecordSnapshot], Notification]:
        """Re-read the whole collection and restart the live query."""
        try:
            snapshot = await self._feed.reload()
        except SubscriptionError:
            return None, await self.error_state()
        self._feed.stop()
        self._feed.start()
        return snapshot, Notification.success("Reloaded", f"{len(snapshot)} records.")

    async def export_excel(
        self,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[Optional[bytes], Notification]:
        """Workbook bytes of the latest snapshot."""
        records = self.snapshot.records if self.snapshot else ()
        content = await self._excel_exporter.export(records)
        await self._audit_logger.log_export_completed(
            target="xlsx",
            row_count=len(records),
            correlation_id=correlation_id,
        )
        return content, Notification.success("Export ready", f"{len(records)} records.")

    async def export_to_sheets(
        self,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[Optional[int], Notification]:
        """Copy the latest snapshot to Google Sheets."""
        if self._sheets_exporter is None:
            return None, Notification.warning(
                "Google Sheets not configured",
                "Set the GOOGLE_SHEETS_ settings to enable this export.",
            )
        records = self.snapshot.records if self.snapshot else ()
        try:
            count = await self._sheets_exporter.export(records)
        except StorageError as e:
            await self._audit_logger.log_external_service_error(
                service="google_sheets",
                error_message=str(e),
                correlation_id=correlation_id,
            )
            return None, Notification.error("Export failed", str(e))
        await self._audit_logger.log_export_completed(
            target="google_sheets",
            row_count=count,
            correlation_id=correlation_id,
        )
        return count, Notification.success("Exported to Google Sheets", f"{count} records.")


class AppComponents:
    """Everything the UI needs, with an explicit lifecycle."""

    def __init__(
        self,
        store: DocumentStoreInterface,
        allocator: SequentialIdAllocator,
        repository: RecordRepository,
        feed: RecordFeed,
        record_flow: RecordFlow,
        dashboard_flow: DashboardFlow,
        audit_logger: AuditLogger,
    ):
        self.store = store
        self.allocator = allocator
        self.repository = repository
        self.feed = feed
        self.record_flow = record_flow
        self.dashboard_flow = dashboard_flow
        self.audit_logger = audit_logger

    async def close(self) -> None:
        """Stop the live query and release the store client."""
        self.feed.stop()
        await self.store.close()


def _optional_component(name: str, factory: Callable[[], Any]) -> Optional[Any]:
    try:
        return factory()
    except Exception as e:
        # Not configured - continue without it
        logger.warning("component_not_configured", component=name, error=str(e))
        return None


def create_app_components(
    settings: Optional[Settings] = None,
    store: Optional[DocumentStoreInterface] = None,
    scan_agent: Optional[ReceiptScanAgent] = None,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        settings: Application settings, defaults to the environment
        store: A ready document store; when None one is built from
               STORAGE_BACKEND (memory or firestore)
        scan_agent: Receipt scanner; when None one is built if Gemini is
                    configured, otherwise scanning is disabled
    """
    settings = settings or get_settings()
    app_settings = settings.app

    records_collection = "records"
    counters_collection = "counters"
    audit_collection = "auditLog"
    sequence = "records"

    if app_settings.storage_backend == "firestore":
        firestore_settings = settings.firestore
        records_collection = firestore_settings.records_collection
        counters_collection = firestore_settings.counters_collection
        audit_collection = firestore_settings.audit_collection
        sequence = firestore_settings.sequence_name
        store = store or FirestoreDocumentStore(firestore_settings)
    else:
        store = store or InMemoryDocumentStore()

    audit_logger = AuditLogger(DocumentAuditStorage(store, audit_collection))

    allocator = SequentialIdAllocator(
        store,
        records_collection=records_collection,
        counters_collection=counters_collection,
        sequence=sequence,
    )
    repository = RecordRepository(store, records_collection)
    feed = RecordFeed(store, records_collection)

    if scan_agent is None:
        scan_agent = _optional_component("receipt_scanner", ReceiptScanAgent)

    record_flow = RecordFlow(
        allocator=allocator,
        repository=repository,
        audit_logger=audit_logger,
        scan_agent=scan_agent,
    )
    dashboard_flow = DashboardFlow(
        feed=feed,
        audit_logger=audit_logger,
        recent_count=app_settings.recent_records_count,
        excel_exporter=ExcelExporter(
            collected_currency=app_settings.collected_currency,
            transfer_currency=app_settings.transfer_currency,
        ),
        sheets_exporter=_optional_component(
            "google_sheets",
            lambda: GoogleSheetsExporter(settings.google_sheets),
        ),
    )

    return AppComponents(
        store=store,
        allocator=allocator,
        repository=repository,
        feed=feed,
        record_flow=record_flow,
        dashboard_flow=dashboard_flow,
        audit_logger=audit_logger,
    )
