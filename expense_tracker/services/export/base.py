"""
Spreadsheet export: shared column layout.

Every exporter writes the same columns in the same order, so a downloaded
workbook and the Google Sheets copy can be compared row by row.
"""

from abc import ABC, abstractmethod
from typing import Any, Iterable

from expense_tracker.models.record import Record


# (header, record attribute); "category" is exported with "Other" resolved
EXPORT_COLUMNS = [
    ("ID", "display_id"),
    ("Date", "record_date"),
    ("Group", "group_name"),
    ("Bank", "bank_type"),
    ("Township", "township"),
    ("Account No.", "bank_account_number"),
    ("NRC No.", "nrc_number"),
    ("Name", "name"),
    ("Phone", "phone_number"),
    ("Category", "category"),
    ("Collected Amount", "collected_amount"),
    ("Service Fee", "service_fee"),
    ("Total Amount", "total_amount"),
    ("Buying Rate", "buying_rate"),
    ("Converted Amount", "converted_amount"),
    ("Transfer Fee", "transfer_fee"),
    ("Total Transfer Amount", "total_transfer_amount"),
    ("Remark", "remark"),
    ("Attachments", "uploaded_files"),
]

EXPORT_HEADERS = [header for header, _ in EXPORT_COLUMNS]

AMOUNT_COLUMNS = {
    "collected_amount",
    "service_fee",
    "total_amount",
    "buying_rate",
    "converted_amount",
    "transfer_fee",
    "total_transfer_amount",
}


def record_to_row(record: Record) -> list[Any]:
    """One record as a row of plain values (str, int, float)."""
    row: list[Any] = []
    for _, field in EXPORT_COLUMNS:
        if field == "category":
            value = record.category_label or ""
        elif field == "uploaded_files":
            value = len(record.uploaded_files)
        elif field == "record_date":
            value = record.record_date.isoformat()
        else:
            value = getattr(record, field)
            if field in AMOUNT_COLUMNS:
                value = float(value) if value is not None else 0.0
            elif value is None:
                value = ""
        row.append(value)
    return row


class BaseExporter(ABC):
    """A destination for the record collection."""

    @abstractmethod
    async def export(self, records: Iterable[Record]) -> Any:
        """Write the records to the destination."""
        pass
