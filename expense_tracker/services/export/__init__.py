"""Spreadsheet exporters."""

from expense_tracker.services.export.base import (
    EXPORT_COLUMNS,
    EXPORT_HEADERS,
    BaseExporter,
    record_to_row,
)
from expense_tracker.services.export.excel import ExcelExporter
from expense_tracker.services.export.sheets import GoogleSheetsExporter

__all__ = [
    "EXPORT_COLUMNS",
    "EXPORT_HEADERS",
    "BaseExporter",
    "ExcelExporter",
    "GoogleSheetsExporter",
    "record_to_row",
]
