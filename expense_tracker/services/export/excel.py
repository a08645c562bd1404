"""Excel export backed by XlsxWriter.

The workbook is built in memory and returned as bytes for a browser
download. It has two worksheets:

- ``Records``: one row per record, as an Excel table
- ``Summary``: totals by bank and by group, computed by the aggregation
  engine rather than by Excel formulas
"""

import asyncio
from io import BytesIO
from typing import Iterable

import xlsxwriter

from expense_tracker.analytics import summarize
from expense_tracker.models.record import Record
from expense_tracker.services.export.base import (
    AMOUNT_COLUMNS,
    EXPORT_COLUMNS,
    EXPORT_HEADERS,
    BaseExporter,
    record_to_row,
)


class ExcelExporter(BaseExporter):
    """Generate an .xlsx workbook of the record collection."""

    RECORDS = "Records"
    SUMMARY = "Summary"
    CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

    def __init__(self, collected_currency: str = "RM", transfer_currency: str = "MMK"):
        self.collected_currency = collected_currency
        self.transfer_currency = transfer_currency

    def to_bytes(self, records: Iterable[Record]) -> bytes:
        records = list(records)
        buffer = BytesIO()
        workbook = xlsxwriter.Workbook(buffer, {"in_memory": True})
        amount_fmt = workbook.add_format({"num_format": "#,##0.00"})
        header_fmt = workbook.add_format({"bold": True})

        self._write_records(workbook, records, amount_fmt)
        self._write_summary(workbook, records, amount_fmt, header_fmt)

        workbook.close()
        return buffer.getvalue()

    async def export(self, records: Iterable[Record]) -> bytes:
        return await asyncio.to_thread(self.to_bytes, list(records))

    def _write_records(self, workbook, records, amount_fmt):
        ws = workbook.add_worksheet(self.RECORDS)
        ws.freeze_panes(1, 0)
        ws.write_row(0, 0, EXPORT_HEADERS)

        for row_idx, record in enumerate(records, start=1):
            for col_idx, value in enumerate(record_to_row(record)):
                field = EXPORT_COLUMNS[col_idx][1]
                if field in AMOUNT_COLUMNS:
                    ws.write_number(row_idx, col_idx, value, amount_fmt)
                else:
                    ws.write(row_idx, col_idx, value)

        for col_idx, (_, field) in enumerate(EXPORT_COLUMNS):
            if field in AMOUNT_COLUMNS:
                ws.set_column(col_idx, col_idx, 16, amount_fmt)

        ws.add_table(0, 0, max(len(records), 1), len(EXPORT_COLUMNS) - 1, {
            "columns": [{"header": h} for h in EXPORT_HEADERS],
        })

    def _write_summary(self, workbook, records, amount_fmt, header_fmt):
        summary = summarize(records)
        ws = workbook.add_worksheet(self.SUMMARY)
        ws.set_column(0, 0, 28)
        ws.set_column(1, 2, 18, amount_fmt)

        ws.write(0, 0, "Transactions", header_fmt)
        ws.write_number(0, 1, summary.transaction_count)
        ws.write(1, 0, f"Total Amount ({self.collected_currency})", header_fmt)
        ws.write_number(1, 1, float(summary.total_amount), amount_fmt)
        ws.write(2, 0, f"Total Transfer Amount ({self.transfer_currency})", header_fmt)
        ws.write_number(2, 1, float(summary.total_transfer_amount), amount_fmt)

        row_idx = 4
        for title, data in (("By Bank", summary.by_bank), ("By Group", summary.by_group)):
            ws.write_row(row_idx, 0, [title, f"Total ({self.collected_currency})"], header_fmt)
            row_idx += 1
            for datum in data:
                ws.write(row_idx, 0, datum.name)
                ws.write_number(row_idx, 1, float(datum.total), amount_fmt)
                row_idx += 1
            row_idx += 1
