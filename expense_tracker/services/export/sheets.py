"""
Google Sheets export.

Replaces the content of one worksheet with the current record collection,
so non-technical users can browse the records in Sheets. The export is a
copy: nothing is ever read back from the sheet.
"""

import asyncio
from typing import Iterable, Optional

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from expense_tracker.config import GoogleSheetsSettings, get_settings
from expense_tracker.models.record import Record
from expense_tracker.services.export.base import EXPORT_HEADERS, BaseExporter, record_to_row
from expense_tracker.services.storage.interface import ConnectionError, StorageError


logger = structlog.get_logger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive",
]


class GoogleSheetsExporter(BaseExporter):
    """
    Writes the record collection to a Google Sheets worksheet.

    Args:
        settings: Sheets configuration, defaults to the environment
        client: An authorized gspread client; skips authentication when given
    """

    def __init__(
        self,
        settings: Optional[GoogleSheetsSettings] = None,
        client: Optional[gspread.Client] = None,
    ):
        self._settings = settings or get_settings().google_sheets
        self._client = client

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=SCOPES,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_records_sheet(self) -> gspread.Worksheet:
        """Get or create the export worksheet."""
        try:
            spreadsheet = self.connect().open_by_key(self._settings.spreadsheet_id)
        except gspread.SpreadsheetNotFound:
            raise ConnectionError(
                f"Spreadsheet not found: {self._settings.spreadsheet_id}"
            )
        try:
            return spreadsheet.worksheet(self._settings.records_sheet_name)
        except gspread.WorksheetNotFound:
            return spreadsheet.add_worksheet(
                title=self._settings.records_sheet_name,
                rows=1000,
                cols=len(EXPORT_HEADERS),
            )

    def export_sync(self, records: Iterable[Record]) -> int:
        """Replace the worksheet content; returns the number of records written."""
        rows = [EXPORT_HEADERS] + [record_to_row(r) for r in records]
        sheet = self.get_records_sheet()
        try:
            sheet.clear()
            sheet.append_rows(rows, value_input_option="RAW")
        except gspread.exceptions.APIError as e:
            raise StorageError(f"Failed to write export sheet: {e}") from e
        logger.info(
            "sheets_export_written",
            worksheet=self._settings.records_sheet_name,
            rows=len(rows) - 1,
        )
        return len(rows) - 1

    async def export(self, records: Iterable[Record]) -> int:
        return await asyncio.to_thread(self.export_sync, list(records))
