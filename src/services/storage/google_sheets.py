"""
Google Sheets Remote Store

DESIGN DECISION: The household's shared store is a Google Sheets
spreadsheet with one worksheet per table because:
1. Every family member can look at the data directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- No transactions (batch deletes go through a single batch_update call,
  batch inserts through a single append_rows call)
- Limited query capabilities (we filter and sort in Python)
- Cells are text, so booleans are written as "TRUE"/"FALSE" and
  empty cells read back as the column default

The connection handshake is retried; reads and writes are not. A failed
write is reported to the caller, which decides what to roll back.
"""

from typing import Any, Optional, Sequence

import gspread
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from src.config import get_settings
from src.services.storage.interface import (
    ConnectionError,
    Filter,
    NotFoundError,
    Order,
    RemoteStore,
    SchemaError,
    StorageError,
    apply_query,
    to_cell,
)
from src.services.storage.schema import (
    TableDefinition,
    check_unique,
    get_table,
    prepare_insert,
)


SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive",
]


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and hands out one worksheet per table,
    creating it with a header row on first use.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

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

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_worksheet(self, table: TableDefinition) -> gspread.Worksheet:
        """Get or create the worksheet backing a table."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(table.name)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=table.name,
                rows=self._settings.worksheet_rows,
                cols=len(table.columns),
            )
            sheet.append_row(list(table.columns))
        return sheet


class GoogleSheetsRemoteStore(RemoteStore):
    """
    Google Sheets implementation of the remote store.

    Rows are stored one per sheet row, in the column order of the
    worksheet's header. Row 1 is the header.
    """

    def __init__(
        self,
        client: Optional[GoogleSheetsClient] = None,
        invite_code_length: int = 8,
    ):
        self._client = client or GoogleSheetsClient()
        self._invite_code_length = invite_code_length

    # -------------------------------------------------------------------------
    # Cell conversion
    # -------------------------------------------------------------------------

    def _encode(self, value: Any) -> str:
        value = to_cell(value)
        if value is None:
            return ""
        if isinstance(value, bool):
            return "TRUE" if value else "FALSE"
        return str(value)

    def _decode(self, table: TableDefinition, column: str, cell: str) -> Any:
        if cell == "":
            return table.defaults.get(column)
        if column in table.booleans:
            return cell.strip().upper() == "TRUE"
        return cell

    def _row_to_values(self, header: list[str], row: dict) -> list[str]:
        return [self._encode(row.get(column)) for column in header]

    def _values_to_row(self, table: TableDefinition, header: list[str], values: list) -> dict:
        """Convert a sheet row to a dict, tolerating short rows."""
        row = {column: table.defaults.get(column) for column in table.columns}
        for idx, column in enumerate(header):
            if column not in row:
                continue
            cell = values[idx] if idx < len(values) else ""
            row[column] = self._decode(table, column, str(cell))
        return row

    def _read(self, table: TableDefinition) -> tuple[gspread.Worksheet, list[str], list[dict]]:
        """Worksheet, header and all non-empty rows of a table."""
        sheet = self._client.get_worksheet(table)
        all_values = sheet.get_all_values()
        if not all_values:
            raise SchemaError(f"Worksheet {table.name} has no header row")
        header = all_values[0]
        rows = [
            self._values_to_row(table, header, values)
            for values in all_values[1:]
            if values and values[0]
        ]
        return sheet, header, rows

    def _find_row_number(self, sheet: gspread.Worksheet, row_id: str) -> int:
        """1-based sheet row number of a row id (row 1 is the header)."""
        ids = sheet.col_values(1)
        for idx, value in enumerate(ids[1:], start=2):
            if value == row_id:
                return idx
        raise NotFoundError(f"{sheet.title} row not found: {row_id}")

    # -------------------------------------------------------------------------
    # RemoteStore
    # -------------------------------------------------------------------------

    async def select(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        order: Optional[Order] = None,
        limit: Optional[int] = None,
    ) -> list[dict]:
        definition = get_table(table)
        try:
            _, _, rows = self._read(definition)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to read {table}: {e}")
        return apply_query(rows, filters, order, limit)

    async def insert(self, table: str, row: dict) -> dict:
        return (await self.insert_many(table, [row]))[0]

    async def insert_many(self, table: str, rows: Sequence[dict]) -> list[dict]:
        definition = get_table(table)
        try:
            sheet, header, existing = self._read(definition)
            staged: list[dict] = []
            for row in rows:
                prepared = prepare_insert(
                    definition, row, invite_code_length=self._invite_code_length
                )
                check_unique(definition, prepared, existing + staged)
                staged.append(prepared)
            if staged:
                sheet.append_rows(
                    [self._row_to_values(header, r) for r in staged],
                    value_input_option="RAW",
                )
            return staged
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to insert into {table}: {e}")

    async def update(self, table: str, row_id: str, patch: dict) -> dict:
        definition = get_table(table)
        definition.check_columns(patch)
        try:
            sheet, header, existing = self._read(definition)
            current = next((r for r in existing if r.get("id") == row_id), None)
            if current is None:
                raise NotFoundError(f"{table} row not found: {row_id}")

            updated = dict(current)
            updated.update({k: to_cell(v) for k, v in patch.items() if k != "id"})
            check_unique(definition, updated, existing)

            row_number = self._find_row_number(sheet, row_id)
            for column in patch:
                if column == "id" or column not in header:
                    continue
                sheet.update_cell(
                    row_number,
                    header.index(column) + 1,
                    self._encode(updated[column]),
                )
            return updated
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update {table}: {e}")

    async def delete(self, table: str, row_id: str) -> None:
        definition = get_table(table)
        try:
            sheet = self._client.get_worksheet(definition)
            sheet.delete_rows(self._find_row_number(sheet, row_id))
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to delete from {table}: {e}")

    async def delete_many(self, table: str, row_ids: Sequence[str]) -> None:
        definition = get_table(table)
        try:
            sheet = self._client.get_worksheet(definition)
            row_numbers = [self._find_row_number(sheet, row_id) for row_id in row_ids]
            if not row_numbers:
                return
            # Bottom-up so earlier deletions don't shift later indices
            requests = [
                {
                    "deleteDimension": {
                        "range": {
                            "sheetId": sheet.id,
                            "dimension": "ROWS",
                            "startIndex": number - 1,
                            "endIndex": number,
                        }
                    }
                }
                for number in sorted(row_numbers, reverse=True)
            ]
            self._client.get_spreadsheet().batch_update({"requests": requests})
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to delete from {table}: {e}")
