"""
Google Sheets Document Store

DESIGN DECISION: Google Sheets is available as a storage backend because:
1. Shared-wallet members can inspect the raw ledger directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- Not suitable for high-volume data (fine for household ledgers)
- No multi-document transactions: wallet and budget writes of one
  ledger operation are NOT rolled back together on failure, and
  concurrent edits to the same wallet are last-write-wins
- Limited query capabilities (we filter in Python)

Each collection is one worksheet with columns [id, created_at, document_json].
"""

import json
from contextlib import asynccontextmanager
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, AsyncIterator, Iterable, Optional

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from cashflow.config import get_settings
from cashflow.services.storage.interface import (
    UNIQUE_KEYS,
    Collection,
    ConnectionError,
    Document,
    DocumentStore,
    DuplicateError,
    Mutation,
    StorageError,
    matches,
)


SHEET_COLUMNS = ["id", "created_at", "document_json"]

logger = structlog.get_logger(__name__)


def _json_default(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    raise TypeError(f"Cannot serialize {type(value).__name__}")


def encode_document(document: Document) -> str:
    """Serialize a document for the document_json column."""
    return json.dumps(document, default=_json_default, sort_keys=True)


def decode_document(raw: str) -> Document:
    """
    Parse a document_json cell.

    Timestamp fields (named *_at) are turned back into datetimes so that
    sorting compares instants rather than strings.
    """
    document = json.loads(raw)
    for key, value in document.items():
        if key.endswith("_at") and isinstance(value, str):
            try:
                document[key] = datetime.fromisoformat(value)
            except ValueError:
                pass
    return document


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._worksheets: dict[Collection, gspread.Worksheet] = {}
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
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
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

    def get_worksheet(self, collection: Collection) -> gspread.Worksheet:
        """Get or create the worksheet holding one collection."""
        if collection in self._worksheets:
            return self._worksheets[collection]

        spreadsheet = self.get_spreadsheet()
        title = f"{self._settings.worksheet_prefix}{collection.value}"
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=1000,
                cols=len(SHEET_COLUMNS),
            )
            sheet.append_row(SHEET_COLUMNS)
        self._worksheets[collection] = sheet
        return sheet


class GoogleSheetsDocumentStore(DocumentStore):
    """
    Google Sheets implementation of the document store.

    One document per row; the full document is JSON-serialized.
    Transient API errors are retried at the worksheet call level;
    anything that still fails surfaces as StorageError.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    # ------------------------------------------------------------------
    # Raw worksheet I/O (retried)
    # ------------------------------------------------------------------

    @retry(
        retry=retry_if_exception_type(gspread.exceptions.APIError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _read_rows(self, collection: Collection) -> list[tuple[int, Document]]:
        """All (sheet_row_number, document) pairs, skipping malformed rows."""
        sheet = self._client.get_worksheet(collection)
        rows = []
        # Row 1 is the header
        for idx, row in enumerate(sheet.get_all_values()[1:], start=2):
            if len(row) < 3 or not row[0]:
                continue
            try:
                rows.append((idx, decode_document(row[2])))
            except ValueError:
                logger.warning("sheets_row_malformed", collection=collection.value, row=idx)
        return rows

    @retry(
        retry=retry_if_exception_type(gspread.exceptions.APIError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _append_row(self, collection: Collection, row: list) -> None:
        sheet = self._client.get_worksheet(collection)
        sheet.append_row(row, value_input_option="RAW")

    @retry(
        retry=retry_if_exception_type(gspread.exceptions.APIError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _write_row(self, collection: Collection, idx: int, row: list) -> None:
        sheet = self._client.get_worksheet(collection)
        sheet.update(f"A{idx}:C{idx}", [row], value_input_option="RAW")

    @retry(
        retry=retry_if_exception_type(gspread.exceptions.APIError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _delete_row(self, collection: Collection, idx: int) -> None:
        sheet = self._client.get_worksheet(collection)
        sheet.delete_rows(idx)

    def _rows(self, collection: Collection) -> list[tuple[int, Document]]:
        try:
            return self._read_rows(collection)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to read {collection.value}: {e}")

    def _to_row(self, document: Document) -> list:
        created_at = document.get("created_at")
        return [
            str(document["id"]),
            created_at.isoformat() if isinstance(created_at, datetime) else str(created_at or ""),
            encode_document(document),
        ]

    # ------------------------------------------------------------------
    # DocumentStore
    # ------------------------------------------------------------------

    async def insert(self, collection: Collection, document: Document) -> Document:
        """Append a document row after checking id and unique keys."""
        existing = [doc for _, doc in self._rows(collection)]
        if any(doc.get("id") == document.get("id") for doc in existing):
            raise DuplicateError(f"Duplicate id in {collection.value}: {document.get('id')}")
        keys = UNIQUE_KEYS.get(collection)
        if keys:
            wanted = {k: document.get(k) for k in keys}
            if any(matches(doc, wanted) for doc in existing):
                raise DuplicateError(f"Duplicate key in {collection.value}: {wanted}")

        try:
            self._append_row(collection, self._to_row(document))
        except Exception as e:
            raise StorageError(f"Failed to insert into {collection.value}: {e}")
        return decode_document(encode_document(document))

    async def find(
        self,
        collection: Collection,
        filters: Optional[dict[str, Any]] = None,
        sort_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[Document]:
        rows = [(idx, doc) for idx, doc in self._rows(collection) if matches(doc, filters)]
        if sort_by:
            rows.sort(key=lambda row: (row[1].get(sort_by), row[0]), reverse=descending)

        docs = [doc for _, doc in rows]
        if limit is not None:
            docs = docs[:limit]
        return docs

    async def find_one(
        self,
        collection: Collection,
        filters: dict[str, Any],
    ) -> Optional[Document]:
        found = await self.find(collection, filters, limit=1)
        return found[0] if found else None

    async def find_one_and_update(
        self,
        collection: Collection,
        filters: dict[str, Any],
        mutate: Mutation,
    ) -> Optional[Document]:
        """
        Read, mutate and rewrite one row.

        Sheets has no compare-and-swap, so this is last-write-wins when
        two writers race on the same row.
        """
        for idx, doc in self._rows(collection):
            if not matches(doc, filters):
                continue
            updated = mutate(doc)
            if updated.get("id") != doc.get("id"):
                raise StorageError("A document's id cannot be changed")
            try:
                self._write_row(collection, idx, self._to_row(updated))
            except Exception as e:
                raise StorageError(f"Failed to update {collection.value}: {e}")
            return decode_document(encode_document(updated))
        return None

    async def delete_many(self, collection: Collection, ids: Iterable[str]) -> int:
        wanted = set(ids)
        if not wanted:
            return 0
        targets = [idx for idx, doc in self._rows(collection) if doc.get("id") in wanted]
        try:
            # Bottom-up so earlier deletions don't shift later row numbers
            for idx in sorted(targets, reverse=True):
                self._delete_row(collection, idx)
        except Exception as e:
            raise StorageError(f"Failed to delete from {collection.value}: {e}")
        return len(targets)

    async def count(
        self,
        collection: Collection,
        filters: Optional[dict[str, Any]] = None,
    ) -> int:
        return len(await self.find(collection, filters))

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        # No multi-document transactions in Sheets; writes land one by one
        yield
