"""
Google Sheets Document Store

DESIGN DECISION: Google Sheets is used as the remote backend because:
1. Non-technical users can view their books directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

Each collection path (`books/{book_id}/accounts`, ...) gets its own
worksheet. A row holds one document: `[id, document_json, updated_at]`.

TRADEOFFS:
- No multi-document commit (the sync outbox orders writes per document)
- No server push; `subscribe` polls the worksheet
- Lookups scan the worksheet (fine for one person's books)
"""

import asyncio
import json
from typing import Optional

import gspread
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from pocket_ledger.config import GoogleSheetsSettings, get_settings
from pocket_ledger.log import get_logger
from pocket_ledger.models.ledger import utc_now
from pocket_ledger.services.storage.interface import (
    BackendConnectionError,
    Document,
    DocumentNotFoundError,
    DocumentStoreInterface,
    PersistenceError,
    SnapshotCallback,
    Unsubscribe,
)

logger = get_logger(__name__)


DOCUMENT_COLUMNS = ["id", "document_json", "updated_at"]

SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive",
]


def worksheet_title(collection_path: str) -> str:
    """Worksheet name for a collection, e.g. `books.b1.accounts`."""
    return collection_path.strip("/").replace("/", ".")


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and hands out one worksheet per collection.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets
        self._worksheets: dict[str, gspread.Worksheet] = {}

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
            except FileNotFoundError as e:
                raise BackendConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                ) from e
            except Exception as e:
                raise BackendConnectionError(
                    f"Failed to connect to Google Sheets: {e}"
                ) from e

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(self._settings.spreadsheet_id)
            except gspread.SpreadsheetNotFound as e:
                raise BackendConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                ) from e
        return self._spreadsheet

    def get_worksheet(self, collection_path: str) -> gspread.Worksheet:
        """Get or create the worksheet holding a collection."""
        title = worksheet_title(collection_path)
        if title in self._worksheets:
            return self._worksheets[title]

        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=self._settings.worksheet_rows,
                cols=len(DOCUMENT_COLUMNS),
            )
            sheet.append_row(DOCUMENT_COLUMNS)
            logger.info("worksheet_created", title=title)

        self._worksheets[title] = sheet
        return sheet


class GoogleSheetsDocumentStore(DocumentStoreInterface):
    """
    Google Sheets implementation of the document store.

    The client is injected so tests can hand in a fake without
    touching the network.
    """

    def __init__(
        self,
        client: Optional[GoogleSheetsClient] = None,
        poll_interval_seconds: Optional[float] = None,
    ):
        self._client = client or GoogleSheetsClient()
        self._poll_interval = (
            poll_interval_seconds
            if poll_interval_seconds is not None
            else get_settings().sync.poll_interval_seconds
        )

    def _to_row(self, document_id: str, document: Document) -> list:
        """Convert a document to a spreadsheet row."""
        body = {key: value for key, value in document.items() if key != "id"}
        return [
            document_id,
            json.dumps(body, sort_keys=True),
            utc_now().isoformat(),
        ]

    def _row_to_document(self, row: list) -> Document:
        """Convert a spreadsheet row to a document."""
        # Trailing empty cells are dropped by the API
        body = row[1] if len(row) > 1 and row[1] else "{}"
        document = json.loads(body)
        document["id"] = row[0]
        return document

    def _find_row(self, sheet: gspread.Worksheet, document_id: str) -> tuple[int, list]:
        """Locate a document's row. Returns (1-based row index, row) or (0, [])."""
        all_rows = sheet.get_all_values()
        for idx, row in enumerate(all_rows[1:], start=2):  # Row 1 is the header
            if row and row[0] == document_id:
                return idx, row
        return 0, []

    def _write_row(self, sheet: gspread.Worksheet, idx: int, row: list) -> None:
        for col_idx, value in enumerate(row, start=1):
            sheet.update_cell(idx, col_idx, value)

    async def create(
        self,
        collection_path: str,
        document_id: str,
        document: Document,
    ) -> None:
        try:
            sheet = self._client.get_worksheet(collection_path)
            row = self._to_row(document_id, document)
            idx, _ = self._find_row(sheet, document_id)
            if idx:
                self._write_row(sheet, idx, row)
            else:
                sheet.append_row(row, value_input_option="RAW")
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(
                f"Failed to create {collection_path}/{document_id}: {e}"
            ) from e

    async def update(
        self,
        collection_path: str,
        document_id: str,
        partial_document: Document,
        merge: bool = True,
    ) -> None:
        try:
            sheet = self._client.get_worksheet(collection_path)
            idx, row = self._find_row(sheet, document_id)
            if not idx:
                raise DocumentNotFoundError(
                    f"Document not found: {collection_path}/{document_id}"
                )
            document = self._row_to_document(row) if merge else {}
            document.update(partial_document)
            self._write_row(sheet, idx, self._to_row(document_id, document))
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(
                f"Failed to update {collection_path}/{document_id}: {e}"
            ) from e

    async def delete(self, collection_path: str, document_id: str) -> None:
        try:
            sheet = self._client.get_worksheet(collection_path)
            idx, _ = self._find_row(sheet, document_id)
            if idx:
                sheet.delete_rows(idx)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(
                f"Failed to delete {collection_path}/{document_id}: {e}"
            ) from e

    async def query(self, collection_path: str) -> list[Document]:
        try:
            sheet = self._client.get_worksheet(collection_path)
            all_rows = sheet.get_all_values()[1:]  # Skip header
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to query {collection_path}: {e}") from e

        documents = []
        for row in all_rows:
            if not row or not row[0]:  # Skip empty rows
                continue
            try:
                documents.append(self._row_to_document(row))
            except json.JSONDecodeError:
                logger.warning(
                    "malformed_row_skipped",
                    collection_path=collection_path,
                    document_id=row[0],
                )
        return documents

    def subscribe(
        self,
        collection_path: str,
        callback: SnapshotCallback,
    ) -> Unsubscribe:
        """
        Poll a collection and call back when its contents change.

        Must be called from inside a running event loop.
        """
        task = asyncio.get_running_loop().create_task(
            self._poll(collection_path, callback)
        )

        def unsubscribe() -> None:
            task.cancel()

        return unsubscribe

    async def _poll(self, collection_path: str, callback: SnapshotCallback) -> None:
        last_seen = None
        while True:
            try:
                documents = await self.query(collection_path)
            except PersistenceError as e:
                logger.warning(
                    "subscription_poll_failed",
                    collection_path=collection_path,
                    error=str(e),
                )
            else:
                fingerprint = json.dumps(documents, sort_keys=True)
                if fingerprint != last_seen:
                    last_seen = fingerprint
                    callback(documents)
            await asyncio.sleep(self._poll_interval)
