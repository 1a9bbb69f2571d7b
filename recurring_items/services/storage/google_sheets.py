"""
Google Sheets Remote Store

DESIGN DECISION: Google Sheets is used as the authoritative remote tier because:
1. Users can inspect their recurring items directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

Layout: one worksheet per collection, one document per row:
    key | updated_at | payload_json

TRADEOFFS:
- Not suitable for high-volume data (we're fine for personal use)
- No transactions (the engine treats pay/undo as sagas anyway)
- Lookups scan the sheet (collections are small)

Transient API failures are retried by the dual-tier store; this module
only retries the initial connection. Reachability checks never retry.
"""

import json
import re
import time
from typing import Optional
from uuid import uuid4

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from recurring_items.config import GoogleSheetsSettings, get_settings
from recurring_items.models.audit import AuditEvent, AuditEventType, AuditSeverity
from recurring_items.models.period import utc_now
from recurring_items.services.storage.interface import (
    AuditStorageInterface,
    RemoteStoreInterface,
    RemoteUnavailableError,
    StorageError,
)


logger = structlog.get_logger(__name__)


# Column mappings for collection sheets
DOCUMENT_COLUMNS = [
    "key",
    "updated_at",
    "payload_json",
]

# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "period",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
]

_UNSAFE_TITLE = re.compile(r"[\[\]:*?/\\']")


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and worksheet lookup/creation.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets
        self._last_failure: Optional[float] = None

    def _authorize(self) -> gspread.Client:
        """Single connection attempt. Failures are remembered for the cooldown."""
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
                self._last_failure = time.monotonic()
                raise RemoteUnavailableError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                self._last_failure = time.monotonic()
                raise RemoteUnavailableError(f"Failed to connect to Google Sheets: {e}")

        return self._client

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
        return self._authorize()

    def _open(self, client: gspread.Client) -> gspread.Spreadsheet:
        try:
            self._spreadsheet = client.open_by_key(self._settings.spreadsheet_id)
        except gspread.SpreadsheetNotFound:
            self._last_failure = time.monotonic()
            raise RemoteUnavailableError(
                f"Spreadsheet not found: {self._settings.spreadsheet_id}"
            )
        return self._spreadsheet

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            self._open(self.connect())
        return self._spreadsheet

    def in_cooldown(self) -> bool:
        if self._last_failure is None:
            return False
        return time.monotonic() - self._last_failure < self._settings.reconnect_cooldown_seconds

    def probe(self) -> bool:
        """
        Cheap reachability check: one attempt, no retry, no sleeping.

        Inside the cooldown after a failure it answers False without
        touching the network.
        """
        if self._spreadsheet is not None:
            return True
        if self.in_cooldown():
            return False
        try:
            self._open(self._authorize())
        except Exception as e:
            self._last_failure = time.monotonic()
            logger.info("google_sheets_unreachable", error=str(e))
            return False
        self._last_failure = None
        return True

    def worksheet_title(self, collection: str) -> str:
        """Sheet titles are limited to 100 characters and a safe alphabet."""
        title = f"{self._settings.worksheet_prefix}{collection}"
        return _UNSAFE_TITLE.sub("_", title)[:100]

    def _get_or_create(self, title: str, columns: list[str], rows: int) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_collection_sheet(self, collection: str) -> gspread.Worksheet:
        """Get or create the worksheet holding one collection."""
        return self._get_or_create(self.worksheet_title(collection), DOCUMENT_COLUMNS, 1000)

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        return self._get_or_create(self._settings.audit_sheet_name, AUDIT_COLUMNS, 5000)


class GoogleSheetsDocumentStore(RemoteStoreInterface):
    """
    Google Sheets implementation of the remote tier.

    Payloads are JSON-serialized into a single cell.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _document_to_row(self, key: str, value: dict) -> list:
        return [
            key,
            utc_now().isoformat(),
            json.dumps(value, default=str),
        ]

    def _row_to_document(self, row: list) -> dict:
        return json.loads(row[2])

    def _find_row(self, sheet: gspread.Worksheet, key: str) -> tuple[Optional[int], Optional[list]]:
        """1-based sheet row index and row values for a key."""
        for idx, row in enumerate(sheet.get_all_values()[1:], start=2):  # Row 1 is header
            if row and row[0] == key:
                return idx, row
        return None, None

    async def is_reachable(self) -> bool:
        # Runs before every store call, so it must never retry or sleep
        return self._client.probe()

    async def get(self, collection: str, key: str) -> Optional[dict]:
        try:
            sheet = self._client.get_collection_sheet(collection)
            _, row = self._find_row(sheet, key)
            return self._row_to_document(row) if row else None
        except RemoteUnavailableError:
            raise
        except Exception as e:
            raise RemoteUnavailableError(f"Failed to read {collection}/{key}: {e}")

    async def set(self, collection: str, key: str, value: dict) -> None:
        try:
            sheet = self._client.get_collection_sheet(collection)
            idx, _ = self._find_row(sheet, key)
            new_row = self._document_to_row(key, value)
            if idx is None:
                sheet.append_row(new_row, value_input_option="RAW")
                return
            # One call per row so updated_at and payload never disagree
            sheet.update(
                range_name=f"A{idx}:C{idx}",
                values=[new_row],
                value_input_option="RAW",
            )
        except RemoteUnavailableError:
            raise
        except Exception as e:
            raise RemoteUnavailableError(f"Failed to write {collection}/{key}: {e}")

    async def delete(self, collection: str, key: str) -> bool:
        try:
            sheet = self._client.get_collection_sheet(collection)
            idx, _ = self._find_row(sheet, key)
            if idx is None:
                return False
            sheet.delete_rows(idx)
            return True
        except RemoteUnavailableError:
            raise
        except Exception as e:
            raise RemoteUnavailableError(f"Failed to delete {collection}/{key}: {e}")

    async def list_collection(self, collection: str) -> dict[str, dict]:
        try:
            sheet = self._client.get_collection_sheet(collection)
            all_rows = sheet.get_all_values()[1:]  # Skip header
        except RemoteUnavailableError:
            raise
        except Exception as e:
            raise RemoteUnavailableError(f"Failed to list {collection}: {e}")

        documents = {}
        for row in all_rows:
            if not row or not row[0]:  # Skip empty rows
                continue
            try:
                documents[row[0]] = self._row_to_document(row)
            except (IndexError, ValueError):
                logger.warning("google_sheets_malformed_row", collection=collection, key=row[0])
        return documents

    def allocate_id(self, collection: str) -> str:
        return uuid4().hex


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=safe_get(0),
            timestamp=safe_get(1),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=safe_get(5) or None,
            period=safe_get(6) or None,
            correlation_id=safe_get(7) or None,
            description=safe_get(8),
            details=json.loads(safe_get(9)) if safe_get(9) else {},
            error_message=safe_get(10) or None,
        )

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            # Audit logging must not break the main flow
            logger.warning("audit_sheet_append_failed", error=str(e), event_id=str(event.event_id))
            return False

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        """Get recent events."""
        try:
            sheet = self._client.get_audit_sheet()
            all_rows = sheet.get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        events = []
        for row in all_rows:
            if row and row[0]:
                try:
                    events.append(self._row_to_event(row))
                except Exception:
                    continue  # Skip malformed rows

        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
