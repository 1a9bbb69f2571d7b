"""
Tests for the Google Sheets remote tier.

gspread is mocked throughout; no API calls are made.
"""

import json
import time
from datetime import datetime, timezone
from unittest.mock import MagicMock

import gspread
import pytest

from recurring_items.config import GoogleSheetsSettings
from recurring_items.models import AuditEventBuilder
from recurring_items.services.storage import google_sheets
from recurring_items.services.storage.google_sheets import (
    AUDIT_COLUMNS,
    DOCUMENT_COLUMNS,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
)
from recurring_items.services.storage.interface import RemoteUnavailableError, StorageError


@pytest.fixture
def sheets_settings(tmp_path):
    credentials = tmp_path / "credentials.json"
    credentials.write_text("{}", encoding="utf-8")
    return GoogleSheetsSettings(credentials_path=str(credentials), spreadsheet_id="sheet-id")


@pytest.fixture
def sheet():
    worksheet = MagicMock()
    worksheet.get_all_values.return_value = [
        DOCUMENT_COLUMNS,
        ["a", "2025-03-01T00:00:00+00:00", json.dumps({"v": 1})],
        ["b", "2025-03-01T00:00:00+00:00", json.dumps({"v": 2})],
    ]
    return worksheet


@pytest.fixture
def sheets_client(sheet):
    client = MagicMock(spec=GoogleSheetsClient)
    client.get_collection_sheet.return_value = sheet
    client.get_audit_sheet.return_value = sheet
    return client


@pytest.fixture
def document_store(sheets_client):
    return GoogleSheetsDocumentStore(sheets_client)


class TestGoogleSheetsClient:
    """Tests for worksheet naming and creation."""

    def test_worksheet_title_is_sanitized(self, sheets_settings):
        client = GoogleSheetsClient(sheets_settings)
        assert client.worksheet_title("test-user/expense_periods") == "ri_test-user_expense_periods"
        assert len(client.worksheet_title("x" * 200)) == 100

    def test_missing_credentials_warns(self):
        """Missing credentials only warn: the file may be mounted later."""
        with pytest.warns(UserWarning):
            GoogleSheetsSettings(credentials_path="missing.json", spreadsheet_id="x")

    def test_missing_worksheet_is_created_with_headers(self, sheets_settings):
        client = GoogleSheetsClient(sheets_settings)
        spreadsheet = MagicMock()
        spreadsheet.worksheet.side_effect = gspread.WorksheetNotFound("ri_things")
        client._spreadsheet = spreadsheet

        sheet = client.get_collection_sheet("things")
        spreadsheet.add_worksheet.assert_called_once_with(title="ri_things", rows=1000, cols=3)
        sheet.append_row.assert_called_once_with(DOCUMENT_COLUMNS)

    def test_audit_sheet_uses_configured_name(self, sheets_settings):
        client = GoogleSheetsClient(sheets_settings)
        spreadsheet = MagicMock()
        client._spreadsheet = spreadsheet

        client.get_audit_sheet()
        spreadsheet.worksheet.assert_called_once_with("AuditLog")


class TestReachability:
    """Reachability checks answer at once and back off after a failure."""

    @pytest.fixture
    def auth_calls(self, monkeypatch):
        calls = []

        def refuse(path, scopes=None):
            calls.append(path)
            raise ValueError("invalid service account file")

        monkeypatch.setattr(google_sheets.Credentials, "from_service_account_file", refuse)
        return calls

    def test_unreachable_answers_without_retrying(self, sheets_settings, auth_calls):
        client = GoogleSheetsClient(sheets_settings)
        started = time.monotonic()
        assert client.probe() is False
        assert time.monotonic() - started < 1.0
        assert len(auth_calls) == 1

    def test_cooldown_skips_reconnect(self, sheets_settings, auth_calls):
        client = GoogleSheetsClient(sheets_settings)
        assert client.probe() is False
        assert client.in_cooldown() is True
        assert client.probe() is False
        assert len(auth_calls) == 1

    def test_reconnects_once_cooldown_has_passed(self, sheets_settings, auth_calls):
        settings = sheets_settings.model_copy(update={"reconnect_cooldown_seconds": 0.0})
        client = GoogleSheetsClient(settings)
        assert client.probe() is False
        assert client.probe() is False
        assert len(auth_calls) == 2

    def test_open_spreadsheet_is_reachable(self, sheets_settings, auth_calls):
        client = GoogleSheetsClient(sheets_settings)
        client._spreadsheet = MagicMock()
        assert client.probe() is True
        assert auth_calls == []

    async def test_document_store_offline_is_fast(self, sheets_settings, auth_calls):
        store = GoogleSheetsDocumentStore(GoogleSheetsClient(sheets_settings))
        started = time.monotonic()
        assert await store.is_reachable() is False
        assert await store.is_reachable() is False
        assert time.monotonic() - started < 1.0
        assert len(auth_calls) == 1


class TestGoogleSheetsDocumentStore:
    """Tests for the document store over a mocked worksheet."""

    async def test_get_existing_key(self, document_store):
        assert await document_store.get("things", "b") == {"v": 2}

    async def test_get_missing_key(self, document_store):
        assert await document_store.get("things", "zzz") is None

    async def test_set_new_key_appends(self, document_store, sheet):
        await document_store.set("things", "c", {"v": 3})
        row = sheet.append_row.call_args.args[0]
        assert row[0] == "c"
        assert json.loads(row[2]) == {"v": 3}
        sheet.update.assert_not_called()

    async def test_set_existing_key_updates_in_place(self, document_store, sheet):
        await document_store.set("things", "b", {"v": 20})
        # Header is row 1, so "b" sits on row 3; the whole row goes in one call
        sheet.update.assert_called_once()
        kwargs = sheet.update.call_args.kwargs
        assert kwargs["range_name"] == "A3:C3"
        assert kwargs["values"][0][0] == "b"
        assert json.loads(kwargs["values"][0][2]) == {"v": 20}
        sheet.update_cell.assert_not_called()
        sheet.append_row.assert_not_called()

    async def test_delete(self, document_store, sheet):
        assert await document_store.delete("things", "a") is True
        sheet.delete_rows.assert_called_once_with(2)
        assert await document_store.delete("things", "zzz") is False

    async def test_list_collection_skips_malformed_rows(self, document_store, sheet):
        sheet.get_all_values.return_value.extend([[], ["broken", "2025", "{not json"]])
        assert await document_store.list_collection("things") == {"a": {"v": 1}, "b": {"v": 2}}

    async def test_api_errors_become_unavailable(self, document_store, sheet):
        sheet.get_all_values.side_effect = RuntimeError("rate limited")
        with pytest.raises(RemoteUnavailableError):
            await document_store.get("things", "a")
        with pytest.raises(RemoteUnavailableError):
            await document_store.set("things", "a", {"v": 1})

    async def test_is_reachable(self, document_store, sheets_client):
        sheets_client.probe.return_value = True
        assert await document_store.is_reachable() is True
        sheets_client.probe.return_value = False
        assert await document_store.is_reachable() is False
        sheets_client.get_spreadsheet.assert_not_called()

    def test_allocated_ids_are_unique(self, document_store):
        assert document_store.allocate_id("things") != document_store.allocate_id("things")


class TestGoogleSheetsAuditStorage:
    """Tests for the append-only audit sheet."""

    async def test_append_writes_row(self, sheets_client, sheet):
        storage = GoogleSheetsAuditStorage(sheets_client)
        event = AuditEventBuilder.item_skipped("t1_2025-03", "2025-03")
        assert await storage.append_event(event) is True
        sheet.append_row.assert_called_once_with(event.to_sheets_row(), value_input_option="RAW")

    async def test_append_failure_returns_false(self, sheets_client, sheet):
        sheet.append_row.side_effect = RuntimeError("quota")
        storage = GoogleSheetsAuditStorage(sheets_client)
        assert await storage.append_event(AuditEventBuilder.item_skipped("t1_2025-03", "2025-03")) is False

    async def test_recent_events_round_trip(self, sheets_client, sheet):
        older = AuditEventBuilder.item_skipped("t1_2025-03", "2025-03").model_copy(
            update={"timestamp": datetime(2025, 3, 1, tzinfo=timezone.utc)}
        )
        newer = AuditEventBuilder.item_paid("t2_2025-03", "2025-03", "50", "tx1").model_copy(
            update={"timestamp": datetime(2025, 3, 2, tzinfo=timezone.utc)}
        )
        sheet.get_all_values.return_value = [
            AUDIT_COLUMNS,
            older.to_sheets_row(),
            newer.to_sheets_row(),
            ["", "", ""],
        ]

        events = await GoogleSheetsAuditStorage(sheets_client).get_recent_events(limit=10)
        assert [e.event_id for e in events] == [newer.event_id, older.event_id]
        assert events[0].details["transaction_id"] == "tx1"

    async def test_read_failure_raises(self, sheets_client):
        sheets_client.get_audit_sheet.side_effect = RemoteUnavailableError("offline")
        with pytest.raises(StorageError):
            await GoogleSheetsAuditStorage(sheets_client).get_recent_events()
