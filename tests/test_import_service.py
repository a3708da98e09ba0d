"""
Tests for roster import, dedup and roll number backfill
"""

import re
import pytest
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

from mealpass.core.exceptions import NotFoundError, UpstreamError, ValidationError
from mealpass.core.meals import MEAL_SLOTS
from mealpass.schemas.event import SheetSyncRequest
from mealpass.schemas.participant import WebhookParticipant
from mealpass.services import import_service
from mealpass.services.import_service import ImportService, generate_ticket_id, is_ticket_id
from mealpass.services.redemption_service import RedemptionService
from mealpass.services.repositories import EventRepo, ParticipantRepo
from mealpass.services.sheets_client import SheetData

HEADERS = ["Name", "Roll No", "Email", "Veg / Non Veg"]
ROWS = [
    ["Asha Raman", "24cs001", "Asha@Example.edu", "Veg"],
    ["Bala K", "24ec045", "bala@example.edu", "Non-Veg"],
]

@pytest.fixture
def sheets_client():
    return MagicMock()

@pytest.fixture
def service(sheets_client):
    return ImportService(sheets_client=sheets_client, batch_size=450)

def test_ticket_id_format():
    ticket_id = generate_ticket_id("INV")
    assert re.fullmatch(r"INV-\d{6}-[0-9A-F]{8}", ticket_id)
    assert is_ticket_id(ticket_id)
    assert is_ticket_id("web-260101-ABCDEF01")
    assert not is_ticket_id("24CS001")

def test_import_normalizes_and_issues_tokens(db_session, sample_event, service):
    result = service.import_rows(db_session, sample_event, HEADERS, ROWS)

    assert result.imported == 2
    assert result.total_rows == 2
    assert result.success

    by_roll = {p.roll_no: p for p in ParticipantRepo.list_for_event(db_session, sample_event.id)}
    asha = by_roll["24CS001"]
    assert asha.email == "asha@example.edu"
    assert asha.token == "24CS001"
    assert asha.ticket_id.startswith("INV-")
    assert asha.status == "generated"
    assert asha.token_usage == {meal: False for meal in MEAL_SLOTS}
    assert asha.other_details["Roll No"] == "24cs001"
    assert "24EC045" in by_roll

def test_second_sync_of_same_roster_creates_no_duplicates(db_session, sample_event, service):
    service.import_rows(db_session, sample_event, HEADERS, ROWS)
    again = service.import_rows(db_session, sample_event, HEADERS, [["Asha R.", "24CS001", "", "Veg"]])

    assert again.imported == 0
    assert again.skipped_duplicates == 1
    rolls = [p.roll_no for p in ParticipantRepo.list_for_event(db_session, sample_event.id)]
    assert rolls.count("24CS001") == 1

def test_duplicates_within_one_batch_are_skipped(db_session, sample_event, service):
    rows = ROWS + [["Asha again", " 24CS001 ", "other@example.edu", "Veg"]]
    result = service.import_rows(db_session, sample_event, HEADERS, rows)

    assert result.imported == 2
    assert result.skipped_duplicates == 1

def test_email_dedup_when_roll_missing(db_session, sample_event, service):
    rows = [
        ["Chitra", "", "chitra@example.edu", "Veg"],
        ["Chitra S", "", "CHITRA@example.edu ", "Veg"],
    ]
    result = service.import_rows(db_session, sample_event, HEADERS, rows)

    assert result.imported == 1
    assert result.skipped_duplicates == 1
    participant = ParticipantRepo.list_for_event(db_session, sample_event.id)[0]
    assert participant.roll_no is None
    # Random fallback token
    assert participant.token and participant.token != "chitra@example.edu"

def test_same_roll_in_another_event_is_not_a_duplicate(db_session, sample_event, service):
    other = EventRepo.create(db_session, name="Sports Day")
    service.import_rows(db_session, sample_event, HEADERS, ROWS[:1])
    result = service.import_rows(db_session, other, HEADERS, ROWS[:1])

    assert result.imported == 1

def test_unnamed_rows_are_kept_as_unknown(db_session, sample_event, service):
    result = service.import_rows(db_session, sample_event, HEADERS, [["", "24ME010", "", "Veg"], ["", "", "", ""]])

    assert result.imported == 1
    assert result.unnamed == 1
    assert result.skipped_empty == 1
    assert ParticipantRepo.list_for_event(db_session, sample_event.id)[0].name == "Unknown"

def test_failed_batch_keeps_committed_batches(db_session, sample_event, monkeypatch):
    real_insert = ParticipantRepo.insert_many
    calls = []

    def flaky_insert(db, records):
        calls.append(len(records))
        if len(calls) == 2:
            raise RuntimeError("write limit exceeded")
        real_insert(db, records)

    monkeypatch.setattr(ParticipantRepo, "insert_many", staticmethod(flaky_insert))
    rows = [[f"P{i}", f"24CS{i:03d}", "", "Veg"] for i in range(5)]

    result = ImportService(sheets_client=MagicMock(), batch_size=2).import_rows(db_session, sample_event, HEADERS, rows)

    assert calls == [2, 2, 1]
    assert result.imported == 3
    assert result.failed == 2
    assert not result.success
    assert "failed to save" in result.message
    assert len(ParticipantRepo.list_for_event(db_session, sample_event.id)) == 3

def test_sync_sheet_records_configuration(db_session, sample_event, service, sheets_client):
    sheets_client.fetch.return_value = SheetData(headers=HEADERS, rows=ROWS, sheet_name="Form Responses 1")
    request = SheetSyncRequest(sheetId="sheet-123", syncSubType="other", syncMealName="Snacks")

    result = service.sync_sheet(db_session, sample_event.id, request)

    assert result.imported == 2
    sheets_client.fetch.assert_called_once_with("sheet-123", None)
    event = EventRepo.get(db_session, sample_event.id)
    assert event.sheet_id == "sheet-123"
    assert event.sheet_name == "Form Responses 1"
    assert event.sync_sub_type == "other"
    assert event.sync_meal_name == "snacks"
    for participant in ParticipantRepo.list_for_event(db_session, sample_event.id):
        assert participant.allowed_meals == ["snacks"]
        assert participant.source == "sheet"

def test_sync_sheet_rejects_unknown_meal(db_session, sample_event, service, sheets_client):
    request = SheetSyncRequest(sheetId="sheet-123", syncSubType="other", syncMealName="brunch")

    with pytest.raises(ValidationError):
        service.sync_sheet(db_session, sample_event.id, request)
    sheets_client.fetch.assert_not_called()

def test_sync_sheet_upstream_failure_writes_nothing(db_session, sample_event, service, sheets_client):
    sheets_client.fetch.side_effect = UpstreamError("Google Sheets", "No data found in the sheet.")

    with pytest.raises(UpstreamError):
        service.sync_sheet(db_session, sample_event.id, SheetSyncRequest(sheetId="sheet-123"))
    assert ParticipantRepo.list_for_event(db_session, sample_event.id) == []
    assert EventRepo.get(db_session, sample_event.id).sheet_id is None

def test_import_into_missing_event(db_session, service):
    with pytest.raises(NotFoundError):
        service.import_upload(db_session, "missing", b"", "roster.xlsx")

def test_webhook_uses_web_prefix_and_dedups(db_session, sample_event, service):
    payload = WebhookParticipant(
        secret="ignored-here",
        eventId=sample_event.id,
        data={"Full Name": "Devi", "Register Number": "24it007", "Email ID": "devi@example.edu"},
    )

    first = service.ingest_webhook(db_session, payload)
    second = service.ingest_webhook(db_session, payload)

    assert first.imported == 1
    assert first.ticket_ids[0].startswith("WEB-")
    assert second.imported == 0
    assert second.skipped_duplicates == 1

def test_backfill_roll_numbers_from_original_columns(db_session, sample_event, participant_factory, service):
    participant_factory(name="Old Import", email="old@example.edu", other_details={"Reg No": "24cs099"})
    participant_factory(name="No Roll Anywhere", email="none@example.edu", other_details={"Name": "No Roll Anywhere"})
    participant_factory(name="Owner", roll_no="24CS050", other_details={})
    participant_factory(name="Clash", email="clash@example.edu", other_details={"Roll No": "24cs050"})

    counts = service.backfill_roll_numbers(db_session, sample_event.id)

    assert counts == {"scanned": 3, "updated": 1, "skipped": 2}
    rolls = sorted(p.roll_no for p in ParticipantRepo.list_for_event(db_session, sample_event.id) if p.roll_no)
    assert rolls == ["24CS050", "24CS099"]

@pytest.mark.asyncio
async def test_resync_with_wider_entitlement_updates_existing(db_session, sample_event, service, sheets_client):
    sheets_client.fetch.return_value = SheetData(headers=HEADERS, rows=ROWS, sheet_name="Sheet1")
    service.sync_sheet(db_session, sample_event.id, SheetSyncRequest(sheetId="s1", syncSubType="other", syncMealName="snacks"))
    snacks_only = {p.roll_no: p for p in ParticipantRepo.list_for_event(db_session, sample_event.id)}
    ParticipantRepo.mark_sent(db_session, [p.id for p in snacks_only.values()])

    result = service.sync_sheet(db_session, sample_event.id, SheetSyncRequest(sheetId="s1", syncSubType="hostel_day"))

    assert result.imported == 0
    assert result.updated == 2
    assert "2 existing participants updated" in result.message
    participants = {p.roll_no: p for p in ParticipantRepo.list_for_event(db_session, sample_event.id)}
    assert len(participants) == 2
    asha = participants["24CS001"]
    assert asha.allowed_meals == list(MEAL_SLOTS)
    assert asha.ticket_id == snacks_only["24CS001"].ticket_id
    assert asha.status == "generated"

    scanner = RedemptionService(MagicMock(broadcast_to_event=AsyncMock()))
    verdict = await scanner.verify(db_session, f"{asha.ticket_id}|lunch")
    assert verdict.status == "verified"

def test_unchanged_resync_leaves_participant_alone(db_session, sample_event, service, sheets_client):
    sheets_client.fetch.return_value = SheetData(headers=HEADERS, rows=ROWS, sheet_name="Sheet1")
    service.sync_sheet(db_session, sample_event.id, SheetSyncRequest(sheetId="s1"))
    ParticipantRepo.mark_sent(db_session, [p.id for p in ParticipantRepo.list_for_event(db_session, sample_event.id)])

    again = service.sync_sheet(db_session, sample_event.id, SheetSyncRequest(sheetId="s1"))

    assert again.updated == 0
    assert again.skipped_duplicates == 2
    assert {p.status for p in ParticipantRepo.list_for_event(db_session, sample_event.id)} == {"sent"}

def test_resync_refreshes_changed_details_and_keeps_redemptions(db_session, sample_event, service, sheets_client):
    sheets_client.fetch.return_value = SheetData(headers=HEADERS, rows=ROWS[:1], sheet_name="Sheet1")
    service.sync_sheet(db_session, sample_event.id, SheetSyncRequest(sheetId="s1"))
    asha = ParticipantRepo.list_for_event(db_session, sample_event.id)[0]
    ParticipantRepo.mark_meal_used(db_session, asha.id, "breakfast", datetime.utcnow())

    sheets_client.fetch.return_value = SheetData(
        headers=HEADERS, rows=[["Asha R", "24CS001", "asha.r@example.edu", "Non-Veg"]], sheet_name="Sheet1",
    )
    result = service.sync_sheet(db_session, sample_event.id, SheetSyncRequest(sheetId="s1"))

    assert result.updated == 1
    stored = ParticipantRepo.get(db_session, asha.id)
    assert stored.name == "Asha R"
    assert stored.email == "asha.r@example.edu"
    assert stored.food_preference == "Non-Veg"
    assert stored.token_usage["breakfast"] is True

def test_event_locks_are_released_after_import():
    lock = import_service._event_lock("evt-1")
    assert import_service._event_lock("evt-1") is lock
    del lock

    assert "evt-1" not in import_service._event_locks
