"""
End-to-end route tests against a temporary SQLite database
"""

import io
import json
import pytest
import pandas as pd
from unittest.mock import MagicMock
from fastapi.testclient import TestClient

from main import app
from mealpass.api import routes_admin
from mealpass.core.config import settings
from mealpass.core.db import get_db
from mealpass.services.photo_directory import PhotoDirectory
from mealpass.services.sheets_client import SheetData

ADMIN = {"Authorization": f"Bearer {settings.ADMIN_TOKEN}"}

@pytest.fixture
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.state.photo_directory = PhotoDirectory(api_key="", default_folder_id=None)
    yield TestClient(app)
    app.dependency_overrides.clear()

@pytest.fixture
def event_id(client):
    response = client.post("/admin/events", json={"name": "Hostel Day 2026", "date": "2026-02-14"}, headers=ADMIN)
    assert response.status_code == 201
    return response.json()["data"]["id"]

def roster_xlsx():
    df = pd.DataFrame({
        "Name": ["Asha Raman", "Bala K"],
        "Roll No": ["24cs001", "24cs010"],
        "Email": ["asha@example.edu", "bala@example.edu"],
        "Food Preference": ["Veg", "Non-Veg"],
    })
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        df.to_excel(writer, index=False)
    return buffer.getvalue()

def upload(client, event_id):
    return client.post(
        f"/admin/events/{event_id}/upload",
        files={"file": ("roster.xlsx", roster_xlsx(), "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet")},
        data={"subEventName": "Day 1"},
        headers=ADMIN,
    )

def test_health(client):
    assert client.get("/health").json()["status"] == "healthy"

def test_admin_routes_require_token(client):
    assert client.post("/admin/events", json={"name": "X"}).status_code in (401, 403)
    assert client.post("/admin/events", json={"name": "X"}, headers={"Authorization": "Bearer wrong"}).status_code == 401

def test_unknown_event_uses_error_envelope(client):
    response = client.get("/admin/events/missing", headers=ADMIN)
    body = response.json()
    assert response.status_code == 404
    assert body["success"] is False
    assert body["error_code"] == "NOT_FOUND"

def test_upload_then_scan_flow(client, event_id):
    response = upload(client, event_id)
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["count"] == 2
    assert response.json()["success"] is True

    # Same roster again: nothing new
    assert upload(client, event_id).json()["data"]["skipped_duplicates"] == 2

    preview = client.post("/scan/verify", json={"qrPayload": "24CS010|lunch", "dryRun": True})
    assert preview.json()["status"] == "eligible"

    first = client.post("/scan/verify", json={"qrPayload": "24CS010|lunch"})
    second = client.post("/scan/verify", json={"qrPayload": "24CS010|lunch"})
    assert first.json()["status"] == "verified"
    assert first.json()["participant"]["rollNo"] == "24CS010"
    assert first.json()["scanDetails"] == {"mealType": "lunch"}
    assert second.json()["status"] == "used"

    stats = client.get(f"/admin/events/{event_id}/stats", headers=ADMIN).json()["data"]
    assert stats["stats"]["lunch"] == {"total": 1, "veg": 0, "nonveg": 1}
    assert stats["consistent"] is True

    status = client.get(f"/admin/events/{event_id}/status", params={"meal": "lunch"}, headers=ADMIN).json()["data"]
    assert [p["name"] for p in status["served"]] == ["Bala K"]

    rebuilt = client.post(f"/admin/events/{event_id}/stats/rebuild", headers=ADMIN).json()["data"]
    assert rebuilt["previous"] == rebuilt["rebuilt"]

    export = client.get(f"/admin/events/{event_id}/export.xlsx", headers=ADMIN)
    df = pd.read_excel(io.BytesIO(export.content))
    assert sorted(df["Lunch"].tolist()) == ["No", "Yes"]

def test_invalid_payload_is_a_400_verdict(client):
    response = client.post("/scan/verify", json={"qrPayload": ""})
    assert response.status_code == 400
    assert response.json() == {"valid": False, "status": "invalid", "message": "Invalid QR Format"}

def test_upload_rejects_other_file_types(client, event_id):
    response = client.post(
        f"/admin/events/{event_id}/upload",
        files={"file": ("roster.pdf", b"%PDF", "application/pdf")},
        headers=ADMIN,
    )
    assert response.status_code == 400
    assert response.json()["error_code"] == "INVALID_FILE"

def test_sync_route(client, event_id, monkeypatch):
    sheets = MagicMock()
    sheets.fetch.return_value = SheetData(
        headers=["Name", "Register Number", "Email"],
        rows=[["Devi", "24it007", "devi@example.edu"]],
        sheet_name="Sheet1",
    )
    monkeypatch.setattr(routes_admin.import_service, "sheets_client", sheets)

    response = client.post(f"/admin/events/{event_id}/sync", json={"sheetId": "abc"}, headers=ADMIN)

    assert response.status_code == 200
    assert response.json()["data"]["count"] == 1
    event = client.get(f"/admin/events/{event_id}", headers=ADMIN).json()["data"]
    assert event["sheet_id"] == "abc"
    assert event["sheet_name"] == "Sheet1"
    assert event["total_participants"] == 1

def test_webhook(client, event_id):
    payload = {
        "secret": settings.WEBHOOK_SECRET,
        "eventId": event_id,
        "data": {"Name": "Esha", "Roll No": "24me001", "Email": "esha@example.edu"},
    }
    wrong = client.post("/webhooks/participants", json={**payload, "secret": "nope"})
    created = client.post("/webhooks/participants", json=payload)
    duplicate = client.post("/webhooks/participants", json=payload)

    assert wrong.status_code == 401
    assert created.status_code == 201
    assert created.json()["data"]["ticketId"].startswith("WEB-")
    assert duplicate.json()["data"]["skipped"] is True

def test_coupon_png(client, event_id):
    upload(client, event_id)
    export = client.get(f"/admin/events/{event_id}/export.xlsx", headers=ADMIN)
    ticket_id = pd.read_excel(io.BytesIO(export.content))["Ticket ID"][0]

    png = client.get(f"/coupons/{ticket_id}/lunch.png")
    assert png.status_code == 200
    assert png.headers["content-type"] == "image/png"
    assert png.content.startswith(b"\x89PNG")

    assert client.get(f"/coupons/{ticket_id}/brunch.png").status_code == 400
    assert client.get("/coupons/INV-000000-00000000/lunch.png").status_code == 404

def test_template_download(client):
    response = client.get("/template/roster.xlsx")
    assert response.status_code == 200
    assert list(pd.read_excel(io.BytesIO(response.content)).columns)[:3] == ["Name", "Email", "Roll No"]

def test_dispatch_streams_ndjson(client, event_id, monkeypatch):
    upload(client, event_id)
    monkeypatch.setattr(routes_admin.dispatch_service, "renderer", MagicMock(render=MagicMock(return_value=b"%PDF")))
    monkeypatch.setattr(routes_admin.dispatch_service, "transport", MagicMock())

    response = client.post("/admin/dispatch", json={"eventId": event_id}, headers=ADMIN)
    records = [json.loads(line) for line in response.text.splitlines() if line]

    assert response.status_code == 200
    assert records[0]["status"] == "started"
    assert records[-1]["status"] == "completed"
    assert records[-1]["success"] == 2
    assert records[-1]["hasMore"] is False

def test_photo_stats(client):
    response = client.get("/admin/photos/stats", headers=ADMIN)
    assert response.json()["data"]["totalFolders"] == 0
