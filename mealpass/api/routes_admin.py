"""
Admin API routes - requires authentication
"""

import json
from typing import Optional
from fastapi import APIRouter, Depends, UploadFile, File, Form, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import Response, StreamingResponse
from sqlalchemy.orm import Session

from mealpass.core.config import settings
from mealpass.core.db import get_db
from mealpass.core.exceptions import InternalError, NotFoundError, ValidationError
from mealpass.schemas.event import EventCreate, EventResponse, SheetSyncRequest
from mealpass.schemas.participant import DispatchRequest, ImportResult
from mealpass.services.dispatch_service import DispatchService
from mealpass.services.excel_service import ExcelService
from mealpass.services.import_service import ImportService
from mealpass.services.repositories import EventRepo, ParticipantRepo
from mealpass.services.stats_service import StatsService
from mealpass.utils.responses import success_response
from mealpass.utils.security import verify_admin_token

router = APIRouter(dependencies=[Depends(verify_admin_token)])

import_service = ImportService()
dispatch_service = DispatchService()

ROSTER_EXTENSIONS = ('.xlsx', '.xls', '.csv')

def _require_event(db: Session, event_id: str):
    event = EventRepo.get(db, event_id)
    if not event:
        raise NotFoundError("Event", event_id)
    return event

def _import_response(result: ImportResult):
    """Import call output: success, count and message, plus the detailed counts"""
    data = {"count": result.imported, **result.model_dump(exclude={"ticket_ids"})}
    if result.failed:
        # Partial progress is still reported
        raise InternalError(result.message, details=data)
    return success_response(message=result.message, data=data)

@router.post("/events")
def create_event(
    event_data: EventCreate,
    db: Session = Depends(get_db)
):
    """Create a new event"""
    event = EventRepo.create(
        db,
        name=event_data.name,
        date=event_data.date,
        venue=event_data.venue,
        drive_folder_id=event_data.drive_folder_id,
    )
    return success_response(
        message="Event created successfully",
        data=EventResponse.model_validate(event, from_attributes=True).model_dump(),
        status_code=201
    )

@router.get("/events/{event_id}")
def get_event_details(
    event_id: str,
    db: Session = Depends(get_db)
):
    """Event with participant and redemption counts"""
    event = _require_event(db, event_id)
    summary = StatsService.summary(db, event_id)
    data = EventResponse.model_validate(event, from_attributes=True).model_dump()
    data.update({
        "total_participants": summary["participants"],
        "stats": summary["stats"],
    })
    return success_response(message="Event details retrieved", data=data)

@router.post("/events/{event_id}/upload")
async def upload_roster(
    event_id: str,
    file: UploadFile = File(...),
    sub_event_name: Optional[str] = Form(default=None, alias="subEventName"),
    db: Session = Depends(get_db)
):
    """Import participants from an Excel or CSV roster"""
    if not (file.filename or "").lower().endswith(ROSTER_EXTENSIONS):
        raise ValidationError(
            "Invalid file format. Please upload an Excel (.xlsx, .xls) or CSV file",
            error_code="INVALID_FILE"
        )

    file_content = await file.read()
    if len(file_content) > settings.MAX_UPLOAD_SIZE:
        raise ValidationError(
            f"File exceeds {settings.MAX_UPLOAD_SIZE // (1024 * 1024)}MB limit",
            error_code="FILE_TOO_LARGE"
        )

    result = await run_in_threadpool(
        import_service.import_upload, db, event_id, file_content, file.filename, sub_event_name=sub_event_name
    )
    return _import_response(result)

@router.post("/events/{event_id}/sync")
def sync_roster(
    event_id: str,
    body: SheetSyncRequest,
    db: Session = Depends(get_db)
):
    """Import participants from a Google Sheet and remember the sheet"""
    result = import_service.sync_sheet(db, event_id, body)
    return _import_response(result)

@router.post("/participants/backfill-roll")
def backfill_roll_numbers(
    event_id: Optional[str] = Query(default=None, alias="eventId"),
    db: Session = Depends(get_db)
):
    """Fill missing roll numbers from the original imported columns"""
    if event_id:
        _require_event(db, event_id)
    counts = import_service.backfill_roll_numbers(db, event_id)
    return success_response(
        message=f"Updated {counts['updated']} participants",
        data=counts
    )

@router.get("/events/{event_id}/stats")
def live_stats(
    event_id: str,
    db: Session = Depends(get_db)
):
    """Per-meal redemption counts recomputed from participants"""
    _require_event(db, event_id)
    return success_response(message="Live stats", data=StatsService.summary(db, event_id))

@router.post("/events/{event_id}/stats/rebuild")
def rebuild_stats(
    event_id: str,
    db: Session = Depends(get_db)
):
    """Reset the incremental counters from a full recount"""
    _require_event(db, event_id)
    return success_response(message="Live counters rebuilt", data=StatsService.rebuild(db, event_id))

@router.get("/events/{event_id}/status")
def redemption_status(
    event_id: str,
    meal: str = Query(default="all"),
    db: Session = Depends(get_db)
):
    """Served and not-served participants for a meal"""
    _require_event(db, event_id)
    report = StatsService.status_report(db, event_id, meal)
    return success_response(
        message=f"{report['servedCount']} served, {report['notServedCount']} not served",
        data=report
    )

@router.get("/events/{event_id}/export.xlsx")
def export_participants(
    event_id: str,
    db: Session = Depends(get_db)
):
    """Export participants with per-meal redemption columns"""
    _require_event(db, event_id)
    content = ExcelService.export_participants(ParticipantRepo.list_for_event(db, event_id))
    return Response(
        content=content,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f"attachment; filename=participants_{event_id}.xlsx"}
    )

@router.post("/dispatch")
def dispatch_coupons(
    body: DispatchRequest,
    db: Session = Depends(get_db)
):
    """Email coupons to pending participants; streams one JSON object per line"""
    # The request session may be closed before streaming finishes
    stream_db = Session(bind=db.get_bind())
    try:
        records = dispatch_service.dispatch(stream_db, body)
    except Exception:
        stream_db.close()
        raise

    def ndjson():
        try:
            for record in records:
                yield json.dumps(record) + "\n"
        finally:
            stream_db.close()

    return StreamingResponse(
        ndjson(),
        media_type="application/x-ndjson",
        headers={"Cache-Control": "no-cache, no-transform"}
    )

@router.get("/photos/stats")
def photo_cache_stats(request: Request):
    """Photo directory cache statistics"""
    return success_response(message="Photo cache stats", data=request.app.state.photo_directory.stats())

@router.post("/photos/refresh")
async def refresh_photos(
    request: Request,
    event_id: Optional[str] = Query(default=None, alias="eventId"),
    db: Session = Depends(get_db)
):
    """Rebuild the photo index for an event's folder (or the default folder)"""
    folder_id = None
    if event_id:
        folder_id = _require_event(db, event_id).drive_folder_id
    count = await request.app.state.photo_directory.refresh(folder_id)
    return success_response(message=f"Indexed {count} photos", data={"count": count})
