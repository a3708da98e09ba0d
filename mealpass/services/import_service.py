"""
Roster import and deduplication.

Rows come from an uploaded spreadsheet, a Google Sheet sync or a single
webhook call. All three go through ``ImportService.import_rows`` so column
discovery, normalization, dedup and ticket issuing behave identically.
"""

import logging
import secrets
import threading
import weakref
from dataclasses import replace
from datetime import datetime
from functools import partial
from typing import Any, Dict, List, Optional, Sequence, Set

from sqlalchemy.orm import Session

from mealpass.core.config import settings
from mealpass.core.exceptions import ConflictError, NotFoundError, ValidationError
from mealpass.core.meals import MEAL_SLOTS, SYNC_OTHER, meals_for_sync, normalize_meal
from mealpass.schemas.event import SheetSyncRequest
from mealpass.schemas.participant import ImportResult, WebhookParticipant
from mealpass.services.batch_writer import BatchWriter
from mealpass.services.column_rules import Candidate, extract_candidates, find_roll_value, resolve_columns
from mealpass.services.excel_service import ExcelService
from mealpass.services.repositories import EventRecord, EventRepo, ParticipantRecord, ParticipantRepo
from mealpass.services.sheets_client import SheetsClient

logger = logging.getLogger(__name__)

UNKNOWN_NAME = "Unknown"

PREFIX_IMPORT = "INV"
PREFIX_WEBHOOK = "WEB"
TICKET_PREFIXES = (PREFIX_IMPORT, PREFIX_WEBHOOK, "QS")

# Dedup is check-then-write, so imports into the same event must not interleave.
# Entries disappear once no import holds the lock.
_event_locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
_event_locks_guard = threading.Lock()


def _event_lock(event_id: str) -> threading.Lock:
    with _event_locks_guard:
        lock = _event_locks.get(event_id)
        if lock is None:
            lock = threading.Lock()
            _event_locks[event_id] = lock
        return lock


def generate_ticket_id(prefix: str = PREFIX_IMPORT, now: Optional[datetime] = None) -> str:
    """e.g. INV-260118-9F2C41AB"""
    now = now or datetime.utcnow()
    return f"{prefix}-{now:%y%m%d}-{secrets.token_hex(4).upper()}"


def is_ticket_id(identifier: str) -> bool:
    return any(identifier.upper().startswith(f"{prefix}-") for prefix in TICKET_PREFIXES)


def normalize_roll(value: Optional[str]) -> str:
    return (value or "").strip().upper()


def normalize_email(value: Optional[str]) -> str:
    return (value or "").strip().lower()


class ImportService:
    """Turns roster rows into participants without creating duplicates"""

    def __init__(self, sheets_client: Optional[SheetsClient] = None, batch_size: Optional[int] = None):
        self.sheets_client = sheets_client or SheetsClient()
        self.batch_size = batch_size or settings.IMPORT_BATCH_SIZE

    def import_rows(
        self,
        db: Session,
        event: EventRecord,
        headers: Sequence[Any],
        rows: Sequence[Sequence[Any]],
        source: str = "upload",
        allowed_meals: Optional[List[str]] = None,
        event_name: Optional[str] = None,
        sub_event_name: Optional[str] = None,
        ticket_prefix: str = PREFIX_IMPORT,
        update_existing: bool = False,
    ) -> ImportResult:
        """Insert new participants. With ``update_existing``, a row whose roll
        number is already stored refreshes that participant instead of being
        skipped."""
        column_map = resolve_columns(headers)
        meals = list(allowed_meals) if allowed_meals else list(MEAL_SLOTS)
        result = ImportResult(total_rows=len(rows))

        with _event_lock(event.id):
            rolls, emails = ParticipantRepo.existing_keys(db, event.id)
            stored: Dict[str, ParticipantRecord] = {}
            if update_existing:
                for record in ParticipantRepo.list_for_event(db, event.id):
                    if normalize_roll(record.roll_no):
                        stored[normalize_roll(record.roll_no)] = record
            seen_rolls: Set[str] = set()
            issued: Set[str] = set()
            added: List[ParticipantRecord] = []

            def flush(records: Sequence[ParticipantRecord]) -> None:
                clashes = ParticipantRepo.existing_ticket_ids(db, [r.ticket_id for r in records])
                if clashes:
                    raise ConflictError(f"Ticket id collision: {', '.join(sorted(clashes))}")
                ParticipantRepo.insert_many(db, records)

            with BatchWriter(flush, batch_size=self.batch_size) as writer, \
                    BatchWriter(partial(ParticipantRepo.update_many, db), batch_size=self.batch_size) as updater:
                for row in rows:
                    candidates = extract_candidates(row, column_map)
                    if not candidates:
                        result.skipped_empty += 1
                        continue

                    for candidate in candidates:
                        roll_no = normalize_roll(candidate.roll_no)
                        email = normalize_email(candidate.email)
                        if roll_no and roll_no in seen_rolls:
                            result.skipped_duplicates += 1
                            continue

                        if roll_no in stored:
                            seen_rolls.add(roll_no)
                            refreshed = self._refresh_record(
                                stored[roll_no], candidate, email, emails, meals, event_name or event.name,
                            )
                            if refreshed is None:
                                result.skipped_duplicates += 1
                            else:
                                updater.add(refreshed)
                            continue

                        if (roll_no and roll_no in rolls) or (email and email in emails):
                            result.skipped_duplicates += 1
                            continue

                        record = self._build_record(
                            candidate, event, roll_no, email, source, meals,
                            event_name or event.name, sub_event_name,
                        )
                        record.ticket_id = self._issue_ticket_id(ticket_prefix, issued)
                        if record.name == UNKNOWN_NAME:
                            result.unnamed += 1

                        if roll_no:
                            rolls.add(roll_no)
                            seen_rolls.add(roll_no)
                        if email:
                            emails.add(email)
                        added.append(record)
                        writer.add(record)

            report = writer.report
            update_report = updater.report

        result.imported = report.written
        result.updated = update_report.written
        result.failed = report.failed + update_report.failed
        result.errors = report.errors + update_report.errors
        result.ticket_ids = [r.ticket_id for r in added if r.id]
        logger.info(
            f"Import into {event.id} ({source}): {result.imported} imported, {result.updated} updated, "
            f"{result.skipped_duplicates} duplicates, {result.skipped_empty} empty rows, "
            f"{result.failed} failed of {result.total_rows} rows"
        )
        return result

    @staticmethod
    def _refresh_record(
        existing: ParticipantRecord,
        candidate: Candidate,
        email: str,
        emails: Set[str],
        meals: List[str],
        event_name: str,
    ) -> Optional[ParticipantRecord]:
        """Existing participant merged with a re-imported row, or None when nothing changed"""
        if existing.allowed_meals:
            merged_meals = [m for m in MEAL_SLOTS if m in existing.allowed_meals or m in meals]
        else:
            # Empty means every meal
            merged_meals = []
        if email and email != existing.email and email in emails:
            # Belongs to another participant of the event
            email = ""

        refreshed = replace(
            existing,
            name=candidate.name or existing.name,
            email=email or existing.email,
            department=candidate.department or existing.department,
            year=candidate.year or existing.year,
            phone=candidate.phone or existing.phone,
            food_preference=candidate.food_preference or existing.food_preference,
            room_no=candidate.room_no or existing.room_no,
            allowed_meals=merged_meals,
        )
        changed = any(
            getattr(refreshed, name) != getattr(existing, name)
            for name in ("name", "email", "department", "food_preference", "room_no")
        ) or set(merged_meals) != set(existing.allowed_meals)
        if not changed:
            return None

        if refreshed.email:
            emails.add(refreshed.email)
        # Changed participants get their coupons again
        refreshed.status = "generated"
        refreshed.event_name = event_name
        return refreshed

    @staticmethod
    def _issue_ticket_id(prefix: str, issued: Set[str]) -> str:
        ticket_id = generate_ticket_id(prefix)
        if ticket_id in issued:
            raise ConflictError(f"Ticket id collision within batch: {ticket_id}")
        issued.add(ticket_id)
        return ticket_id

    @staticmethod
    def _build_record(
        candidate: Candidate,
        event: EventRecord,
        roll_no: str,
        email: str,
        source: str,
        meals: List[str],
        event_name: str,
        sub_event_name: Optional[str],
    ) -> ParticipantRecord:
        return ParticipantRecord(
            event_id=event.id,
            event_name=event_name,
            sub_event_name=sub_event_name,
            name=candidate.name or UNKNOWN_NAME,
            email=email or None,
            roll_no=roll_no or None,
            department=candidate.department or None,
            college=candidate.college or None,
            phone=candidate.phone or None,
            year=candidate.year or None,
            food_preference=candidate.food_preference or None,
            room_no=candidate.room_no or None,
            ticket_id="",
            token=roll_no or secrets.token_urlsafe(8),
            source=source,
            allowed_meals=meals,
            other_details=dict(candidate.details),
        )

    def import_upload(
        self,
        db: Session,
        event_id: str,
        content: bytes,
        filename: str,
        sub_event_name: Optional[str] = None,
    ) -> ImportResult:
        event = self._require_event(db, event_id)
        headers, rows = ExcelService.read_roster(content, filename)
        return self.import_rows(
            db, event, headers, rows,
            source="upload",
            allowed_meals=meals_for_sync(event.sync_sub_type, event.sync_meal_name),
            sub_event_name=sub_event_name,
            update_existing=True,
        )

    def sync_sheet(self, db: Session, event_id: str, request: SheetSyncRequest) -> ImportResult:
        event = self._require_event(db, event_id)

        meal_name = None
        if request.sync_sub_type == SYNC_OTHER:
            meal_name = normalize_meal(request.sync_meal_name)
            if not meal_name:
                raise ValidationError(
                    f"syncMealName must be one of: {', '.join(MEAL_SLOTS)}",
                    details={"syncMealName": request.sync_meal_name},
                )

        # Raises UpstreamError before anything is written
        sheet = self.sheets_client.fetch(request.sheet_id, request.sheet_name)

        result = self.import_rows(
            db, event, sheet.headers, sheet.rows,
            source="sheet",
            allowed_meals=meals_for_sync(request.sync_sub_type, meal_name),
            event_name=request.event_name,
            sub_event_name=request.sub_event_name,
            update_existing=True,
        )
        EventRepo.update_sync_config(
            db, event.id,
            sheet_id=request.sheet_id,
            sheet_name=sheet.sheet_name,
            sync_sub_type=request.sync_sub_type,
            sync_meal_name=meal_name,
        )
        return result

    def ingest_webhook(self, db: Session, payload: WebhookParticipant) -> ImportResult:
        event = self._require_event(db, payload.event_id)
        if not payload.data:
            raise ValidationError("Webhook payload has no data")
        headers = list(payload.data.keys())
        row = [payload.data[key] for key in headers]
        return self.import_rows(
            db, event, headers, [row],
            source="webhook",
            allowed_meals=meals_for_sync(event.sync_sub_type, event.sync_meal_name),
            event_name=payload.event_name,
            ticket_prefix=PREFIX_WEBHOOK,
        )

    def backfill_roll_numbers(self, db: Session, event_id: Optional[str] = None) -> Dict[str, int]:
        """Fill missing rollNo from each participant's original columns"""
        missing = ParticipantRepo.list_missing_roll(db, event_id)
        taken: Dict[str, Set[str]] = {}
        updates = []
        skipped = 0

        for record in missing:
            roll_no = normalize_roll(find_roll_value(record.other_details))
            if not roll_no:
                skipped += 1
                continue
            if record.event_id not in taken:
                taken[record.event_id] = ParticipantRepo.existing_keys(db, record.event_id)[0]
            if roll_no in taken[record.event_id]:
                # Another participant of the event already owns this roll number
                skipped += 1
                continue
            taken[record.event_id].add(roll_no)
            updates.append((record.id, roll_no))

        if updates:
            ParticipantRepo.set_roll_numbers(db, updates)
        logger.info(f"Roll number backfill: {len(updates)} updated, {skipped} skipped of {len(missing)}")
        return {"scanned": len(missing), "updated": len(updates), "skipped": skipped}

    @staticmethod
    def _require_event(db: Session, event_id: str) -> EventRecord:
        event = EventRepo.get(db, event_id)
        if not event:
            raise NotFoundError("Event", event_id)
        return event
