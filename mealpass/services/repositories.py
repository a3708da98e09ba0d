"""
Repository layer abstracting storage (SQLAlchemy vs Firebase Firestore).

Both backends hand back the same ``EventRecord`` / ``ParticipantRecord``
dataclasses so services never branch on the storage engine themselves.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from firebase_admin import firestore
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mealpass.core.config import settings
from mealpass.core.meals import MEAL_SLOTS
from mealpass.models import Event, LiveStat, Participant
from mealpass.services.firebase_client import get_firestore_client

PARTICIPANTS = "participants"
EVENTS = "events"
LIVE_DASHBOARD = "live_dashboard"

# Firestore "in" filters accept at most 30 values
FS_IN_LIMIT = 30

# Outcomes of ParticipantRepo.mark_meal_used
REDEEMED = "redeemed"
ALREADY_USED = "already_used"
MISSING = "missing"


def use_firestore() -> bool:
    return settings.USE_FIREBASE is True


def empty_stats() -> Dict[str, Dict[str, int]]:
    return {meal: {"total": 0, "veg": 0, "nonveg": 0} for meal in MEAL_SLOTS}


@dataclass
class EventRecord:
    id: str
    name: str
    date: Optional[str] = None
    venue: Optional[str] = None
    drive_folder_id: Optional[str] = None
    sheet_id: Optional[str] = None
    sheet_name: Optional[str] = None
    sync_sub_type: Optional[str] = None
    sync_meal_name: Optional[str] = None

    @classmethod
    def from_model(cls, event: Event) -> "EventRecord":
        return cls(
            id=event.id,
            name=event.name,
            date=event.date,
            venue=event.venue,
            drive_folder_id=event.drive_folder_id,
            sheet_id=event.sheet_id,
            sheet_name=event.sheet_name,
            sync_sub_type=event.sync_sub_type,
            sync_meal_name=event.sync_meal_name,
        )

    @classmethod
    def from_document(cls, doc_id: str, data: Dict[str, Any]) -> "EventRecord":
        return cls(
            id=doc_id,
            name=data.get("name") or "Event",
            date=data.get("date"),
            venue=data.get("venue"),
            drive_folder_id=data.get("driveFolderId"),
            sheet_id=data.get("sheetId"),
            sheet_name=data.get("sheetName"),
            sync_sub_type=data.get("syncSubType"),
            sync_meal_name=data.get("syncMealName"),
        )


@dataclass
class ParticipantRecord:
    event_id: str
    name: str
    ticket_id: str
    token: str
    id: Optional[str] = None
    event_name: Optional[str] = None
    sub_event_name: Optional[str] = None
    email: Optional[str] = None
    roll_no: Optional[str] = None
    department: Optional[str] = None
    college: Optional[str] = None
    phone: Optional[str] = None
    year: Optional[str] = None
    food_preference: Optional[str] = None
    room_no: Optional[str] = None
    status: str = "generated"
    source: str = "upload"
    allowed_meals: List[str] = field(default_factory=lambda: list(MEAL_SLOTS))
    token_usage: Dict[str, bool] = field(default_factory=lambda: {meal: False for meal in MEAL_SLOTS})
    check_ins: Dict[str, Any] = field(default_factory=dict)
    other_details: Dict[str, Any] = field(default_factory=dict)

    def has_used(self, meal: str) -> bool:
        return self.token_usage.get(meal) is True

    @classmethod
    def from_model(cls, p: Participant) -> "ParticipantRecord":
        return cls(
            id=p.id,
            event_id=p.event_id,
            event_name=p.event_name,
            sub_event_name=p.sub_event_name,
            name=p.name,
            email=p.email,
            roll_no=p.roll_no,
            department=p.department,
            college=p.college,
            phone=p.phone,
            year=p.year,
            food_preference=p.food_preference,
            room_no=p.room_no,
            ticket_id=p.ticket_id,
            token=p.token,
            status=p.status,
            source=p.source,
            allowed_meals=list(p.allowed_meals or []),
            token_usage=p.token_usage,
            check_ins=p.check_ins,
            other_details=dict(p.other_details or {}),
        )

    def to_model(self) -> Participant:
        return Participant(
            event_id=self.event_id,
            event_name=self.event_name,
            sub_event_name=self.sub_event_name,
            name=self.name,
            email=self.email,
            roll_no=self.roll_no,
            department=self.department,
            college=self.college,
            phone=self.phone,
            year=self.year,
            food_preference=self.food_preference,
            room_no=self.room_no,
            ticket_id=self.ticket_id,
            token=self.token,
            status=self.status,
            source=self.source,
            allowed_meals=list(self.allowed_meals),
            other_details=dict(self.other_details),
        )

    # Firestore shape: collection "participants", camelCase fields
    @classmethod
    def from_document(cls, doc_id: str, data: Dict[str, Any]) -> "ParticipantRecord":
        usage = data.get("tokenUsage") or {}
        return cls(
            id=doc_id,
            event_id=data.get("eventId"),
            event_name=data.get("eventName"),
            sub_event_name=data.get("subEventName"),
            name=data.get("name") or "Unknown",
            email=data.get("email"),
            roll_no=data.get("rollNo"),
            department=data.get("department"),
            college=data.get("college"),
            phone=data.get("phone"),
            year=data.get("year"),
            food_preference=data.get("foodPreference"),
            room_no=data.get("roomNo"),
            ticket_id=data.get("ticketId") or "",
            token=data.get("token") or "",
            status=data.get("status") or "generated",
            source=data.get("source") or "upload",
            allowed_meals=list(data.get("allowedMeals") or []),
            token_usage={meal: usage.get(meal) is True for meal in MEAL_SLOTS},
            check_ins={meal: data[f"checkIn_{meal}"] for meal in MEAL_SLOTS if data.get(f"checkIn_{meal}")},
            other_details=dict(data.get("otherDetails") or {}),
        )

    def to_document(self) -> Dict[str, Any]:
        return {
            "eventId": self.event_id,
            "eventName": self.event_name,
            "subEventName": self.sub_event_name,
            "name": self.name,
            "email": self.email,
            "rollNo": self.roll_no,
            "department": self.department,
            "college": self.college,
            "phone": self.phone,
            "year": self.year,
            "foodPreference": self.food_preference,
            "roomNo": self.room_no,
            "ticketId": self.ticket_id,
            "token": self.token,
            "status": self.status,
            "source": self.source,
            "allowedMeals": list(self.allowed_meals),
            "tokenUsage": {meal: False for meal in MEAL_SLOTS},
            "otherDetails": dict(self.other_details),
            "createdAt": datetime.utcnow(),
        }


def _chunks(items: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


# -------- Event repository --------

class EventRepo:
    @staticmethod
    def get(db: Session, event_id: str) -> Optional[EventRecord]:
        if not use_firestore():
            event = db.query(Event).filter(Event.id == event_id).first()
            return EventRecord.from_model(event) if event else None
        doc = get_firestore_client().collection(EVENTS).document(event_id).get()
        return EventRecord.from_document(doc.id, doc.to_dict() or {}) if doc.exists else None

    @staticmethod
    def create(
        db: Session,
        name: str,
        date: Optional[str] = None,
        venue: Optional[str] = None,
        drive_folder_id: Optional[str] = None,
    ) -> EventRecord:
        if not use_firestore():
            event = Event(name=name, date=date, venue=venue, drive_folder_id=drive_folder_id)
            db.add(event)
            db.commit()
            db.refresh(event)
            return EventRecord.from_model(event)
        ref = get_firestore_client().collection(EVENTS).document()
        data = {
            "name": name,
            "date": date,
            "venue": venue,
            "driveFolderId": drive_folder_id,
            "createdAt": datetime.utcnow(),
        }
        ref.set(data)
        return EventRecord.from_document(ref.id, data)

    @staticmethod
    def update_sync_config(
        db: Session,
        event_id: str,
        sheet_id: str,
        sheet_name: str,
        sync_sub_type: str,
        sync_meal_name: Optional[str],
    ) -> None:
        if not use_firestore():
            db.query(Event).filter(Event.id == event_id).update({
                Event.sheet_id: sheet_id,
                Event.sheet_name: sheet_name,
                Event.sync_sub_type: sync_sub_type,
                Event.sync_meal_name: sync_meal_name,
            }, synchronize_session=False)
            db.commit()
            return
        get_firestore_client().collection(EVENTS).document(event_id).set({
            "sheetId": sheet_id,
            "sheetName": sheet_name,
            "syncSubType": sync_sub_type,
            "syncMealName": sync_meal_name or "",
        }, merge=True)


# -------- Participant repository --------

class ParticipantRepo:
    @staticmethod
    def existing_keys(db: Session, event_id: str) -> Tuple[Set[str], Set[str]]:
        """Normalized roll numbers and emails already stored for an event (one query)."""
        rolls: Set[str] = set()
        emails: Set[str] = set()
        if not use_firestore():
            rows = db.query(Participant.roll_no, Participant.email).filter(Participant.event_id == event_id).all()
        else:
            docs = get_firestore_client().collection(PARTICIPANTS).where("eventId", "==", event_id).select(["rollNo", "email"]).get()
            rows = [((d.to_dict() or {}).get("rollNo"), (d.to_dict() or {}).get("email")) for d in docs]
        for roll_no, email in rows:
            if roll_no and roll_no.strip():
                rolls.add(roll_no.strip().upper())
            if email and email.strip():
                emails.add(email.strip().lower())
        return rolls, emails

    @staticmethod
    def existing_ticket_ids(db: Session, ticket_ids: Sequence[str]) -> Set[str]:
        if not ticket_ids:
            return set()
        if not use_firestore():
            rows = db.query(Participant.ticket_id).filter(Participant.ticket_id.in_(list(ticket_ids))).all()
            return {row[0] for row in rows}
        fs = get_firestore_client()
        found: Set[str] = set()
        for chunk in _chunks(list(ticket_ids), FS_IN_LIMIT):
            for doc in fs.collection(PARTICIPANTS).where("ticketId", "in", list(chunk)).get():
                found.add((doc.to_dict() or {}).get("ticketId"))
        return found

    @staticmethod
    def insert_many(db: Session, records: Sequence[ParticipantRecord]) -> None:
        """Persist new participants atomically; raises if the batch could not be written."""
        if not use_firestore():
            models = [record.to_model() for record in records]
            try:
                db.add_all(models)
                db.commit()
            except Exception:
                db.rollback()
                raise
            for record, model in zip(records, models):
                record.id = model.id
            return
        fs = get_firestore_client()
        batch = fs.batch()
        refs = []
        for record in records:
            ref = fs.collection(PARTICIPANTS).document()
            batch.set(ref, record.to_document())
            refs.append(ref)
        batch.commit()
        for record, ref in zip(records, refs):
            record.id = ref.id

    @staticmethod
    def update_many(db: Session, records: Sequence[ParticipantRecord]) -> None:
        """Write refreshed roster fields of existing participants; redemption state is untouched."""
        now = datetime.utcnow()
        if not use_firestore():
            try:
                for record in records:
                    db.query(Participant).filter(Participant.id == record.id).update({
                        Participant.event_name: record.event_name,
                        Participant.name: record.name,
                        Participant.email: record.email,
                        Participant.department: record.department,
                        Participant.year: record.year,
                        Participant.phone: record.phone,
                        Participant.food_preference: record.food_preference,
                        Participant.room_no: record.room_no,
                        Participant.allowed_meals: list(record.allowed_meals),
                        Participant.status: record.status,
                        Participant.updated_at: now,
                    }, synchronize_session=False)
                db.commit()
            except Exception:
                db.rollback()
                raise
            return
        fs = get_firestore_client()
        batch = fs.batch()
        for record in records:
            batch.update(fs.collection(PARTICIPANTS).document(record.id), {
                "eventName": record.event_name,
                "name": record.name,
                "email": record.email,
                "department": record.department,
                "year": record.year,
                "phone": record.phone,
                "foodPreference": record.food_preference,
                "roomNo": record.room_no,
                "allowedMeals": list(record.allowed_meals),
                "status": record.status,
                "updatedAt": now,
            })
        batch.commit()

    @staticmethod
    def get(db: Session, participant_id: str) -> Optional[ParticipantRecord]:
        if not use_firestore():
            p = db.query(Participant).filter(Participant.id == participant_id).first()
            return ParticipantRecord.from_model(p) if p else None
        doc = get_firestore_client().collection(PARTICIPANTS).document(participant_id).get()
        return ParticipantRecord.from_document(doc.id, doc.to_dict() or {}) if doc.exists else None

    @staticmethod
    def find_by_ticket_id(db: Session, ticket_id: str) -> Optional[ParticipantRecord]:
        if not use_firestore():
            p = db.query(Participant).filter(Participant.ticket_id == ticket_id).first()
            return ParticipantRecord.from_model(p) if p else None
        docs = get_firestore_client().collection(PARTICIPANTS).where("ticketId", "==", ticket_id).limit(1).get()
        return ParticipantRecord.from_document(docs[0].id, docs[0].to_dict() or {}) if docs else None

    @staticmethod
    def find_by_token(db: Session, token: str, event_id: Optional[str] = None, limit: int = 2) -> List[ParticipantRecord]:
        if not use_firestore():
            query = db.query(Participant).filter(Participant.token == token)
            if event_id:
                query = query.filter(Participant.event_id == event_id)
            return [ParticipantRecord.from_model(p) for p in query.limit(limit).all()]
        query = get_firestore_client().collection(PARTICIPANTS).where("token", "==", token)
        if event_id:
            query = query.where("eventId", "==", event_id)
        return [ParticipantRecord.from_document(d.id, d.to_dict() or {}) for d in query.limit(limit).get()]

    @staticmethod
    def list_for_event(db: Session, event_id: str) -> List[ParticipantRecord]:
        if not use_firestore():
            participants = db.query(Participant).filter(Participant.event_id == event_id).all()
            return [ParticipantRecord.from_model(p) for p in participants]
        docs = get_firestore_client().collection(PARTICIPANTS).where("eventId", "==", event_id).get()
        return [ParticipantRecord.from_document(d.id, d.to_dict() or {}) for d in docs]

    @staticmethod
    def mark_meal_used(db: Session, participant_id: str, meal: str, now: datetime) -> str:
        """Compare-and-swap ``tokenUsage[meal]`` from false to true.

        Returns ``REDEEMED`` only for the single caller that performed the
        transition, ``ALREADY_USED`` when the slot was already true and
        ``MISSING`` when the participant no longer exists.
        """
        if not use_firestore():
            used_column = getattr(Participant, f"{meal}_used")
            stamp_column = getattr(Participant, f"checkin_{meal}")
            try:
                updated = db.query(Participant).filter(
                    Participant.id == participant_id,
                    used_column == False,  # noqa: E712
                ).update({
                    used_column: True,
                    stamp_column: now,
                    Participant.updated_at: now,
                }, synchronize_session=False)
                db.commit()
            except Exception:
                db.rollback()
                raise
            if updated == 1:
                return REDEEMED
            exists = db.query(Participant.id).filter(Participant.id == participant_id).first()
            return ALREADY_USED if exists else MISSING

        fs = get_firestore_client()
        ref = fs.collection(PARTICIPANTS).document(participant_id)
        return _redeem_in_transaction(fs.transaction(), ref, meal, now)

    @staticmethod
    def list_pending(
        db: Session,
        event_id: str,
        limit: int,
        roll_no: Optional[str] = None,
        after_ticket_id: Optional[str] = None,
    ) -> List[ParticipantRecord]:
        """Participants still in status ``generated``, ordered by ticket id."""
        if not use_firestore():
            query = db.query(Participant).filter(
                Participant.event_id == event_id,
                Participant.status == "generated",
            )
            if roll_no:
                query = query.filter(Participant.roll_no == roll_no)
            if after_ticket_id:
                query = query.filter(Participant.ticket_id > after_ticket_id)
            participants = query.order_by(Participant.ticket_id).limit(limit).all()
            return [ParticipantRecord.from_model(p) for p in participants]

        query = get_firestore_client().collection(PARTICIPANTS).where("eventId", "==", event_id).where("status", "==", "generated")
        if roll_no:
            query = query.where("rollNo", "==", roll_no)
        query = query.order_by("ticketId")
        if after_ticket_id:
            query = query.start_after({"ticketId": after_ticket_id})
        return [ParticipantRecord.from_document(d.id, d.to_dict() or {}) for d in query.limit(limit).get()]

    @staticmethod
    def mark_sent(db: Session, participant_ids: Sequence[str]) -> None:
        if not participant_ids:
            return
        now = datetime.utcnow()
        if not use_firestore():
            try:
                db.query(Participant).filter(
                    Participant.id.in_(list(participant_ids)),
                    Participant.status == "generated",
                ).update({Participant.status: "sent", Participant.updated_at: now}, synchronize_session=False)
                db.commit()
            except Exception:
                db.rollback()
                raise
            return
        fs = get_firestore_client()
        batch = fs.batch()
        for participant_id in participant_ids:
            batch.update(fs.collection(PARTICIPANTS).document(participant_id), {"status": "sent", "updatedAt": now})
        batch.commit()

    @staticmethod
    def list_missing_roll(db: Session, event_id: Optional[str] = None) -> List[ParticipantRecord]:
        if not use_firestore():
            query = db.query(Participant).filter((Participant.roll_no == None) | (Participant.roll_no == ""))  # noqa: E711
            if event_id:
                query = query.filter(Participant.event_id == event_id)
            return [ParticipantRecord.from_model(p) for p in query.all()]
        query = get_firestore_client().collection(PARTICIPANTS)
        if event_id:
            query = query.where("eventId", "==", event_id)
        records = [ParticipantRecord.from_document(d.id, d.to_dict() or {}) for d in query.get()]
        return [r for r in records if not (r.roll_no or "").strip()]

    @staticmethod
    def set_roll_numbers(db: Session, updates: Sequence[Tuple[str, str]]) -> None:
        """Apply (participant_id, roll_no) pairs atomically."""
        now = datetime.utcnow()
        if not use_firestore():
            try:
                for participant_id, roll_no in updates:
                    db.query(Participant).filter(Participant.id == participant_id).update(
                        {Participant.roll_no: roll_no, Participant.updated_at: now},
                        synchronize_session=False,
                    )
                db.commit()
            except Exception:
                db.rollback()
                raise
            return
        fs = get_firestore_client()
        batch = fs.batch()
        for participant_id, roll_no in updates:
            batch.update(fs.collection(PARTICIPANTS).document(participant_id), {"rollNo": roll_no, "updatedAt": now})
        batch.commit()


@firestore.transactional
def _redeem_in_transaction(transaction, ref, meal: str, now: datetime) -> str:
    snapshot = ref.get(transaction=transaction)
    if not snapshot.exists:
        return MISSING
    usage = (snapshot.to_dict() or {}).get("tokenUsage") or {}
    if usage.get(meal) is True:
        return ALREADY_USED
    transaction.update(ref, {
        f"tokenUsage.{meal}": True,
        f"checkIn_{meal}": now,
        "updatedAt": now,
    })
    return REDEEMED


# -------- Live statistics repository --------

class LiveStatRepo:
    """Incremental per-meal counters. A cache: ``StatsService.recompute`` is the truth."""

    @staticmethod
    def increment(db: Session, event_id: str, meal: str, veg: bool) -> None:
        bucket = "veg" if veg else "nonveg"
        if not use_firestore():
            bucket_column = getattr(LiveStat, bucket)
            for attempt in range(2):
                try:
                    updated = db.query(LiveStat).filter(
                        LiveStat.event_id == event_id,
                        LiveStat.meal == meal,
                    ).update({
                        LiveStat.total: LiveStat.total + 1,
                        bucket_column: bucket_column + 1,
                        LiveStat.updated_at: datetime.utcnow(),
                    }, synchronize_session=False)
                    if not updated:
                        db.add(LiveStat(event_id=event_id, meal=meal, total=1, veg=int(veg), nonveg=int(not veg)))
                    db.commit()
                    return
                except IntegrityError:
                    # Another scan created the row first; retry as an update
                    db.rollback()
                    if attempt:
                        raise
            return

        ref = get_firestore_client().collection(EVENTS).document(event_id).collection("stats").document(LIVE_DASHBOARD)
        ref.set({
            f"total_{meal}": firestore.Increment(1),
            f"{bucket}_{meal}": firestore.Increment(1),
            "lastUpdated": datetime.utcnow(),
        }, merge=True)

    @staticmethod
    def read(db: Session, event_id: str) -> Dict[str, Dict[str, int]]:
        stats = empty_stats()
        if not use_firestore():
            for row in db.query(LiveStat).filter(LiveStat.event_id == event_id).all():
                if row.meal in stats:
                    stats[row.meal] = {"total": row.total, "veg": row.veg, "nonveg": row.nonveg}
            return stats

        doc = get_firestore_client().collection(EVENTS).document(event_id).collection("stats").document(LIVE_DASHBOARD).get()
        data = (doc.to_dict() or {}) if doc.exists else {}
        for meal in MEAL_SLOTS:
            stats[meal] = {
                "total": int(data.get(f"total_{meal}", 0)),
                "veg": int(data.get(f"veg_{meal}", 0)),
                "nonveg": int(data.get(f"nonveg_{meal}", 0)),
            }
        return stats

    @staticmethod
    def replace(db: Session, event_id: str, stats: Dict[str, Dict[str, int]]) -> None:
        now = datetime.utcnow()
        if not use_firestore():
            try:
                db.query(LiveStat).filter(LiveStat.event_id == event_id).delete(synchronize_session=False)
                for meal, counts in stats.items():
                    db.add(LiveStat(event_id=event_id, meal=meal, total=counts["total"], veg=counts["veg"], nonveg=counts["nonveg"], updated_at=now))
                db.commit()
            except Exception:
                db.rollback()
                raise
            return

        data: Dict[str, Any] = {"lastUpdated": now}
        for meal, counts in stats.items():
            data[f"total_{meal}"] = counts["total"]
            data[f"veg_{meal}"] = counts["veg"]
            data[f"nonveg_{meal}"] = counts["nonveg"]
        get_firestore_client().collection(EVENTS).document(event_id).collection("stats").document(LIVE_DASHBOARD).set(data)
