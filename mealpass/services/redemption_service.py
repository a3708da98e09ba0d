"""
Meal coupon verification and redemption with real-time broadcasting
"""

import asyncio
import logging
from datetime import datetime
from typing import List, Optional, Tuple

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from mealpass.api.ws import WebSocketManager
from mealpass.core.config import settings
from mealpass.core.meals import DEFAULT_MEAL, is_veg, normalize_meal
from mealpass.schemas.scan import ParticipantCard, ScanDetails, ScanVerdict
from mealpass.services.import_service import is_ticket_id
from mealpass.services.photo_directory import PhotoDirectory
from mealpass.services.repositories import MISSING, REDEEMED, EventRepo, LiveStatRepo, ParticipantRecord, ParticipantRepo

logger = logging.getLogger(__name__)

VERIFIED = "verified"
USED = "used"
ELIGIBLE = "eligible"
INVALID = "invalid"
ERROR = "error"


def parse_payload(qr_payload: Optional[str]) -> Tuple[str, Optional[str]]:
    """'<identifier>|<meal>' -> (identifier, meal slot or None if unknown)"""
    parts = (qr_payload or "").strip().split("|")
    identifier = parts[0]
    meal_raw = parts[1].strip() if len(parts) > 1 else ""
    meal = normalize_meal(meal_raw) if meal_raw else DEFAULT_MEAL
    return identifier.strip(), meal


class RedemptionService:
    """Resolves a scanned coupon and redeems it at most once per meal"""

    def __init__(
        self,
        websocket_manager: WebSocketManager,
        photo_directory: Optional[PhotoDirectory] = None,
        photo_timeout: Optional[float] = None,
    ):
        self.websocket_manager = websocket_manager
        self.photo_directory = photo_directory
        self.photo_timeout = photo_timeout if photo_timeout is not None else settings.PHOTO_LOOKUP_TIMEOUT

    async def verify(
        self,
        db: Session,
        qr_payload: Optional[str],
        dry_run: bool = False,
        event_id: Optional[str] = None,
    ) -> ScanVerdict:
        identifier, meal = parse_payload(qr_payload)
        if not identifier:
            return self._log(ScanVerdict(valid=False, status=INVALID, message="Invalid QR Format"))
        if meal is None:
            return self._log(ScanVerdict(valid=False, status=INVALID, message="Unknown meal type"))

        matches = await run_in_threadpool(self._resolve, db, identifier, event_id)
        if not matches:
            return self._log(ScanVerdict(valid=False, status=INVALID, message="Invalid Token"))
        if len(matches) > 1:
            return self._log(ScanVerdict(
                valid=False,
                status=INVALID,
                message="Ambiguous token: matches more than one participant, scan within an event",
            ))
        participant = matches[0]

        # Photo is best-effort and runs alongside the usage check; it must not share the session
        folder_id = await run_in_threadpool(self._folder_id, db, participant) if self.photo_directory else None
        photo_task = asyncio.create_task(self._photo_url(folder_id, participant))

        def verdict(valid: bool, status: str, message: str) -> ScanVerdict:
            return ScanVerdict(
                valid=valid,
                status=status,
                participant=ParticipantCard(
                    name=participant.name,
                    food_preference=participant.food_preference or "Not Specified",
                    room_no=participant.room_no,
                    roll_no=participant.roll_no,
                    college=participant.college,
                    ticket_id=participant.ticket_id,
                    photo_url=photo_url,
                ),
                scan_details=ScanDetails(meal_type=meal),
                message=message,
            )

        photo_url = None
        try:
            if participant.allowed_meals and meal not in participant.allowed_meals:
                photo_url = await photo_task
                return self._log(verdict(False, INVALID, f"Not entitled to {meal.upper()}"))

            if participant.has_used(meal):
                photo_url = await photo_task
                return self._log(verdict(False, USED, f"{meal.upper()} Already Redeemed"))

            if dry_run:
                photo_url = await photo_task
                return self._log(verdict(True, ELIGIBLE, "Verification Successful - Approval Required"))

            outcome = await run_in_threadpool(
                ParticipantRepo.mark_meal_used, db, participant.id, meal, datetime.utcnow()
            )
            photo_url = await photo_task
        except Exception:
            photo_task.cancel()
            raise

        if outcome == MISSING:
            # Deleted between lookup and commit
            return self._log(ScanVerdict(valid=False, status=INVALID, message="Invalid Token"))
        if outcome != REDEEMED:
            # Lost the race to a concurrent scan of the same coupon
            return self._log(verdict(False, USED, f"{meal.upper()} Already Redeemed"))

        await self._record_redemption(db, participant, meal)
        return self._log(verdict(True, VERIFIED, "Verified"))

    @staticmethod
    def _resolve(db: Session, identifier: str, event_id: Optional[str]) -> List[ParticipantRecord]:
        if is_ticket_id(identifier):
            participant = ParticipantRepo.find_by_ticket_id(db, identifier.upper())
            if participant and event_id and participant.event_id != event_id:
                return []
            return [participant] if participant else []
        return ParticipantRepo.find_by_token(db, identifier, event_id=event_id)

    @staticmethod
    def _folder_id(db: Session, participant: ParticipantRecord) -> Optional[str]:
        try:
            event = EventRepo.get(db, participant.event_id)
        except Exception as e:
            logger.warning(f"Could not load event {participant.event_id} for photo lookup: {e}")
            return None
        return event.drive_folder_id if event else None

    async def _photo_url(self, folder_id: Optional[str], participant: ParticipantRecord) -> Optional[str]:
        if self.photo_directory is None or not participant.roll_no:
            return None
        try:
            return await asyncio.wait_for(
                self.photo_directory.lookup(folder_id, participant.roll_no),
                timeout=self.photo_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Photo lookup for {participant.roll_no} timed out after {self.photo_timeout}s")
        except Exception as e:
            logger.warning(f"Photo lookup for {participant.roll_no} failed: {e}")
        return None

    async def _record_redemption(self, db: Session, participant: ParticipantRecord, meal: str) -> None:
        """Counters and broadcast after a committed redemption. Never fails the scan."""
        try:
            await run_in_threadpool(
                LiveStatRepo.increment, db, participant.event_id, meal, is_veg(participant.food_preference)
            )
            stats = await run_in_threadpool(LiveStatRepo.read, db, participant.event_id)
        except Exception as e:
            logger.error(f"Live counter update failed for {participant.event_id}/{meal}: {e}")
            return

        message = {
            "type": "redemption",
            "meal": meal,
            "verdict": VERIFIED,
            "stats": stats,
            "timestamp": datetime.utcnow().isoformat(),
        }
        await self.websocket_manager.broadcast_to_event(participant.event_id, message)

    @staticmethod
    def _log(verdict: ScanVerdict) -> ScanVerdict:
        ticket = verdict.participant.ticket_id if verdict.participant else "-"
        meal = verdict.scan_details.meal_type if verdict.scan_details else "-"
        logger.info(f"Scan {ticket} {meal}: {verdict.status} ({verdict.message})")
        return verdict
