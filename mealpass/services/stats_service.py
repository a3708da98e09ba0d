"""
Live meal statistics and redemption status reports
"""

import logging
from typing import Dict, List, Optional
from sqlalchemy.orm import Session

from mealpass.core.exceptions import ValidationError
from mealpass.core.meals import MEAL_SLOTS, is_veg, normalize_meal
from mealpass.services.repositories import LiveStatRepo, ParticipantRecord, ParticipantRepo, empty_stats

logger = logging.getLogger(__name__)

class StatsService:
    """Aggregates redemptions per meal.

    ``recompute`` scans participants and is always correct. The incremental
    counters kept by ``LiveStatRepo`` are a cache that ``rebuild`` can reset
    from it at any time.
    """

    @staticmethod
    def tally(participants: List[ParticipantRecord]) -> Dict[str, Dict[str, int]]:
        stats = empty_stats()
        for p in participants:
            bucket = "veg" if is_veg(p.food_preference) else "nonveg"
            for meal in MEAL_SLOTS:
                if p.has_used(meal):
                    stats[meal]["total"] += 1
                    stats[meal][bucket] += 1
        return stats

    @staticmethod
    def recompute(db: Session, event_id: str) -> Dict[str, Dict[str, int]]:
        return StatsService.tally(ParticipantRepo.list_for_event(db, event_id))

    @staticmethod
    def cached(db: Session, event_id: str) -> Dict[str, Dict[str, int]]:
        return LiveStatRepo.read(db, event_id)

    @staticmethod
    def summary(db: Session, event_id: str) -> Dict:
        """Dashboard payload: recomputed counts plus whether the cache agrees"""
        participants = ParticipantRepo.list_for_event(db, event_id)
        live = StatsService.tally(participants)
        cached = LiveStatRepo.read(db, event_id)
        return {
            "eventId": event_id,
            "participants": len(participants),
            "stats": live,
            "cached": cached,
            "consistent": live == cached,
        }

    @staticmethod
    def rebuild(db: Session, event_id: str) -> Dict[str, Dict]:
        previous = LiveStatRepo.read(db, event_id)
        rebuilt = StatsService.recompute(db, event_id)
        LiveStatRepo.replace(db, event_id, rebuilt)
        if previous != rebuilt:
            logger.warning(f"Live counters for {event_id} drifted and were rebuilt")
        return {"previous": previous, "rebuilt": rebuilt}

    @staticmethod
    def status_report(db: Session, event_id: str, meal: Optional[str] = "all") -> Dict:
        """Split participants into served / not served for one meal (or any meal)"""
        if meal in (None, "", "all"):
            meals = list(MEAL_SLOTS)
            label = "all"
        else:
            slot = normalize_meal(meal)
            if not slot:
                raise ValidationError(f"Unknown meal '{meal}'", error_code="INVALID_MEAL")
            meals = [slot]
            label = slot

        served, not_served = [], []
        for p in ParticipantRepo.list_for_event(db, event_id):
            used = [m for m in meals if p.has_used(m)]
            entry = {
                "name": p.name,
                "rollNo": p.roll_no,
                "ticketId": p.ticket_id,
                "foodPreference": p.food_preference,
                "roomNo": p.room_no,
                "mealsUsed": used,
                "checkIns": {m: p.check_ins[m] for m in used if m in p.check_ins},
            }
            (served if used else not_served).append(entry)

        served.sort(key=lambda e: (e["name"] or "").lower())
        not_served.sort(key=lambda e: (e["name"] or "").lower())
        return {
            "meal": label,
            "servedCount": len(served),
            "notServedCount": len(not_served),
            "served": served,
            "notServed": not_served,
        }
